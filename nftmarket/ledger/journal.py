"""
Ledger Transactions

Serialization and all-or-nothing semantics for ledger entry points.

Every mutating entry point runs inside ``TransactionGuard.transaction``:
a single lock orders the calls, and a ``Journal`` collects one undo step per
effect. If anything inside the transaction raises, the undo steps run in
reverse order before the exception propagates, so a rejected call leaves no
trace.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from contextvars import ContextVar

import structlog

from nftmarket.ledger.errors import ReentrancyError

logger = structlog.get_logger(__name__)

UndoStep = Callable[[], None]


class Journal:
    """Undo log of a single ledger transaction."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        self._undo_steps: list[UndoStep] = []
        self._closed = False

    def record(self, undo: UndoStep) -> None:
        """Register the step that reverts the effect just applied."""
        if self._closed:
            raise RuntimeError(f"Journal for {self.operation} is already closed")
        self._undo_steps.append(undo)

    def __len__(self) -> int:
        return len(self._undo_steps)

    def rollback(self) -> None:
        """Revert every recorded effect, newest first."""
        while self._undo_steps:
            undo = self._undo_steps.pop()
            undo()
        self._closed = True

    def commit(self) -> None:
        self._undo_steps.clear()
        self._closed = True


class TransactionGuard:
    """
    Orders ledger calls and rejects reentrant ones.

    One ``asyncio.Lock`` serializes all entry points of a ledger. The running
    journal is stored in a ``ContextVar``, so a call that arrives from inside
    a running transaction (for example from a token receiver hook) is seen as
    reentrant and rejected instead of waiting on the lock forever.
    """

    def __init__(self, name: str = "ledger") -> None:
        self._lock = asyncio.Lock()
        self._active: ContextVar[Journal | None] = ContextVar(f"{name}_transaction", default=None)

    @property
    def in_transaction(self) -> bool:
        return self._active.get() is not None

    @asynccontextmanager
    async def transaction(self, operation: str) -> AsyncIterator[Journal]:
        running = self._active.get()
        if running is not None:
            logger.warning(
                "ledger_reentrant_call_rejected",
                operation=operation,
                running=running.operation,
            )
            raise ReentrancyError(
                f"{operation} called while {running.operation} is in progress"
            )

        async with self._lock:
            journal = Journal(operation)
            token = self._active.set(journal)
            try:
                yield journal
            except BaseException as e:
                steps = len(journal)
                journal.rollback()
                logger.info(
                    "ledger_transaction_rolled_back",
                    operation=operation,
                    undone_steps=steps,
                    error=type(e).__name__,
                )
                raise
            else:
                journal.commit()
            finally:
                self._active.reset(token)

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        """
        Consistent read access.

        Inside a running transaction the caller already holds the lock and
        sees the transaction's own effects; elsewhere the read waits until
        the running transaction has committed or rolled back.
        """
        if self._active.get() is not None:
            yield
            return
        async with self._lock:
            yield
