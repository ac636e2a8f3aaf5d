"""
Native Currency Balances

In-process stand-in for the chain's native currency. Attached payments,
seller proceeds and fee withdrawals all move through here, in wei.
"""

from __future__ import annotations

import structlog

from nftmarket.ledger.errors import InsufficientFundsError, InvalidAmountError
from nftmarket.ledger.journal import Journal

logger = structlog.get_logger(__name__)


class NativeBalances:
    """
    Balance book keyed by checksummed address.

    Balances never go negative. ``transfer`` and ``deposit`` accept a
    journal and register their own undo step with it when given one.
    """

    def __init__(self, initial: dict[str, int] | None = None) -> None:
        self._balances: dict[str, int] = {}
        for address, amount in (initial or {}).items():
            self.deposit(address, amount)

    def balance_of(self, address: str) -> int:
        return self._balances.get(address, 0)

    def total_supply(self) -> int:
        return sum(self._balances.values())

    def deposit(self, address: str, amount: int, journal: Journal | None = None) -> int:
        """Credit new funds to an account (faucet / development funding)."""
        _check_wei(amount, "deposit")
        self._set(address, self.balance_of(address) + amount, journal)
        logger.debug("native_deposit", address=address, amount=amount)
        return self.balance_of(address)

    def transfer(
        self,
        source: str,
        destination: str,
        amount: int,
        journal: Journal | None = None,
    ) -> None:
        """
        Move ``amount`` wei from ``source`` to ``destination``.

        Raises:
            InvalidAmountError: If amount is not a non-negative integer
            InsufficientFundsError: If source cannot cover the amount
        """
        _check_wei(amount, "transfer")
        available = self.balance_of(source)
        if available < amount:
            raise InsufficientFundsError(
                f"Insufficient funds: {source} holds {available}, needs {amount}"
            )
        if amount == 0 or source == destination:
            return
        self._set(source, available - amount, journal)
        self._set(destination, self.balance_of(destination) + amount, journal)

    def snapshot(self) -> dict[str, int]:
        return dict(self._balances)

    def _set(self, address: str, amount: int, journal: Journal | None) -> None:
        previous = self._balances.get(address)
        self._balances[address] = amount
        if journal is not None:
            journal.record(lambda: self._restore(address, previous))

    def _restore(self, address: str, previous: int | None) -> None:
        if previous is None:
            self._balances.pop(address, None)
        else:
            self._balances[address] = previous


def _check_wei(amount: int, operation: str) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise InvalidAmountError(
            f"{operation.capitalize()} amount must be a non-negative integer, got {amount!r}"
        )
