"""
Token Registry Base

This module provides the abstract interface the marketplace ledger uses to
reach an ERC-721 token contract. The ledger never touches token ownership
directly; it asks a registry to query owners and approvals and to move
tokens on its behalf.

Write operations take an explicit ``caller``: the identity on whose behalf
the registry acts (``msg.sender`` on chain).
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class TokenRegistryError(Exception):
    """Base exception for token registry errors."""
    pass


class TokenNotFoundError(TokenRegistryError):
    """Raised when a token id has never been minted."""
    pass


class TransferNotAuthorizedError(TokenRegistryError):
    """Raised when the caller is neither owner, approved, nor operator."""
    pass


class InvalidRecipientError(TokenRegistryError):
    """Raised when a token would be sent to the zero address or to its owner."""
    pass


class ReceiverRejectedError(TokenRegistryError):
    """Raised when a receiving contract refuses a safe transfer."""
    pass


class TransactionPendingError(TokenRegistryError):
    """
    Raised when a write was broadcast but its outcome is not known yet.

    The transfer may still be mined, so the caller must not assume it
    failed. ``wait_for_transaction`` resolves it.
    """

    def __init__(self, message: str, tx_hash: str):
        super().__init__(message)
        self.tx_hash = tx_hash


class BaseTokenRegistry(ABC):
    """
    Abstract base class for ERC-721 registry implementations.

    The registry handles:
    - Ownership and balance queries
    - Per-token and operator approvals
    - Transfers (plain and safe)
    - Minting with a token URI
    """

    def __init__(self, address: str):
        """
        Initialize the registry.

        Args:
            address: Contract address the registry is known by
        """
        self.address = address
        self._initialized = False

    async def initialize(self) -> None:
        """Connect to the backing store. In-process registries need nothing."""
        self._initialized = True

    async def close(self) -> None:
        """Release resources held by the registry."""
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # ==================== Queries ====================

    @abstractmethod
    async def owner_of(self, token_id: int) -> str:
        """Owner of a token; raises TokenNotFoundError for unknown ids."""
        pass

    @abstractmethod
    async def balance_of(self, owner: str) -> int:
        """Number of tokens held by an account."""
        pass

    @abstractmethod
    async def tokens_of_owner(self, owner: str) -> list[int]:
        """Ids of every token held by an account, ascending."""
        pass

    @abstractmethod
    async def get_approved(self, token_id: int) -> str:
        """Account approved for a single token, or the zero address."""
        pass

    @abstractmethod
    async def is_approved_for_all(self, owner: str, operator: str) -> bool:
        """Whether an operator may move every token of an owner."""
        pass

    @abstractmethod
    async def token_uri(self, token_id: int) -> str:
        """Metadata URI of a token."""
        pass

    # ==================== Writes ====================

    @abstractmethod
    async def mint(self, caller: str, token_uri: str) -> int:
        """Mint a new token to the caller and return its id."""
        pass

    @abstractmethod
    async def approve(self, caller: str, spender: str, token_id: int) -> None:
        """Approve a spender for one token; caller must be owner or operator."""
        pass

    @abstractmethod
    async def set_approval_for_all(self, caller: str, operator: str, approved: bool) -> None:
        """Grant or revoke an operator over all of the caller's tokens."""
        pass

    @abstractmethod
    async def transfer_from(self, caller: str, from_address: str, to_address: str, token_id: int) -> None:
        """Move a token without notifying the recipient."""
        pass

    @abstractmethod
    async def safe_transfer_from(
        self,
        caller: str,
        from_address: str,
        to_address: str,
        token_id: int,
        data: bytes = b"",
    ) -> None:
        """Move a token and require a receiving contract to accept it."""
        pass

    # ==================== Helpers ====================

    async def can_transfer(self, spender: str, token_id: int) -> bool:
        """
        Whether ``spender`` may move ``token_id`` right now.

        True for the owner, the token's approved account, or an operator
        approved for all of the owner's tokens.
        """
        owner = await self.owner_of(token_id)
        if spender == owner:
            return True
        if await self.get_approved(token_id) == spender:
            return True
        return await self.is_approved_for_all(owner, spender)

    async def wait_for_transaction(self, tx_hash: str) -> None:
        """
        Wait for a previously broadcast write to settle.

        Returns once it succeeded. Raises TransactionPendingError while it is
        still unconfirmed and TokenRegistryError once it is known to have
        failed. Registries that apply writes immediately never leave one
        pending.
        """
        raise TokenRegistryError(f"{type(self).__name__} has no pending transaction {tx_hash}")
