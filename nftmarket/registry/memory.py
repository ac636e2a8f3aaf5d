"""
In-Memory Token Registry

A complete ERC-721 registry held in process memory. Used by the HTTP
service when no RPC endpoint is configured, and by tests.

Token ids are dense and start at 1. A registry can be created with a
marketplace operator; every mint then grants that operator approval over
all of the minter's tokens, the same convenience the deployed NFT contract
offers by taking the marketplace address at construction.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog

from nftmarket.models.base import ZERO_ADDRESS, normalize_address
from nftmarket.registry.base import (
    BaseTokenRegistry,
    InvalidRecipientError,
    ReceiverRejectedError,
    TokenNotFoundError,
    TokenRegistryError,
    TransferNotAuthorizedError,
)

logger = structlog.get_logger(__name__)

# (operator, from_address, token_id, data) -> accepted
ReceiverHook = Callable[[str, str, int, bytes], Awaitable[bool]]


class InMemoryTokenRegistry(BaseTokenRegistry):
    """ERC-721 token registry backed by dictionaries."""

    def __init__(
        self,
        address: str,
        name: str = "Marketplace NFT",
        symbol: str = "MNFT",
        marketplace_operator: str | None = None,
    ) -> None:
        super().__init__(_address(address))
        self.name = name
        self.symbol = symbol
        self.marketplace_operator = _address(marketplace_operator) if marketplace_operator else None

        self._owners: dict[int, str] = {}
        self._token_uris: dict[int, str] = {}
        self._token_approvals: dict[int, str] = {}
        self._operator_approvals: dict[str, set[str]] = {}
        self._owned: dict[str, dict[int, None]] = {}
        self._receivers: dict[str, ReceiverHook] = {}
        self._next_token_id = 1
        self._initialized = True

    # ==================== Queries ====================

    async def owner_of(self, token_id: int) -> str:
        return self._require_owner(token_id)

    async def balance_of(self, owner: str) -> int:
        return len(self._owned.get(_address(owner), {}))

    async def tokens_of_owner(self, owner: str) -> list[int]:
        return sorted(self._owned.get(_address(owner), {}))

    async def get_approved(self, token_id: int) -> str:
        self._require_owner(token_id)
        return self._token_approvals.get(token_id, ZERO_ADDRESS)

    async def is_approved_for_all(self, owner: str, operator: str) -> bool:
        return _address(operator) in self._operator_approvals.get(_address(owner), set())

    async def token_uri(self, token_id: int) -> str:
        self._require_owner(token_id)
        return self._token_uris[token_id]

    @property
    def total_supply(self) -> int:
        return len(self._owners)

    # ==================== Writes ====================

    async def mint(self, caller: str, token_uri: str) -> int:
        minter = _address(caller)
        if minter == ZERO_ADDRESS:
            raise InvalidRecipientError("Cannot mint to the zero address")

        token_id = self._next_token_id
        self._next_token_id += 1
        self._owners[token_id] = minter
        self._token_uris[token_id] = token_uri
        self._owned.setdefault(minter, {})[token_id] = None

        if self.marketplace_operator and self.marketplace_operator != minter:
            self._operator_approvals.setdefault(minter, set()).add(self.marketplace_operator)

        logger.info("token_minted", registry=self.address, token_id=token_id, owner=minter)
        return token_id

    async def approve(self, caller: str, spender: str, token_id: int) -> None:
        sender = _address(caller)
        spender = _address(spender)
        owner = self._require_owner(token_id)

        if spender == owner:
            raise InvalidRecipientError("Approval to current owner")
        if sender != owner and sender not in self._operator_approvals.get(owner, set()):
            raise TransferNotAuthorizedError(
                f"{sender} is not owner nor approved for all for token {token_id}"
            )

        if spender == ZERO_ADDRESS:
            self._token_approvals.pop(token_id, None)
        else:
            self._token_approvals[token_id] = spender
        logger.debug("token_approved", registry=self.address, token_id=token_id, spender=spender)

    async def set_approval_for_all(self, caller: str, operator: str, approved: bool) -> None:
        owner = _address(caller)
        operator = _address(operator)
        if owner == operator:
            raise InvalidRecipientError("Cannot approve self as operator")

        operators = self._operator_approvals.setdefault(owner, set())
        if approved:
            operators.add(operator)
        else:
            operators.discard(operator)
        logger.debug(
            "operator_approval_set",
            registry=self.address,
            owner=owner,
            operator=operator,
            approved=approved,
        )

    async def transfer_from(self, caller: str, from_address: str, to_address: str, token_id: int) -> None:
        self._transfer(_address(caller), _address(from_address), _address(to_address), token_id)

    async def safe_transfer_from(
        self,
        caller: str,
        from_address: str,
        to_address: str,
        token_id: int,
        data: bytes = b"",
    ) -> None:
        sender = _address(caller)
        source = _address(from_address)
        destination = _address(to_address)
        undo = self._transfer(sender, source, destination, token_id)

        hook = self._receivers.get(destination)
        if hook is None:
            return

        try:
            accepted = await hook(sender, source, token_id, data)
        except BaseException:
            undo()
            raise
        if not accepted:
            undo()
            raise ReceiverRejectedError(f"{destination} rejected token {token_id}")

    # ==================== Receivers ====================

    def register_receiver(self, address: str, hook: ReceiverHook) -> None:
        """Make ``address`` behave as a contract that implements onERC721Received."""
        self._receivers[_address(address)] = hook

    def unregister_receiver(self, address: str) -> None:
        self._receivers.pop(_address(address), None)

    # ==================== Internals ====================

    def _require_owner(self, token_id: int) -> str:
        owner = self._owners.get(token_id)
        if owner is None:
            raise TokenNotFoundError(f"Token {token_id} does not exist in {self.address}")
        return owner

    def _transfer(self, sender: str, source: str, destination: str, token_id: int) -> Callable[[], None]:
        owner = self._require_owner(token_id)
        if owner != source:
            raise TransferNotAuthorizedError(f"Token {token_id} is not owned by {source}")
        if destination == ZERO_ADDRESS:
            raise InvalidRecipientError("Transfer to the zero address")
        if not (
            sender == owner
            or self._token_approvals.get(token_id) == sender
            or sender in self._operator_approvals.get(owner, set())
        ):
            raise TransferNotAuthorizedError(
                f"{sender} is not owner nor approved for token {token_id}"
            )

        previous_approval = self._token_approvals.pop(token_id, None)
        self._owners[token_id] = destination
        del self._owned[source][token_id]
        self._owned.setdefault(destination, {})[token_id] = None
        logger.info(
            "token_transferred",
            registry=self.address,
            token_id=token_id,
            from_address=source,
            to_address=destination,
        )

        def undo() -> None:
            self._owners[token_id] = source
            self._owned[destination].pop(token_id, None)
            self._owned.setdefault(source, {})[token_id] = None
            if previous_approval is not None:
                self._token_approvals[token_id] = previous_approval
            logger.info("token_transfer_reverted", registry=self.address, token_id=token_id)

        return undo


def _address(value: str) -> str:
    try:
        return normalize_address(value)
    except ValueError as e:
        raise TokenRegistryError(str(e)) from e
