"""
Marketplace Ledger Service

The escrow marketplace: sellers list ERC-721 tokens at a fixed price by
paying a listing fee, the ledger takes custody of the token, and a buyer who
attaches exactly the price receives the token while the seller receives the
payment. Sellers may cancel an active listing and get the token back.

Each item moves ACTIVE -> SOLD or ACTIVE -> CANCELED exactly once.

Every entry point runs in one ledger transaction (see ``journal``): checks
first, then all local effects, then the single registry call that moves the
token. Any failure, including one raised by the registry, undoes the
transaction completely. A transfer the registry has broadcast but not yet
confirmed keeps the transaction open until its outcome is known.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterable

import structlog

from nftmarket.config import Settings, get_settings
from nftmarket.ledger.balances import NativeBalances
from nftmarket.ledger.errors import (
    CollaboratorError,
    IncorrectListingFeeError,
    IncorrectPaymentError,
    InvalidAddressError,
    InvalidAmountError,
    InvalidPriceError,
    InvalidRequestError,
    ItemNotActiveError,
    ItemNotFoundError,
    MarketplaceNotApprovedError,
    NotFeeRecipientError,
    NotLedgerOwnerError,
    NotSellerError,
    NotTokenOwnerError,
    TokenContractMismatchError,
    UnknownTokenContractError,
)
from nftmarket.ledger.journal import Journal, TransactionGuard
from nftmarket.models import (
    ZERO_ADDRESS,
    CallContext,
    FeeAccount,
    FeesWithdrawn,
    ItemCanceled,
    ItemListed,
    ItemSold,
    LedgerEvent,
    LedgerSnapshot,
    ListingFeeChanged,
    MarketItem,
    normalize_address,
)
from nftmarket.models.events import LedgerEventBase
from nftmarket.registry import (
    BaseTokenRegistry,
    EVMTokenRegistry,
    InMemoryTokenRegistry,
    TokenRegistryError,
    TransactionPendingError,
)

logger = structlog.get_logger(__name__)


class MarketplaceLedger:
    """
    Escrow ledger for fixed-price NFT listings.

    Args:
        owner: Administrator of the ledger (may change fee and recipient)
        address: Identity the ledger holds tokens and funds under
        listing_fee: Fee in wei that must be attached to create_listing
        balances: Native currency book; a fresh one is created if omitted
        fee_recipient: Account allowed to withdraw fees (defaults to owner)
        registries: Token registries listings may come from
    """

    def __init__(
        self,
        owner: str,
        *,
        address: str,
        listing_fee: int,
        balances: NativeBalances | None = None,
        fee_recipient: str | None = None,
        registries: Iterable[BaseTokenRegistry] | None = None,
    ) -> None:
        self.address = _address(address, "ledger address")
        self.owner = _address(owner, "ledger owner")
        _check_amount(listing_fee, "listing fee")
        recipient = _address(fee_recipient, "fee recipient") if fee_recipient else self.owner
        if self.address in (self.owner, recipient):
            raise InvalidAddressError("The ledger cannot own itself or receive its own fees")

        self.balances = balances if balances is not None else NativeBalances()
        self._listing_fee = listing_fee
        self._fee_account = FeeAccount(recipient=recipient)
        self._registries: dict[str, BaseTokenRegistry] = {}
        for registry in registries or ():
            self.register_token_contract(registry)

        # Item store and counter
        self._items: dict[int, MarketItem] = {}
        self._next_item_id = 1

        # Secondary indexes, updated on every transition
        self._active_ids: set[int] = set()
        self._active_by_seller: dict[str, set[int]] = {}
        self._bought_by_owner: dict[str, set[int]] = {}
        self._active_by_token: dict[tuple[str, int], int] = {}

        self._events: list[LedgerEvent] = []
        self._guard = TransactionGuard(f"ledger_{self.address}")

    # =========================================================================
    # Token registries
    # =========================================================================

    def register_token_contract(self, registry: BaseTokenRegistry) -> None:
        """Accept listings of tokens from ``registry``."""
        contract = _address(registry.address, "token contract")
        existing = self._registries.get(contract)
        if existing is not None and existing is not registry:
            raise InvalidRequestError(f"Token contract {contract} is already registered")
        self._registries[contract] = registry
        logger.info("token_contract_registered", ledger=self.address, token_contract=contract)

    def token_registry(self, token_contract: str) -> BaseTokenRegistry:
        contract = _address(token_contract, "token contract")
        registry = self._registries.get(contract)
        if registry is None:
            raise UnknownTokenContractError(f"Token contract {contract} is not registered")
        return registry

    @property
    def token_contracts(self) -> list[str]:
        return sorted(self._registries)

    # =========================================================================
    # Entry points
    # =========================================================================

    async def get_listing_fee(self) -> int:
        async with self._guard.read():
            return self._listing_fee

    async def create_listing(
        self,
        ctx: CallContext,
        token_contract: str,
        token_id: int,
        price: int,
    ) -> int:
        """
        List a token for sale and take custody of it.

        The caller must own the token, must have approved the ledger for it
        (per token or as operator), and must attach exactly the listing fee.

        Returns:
            The new market item id
        """
        seller = self._caller(ctx)
        registry = self.token_registry(token_contract)
        contract = registry.address
        if isinstance(price, bool) or not isinstance(price, int) or price <= 0:
            raise InvalidPriceError(f"Price must be a positive integer amount of wei, got {price!r}")
        if isinstance(token_id, bool) or not isinstance(token_id, int) or token_id < 0:
            raise InvalidRequestError(f"Invalid token id: {token_id!r}")

        async with self._guard.transaction("create_listing") as journal:
            if ctx.value != self._listing_fee:
                raise IncorrectListingFeeError(ctx.value, self._listing_fee)

            try:
                token_owner = await registry.owner_of(token_id)
                if token_owner != seller:
                    raise NotTokenOwnerError(f"{seller} does not own token {token_id} of {contract}")
                approved = (
                    await registry.get_approved(token_id) == self.address
                    or await registry.is_approved_for_all(seller, self.address)
                )
            except TokenRegistryError as e:
                raise CollaboratorError(f"create_listing: {e}") from e
            if not approved:
                raise MarketplaceNotApprovedError(
                    f"Ledger {self.address} is not approved to move token {token_id} of {contract}"
                )

            self.balances.transfer(seller, self.address, ctx.value, journal)
            market_item_id = self._allocate_item_id(journal)
            item = MarketItem(
                market_item_id=market_item_id,
                token_contract=contract,
                token_id=token_id,
                seller=seller,
                owner=self.address,
                price=price,
            )
            self._store_item(item, journal)
            self._activate(item, journal)
            self._credit_fee(ctx.value, journal)
            self._emit(
                journal,
                ItemListed,
                market_item_id=market_item_id,
                token_contract=contract,
                token_id=token_id,
                seller=seller,
                price=price,
                listing_fee=ctx.value,
            )

            await self._interact(
                "create_listing",
                registry,
                registry.transfer_from(self.address, seller, self.address, token_id),
            )

        logger.info(
            "market_item_listed",
            market_item_id=market_item_id,
            token_contract=contract,
            token_id=token_id,
            seller=seller,
            price=price,
        )
        return market_item_id

    async def execute_sale(self, ctx: CallContext, token_contract: str, market_item_id: int) -> None:
        """Buy an active item by attaching exactly its price."""
        buyer = self._caller(ctx)
        contract = _address(token_contract, "token contract")

        async with self._guard.transaction("execute_sale") as journal:
            item = self._require_item(market_item_id, contract)
            if not item.is_active:
                raise ItemNotActiveError(f"Market item {market_item_id} is already {item.status.value}")
            if ctx.value != item.price:
                raise IncorrectPaymentError(ctx.value, item.price)
            registry = self.token_registry(item.token_contract)

            # Escrow the payment, then release it to the seller
            self.balances.transfer(buyer, self.address, ctx.value, journal)
            self.balances.transfer(self.address, item.seller, ctx.value, journal)

            sold = item.model_copy(update={"sold": True, "owner": buyer})
            self._store_item(sold, journal)
            self._deactivate(item, journal)
            self._index(self._bought_by_owner, buyer, sold.market_item_id, journal)
            self._emit(
                journal,
                ItemSold,
                market_item_id=item.market_item_id,
                token_contract=item.token_contract,
                token_id=item.token_id,
                seller=item.seller,
                buyer=buyer,
                price=item.price,
            )

            await self._interact(
                "execute_sale",
                registry,
                registry.safe_transfer_from(self.address, self.address, buyer, item.token_id),
            )

        logger.info(
            "market_item_sold",
            market_item_id=market_item_id,
            token_contract=item.token_contract,
            token_id=item.token_id,
            seller=item.seller,
            buyer=buyer,
            price=item.price,
        )

    async def cancel_listing(self, ctx: CallContext, token_contract: str, market_item_id: int) -> None:
        """Withdraw an active listing and return the token to its seller. The fee is kept."""
        caller = self._caller(ctx)
        contract = _address(token_contract, "token contract")
        _require_no_value(ctx, "cancel_listing")

        async with self._guard.transaction("cancel_listing") as journal:
            item = self._require_item(market_item_id, contract)
            if caller != item.seller:
                raise NotSellerError(f"Only the seller can cancel market item {market_item_id}")
            if not item.is_active:
                raise ItemNotActiveError(f"Market item {market_item_id} is already {item.status.value}")
            registry = self.token_registry(item.token_contract)

            self._store_item(item.model_copy(update={"canceled": True}), journal)
            self._deactivate(item, journal)
            self._emit(
                journal,
                ItemCanceled,
                market_item_id=item.market_item_id,
                token_contract=item.token_contract,
                token_id=item.token_id,
                seller=item.seller,
            )

            await self._interact(
                "cancel_listing",
                registry,
                registry.safe_transfer_from(self.address, self.address, item.seller, item.token_id),
            )

        logger.info(
            "market_item_canceled",
            market_item_id=market_item_id,
            token_contract=item.token_contract,
            token_id=item.token_id,
            seller=item.seller,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    async def fetch_active_items(self) -> list[MarketItem]:
        """Unsold, uncanceled items in ascending id order."""
        async with self._guard.read():
            return [self._items[i] for i in sorted(self._active_ids)]

    async def fetch_available_items(self) -> list[MarketItem]:
        return await self.fetch_active_items()

    async def fetch_items_by_seller(self, seller: str) -> list[MarketItem]:
        """Active listings created by ``seller``."""
        seller = _address(seller, "seller")
        async with self._guard.read():
            return [self._items[i] for i in sorted(self._active_by_seller.get(seller, ()))]

    async def fetch_items_by_owner(self, owner: str) -> list[MarketItem]:
        """Items bought by ``owner``."""
        owner = _address(owner, "owner")
        async with self._guard.read():
            return [self._items[i] for i in sorted(self._bought_by_owner.get(owner, ()))]

    async def get_market_item(self, market_item_id: int) -> MarketItem:
        async with self._guard.read():
            return self._require_item(market_item_id)

    async def find_active_listing(self, token_contract: str, token_id: int) -> MarketItem | None:
        """The active listing of a token, if it is currently listed."""
        contract = _address(token_contract, "token contract")
        async with self._guard.read():
            market_item_id = self._active_by_token.get((contract, token_id))
            return self._items[market_item_id] if market_item_id is not None else None

    async def get_fee_account(self) -> FeeAccount:
        async with self._guard.read():
            return self._fee_account

    async def events(self, since: int = 0) -> list[LedgerEvent]:
        """Committed transitions with a sequence number greater than ``since``."""
        async with self._guard.read():
            return list(self._events[max(since, 0):])

    @property
    def item_count(self) -> int:
        return self._next_item_id - 1

    # =========================================================================
    # Native balances
    # =========================================================================

    async def balance_of(self, address: str) -> int:
        address = _address(address, "account")
        async with self._guard.read():
            return self.balances.balance_of(address)

    async def deposit(self, address: str, amount: int) -> int:
        """Credit native currency to an account (development faucet)."""
        address = _address(address, "account")
        if address == ZERO_ADDRESS:
            raise InvalidAddressError("Cannot fund the zero address")
        async with self._guard.transaction("deposit") as journal:
            return self.balances.deposit(address, amount, journal)

    # =========================================================================
    # Fee administration
    # =========================================================================

    async def withdraw_fees(self, ctx: CallContext, amount: int | None = None) -> int:
        """
        Pay accumulated listing fees out to the fee recipient.

        Args:
            ctx: Must be called by the fee recipient, without attached value
            amount: Wei to withdraw; the whole balance when omitted

        Returns:
            The amount withdrawn
        """
        caller = self._caller(ctx)
        _require_no_value(ctx, "withdraw_fees")

        async with self._guard.transaction("withdraw_fees") as journal:
            account = self._fee_account
            if caller != account.recipient:
                raise NotFeeRecipientError(f"Only {account.recipient} can withdraw listing fees")

            if amount is None:
                amount = account.balance
            _check_amount(amount, "withdrawal amount")
            if amount == 0 or amount > account.balance:
                raise InvalidAmountError(
                    f"Cannot withdraw {amount}: fee balance is {account.balance}"
                )

            self.balances.transfer(self.address, account.recipient, amount, journal)
            self._set_fee_account(
                account.model_copy(update={
                    "balance": account.balance - amount,
                    "total_withdrawn": account.total_withdrawn + amount,
                }),
                journal,
            )
            self._emit(journal, FeesWithdrawn, recipient=account.recipient, amount=amount)

        logger.info("listing_fees_withdrawn", recipient=caller, amount=amount)
        return amount

    async def set_listing_fee(self, ctx: CallContext, fee: int) -> None:
        caller = self._caller(ctx)
        _require_no_value(ctx, "set_listing_fee")
        _check_amount(fee, "listing fee")

        async with self._guard.transaction("set_listing_fee") as journal:
            if caller != self.owner:
                raise NotLedgerOwnerError("Only the ledger owner can change the listing fee")
            previous = self._listing_fee
            self._listing_fee = fee
            journal.record(lambda: setattr(self, "_listing_fee", previous))
            self._emit(
                journal,
                ListingFeeChanged,
                previous_fee=previous,
                new_fee=fee,
                changed_by=caller,
            )

        logger.info("listing_fee_changed", previous_fee=previous, new_fee=fee)

    async def set_fee_recipient(self, ctx: CallContext, recipient: str) -> None:
        caller = self._caller(ctx)
        _require_no_value(ctx, "set_fee_recipient")
        recipient = _address(recipient, "fee recipient")
        if recipient in (ZERO_ADDRESS, self.address):
            raise InvalidAddressError(f"Fee recipient cannot be {recipient}")

        async with self._guard.transaction("set_fee_recipient") as journal:
            if caller != self.owner:
                raise NotLedgerOwnerError("Only the ledger owner can change the fee recipient")
            self._set_fee_account(
                self._fee_account.model_copy(update={"recipient": recipient}), journal
            )

        logger.info("fee_recipient_changed", recipient=recipient)

    # =========================================================================
    # Persistence
    # =========================================================================

    async def export_state(self) -> LedgerSnapshot:
        async with self._guard.read():
            return LedgerSnapshot(
                address=self.address,
                owner=self.owner,
                listing_fee=self._listing_fee,
                next_item_id=self._next_item_id,
                fee_account=self._fee_account,
                items=[self._items[i] for i in sorted(self._items)],
                token_contracts=self.token_contracts,
                events=list(self._events),
            )

    @classmethod
    def restore(
        cls,
        snapshot: LedgerSnapshot,
        *,
        balances: NativeBalances | None = None,
        registries: Iterable[BaseTokenRegistry] | None = None,
    ) -> MarketplaceLedger:
        """Rebuild a ledger and its indexes from an exported snapshot."""
        ledger = cls(
            snapshot.owner,
            address=snapshot.address,
            listing_fee=snapshot.listing_fee,
            balances=balances,
            fee_recipient=snapshot.fee_account.recipient,
            registries=registries,
        )
        ledger._fee_account = snapshot.fee_account
        ledger._next_item_id = snapshot.next_item_id
        ledger._events = list(snapshot.events)
        for item in snapshot.items:
            ledger._items[item.market_item_id] = item
            if item.is_active:
                ledger._activate(item)
            elif item.sold:
                ledger._index(ledger._bought_by_owner, item.owner, item.market_item_id)

        missing = set(snapshot.token_contracts) - set(ledger._registries)
        if missing:
            logger.warning("ledger_restored_without_registries", token_contracts=sorted(missing))
        logger.info(
            "ledger_restored",
            ledger=ledger.address,
            items=len(snapshot.items),
            events=len(snapshot.events),
            active_items=len(ledger._active_ids),
        )
        return ledger

    # =========================================================================
    # Internals
    # =========================================================================

    def _caller(self, ctx: CallContext) -> str:
        if ctx.caller == ZERO_ADDRESS:
            raise InvalidAddressError("The zero address cannot call the ledger")
        # Escrowed funds and tokens are held under the ledger's own identity
        if ctx.caller == self.address:
            raise InvalidAddressError("The ledger cannot call itself")
        return ctx.caller

    def _require_item(self, market_item_id: int, token_contract: str | None = None) -> MarketItem:
        item = self._items.get(market_item_id)
        if item is None:
            raise ItemNotFoundError(f"Market item {market_item_id} does not exist")
        if token_contract is not None and item.token_contract != token_contract:
            raise TokenContractMismatchError(
                f"Market item {market_item_id} belongs to {item.token_contract}, not {token_contract}"
            )
        return item

    async def _interact(
        self,
        operation: str,
        registry: BaseTokenRegistry,
        call: Awaitable[None],
    ) -> None:
        """
        Run the registry call that moves the token and wait for its outcome.

        The call is shielded from cancellation. A cancelled entry point still
        commits or rolls back according to what the registry did, and the
        cancellation is delivered afterwards.
        """
        transfer = asyncio.ensure_future(self._settle(operation, registry, call))
        cancelled = False
        try:
            while True:
                try:
                    await asyncio.shield(transfer)
                    return
                except asyncio.CancelledError:
                    if transfer.cancelled():
                        raise
                    cancelled = True
        finally:
            if cancelled:
                asyncio.current_task().cancel()

    async def _settle(
        self,
        operation: str,
        registry: BaseTokenRegistry,
        call: Awaitable[None],
    ) -> None:
        try:
            try:
                await call
            except TransactionPendingError as e:
                # Broadcast but unconfirmed; hold the lock until the chain decides
                while True:
                    logger.warning("token_transfer_pending", operation=operation, tx_hash=e.tx_hash)
                    try:
                        await registry.wait_for_transaction(e.tx_hash)
                    except TransactionPendingError:
                        continue
                    break
        except TokenRegistryError as e:
            logger.warning("token_registry_call_failed", operation=operation, error=str(e))
            raise CollaboratorError(f"{operation}: {e}") from e

    def _allocate_item_id(self, journal: Journal) -> int:
        market_item_id = self._next_item_id
        self._next_item_id += 1
        journal.record(lambda: setattr(self, "_next_item_id", market_item_id))
        return market_item_id

    def _store_item(self, item: MarketItem, journal: Journal) -> None:
        previous = self._items.get(item.market_item_id)
        self._items[item.market_item_id] = item

        def undo() -> None:
            if previous is None:
                del self._items[item.market_item_id]
            else:
                self._items[item.market_item_id] = previous

        journal.record(undo)

    def _activate(self, item: MarketItem, journal: Journal | None = None) -> None:
        self._active_ids.add(item.market_item_id)
        self._active_by_token[(item.token_contract, item.token_id)] = item.market_item_id
        self._index(self._active_by_seller, item.seller, item.market_item_id)
        if journal is not None:
            journal.record(lambda: self._deactivate(item))

    def _deactivate(self, item: MarketItem, journal: Journal | None = None) -> None:
        self._active_ids.discard(item.market_item_id)
        self._active_by_token.pop((item.token_contract, item.token_id), None)
        self._unindex(self._active_by_seller, item.seller, item.market_item_id)
        if journal is not None:
            journal.record(lambda: self._activate(item))

    def _index(
        self,
        index: dict[str, set[int]],
        key: str,
        market_item_id: int,
        journal: Journal | None = None,
    ) -> None:
        index.setdefault(key, set()).add(market_item_id)
        if journal is not None:
            journal.record(lambda: self._unindex(index, key, market_item_id))

    @staticmethod
    def _unindex(index: dict[str, set[int]], key: str, market_item_id: int) -> None:
        ids = index.get(key)
        if ids is None:
            return
        ids.discard(market_item_id)
        if not ids:
            del index[key]

    def _credit_fee(self, amount: int, journal: Journal) -> None:
        account = self._fee_account
        self._set_fee_account(
            account.model_copy(update={
                "balance": account.balance + amount,
                "total_collected": account.total_collected + amount,
            }),
            journal,
        )

    def _set_fee_account(self, account: FeeAccount, journal: Journal) -> None:
        previous = self._fee_account
        self._fee_account = account
        journal.record(lambda: setattr(self, "_fee_account", previous))

    def _emit(self, journal: Journal, event_type: type[LedgerEventBase], **fields: object) -> None:
        event = event_type(sequence=len(self._events) + 1, **fields)
        self._events.append(event)
        journal.record(self._events.pop)


def _address(value: str | None, label: str) -> str:
    try:
        return normalize_address(value)
    except ValueError as e:
        raise InvalidAddressError(f"Invalid {label}: {value!r}") from e


def _check_amount(amount: int, label: str) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise InvalidAmountError(f"{label.capitalize()} must be a non-negative integer, got {amount!r}")


def _require_no_value(ctx: CallContext, operation: str) -> None:
    if ctx.value:
        raise InvalidAmountError(f"{operation} does not accept a payment, got {ctx.value}")


# =========================================================================
# Global instance
# =========================================================================

_marketplace_ledger: MarketplaceLedger | None = None


async def build_ledger(settings: Settings) -> MarketplaceLedger:
    """
    Create a ledger and its token registry from settings.

    With ``rpc_url`` set the registry is the deployed ERC-721 contract and
    the ledger acts under the operator account; otherwise an in-memory
    registry is created that pre-approves the ledger on every mint.
    """
    registry: BaseTokenRegistry
    ledger_address = settings.ledger_address
    if settings.rpc_url:
        evm_registry = EVMTokenRegistry(
            settings.token_contract_address,
            settings.rpc_url,
            operator_private_key=settings.operator_private_key,
        )
        await evm_registry.initialize()
        ledger_address = evm_registry.operator_address or ledger_address
        registry = evm_registry
    else:
        registry = InMemoryTokenRegistry(
            settings.token_contract_address,
            marketplace_operator=ledger_address,
        )

    ledger = MarketplaceLedger(
        settings.ledger_owner,
        address=ledger_address,
        listing_fee=settings.listing_fee_wei,
        fee_recipient=settings.effective_fee_recipient,
        registries=[registry],
    )
    logger.info(
        "marketplace_ledger_created",
        ledger=ledger.address,
        owner=ledger.owner,
        listing_fee=settings.listing_fee_wei,
        token_contract=registry.address,
        registry=type(registry).__name__,
    )
    return ledger


async def get_marketplace_ledger() -> MarketplaceLedger:
    """Get the global marketplace ledger instance."""
    global _marketplace_ledger
    if _marketplace_ledger is None:
        _marketplace_ledger = await build_ledger(get_settings())
    return _marketplace_ledger


async def close_marketplace_ledger() -> None:
    """Close the ledger's registries and reset the global instance."""
    global _marketplace_ledger
    if _marketplace_ledger is not None:
        for contract in _marketplace_ledger.token_contracts:
            await _marketplace_ledger.token_registry(contract).close()
    _marketplace_ledger = None
