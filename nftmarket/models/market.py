"""
Marketplace Models

Data structures for the escrow marketplace ledger: listing records, the
fee account view, the per-call context and the persisted state snapshot.
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import Field, model_validator

from nftmarket.models.base import Address, FrozenMarketModel
from nftmarket.models.events import LedgerEvent


class ItemStatus(str, Enum):
    """
    Lifecycle state of a market item.

    ACTIVE -> SOLD or ACTIVE -> CANCELED; both are terminal.
    """

    ACTIVE = "active"
    SOLD = "sold"
    CANCELED = "canceled"


class CallContext(FrozenMarketModel):
    """The calling identity and the native currency attached to a call."""

    caller: Address = Field(description="Account invoking the entry point")
    value: int = Field(default=0, ge=0, description="Attached payment in wei")


class MarketItem(FrozenMarketModel):
    """
    One listing record.

    While the item is active ``owner`` is the ledger itself (the token sits
    in escrow). After a sale it is the buyer. After a cancellation it keeps
    the ledger address and carries no meaning.
    """

    market_item_id: int = Field(ge=1, description="Dense id assigned at listing time")
    token_contract: Address = Field(description="Registry the token belongs to")
    token_id: int = Field(ge=0)
    seller: Address
    owner: Address
    price: int = Field(gt=0, description="Sale price in wei")
    sold: bool = False
    canceled: bool = False
    listed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def check_terminal_flags(self) -> "MarketItem":
        if self.sold and self.canceled:
            raise ValueError("A market item cannot be both sold and canceled")
        return self

    @property
    def status(self) -> ItemStatus:
        if self.sold:
            return ItemStatus.SOLD
        if self.canceled:
            return ItemStatus.CANCELED
        return ItemStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return not self.sold and not self.canceled


class FeeAccount(FrozenMarketModel):
    """Accumulated listing fees held by the ledger for the fee recipient."""

    recipient: Address
    balance: int = Field(default=0, ge=0)
    total_collected: int = Field(default=0, ge=0)
    total_withdrawn: int = Field(default=0, ge=0)


class LedgerSnapshot(FrozenMarketModel):
    """
    Persisted state of a ledger.

    Items keyed by id, the next-id counter, the fee account and the event
    log, plus the configuration needed to rebuild the ledger around them.
    """

    address: Address
    owner: Address
    listing_fee: int = Field(ge=0)
    next_item_id: int = Field(ge=1)
    fee_account: FeeAccount
    items: list[MarketItem] = Field(default_factory=list)
    token_contracts: list[Address] = Field(default_factory=list)
    events: list[LedgerEvent] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_dense_numbering(self) -> "LedgerSnapshot":
        ids = [item.market_item_id for item in self.items]
        if ids != list(range(1, self.next_item_id)):
            raise ValueError("Snapshot item ids must be dense from 1 to next_item_id - 1")
        sequences = [event.sequence for event in self.events]
        if sequences != list(range(1, len(self.events) + 1)):
            raise ValueError("Snapshot events must be numbered 1..n in log order")
        return self
