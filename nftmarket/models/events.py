"""
Ledger Event Models

Append-only transition log of the marketplace ledger. Each committed
transition is recorded as exactly one event variant carrying only the
fields that belong to it; the variant is selected by ``kind``.
"""

from datetime import UTC, datetime
from typing import Annotated, Literal

from pydantic import Field, TypeAdapter

from nftmarket.models.base import Address, FrozenMarketModel


class LedgerEventBase(FrozenMarketModel):
    """Fields shared by every ledger event."""

    sequence: int = Field(ge=1, description="Position in the ledger's event log")
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ItemListed(LedgerEventBase):
    kind: Literal["listed"] = "listed"
    market_item_id: int
    token_contract: Address
    token_id: int
    seller: Address
    price: int
    listing_fee: int


class ItemSold(LedgerEventBase):
    kind: Literal["sold"] = "sold"
    market_item_id: int
    token_contract: Address
    token_id: int
    seller: Address
    buyer: Address
    price: int


class ItemCanceled(LedgerEventBase):
    kind: Literal["canceled"] = "canceled"
    market_item_id: int
    token_contract: Address
    token_id: int
    seller: Address


class FeesWithdrawn(LedgerEventBase):
    kind: Literal["fees_withdrawn"] = "fees_withdrawn"
    recipient: Address
    amount: int


class ListingFeeChanged(LedgerEventBase):
    kind: Literal["listing_fee_changed"] = "listing_fee_changed"
    previous_fee: int
    new_fee: int
    changed_by: Address


LedgerEvent = Annotated[
    ItemListed | ItemSold | ItemCanceled | FeesWithdrawn | ListingFeeChanged,
    Field(discriminator="kind"),
]

# Parses a JSON event log back into the concrete variants
ledger_event_list = TypeAdapter(list[LedgerEvent])
