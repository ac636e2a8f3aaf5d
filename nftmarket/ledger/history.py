"""
Ledger History

Read-models derived from the ledger's transition log. Nothing here is
stored; every view is recomputed from the events it is given, so it is
always consistent with what the ledger committed.
"""

from collections.abc import Iterable
from enum import Enum

from pydantic import Field

from nftmarket.models import (
    FeesWithdrawn,
    FrozenMarketModel,
    ItemCanceled,
    ItemListed,
    ItemSold,
    LedgerEvent,
    normalize_address,
)

ItemEvent = ItemListed | ItemSold | ItemCanceled


class ActivityRole(str, Enum):
    """Part an account played in a transition."""

    SELLER = "seller"
    BUYER = "buyer"
    FEE_RECIPIENT = "fee_recipient"


class AccountActivity(FrozenMarketModel):
    """One transition an account took part in."""

    role: ActivityRole
    event: LedgerEvent


class SalesVolume(FrozenMarketModel):
    """Aggregate of completed sales."""

    sales: int = Field(default=0, ge=0)
    total_value: int = Field(default=0, ge=0, description="Sum of sale prices in wei")

    @property
    def average_price(self) -> int:
        return self.total_value // self.sales if self.sales else 0


def item_history(events: Iterable[LedgerEvent], market_item_id: int) -> list[ItemEvent]:
    """Listing, then at most one of sale or cancellation, for one item."""
    return [
        event
        for event in events
        if isinstance(event, ItemEvent) and event.market_item_id == market_item_id
    ]


def account_activity(events: Iterable[LedgerEvent], address: str) -> list[AccountActivity]:
    """
    Every transition an account took part in, oldest first.

    A seller buying back their own item appears twice for that sale, once
    per role.
    """
    address = normalize_address(address)
    activity: list[AccountActivity] = []
    for event in events:
        if isinstance(event, ItemListed | ItemCanceled):
            if event.seller == address:
                activity.append(AccountActivity(role=ActivityRole.SELLER, event=event))
        elif isinstance(event, ItemSold):
            if event.seller == address:
                activity.append(AccountActivity(role=ActivityRole.SELLER, event=event))
            if event.buyer == address:
                activity.append(AccountActivity(role=ActivityRole.BUYER, event=event))
        elif isinstance(event, FeesWithdrawn) and event.recipient == address:
            activity.append(AccountActivity(role=ActivityRole.FEE_RECIPIENT, event=event))
    return activity


def token_provenance(
    events: Iterable[LedgerEvent],
    token_contract: str,
    token_id: int,
) -> list[ItemEvent]:
    """All listings, sales and cancellations of one token, across its market items."""
    token_contract = normalize_address(token_contract)
    return [
        event
        for event in events
        if isinstance(event, ItemEvent)
        and event.token_contract == token_contract
        and event.token_id == token_id
    ]


def sales_volume(events: Iterable[LedgerEvent], token_contract: str | None = None) -> SalesVolume:
    """Count and total value of sales, optionally for one token contract."""
    contract = normalize_address(token_contract) if token_contract else None
    sales = 0
    total = 0
    for event in events:
        if isinstance(event, ItemSold) and (contract is None or event.token_contract == contract):
            sales += 1
            total += event.price
    return SalesVolume(sales=sales, total_value=total)
