"""
Marketplace Models

Pydantic models for listings, fee accounting, call contexts and the
ledger's transition log.
"""

from nftmarket.models.base import (
    ZERO_ADDRESS,
    Address,
    FrozenMarketModel,
    MarketModel,
    normalize_address,
)
from nftmarket.models.events import (
    FeesWithdrawn,
    ItemCanceled,
    ItemListed,
    ItemSold,
    LedgerEvent,
    ListingFeeChanged,
    ledger_event_list,
)
from nftmarket.models.market import (
    CallContext,
    FeeAccount,
    ItemStatus,
    LedgerSnapshot,
    MarketItem,
)

__all__ = [
    "ZERO_ADDRESS",
    "Address",
    "CallContext",
    "FeeAccount",
    "FeesWithdrawn",
    "FrozenMarketModel",
    "ItemCanceled",
    "ItemListed",
    "ItemSold",
    "ItemStatus",
    "LedgerEvent",
    "LedgerSnapshot",
    "ListingFeeChanged",
    "MarketItem",
    "MarketModel",
    "ledger_event_list",
    "normalize_address",
]
