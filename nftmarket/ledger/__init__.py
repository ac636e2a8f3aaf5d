"""
Marketplace Ledger

The escrow ledger, its transaction machinery, the native currency book it
settles payments through, and read-models over its transition log.
"""

from .balances import NativeBalances
from .errors import (
    CollaboratorError,
    IncorrectListingFeeError,
    IncorrectPaymentError,
    InsufficientFundsError,
    InvalidAddressError,
    InvalidAmountError,
    InvalidPriceError,
    InvalidRequestError,
    InvalidStateError,
    ItemNotActiveError,
    ItemNotFoundError,
    MarketplaceError,
    MarketplaceNotApprovedError,
    NotFeeRecipientError,
    NotLedgerOwnerError,
    NotSellerError,
    NotTokenOwnerError,
    ReentrancyError,
    TokenContractMismatchError,
    UnauthorizedError,
    UnknownTokenContractError,
)
from .history import (
    AccountActivity,
    ActivityRole,
    SalesVolume,
    account_activity,
    item_history,
    sales_volume,
    token_provenance,
)
from .journal import Journal, TransactionGuard
from .service import (
    MarketplaceLedger,
    build_ledger,
    close_marketplace_ledger,
    get_marketplace_ledger,
)

__all__ = [
    "AccountActivity",
    "ActivityRole",
    "CollaboratorError",
    "IncorrectListingFeeError",
    "IncorrectPaymentError",
    "InsufficientFundsError",
    "InvalidAddressError",
    "InvalidAmountError",
    "InvalidPriceError",
    "InvalidRequestError",
    "InvalidStateError",
    "ItemNotActiveError",
    "ItemNotFoundError",
    "Journal",
    "MarketplaceError",
    "MarketplaceLedger",
    "MarketplaceNotApprovedError",
    "NativeBalances",
    "NotFeeRecipientError",
    "NotLedgerOwnerError",
    "NotSellerError",
    "NotTokenOwnerError",
    "ReentrancyError",
    "SalesVolume",
    "TokenContractMismatchError",
    "TransactionGuard",
    "UnauthorizedError",
    "UnknownTokenContractError",
    "account_activity",
    "build_ledger",
    "close_marketplace_ledger",
    "get_marketplace_ledger",
    "item_history",
    "sales_volume",
    "token_provenance",
]
