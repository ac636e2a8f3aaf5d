"""
Marketplace Ledger Errors

Every rejected ledger call raises a subclass of ``MarketplaceError``. The
``category`` attribute tells callers which class of failure occurred:

- ``validation``: malformed input or wrong attached payment
- ``authorization``: the caller may not perform the operation
- ``state``: the item is no longer active, or the call re-entered the ledger
- ``collaborator``: the token registry failed during the operation

A rejected call leaves items, fee account, balances and token custody
exactly as they were before it.
"""

from typing import ClassVar


class MarketplaceError(Exception):
    """Base exception for marketplace ledger failures."""

    category: ClassVar[str] = "marketplace"


# ==================== Validation ====================


class InvalidRequestError(MarketplaceError):
    """Input rejected before any state was touched."""

    category = "validation"


class IncorrectListingFeeError(InvalidRequestError):
    """Attached payment differs from the listing fee."""

    def __init__(self, attached: int, required: int) -> None:
        super().__init__(f"Incorrect listing fee: attached {attached}, required {required}")
        self.attached = attached
        self.required = required


class InvalidPriceError(InvalidRequestError):
    """Listing price is not a positive integer amount."""


class IncorrectPaymentError(InvalidRequestError):
    """Attached payment differs from the item's price."""

    def __init__(self, attached: int, required: int) -> None:
        super().__init__(f"Incorrect payment: attached {attached}, price is {required}")
        self.attached = attached
        self.required = required


class InvalidAmountError(InvalidRequestError):
    """An amount argument is negative or exceeds what is available."""


class InvalidAddressError(InvalidRequestError):
    """An identity is not a valid address, or is the reserved zero address."""


class UnknownTokenContractError(InvalidRequestError):
    """No token registry is registered under the given contract address."""


class TokenContractMismatchError(InvalidRequestError):
    """The item does not belong to the token contract named in the call."""


class ItemNotFoundError(InvalidRequestError):
    """No market item exists with the given id."""


class InsufficientFundsError(InvalidRequestError):
    """An account cannot cover a native currency transfer."""


# ==================== Authorization ====================


class UnauthorizedError(MarketplaceError):
    """The caller lacks permission for the operation."""

    category = "authorization"


class NotTokenOwnerError(UnauthorizedError):
    """Only the token's owner may list it."""


class MarketplaceNotApprovedError(UnauthorizedError):
    """The owner has not approved the ledger to move the token."""


class NotSellerError(UnauthorizedError):
    """Only the seller may cancel a listing."""


class NotFeeRecipientError(UnauthorizedError):
    """Only the fee recipient may withdraw listing fees."""


class NotLedgerOwnerError(UnauthorizedError):
    """Only the ledger owner may change its configuration."""


# ==================== State ====================


class InvalidStateError(MarketplaceError):
    """The operation is not allowed in the current state."""

    category = "state"


class ItemNotActiveError(InvalidStateError):
    """The item has already been sold or canceled."""


class ReentrancyError(InvalidStateError):
    """A ledger entry point was invoked while another one was running in the same call chain."""


# ==================== Collaborator ====================


class CollaboratorError(MarketplaceError):
    """The token registry failed while the ledger was using it."""

    category = "collaborator"
