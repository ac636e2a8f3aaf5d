"""
Token Registries

ERC-721 collaborators the marketplace ledger moves tokens through.
"""

from .base import (
    BaseTokenRegistry,
    InvalidRecipientError,
    ReceiverRejectedError,
    TokenNotFoundError,
    TokenRegistryError,
    TransactionPendingError,
    TransferNotAuthorizedError,
)
from .evm import ERC721_ABI, EVMTokenRegistry
from .memory import InMemoryTokenRegistry, ReceiverHook

__all__ = [
    "ERC721_ABI",
    "BaseTokenRegistry",
    "EVMTokenRegistry",
    "InMemoryTokenRegistry",
    "InvalidRecipientError",
    "ReceiverHook",
    "ReceiverRejectedError",
    "TokenNotFoundError",
    "TokenRegistryError",
    "TransactionPendingError",
    "TransferNotAuthorizedError",
]
