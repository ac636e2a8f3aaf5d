"""
Base Models and Common Types

Foundation classes shared by the marketplace models: the pydantic base
configuration and the EVM address type every identity is stored as.
"""

from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict
from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_address(value: Any) -> str:
    """
    Validate an EVM address and return its EIP-55 checksum form.

    Lower-case and checksummed input are both accepted; mixed-case input
    with a wrong checksum is rejected.

    Raises:
        ValueError: If the value is not a 20-byte hex address
    """
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError(f"Invalid address: {value!r}")
    return str(Web3.to_checksum_address(value))


Address = Annotated[str, AfterValidator(normalize_address)]


class MarketModel(BaseModel):
    """Base model for all marketplace entities with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        validate_assignment=True,
    )


class FrozenMarketModel(MarketModel):
    """Immutable record; updates go through ``model_copy``."""

    model_config = ConfigDict(frozen=True)
