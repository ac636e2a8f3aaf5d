"""
NFT Marketplace Configuration Management

Centralized configuration using Pydantic Settings for type-safe environment
variable loading with validation.

All settings can be overridden via environment variables prefixed with
NFT_MARKET_ (for example NFT_MARKET_LISTING_FEE_WEI).
"""

import logging
import os
from functools import lru_cache
from typing import Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from nftmarket.models.base import normalize_address

logger = logging.getLogger(__name__)

# 0.01 ether
DEFAULT_LISTING_FEE_WEI = 10_000_000_000_000_000


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="NFT_MARKET_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ═══════════════════════════════════════════════════════════════
    # APPLICATION
    # ═══════════════════════════════════════════════════════════════
    app_name: str = Field(default="nftmarket", description="Application name")
    app_env: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_json: bool | None = Field(
        default=None, description="Force JSON log output (defaults to on in production)"
    )

    # API Server
    api_host: str = Field(default="127.0.0.1", description="API host")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API port")

    # ═══════════════════════════════════════════════════════════════
    # LEDGER
    # ═══════════════════════════════════════════════════════════════
    ledger_address: str = Field(
        default="0x0000000000000000000000000000000000001337",
        description="Identity the ledger holds escrowed tokens and funds under",
    )
    ledger_owner: str = Field(
        default="0x0000000000000000000000000000000000000001",
        description="Administrator (deployer) of the ledger",
    )
    fee_recipient: str | None = Field(
        default=None, description="Account allowed to withdraw listing fees (defaults to owner)"
    )
    listing_fee_wei: int = Field(
        default=DEFAULT_LISTING_FEE_WEI, ge=0, description="Fee charged per listing, in wei"
    )

    # ═══════════════════════════════════════════════════════════════
    # TOKEN REGISTRY
    # ═══════════════════════════════════════════════════════════════
    token_contract_address: str = Field(
        default="0x0000000000000000000000000000000000000721",
        description="Address of the default ERC-721 token registry",
    )
    rpc_url: str | None = Field(
        default=None, description="JSON-RPC endpoint; unset keeps the registry in memory"
    )
    operator_private_key: str | None = Field(
        default=None, description="Key of the ledger's custody wallet for on-chain registries"
    )

    @field_validator("ledger_address", "ledger_owner", "token_contract_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return normalize_address(v)

    @field_validator("fee_recipient")
    @classmethod
    def validate_optional_address(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return normalize_address(v)

    @field_validator("operator_private_key")
    @classmethod
    def validate_private_key_source(cls, v: str | None, info: ValidationInfo) -> str | None:
        """Warn when a private key is read from the environment outside development."""
        if v is not None:
            environment = os.environ.get("NFT_MARKET_APP_ENV", "development")
            if environment not in ("development", "testing"):
                logger.warning(
                    f"Private key '{info.field_name}' loaded from environment variable "
                    f"in {environment}. Consider using a secrets manager."
                )
        return v

    @property
    def effective_fee_recipient(self) -> str:
        return self.fee_recipient or self.ledger_owner

    @property
    def json_logs(self) -> bool:
        if self.log_json is not None:
            return self.log_json
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
