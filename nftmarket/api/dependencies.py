"""
NFT Marketplace - FastAPI Dependencies

Dependency injection for API routes:
- Settings
- The marketplace ledger held in application state
- The calling identity from the X-Caller-Address header
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from nftmarket.config import Settings, get_settings
from nftmarket.ledger import MarketplaceLedger
from nftmarket.models import ZERO_ADDRESS, normalize_address

CALLER_HEADER = "X-Caller-Address"


# =============================================================================
# Settings
# =============================================================================

def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with, falling back to the cached environment settings."""
    settings: Settings | None = getattr(request.app.state, "settings", None)
    return settings or get_settings()


SettingsDep = Annotated[Settings, Depends(get_app_settings)]


# =============================================================================
# Ledger
# =============================================================================

def get_ledger(request: Request) -> MarketplaceLedger:
    """Get the marketplace ledger from application state."""
    ledger: MarketplaceLedger | None = getattr(request.app.state, "ledger", None)
    if ledger is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Marketplace ledger not initialized",
        )
    return ledger


LedgerDep = Annotated[MarketplaceLedger, Depends(get_ledger)]


# =============================================================================
# Caller
# =============================================================================

def get_caller(
    caller: Annotated[str | None, Header(alias=CALLER_HEADER)] = None,
) -> str:
    """
    Identity the request acts as.

    There is no signature check: the header stands in for the transaction
    sender, so the service must only be exposed to trusted clients.
    """
    if not caller:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {CALLER_HEADER} header",
        )
    try:
        address = normalize_address(caller)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {CALLER_HEADER} header",
        ) from None
    if address == ZERO_ADDRESS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The zero address cannot make calls",
        )
    return address


CallerDep = Annotated[str, Depends(get_caller)]


def require_development(settings: SettingsDep) -> None:
    """Reject faucet-style endpoints outside development and testing."""
    if settings.app_env not in ("development", "testing"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Endpoint is only available in development",
        )
