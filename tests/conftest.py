"""
NFT Marketplace - Test Fixtures

Shared pytest fixtures for all test modules.
"""

from __future__ import annotations

import os
from collections.abc import Generator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

# Test-only environment; set before nftmarket reads its settings
os.environ["NFT_MARKET_APP_ENV"] = "testing"
os.environ.setdefault("NFT_MARKET_LOG_LEVEL", "WARNING")

from nftmarket.api import create_app  # noqa: E402
from nftmarket.config import Settings  # noqa: E402
from nftmarket.ledger import MarketplaceLedger, NativeBalances  # noqa: E402
from nftmarket.registry import InMemoryTokenRegistry  # noqa: E402
from tests.factories import (  # noqa: E402
    BUYER,
    LEDGER_ADDRESS,
    LISTING_FEE,
    OWNER,
    PRICE,
    SELLER,
    STARTING_BALANCE,
    STRANGER,
    TOKEN_CONTRACT,
    call,
    mint_approved,
)

# =============================================================================
# Ledger
# =============================================================================


@pytest.fixture
def registry() -> InMemoryTokenRegistry:
    """Token registry without operator pre-approval."""
    return InMemoryTokenRegistry(TOKEN_CONTRACT)


@pytest.fixture
def balances() -> NativeBalances:
    """Native balances with the usual accounts funded."""
    return NativeBalances({
        SELLER: STARTING_BALANCE,
        BUYER: STARTING_BALANCE,
        STRANGER: STARTING_BALANCE,
    })


@pytest.fixture
def ledger(registry: InMemoryTokenRegistry, balances: NativeBalances) -> MarketplaceLedger:
    """Ledger charging 0.01 ether per listing, owned and paid out to OWNER."""
    return MarketplaceLedger(
        OWNER,
        address=LEDGER_ADDRESS,
        listing_fee=LISTING_FEE,
        balances=balances,
        registries=[registry],
    )


@pytest_asyncio.fixture
async def listed_item(ledger: MarketplaceLedger, registry: InMemoryTokenRegistry) -> int:
    """SELLER mints seven tokens and lists #7 at 1 ether; returns the market item id."""
    token_ids = await mint_approved(registry, SELLER, count=7)
    return await ledger.create_listing(call(SELLER, LISTING_FEE), TOKEN_CONTRACT, token_ids[-1], PRICE)


# =============================================================================
# API
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="testing",
        log_level="WARNING",
        ledger_address=LEDGER_ADDRESS,
        ledger_owner=OWNER,
        token_contract_address=TOKEN_CONTRACT,
        listing_fee_wei=LISTING_FEE,
    )


@pytest.fixture
def api_registry() -> InMemoryTokenRegistry:
    """Registry that approves the ledger on every mint, as the deployed contract does."""
    return InMemoryTokenRegistry(TOKEN_CONTRACT, marketplace_operator=LEDGER_ADDRESS)


@pytest.fixture
def api_ledger(api_registry: InMemoryTokenRegistry, balances: NativeBalances) -> MarketplaceLedger:
    return MarketplaceLedger(
        OWNER,
        address=LEDGER_ADDRESS,
        listing_fee=LISTING_FEE,
        balances=balances,
        registries=[api_registry],
    )


@pytest.fixture
def client(api_ledger: MarketplaceLedger, test_settings: Settings) -> Generator[TestClient, None, None]:
    app = create_app(ledger=api_ledger, settings=test_settings)
    with TestClient(app) as test_client:
        yield test_client
