"""
Marketplace API Routes

Endpoints for listing, buying and canceling NFTs in escrow, for the fee
account, and for the history views over the ledger's transition log.

Payments are given as ``value`` in the request body (wei); the caller is
taken from the X-Caller-Address header.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from nftmarket.api.dependencies import CallerDep, LedgerDep, require_development
from nftmarket.ledger import (
    AccountActivity,
    SalesVolume,
    account_activity,
    item_history,
    sales_volume,
    token_provenance,
)
from nftmarket.ledger.history import ItemEvent
from nftmarket.models import (
    CallContext,
    FeeAccount,
    LedgerEvent,
    MarketItem,
    normalize_address,
)
from nftmarket.monitoring import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/marketplace", tags=["Marketplace"])


def _path_address(value: str) -> str:
    try:
        return normalize_address(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid address: {value}",
        ) from None


# ============================================================================
# Request/Response Models
# ============================================================================

class CreateListingRequest(BaseModel):
    """Request to list a token."""
    token_contract: str
    token_id: int = Field(ge=0)
    price: int = Field(description="Sale price in wei")
    value: int = Field(default=0, ge=0, description="Attached payment; must equal the listing fee")


class ExecuteSaleRequest(BaseModel):
    """Request to buy a listed token."""
    token_contract: str
    value: int = Field(default=0, ge=0, description="Attached payment; must equal the price")


class CancelListingRequest(BaseModel):
    token_contract: str


class WithdrawFeesRequest(BaseModel):
    amount: int | None = Field(default=None, ge=0, description="Defaults to the whole fee balance")


class SetListingFeeRequest(BaseModel):
    fee: int = Field(ge=0)


class SetFeeRecipientRequest(BaseModel):
    recipient: str


class DepositRequest(BaseModel):
    amount: int = Field(gt=0)


class ListingFeeResponse(BaseModel):
    listing_fee: int


class ListingCreatedResponse(BaseModel):
    market_item_id: int
    item: MarketItem


class WithdrawFeesResponse(BaseModel):
    amount: int
    fee_account: FeeAccount


class BalanceResponse(BaseModel):
    address: str
    balance: int


class SalesStatsResponse(BaseModel):
    sales: int
    total_value: int
    average_price: int
    active_items: int
    total_items: int


# ============================================================================
# Listings
# ============================================================================

@router.get("/listing-fee", response_model=ListingFeeResponse)
async def get_listing_fee(ledger: LedgerDep) -> ListingFeeResponse:
    """Fee that must be attached when creating a listing."""
    return ListingFeeResponse(listing_fee=await ledger.get_listing_fee())


@router.post("/items", response_model=ListingCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_listing(
    request: CreateListingRequest,
    caller: CallerDep,
    ledger: LedgerDep,
) -> ListingCreatedResponse:
    """List a token for sale; the ledger takes custody of it."""
    ctx = CallContext(caller=caller, value=request.value)
    market_item_id = await ledger.create_listing(
        ctx, request.token_contract, request.token_id, request.price
    )
    item = await ledger.get_market_item(market_item_id)
    return ListingCreatedResponse(market_item_id=market_item_id, item=item)


@router.post("/items/{market_item_id}/buy", response_model=MarketItem)
async def execute_sale(
    market_item_id: int,
    request: ExecuteSaleRequest,
    caller: CallerDep,
    ledger: LedgerDep,
) -> MarketItem:
    """Buy a listed token by attaching exactly its price."""
    ctx = CallContext(caller=caller, value=request.value)
    await ledger.execute_sale(ctx, request.token_contract, market_item_id)
    return await ledger.get_market_item(market_item_id)


@router.post("/items/{market_item_id}/cancel", response_model=MarketItem)
async def cancel_listing(
    market_item_id: int,
    request: CancelListingRequest,
    caller: CallerDep,
    ledger: LedgerDep,
) -> MarketItem:
    """Withdraw a listing; the token returns to the seller and the fee is kept."""
    await ledger.cancel_listing(CallContext(caller=caller), request.token_contract, market_item_id)
    return await ledger.get_market_item(market_item_id)


@router.get("/items", response_model=list[MarketItem])
async def fetch_active_items(ledger: LedgerDep) -> list[MarketItem]:
    return await ledger.fetch_active_items()


@router.get("/items/available", response_model=list[MarketItem])
async def fetch_available_items(ledger: LedgerDep) -> list[MarketItem]:
    return await ledger.fetch_available_items()


@router.get("/items/{market_item_id}", response_model=MarketItem)
async def get_market_item(market_item_id: int, ledger: LedgerDep) -> MarketItem:
    return await ledger.get_market_item(market_item_id)


@router.get("/sellers/{seller}/items", response_model=list[MarketItem])
async def fetch_items_by_seller(seller: str, ledger: LedgerDep) -> list[MarketItem]:
    """Active listings created by a seller."""
    return await ledger.fetch_items_by_seller(seller)


@router.get("/owners/{owner}/items", response_model=list[MarketItem])
async def fetch_items_by_owner(owner: str, ledger: LedgerDep) -> list[MarketItem]:
    """Items an account has bought."""
    return await ledger.fetch_items_by_owner(owner)


@router.get("/tokens/{token_contract}/{token_id}/listing", response_model=MarketItem)
async def find_active_listing(token_contract: str, token_id: int, ledger: LedgerDep) -> MarketItem:
    """The active listing of a token; 404 when the token is not listed."""
    item = await ledger.find_active_listing(token_contract, token_id)
    if item is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Token {token_id} is not listed",
        )
    return item


# ============================================================================
# Fees
# ============================================================================

@router.get("/fees", response_model=FeeAccount)
async def get_fee_account(ledger: LedgerDep) -> FeeAccount:
    return await ledger.get_fee_account()


@router.post("/fees/withdraw", response_model=WithdrawFeesResponse)
async def withdraw_fees(
    request: WithdrawFeesRequest,
    caller: CallerDep,
    ledger: LedgerDep,
) -> WithdrawFeesResponse:
    """Pay accumulated listing fees to the fee recipient."""
    amount = await ledger.withdraw_fees(CallContext(caller=caller), request.amount)
    return WithdrawFeesResponse(amount=amount, fee_account=await ledger.get_fee_account())


@router.put("/fees/listing-fee", response_model=ListingFeeResponse)
async def set_listing_fee(
    request: SetListingFeeRequest,
    caller: CallerDep,
    ledger: LedgerDep,
) -> ListingFeeResponse:
    await ledger.set_listing_fee(CallContext(caller=caller), request.fee)
    return ListingFeeResponse(listing_fee=await ledger.get_listing_fee())


@router.put("/fees/recipient", response_model=FeeAccount)
async def set_fee_recipient(
    request: SetFeeRecipientRequest,
    caller: CallerDep,
    ledger: LedgerDep,
) -> FeeAccount:
    await ledger.set_fee_recipient(CallContext(caller=caller), request.recipient)
    return await ledger.get_fee_account()


# ============================================================================
# History
# ============================================================================

@router.get("/events", response_model=list[LedgerEvent])
async def list_events(
    ledger: LedgerDep,
    since: Annotated[int, Query(ge=0, description="Return events after this sequence number")] = 0,
) -> list[LedgerEvent]:
    return await ledger.events(since)


@router.get("/items/{market_item_id}/history", response_model=list[ItemEvent])
async def get_item_history(market_item_id: int, ledger: LedgerDep) -> list[ItemEvent]:
    await ledger.get_market_item(market_item_id)
    return item_history(await ledger.events(), market_item_id)


@router.get("/tokens/{token_contract}/{token_id}/provenance", response_model=list[ItemEvent])
async def get_token_provenance(token_contract: str, token_id: int, ledger: LedgerDep) -> list[ItemEvent]:
    return token_provenance(await ledger.events(), _path_address(token_contract), token_id)


@router.get("/accounts/{address}/activity", response_model=list[AccountActivity])
async def get_account_activity(address: str, ledger: LedgerDep) -> list[AccountActivity]:
    """Listings, sales, purchases and fee withdrawals of an account."""
    return account_activity(await ledger.events(), _path_address(address))


@router.get("/stats", response_model=SalesStatsResponse)
async def get_sales_stats(ledger: LedgerDep) -> SalesStatsResponse:
    volume: SalesVolume = sales_volume(await ledger.events())
    return SalesStatsResponse(
        sales=volume.sales,
        total_value=volume.total_value,
        average_price=volume.average_price,
        active_items=len(await ledger.fetch_active_items()),
        total_items=ledger.item_count,
    )


# ============================================================================
# Native balances
# ============================================================================

@router.get("/accounts/{address}/balance", response_model=BalanceResponse)
async def get_balance(address: str, ledger: LedgerDep) -> BalanceResponse:
    address = _path_address(address)
    return BalanceResponse(address=address, balance=await ledger.balance_of(address))


@router.post(
    "/accounts/{address}/deposit",
    response_model=BalanceResponse,
    dependencies=[Depends(require_development)],
)
async def deposit(address: str, request: DepositRequest, ledger: LedgerDep) -> BalanceResponse:
    """Fund an account with native currency (development faucet)."""
    address = _path_address(address)
    balance = await ledger.deposit(address, request.amount)
    logger.info("faucet_deposit", address=address, amount=request.amount)
    return BalanceResponse(address=address, balance=balance)
