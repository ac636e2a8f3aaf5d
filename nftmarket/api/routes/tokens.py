"""
Token Registry API Routes

Mint, approve and inspect tokens of the registries the ledger knows.
These endpoints talk to the registry directly and are what a dApp uses
before listing a token.
"""

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from nftmarket.api.dependencies import CallerDep, LedgerDep

router = APIRouter(prefix="/tokens", tags=["Tokens"])


# ============================================================================
# Request/Response Models
# ============================================================================

class MintRequest(BaseModel):
    token_uri: str = Field(min_length=1, max_length=2048)


class MintResponse(BaseModel):
    token_contract: str
    token_id: int


class ApproveRequest(BaseModel):
    spender: str


class ApprovalForAllRequest(BaseModel):
    operator: str
    approved: bool = True


class TokenResponse(BaseModel):
    token_contract: str
    token_id: int
    owner: str
    approved: str
    token_uri: str


class OwnedTokensResponse(BaseModel):
    token_contract: str
    owner: str
    token_ids: list[int]


# ============================================================================
# Routes
# ============================================================================

@router.get("")
async def list_token_contracts(ledger: LedgerDep) -> dict[str, list[str]]:
    return {"token_contracts": ledger.token_contracts}


@router.post("/{token_contract}/mint", response_model=MintResponse, status_code=status.HTTP_201_CREATED)
async def mint_token(
    token_contract: str,
    request: MintRequest,
    caller: CallerDep,
    ledger: LedgerDep,
) -> MintResponse:
    """Mint a token to the caller."""
    registry = ledger.token_registry(token_contract)
    token_id = await registry.mint(caller, request.token_uri)
    return MintResponse(token_contract=registry.address, token_id=token_id)


@router.post("/{token_contract}/approval-for-all", status_code=status.HTTP_204_NO_CONTENT)
async def set_approval_for_all(
    token_contract: str,
    request: ApprovalForAllRequest,
    caller: CallerDep,
    ledger: LedgerDep,
) -> None:
    registry = ledger.token_registry(token_contract)
    await registry.set_approval_for_all(caller, request.operator, request.approved)


@router.get("/{token_contract}/owners/{owner}", response_model=OwnedTokensResponse)
async def tokens_of_owner(token_contract: str, owner: str, ledger: LedgerDep) -> OwnedTokensResponse:
    """Token ids held by an account (tokens in escrow belong to the ledger)."""
    registry = ledger.token_registry(token_contract)
    token_ids = await registry.tokens_of_owner(owner)
    return OwnedTokensResponse(token_contract=registry.address, owner=owner, token_ids=token_ids)


@router.post("/{token_contract}/{token_id}/approve", status_code=status.HTTP_204_NO_CONTENT)
async def approve(
    token_contract: str,
    token_id: int,
    request: ApproveRequest,
    caller: CallerDep,
    ledger: LedgerDep,
) -> None:
    registry = ledger.token_registry(token_contract)
    await registry.approve(caller, request.spender, token_id)


@router.get("/{token_contract}/{token_id}", response_model=TokenResponse)
async def get_token(token_contract: str, token_id: int, ledger: LedgerDep) -> TokenResponse:
    registry = ledger.token_registry(token_contract)
    return TokenResponse(
        token_contract=registry.address,
        token_id=token_id,
        owner=await registry.owner_of(token_id),
        approved=await registry.get_approved(token_id),
        token_uri=await registry.token_uri(token_id),
    )
