"""
============================================================================
Silver Settlement Core
Mint API Endpoints - Custody Silver to Tokens
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: Bearer token authentication required
Side Effects: Custody reservation, price locks, audit records

ENDPOINTS:
    POST /api/mint                          - Reserve custody and lock price
    GET  /api/mint                          - Caller's mint requests
    GET  /api/mint/{mint_id}                - One mint request
    POST /api/mint/{mint_id}/refresh-lock   - New lock after the old one lapsed

Approval and ledger minting are admin operations (see /api/admin).

============================================================================
"""

from typing import List
import logging

from fastapi import APIRouter, Depends

from app.api.dependencies import (
    get_correlation_id,
    get_current_account,
    get_services,
    require_owner_or_admin,
)
from app.schemas.settlement import (
    MintInitiateRequest,
    MintIntentResponse,
    MintRequestResponse,
)
from services.settlement_core import SettlementServices

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=MintIntentResponse,
    status_code=201,
    summary="Initiate Mint",
    description=(
        "Reserve the smallest unreserved custody asset that covers the requested "
        "grams, lock the reference price and open a REQUESTED mint."
    ),
    responses={
        201: {"description": "Mint requested with an active price lock"},
        403: {"description": "Compliance Gate denial (STL-002)"},
        409: {"description": "No custody asset large enough (STL-004) or minting paused (STL-003)"},
        422: {"description": "Invalid grams or no custody address (STL-001)"},
    },
)
async def initiate_mint(
    body: MintInitiateRequest,
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> MintIntentResponse:
    logger.info(
        f"[MINT-API] POST /mint | account_id={account_id} | "
        f"grams={body.requested_grams} | correlation_id={correlation_id}"
    )
    result = services.mints.initiate_mint_intent(account_id, body.requested_grams, correlation_id)
    return MintIntentResponse(**result.to_dict())


@router.get(
    "",
    response_model=List[MintRequestResponse],
    summary="List My Mints",
)
async def list_mints(
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
) -> List[MintRequestResponse]:
    return [MintRequestResponse(**m.to_dict()) for m in services.mints.get_user_mints(account_id)]


@router.get(
    "/{mint_id}",
    response_model=MintRequestResponse,
    summary="Get Mint",
)
async def get_mint(
    mint_id: str,
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> MintRequestResponse:
    mint = services.mints.get_mint_request(mint_id)
    require_owner_or_admin(services, account_id, mint.owner_id, correlation_id)
    return MintRequestResponse(**mint.to_dict())


@router.post(
    "/{mint_id}/refresh-lock",
    response_model=MintIntentResponse,
    summary="Refresh Price Lock",
    responses={
        200: {"description": "New price lock issued"},
        403: {"description": "Not the mint owner (STL-002)"},
        409: {"description": "Mint not REQUESTED or lock still active (STL-003)"},
    },
)
async def refresh_lock(
    mint_id: str,
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> MintIntentResponse:
    logger.info(
        f"[MINT-API] POST /mint/{mint_id}/refresh-lock | account_id={account_id} | "
        f"correlation_id={correlation_id}"
    )
    result = services.mints.refresh_price_lock(account_id, mint_id, correlation_id)
    return MintIntentResponse(**result.to_dict())
