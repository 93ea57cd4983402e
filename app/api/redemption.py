"""
============================================================================
Silver Settlement Core
Redemption API Endpoints - Tokens Back to Physical Silver
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: Bearer token authentication required
Side Effects: Redemption rows and audit records

ENDPOINTS:
    POST /api/redemptions                   - Request physical redemption
    GET  /api/redemptions                   - Caller's redemptions
    GET  /api/redemptions/{redemption_id}   - One redemption

Approval, burn and dispatch are admin operations (see /api/admin).

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
from app.schemas.settlement import RedemptionResponse, RedemptionSubmitRequest
from services.settlement_core import SettlementServices

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=RedemptionResponse,
    status_code=201,
    summary="Request Redemption",
    responses={
        201: {"description": "Redemption PENDING"},
        403: {"description": "Compliance Gate denial (STL-002)"},
        409: {"description": "Token balance below quantity (STL-004)"},
        422: {"description": "Invalid quantity or address (STL-001)"},
    },
)
async def submit_redemption(
    body: RedemptionSubmitRequest,
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> RedemptionResponse:
    logger.info(
        f"[REDEMPTION-API] POST /redemptions | account_id={account_id} | "
        f"quantity={body.quantity} | correlation_id={correlation_id}"
    )
    redemption = await services.redemptions.submit_redemption(
        account_id, body.quantity, body.delivery_address, correlation_id
    )
    return RedemptionResponse(**redemption.to_dict())


@router.get(
    "",
    response_model=List[RedemptionResponse],
    summary="List My Redemptions",
)
async def list_redemptions(
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
) -> List[RedemptionResponse]:
    return [
        RedemptionResponse(**r.to_dict())
        for r in services.redemptions.get_user_redemptions(account_id)
    ]


@router.get(
    "/{redemption_id}",
    response_model=RedemptionResponse,
    summary="Get Redemption",
)
async def get_redemption(
    redemption_id: str,
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> RedemptionResponse:
    redemption = services.redemptions.get_redemption(redemption_id)
    require_owner_or_admin(services, account_id, redemption.owner_id, correlation_id)
    return RedemptionResponse(**redemption.to_dict())
