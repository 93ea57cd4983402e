"""
============================================================================
Silver Settlement Core
Loan API Endpoints - Silver-Collateralised Loans
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: Bearer token authentication required
Side Effects: Loan rows and audit records

ENDPOINTS:
    POST /api/loans/terms       - Quote terms at the current reference price
    POST /api/loans             - Apply for a loan (LTV capped)
    GET  /api/loans             - Caller's loans
    GET  /api/loans/{loan_id}   - One loan

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
from app.schemas.settlement import LoanApplicationRequest, LoanResponse, LoanTermsResponse
from services.settlement_core import SettlementServices

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/terms",
    response_model=LoanTermsResponse,
    summary="Quote Loan Terms",
    responses={
        200: {"description": "Terms at the current reference price"},
        422: {"description": "Invalid input or LTV_EXCEEDED (STL-001)"},
    },
)
async def quote_terms(
    body: LoanApplicationRequest,
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
) -> LoanTermsResponse:
    terms = services.loans.calculate_loan_terms(body.collateral_grams, body.requested_amount)
    return LoanTermsResponse(**terms.to_dict())


@router.post(
    "",
    response_model=LoanResponse,
    status_code=201,
    summary="Apply for Loan",
    responses={
        201: {"description": "Loan PENDING_APPROVAL"},
        403: {"description": "Compliance Gate denial (STL-002)"},
        422: {"description": "Invalid input or LTV_EXCEEDED (STL-001)"},
    },
)
async def apply_for_loan(
    body: LoanApplicationRequest,
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> LoanResponse:
    logger.info(
        f"[LOAN-API] POST /loans | account_id={account_id} | "
        f"collateral={body.collateral_grams} | amount={body.requested_amount} | "
        f"correlation_id={correlation_id}"
    )
    loan = services.loans.apply_for_loan(
        account_id, body.collateral_grams, body.requested_amount, correlation_id
    )
    return LoanResponse(**loan.to_dict())


@router.get(
    "",
    response_model=List[LoanResponse],
    summary="List My Loans",
)
async def list_loans(
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
) -> List[LoanResponse]:
    return [LoanResponse(**loan.to_dict()) for loan in services.loans.get_user_loans(account_id)]


@router.get(
    "/{loan_id}",
    response_model=LoanResponse,
    summary="Get Loan",
)
async def get_loan(
    loan_id: str,
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> LoanResponse:
    loan = services.loans.get_loan(loan_id)
    require_owner_or_admin(services, account_id, loan.owner_id, correlation_id)
    return LoanResponse(**loan.to_dict())
