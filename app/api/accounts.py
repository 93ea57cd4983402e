"""
============================================================================
Silver Settlement Core
Account API Endpoints - Self-Service Profile, KYC and Wallet
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: Bearer token authentication required
Side Effects: KYC submission and wallet transfers write audit records

ENDPOINTS:
    GET  /api/accounts/me              - Account profile
    GET  /api/accounts/me/eligibility  - Compliance Gate decision for an action
    POST /api/accounts/me/kyc          - Submit KYC for review
    GET  /api/accounts/me/balance      - Token balance at the custody address
    POST /api/accounts/me/transfers    - User-initiated token transfer

============================================================================
"""

from decimal import Decimal
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_correlation_id, get_current_account, get_services
from app.schemas.settlement import (
    AccountResponse,
    BalanceResponse,
    EligibilityResponse,
    GatedActionName,
    WalletTransferRequest,
    WalletTransferResponse,
    validate_decimal_value,
)
from services.settlement_core import SettlementServices
from services.settlement_errors import ValidationError
from services.settlement_models import GatedAction

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/me",
    response_model=AccountResponse,
    summary="Get Account",
    responses={
        200: {"description": "Account profile"},
        401: {"description": "Missing authentication (SEC-001)"},
        404: {"description": "Unknown account (STL-006)"},
    },
)
async def get_me(
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
) -> AccountResponse:
    account = services.gate.load_account(account_id)
    return AccountResponse(**account.to_dict())


@router.get(
    "/me/eligibility",
    response_model=EligibilityResponse,
    summary="Check Eligibility",
    description=(
        "Evaluate the Compliance Gate for one action without performing it.\n\n"
        "**notional** is only meaningful for TRADE (role ceilings)."
    ),
)
async def get_eligibility(
    action: GatedActionName = Query(...),
    notional: Optional[str] = Query(None, description="Trade notional as a decimal string"),
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> EligibilityResponse:
    value: Optional[Decimal] = None
    if notional is not None:
        try:
            value = validate_decimal_value(notional, "notional")
        except ValueError as e:
            raise ValidationError("INVALID_NOTIONAL", str(e)) from None
    result = services.gate.check_eligibility(
        account_id, GatedAction(action.value), value, correlation_id
    )
    return EligibilityResponse(**result.to_dict())


@router.post(
    "/me/kyc",
    response_model=AccountResponse,
    summary="Submit KYC",
    description="Move KYC from NOT_STARTED or REJECTED to IN_REVIEW.",
    responses={
        200: {"description": "KYC submitted for review"},
        409: {"description": "KYC already in review or verified (STL-003)"},
    },
)
async def submit_kyc(
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> AccountResponse:
    logger.info(
        f"[ACCOUNT-API] POST /me/kyc | account_id={account_id} | "
        f"correlation_id={correlation_id}"
    )
    account = services.gate.start_kyc(account_id, account_id, correlation_id)
    return AccountResponse(**account.to_dict())


@router.get(
    "/me/balance",
    response_model=BalanceResponse,
    summary="Get Token Balance",
)
async def get_balance(
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
) -> BalanceResponse:
    account = services.gate.load_account(account_id)
    balance = await services.wallet.get_balance(account_id)
    return BalanceResponse(
        account_id=account_id,
        custody_address=account.custody_address,
        balance=str(balance),
    )


@router.post(
    "/me/transfers",
    response_model=WalletTransferResponse,
    summary="Transfer Tokens",
    description=(
        "Transfer tokens out of the caller's custody address.\n\n"
        "Returns outcome **UNSUPPORTED** while WALLET_TRANSFERS_ENABLED is false."
    ),
    responses={
        200: {"description": "Transfer completed, or UNSUPPORTED"},
        403: {"description": "Compliance Gate denial (STL-002)"},
        409: {"description": "Insufficient balance (STL-004)"},
        502: {"description": "Ledger failure (STL-005)"},
    },
)
async def transfer_tokens(
    body: WalletTransferRequest,
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> WalletTransferResponse:
    logger.info(
        f"[ACCOUNT-API] POST /me/transfers | account_id={account_id} | "
        f"amount={body.amount} | correlation_id={correlation_id}"
    )
    result = await services.wallet.transfer_tokens(
        account_id, body.to_address, body.amount, correlation_id
    )
    return WalletTransferResponse(**result.to_dict())
