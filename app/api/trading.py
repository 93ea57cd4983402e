"""
============================================================================
Silver Settlement Core
Trading API Endpoints - Trade Intents and Settlement
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints:
    - Bearer token authentication required
    - All financial values use Decimal (no floats)
Side Effects:
    - Intent and trade rows, ledger transfers on match
    - Audit records for every transition

ENDPOINTS:
    POST /api/trading/intents                    - Submit a BUY/SELL intent
    GET  /api/trading/intents                    - Open intents (order book)
    GET  /api/trading/intents/{intent_id}        - One intent
    POST /api/trading/intents/{intent_id}/match  - Match and settle
    POST /api/trading/intents/{intent_id}/cancel - Cancel own intent
    GET  /api/trading/trades                     - Caller's trades

============================================================================
"""

from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import (
    get_correlation_id,
    get_current_account,
    get_services,
    require_owner_or_admin,
)
from app.schemas.settlement import (
    IntentResponse,
    IntentSide,
    MatchResponse,
    SubmitIntentRequest,
    TradeResponse,
)
from services.settlement_core import SettlementServices
from services.settlement_models import IntentType
from services.trade_intent_engine import NoMatch

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/intents",
    response_model=IntentResponse,
    status_code=201,
    summary="Submit Trade Intent",
    description=(
        "Record a PENDING buy or sell intent at a limit price.\n\n"
        "**Compliance:** KYC VERIFIED, AML not FLAGGED/BLOCKED, role notional ceiling\n\n"
        "**SELL:** quantity must not exceed the current token balance"
    ),
    responses={
        201: {"description": "Intent recorded"},
        401: {"description": "Missing authentication (SEC-001)"},
        403: {"description": "Compliance Gate denial (STL-002)"},
        409: {"description": "Insufficient balance (STL-004)"},
        422: {"description": "Invalid quantity or price (STL-001)"},
    },
)
async def submit_intent(
    body: SubmitIntentRequest,
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> IntentResponse:
    logger.info(
        f"[TRADING-API] POST /intents | account_id={account_id} | "
        f"type={body.type.value} | quantity={body.quantity} | "
        f"limit_price={body.limit_price} | correlation_id={correlation_id}"
    )
    intent = await services.trading.submit_intent(
        account_id,
        IntentType(body.type.value),
        body.quantity,
        body.limit_price,
        correlation_id,
    )
    return IntentResponse(**intent.to_dict())


@router.get(
    "/intents",
    response_model=List[IntentResponse],
    summary="List Open Intents",
    description="PENDING intents, oldest first. Filter with ?type=BUY|SELL or ?mine=true.",
)
async def list_intents(
    type: Optional[IntentSide] = Query(None),
    mine: bool = Query(False),
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
) -> List[IntentResponse]:
    intents = services.trading.get_pending_intents(
        account_id=account_id if mine else None,
        intent_type=IntentType(type.value) if type is not None else None,
    )
    return [IntentResponse(**intent.to_dict()) for intent in intents]


@router.get(
    "/intents/{intent_id}",
    response_model=IntentResponse,
    summary="Get Intent",
)
async def get_intent(
    intent_id: str,
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
) -> IntentResponse:
    intent = services.trading.get_intent(intent_id)
    return IntentResponse(**intent.to_dict())


@router.post(
    "/intents/{intent_id}/match",
    response_model=MatchResponse,
    summary="Match and Settle Intent",
    description=(
        "Find the earliest compatible counter-intent and settle through the ledger.\n\n"
        "**matched=false** when no compatible intent exists (not an error)."
    ),
    responses={
        200: {"description": "Trade executed, or no match"},
        403: {"description": "Not the owner, or Compliance Gate denial (STL-002)"},
        409: {"description": "Intent not PENDING, claimed or expired (STL-003)"},
        502: {"description": "Ledger transfer failed, intents released (STL-005)"},
    },
)
async def match_intent(
    intent_id: str,
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> MatchResponse:
    intent = services.trading.get_intent(intent_id)
    require_owner_or_admin(services, account_id, intent.account_id, correlation_id)

    logger.info(
        f"[TRADING-API] POST /intents/{intent_id}/match | account_id={account_id} | "
        f"correlation_id={correlation_id}"
    )
    outcome = await services.trading.match_and_execute(intent_id, correlation_id)

    if isinstance(outcome, NoMatch):
        return MatchResponse(intent_id=intent_id, matched=False, reason=outcome.reason)

    return MatchResponse(
        intent_id=intent_id,
        matched=True,
        trade=TradeResponse(**outcome.to_dict()),
    )


@router.post(
    "/intents/{intent_id}/cancel",
    response_model=IntentResponse,
    summary="Cancel Intent",
    responses={
        200: {"description": "Intent cancelled"},
        403: {"description": "Not the intent owner (STL-002)"},
        409: {"description": "Intent not PENDING or being settled (STL-003)"},
    },
)
async def cancel_intent(
    intent_id: str,
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> IntentResponse:
    logger.info(
        f"[TRADING-API] POST /intents/{intent_id}/cancel | account_id={account_id} | "
        f"correlation_id={correlation_id}"
    )
    intent = services.trading.cancel_intent(intent_id, account_id, correlation_id)
    return IntentResponse(**intent.to_dict())


@router.get(
    "/trades",
    response_model=List[TradeResponse],
    summary="List My Trades",
    description="Trades where the caller is buyer or seller, newest first.",
)
async def list_trades(
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
) -> List[TradeResponse]:
    return [TradeResponse(**trade.to_dict()) for trade in services.trading.get_user_trades(account_id)]
