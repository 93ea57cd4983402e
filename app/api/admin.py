"""
============================================================================
Silver Settlement Core
Admin API Endpoints - Compliance, Custody and Workflow Approvals
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints:
    - Bearer token authentication required
    - Caller must hold the ADMIN role (STL-002 NOT_ADMIN otherwise)
Side Effects:
    - Account, custody, mint, redemption and loan transitions
    - Ledger mints and burns
    - Audit records for every decision

ENDPOINTS:
    Accounts
        POST /api/admin/accounts
        GET  /api/admin/accounts/{account_id}
        POST /api/admin/accounts/{account_id}/custody-address
        POST /api/admin/accounts/{account_id}/kyc/{approve|reject}
        POST /api/admin/accounts/{account_id}/aml/{flag|block|clear}
    Custody / pricing
        POST /api/admin/custody-assets
        GET  /api/admin/vault/inventory
        GET  /api/admin/vault/reconcile
        GET  /api/admin/reference-price
        PUT  /api/admin/reference-price
        PUT  /api/admin/minting
    Mints
        GET  /api/admin/mints/pending
        POST /api/admin/mints/{mint_id}/{execute|reject}
    Redemptions
        GET  /api/admin/redemptions/queue
        POST /api/admin/redemptions/{redemption_id}/{approve|fulfill|dispatch|reject}
    Loans
        GET  /api/admin/loans/pending
        POST /api/admin/loans/{loan_id}/{approve|reject|activate|repay|liquidate}
    Operations
        GET  /api/admin/audit
        POST /api/admin/expiry/sweep

============================================================================
"""

from typing import Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_correlation_id, get_current_account, get_services
from app.observability.metrics import update_reference_price, update_token_supply
from app.schemas.settlement import (
    AccountResponse,
    AuditHistoryResponse,
    AuditRecordResponse,
    CustodyAssetRequest,
    CustodyAssetResponse,
    DispatchRequest,
    LinkCustodyAddressRequest,
    LoanResponse,
    MintingStatusResponse,
    MintRequestResponse,
    OptionalReasonRequest,
    PauseMintingRequest,
    ReasonRequest,
    ReconciliationResponse,
    RedemptionResponse,
    ReferencePriceRequest,
    ReferencePriceResponse,
    RegisterAccountRequest,
    VaultInventoryResponse,
)
from services.settlement_core import SettlementServices
from services.settlement_errors import ValidationError
from services.settlement_models import AuditAction, Role

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter()


def _admin(
    account_id: str = Depends(get_current_account),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> str:
    """Authenticated caller that must hold the ADMIN role."""
    services.gate.require_admin(account_id, correlation_id)
    return account_id


# ============================================================================
# ACCOUNTS
# ============================================================================

@router.post(
    "/accounts",
    response_model=AccountResponse,
    status_code=201,
    summary="Register Account",
    responses={409: {"description": "Account already exists (STL-003)"}},
)
async def register_account(
    body: RegisterAccountRequest,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> AccountResponse:
    account = services.gate.register_account(
        admin_id, body.account_id, Role(body.role.value), body.country, correlation_id
    )
    return AccountResponse(**account.to_dict())


@router.get("/accounts/{account_id}", response_model=AccountResponse, summary="Get Account")
async def get_account(
    account_id: str,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
) -> AccountResponse:
    return AccountResponse(**services.gate.load_account(account_id).to_dict())


@router.post(
    "/accounts/{account_id}/custody-address",
    response_model=AccountResponse,
    summary="Link Custody Address",
)
async def link_custody_address(
    account_id: str,
    body: LinkCustodyAddressRequest,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> AccountResponse:
    account = services.gate.link_custody_address(
        admin_id, account_id, body.custody_address, correlation_id
    )
    return AccountResponse(**account.to_dict())


@router.post("/accounts/{account_id}/kyc/approve", response_model=AccountResponse, summary="Approve KYC")
async def approve_kyc(
    account_id: str,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> AccountResponse:
    return AccountResponse(**services.gate.approve_kyc(admin_id, account_id, correlation_id).to_dict())


@router.post("/accounts/{account_id}/kyc/reject", response_model=AccountResponse, summary="Reject KYC")
async def reject_kyc(
    account_id: str,
    body: ReasonRequest,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> AccountResponse:
    account = services.gate.reject_kyc(admin_id, account_id, body.reason, correlation_id)
    return AccountResponse(**account.to_dict())


@router.post(
    "/accounts/{account_id}/aml/{decision}",
    response_model=AccountResponse,
    summary="Set AML Status",
    description="decision is one of **flag**, **block**, **clear**.",
)
async def set_aml_status(
    account_id: str,
    decision: str,
    body: ReasonRequest,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> AccountResponse:
    handlers = {
        "flag": services.gate.flag_aml,
        "block": services.gate.block_aml,
        "clear": services.gate.clear_aml,
    }
    handler = handlers.get(decision)
    if handler is None:
        raise ValidationError(
            "INVALID_AML_DECISION", f"Unknown AML decision {decision!r}; use flag, block or clear"
        )
    logger.info(
        f"[ADMIN-API] AML {decision} | account_id={account_id} | admin={admin_id} | "
        f"correlation_id={correlation_id}"
    )
    return AccountResponse(**handler(admin_id, account_id, body.reason, correlation_id).to_dict())


# ============================================================================
# CUSTODY / PRICING
# ============================================================================

@router.post(
    "/custody-assets",
    response_model=CustodyAssetResponse,
    status_code=201,
    summary="Add Custody Asset",
)
async def add_custody_asset(
    body: CustodyAssetRequest,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> CustodyAssetResponse:
    asset = services.mints.add_custody_asset(
        admin_id, body.vault_id, body.weight_grams, body.purity, body.asset_id, correlation_id
    )
    return CustodyAssetResponse(**asset.to_dict())


@router.get("/vault/inventory", response_model=VaultInventoryResponse, summary="Vault Inventory")
async def vault_inventory(
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
) -> VaultInventoryResponse:
    return VaultInventoryResponse(**services.mints.get_vault_inventory().to_dict())


@router.get(
    "/vault/reconcile",
    response_model=ReconciliationResponse,
    summary="Reconcile Ledger Supply",
    description="Minted grams minus burned redemptions versus ledger total supply.",
)
async def reconcile(
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> ReconciliationResponse:
    result = await services.mints.reconcile_ledger(correlation_id)
    update_token_supply(result.ledger_supply, correlation_id)
    return ReconciliationResponse(**result.to_dict())


@router.get("/reference-price", response_model=ReferencePriceResponse, summary="Reference Price")
async def get_reference_price(
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
) -> ReferencePriceResponse:
    return ReferencePriceResponse(price_per_gram=str(services.prices.current_price()))


@router.put("/reference-price", response_model=ReferencePriceResponse, summary="Set Reference Price")
async def set_reference_price(
    body: ReferencePriceRequest,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> ReferencePriceResponse:
    price = services.prices.set_price(admin_id, body.price_per_gram, correlation_id)
    update_reference_price(price, correlation_id)
    return ReferencePriceResponse(price_per_gram=str(price))


@router.put("/minting", response_model=MintingStatusResponse, summary="Pause or Resume Minting")
async def set_minting_paused(
    body: PauseMintingRequest,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> MintingStatusResponse:
    paused = services.mints.pause_minting(admin_id, body.paused, correlation_id)
    return MintingStatusResponse(paused=paused)


# ============================================================================
# MINTS
# ============================================================================

@router.get("/mints/pending", response_model=List[MintRequestResponse], summary="Pending Mints")
async def pending_mints(
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
) -> List[MintRequestResponse]:
    return [MintRequestResponse(**m.to_dict()) for m in services.mints.get_pending_mints()]


@router.post(
    "/mints/{mint_id}/execute",
    response_model=MintRequestResponse,
    summary="Approve and Mint",
    responses={
        409: {"description": "Wrong status, lock expired, paused (STL-003) or vault short (STL-004)"},
        502: {"description": "Ledger mint failed, mint FAILED and asset released (STL-005)"},
    },
)
async def execute_mint(
    mint_id: str,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> MintRequestResponse:
    logger.info(
        f"[ADMIN-API] POST /mints/{mint_id}/execute | admin={admin_id} | "
        f"correlation_id={correlation_id}"
    )
    mint = await services.mints.execute_mint_flow(admin_id, mint_id, correlation_id)
    return MintRequestResponse(**mint.to_dict())


@router.post("/mints/{mint_id}/reject", response_model=MintRequestResponse, summary="Reject Mint")
async def reject_mint(
    mint_id: str,
    body: ReasonRequest,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> MintRequestResponse:
    mint = services.mints.reject_mint(admin_id, mint_id, body.reason, correlation_id)
    return MintRequestResponse(**mint.to_dict())


# ============================================================================
# REDEMPTIONS
# ============================================================================

@router.get(
    "/redemptions/queue",
    response_model=List[RedemptionResponse],
    summary="Redemption Queue",
    description="PENDING, APPROVED and FULFILLED redemptions, oldest first.",
)
async def redemption_queue(
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
) -> List[RedemptionResponse]:
    return [RedemptionResponse(**r.to_dict()) for r in services.redemptions.get_redemption_queue()]


@router.post(
    "/redemptions/{redemption_id}/approve",
    response_model=RedemptionResponse,
    summary="Approve Redemption",
    responses={409: {"description": "Balance now below quantity (STL-004), status stays PENDING"}},
)
async def approve_redemption(
    redemption_id: str,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> RedemptionResponse:
    redemption = await services.redemptions.approve_redemption(admin_id, redemption_id, correlation_id)
    return RedemptionResponse(**redemption.to_dict())


@router.post(
    "/redemptions/{redemption_id}/fulfill",
    response_model=RedemptionResponse,
    summary="Burn Tokens and Fulfil",
    responses={502: {"description": "Burn refused, redemption REJECTED (STL-005)"}},
)
async def fulfill_redemption(
    redemption_id: str,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> RedemptionResponse:
    redemption = await services.redemptions.fulfill_redemption(admin_id, redemption_id, correlation_id)
    return RedemptionResponse(**redemption.to_dict())


@router.post(
    "/redemptions/{redemption_id}/dispatch",
    response_model=RedemptionResponse,
    summary="Record Dispatch",
)
async def dispatch_redemption(
    redemption_id: str,
    body: DispatchRequest,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> RedemptionResponse:
    redemption = services.redemptions.dispatch_redemption(
        admin_id, redemption_id, body.tracking_number, correlation_id
    )
    return RedemptionResponse(**redemption.to_dict())


@router.post(
    "/redemptions/{redemption_id}/reject",
    response_model=RedemptionResponse,
    summary="Reject Redemption",
)
async def reject_redemption(
    redemption_id: str,
    body: ReasonRequest,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> RedemptionResponse:
    redemption = services.redemptions.reject_redemption(
        admin_id, redemption_id, body.reason, correlation_id
    )
    return RedemptionResponse(**redemption.to_dict())


# ============================================================================
# LOANS
# ============================================================================

@router.get("/loans/pending", response_model=List[LoanResponse], summary="Pending Loans")
async def pending_loans(
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
) -> List[LoanResponse]:
    return [LoanResponse(**loan.to_dict()) for loan in services.loans.get_pending_loans()]


@router.post(
    "/loans/{loan_id}/{decision}",
    response_model=LoanResponse,
    summary="Loan Decision",
    description="decision is one of **approve**, **reject**, **activate**, **repay**, **liquidate**.",
    responses={409: {"description": "Transition not allowed from current status (STL-003)"}},
)
async def loan_decision(
    loan_id: str,
    decision: str,
    body: Optional[OptionalReasonRequest] = None,
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> LoanResponse:
    reason = body.reason if body is not None else None
    loans = services.loans

    if decision == "approve":
        loan = loans.approve_loan(admin_id, loan_id, correlation_id)
    elif decision == "reject":
        loan = loans.reject_loan(admin_id, loan_id, reason, correlation_id)
    elif decision == "activate":
        loan = loans.activate_loan(admin_id, loan_id, correlation_id)
    elif decision == "repay":
        loan = loans.repay_loan(admin_id, loan_id, correlation_id)
    elif decision == "liquidate":
        loan = loans.liquidate_loan(admin_id, loan_id, reason, correlation_id)
    else:
        raise ValidationError("INVALID_LOAN_DECISION", f"Unknown loan decision {decision!r}")

    logger.info(
        f"[ADMIN-API] Loan {decision} | loan_id={loan_id} | status={loan.status.value} | "
        f"admin={admin_id} | correlation_id={correlation_id}"
    )
    return LoanResponse(**loan.to_dict())


# ============================================================================
# OPERATIONS
# ============================================================================

@router.get("/audit", response_model=AuditHistoryResponse, summary="Audit History")
async def audit_history(
    reference_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
) -> AuditHistoryResponse:
    audit_action: Optional[AuditAction] = None
    if action is not None:
        try:
            audit_action = AuditAction(action)
        except ValueError:
            raise ValidationError("INVALID_AUDIT_ACTION", f"Unknown audit action {action!r}") from None

    records = services.audit.history(reference_id, audit_action)
    return AuditHistoryResponse(
        records=[AuditRecordResponse(**r.to_dict()) for r in records[-limit:]],
        total=len(records),
    )


@router.post("/expiry/sweep", summary="Run Expiry Sweep")
async def run_expiry_sweep(
    admin_id: str = Depends(_admin),
    services: SettlementServices = Depends(get_services),
    correlation_id: str = Depends(get_correlation_id),
) -> Dict[str, int]:
    logger.info(
        f"[ADMIN-API] Manual expiry sweep | admin={admin_id} | correlation_id={correlation_id}"
    )
    result = services.expiry_worker.process_expired()
    return {
        "intents_expired": result.intents_expired,
        "price_locks_expired": result.price_locks_expired,
    }
