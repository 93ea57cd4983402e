"""
============================================================================
Loan Workflow - Silver-Collateralised Loan Applications
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Decimal Integrity: All financial calculations use decimal.Decimal with ROUND_HALF_EVEN
Traceability: All operations include correlation_id for audit

LOAN LIFECYCLE:
    PENDING_APPROVAL → APPROVED | REJECTED   (admin)
    APPROVED         → ACTIVE                (admin, disbursement confirmed)
    ACTIVE           → REPAID | LIQUIDATED   (admin)

LTV CAP:
    requested_amount <= collateral_grams * reference_price * max_ltv

    Applications above the cap fail with ValidationError(LTV_EXCEEDED) and
    no row is written. Disbursement itself happens outside this core.

TERMS:
    interest 5% flat, 12 months,
    monthly_payment = requested_amount * (1 + rate) / term_months

============================================================================
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from typing import Any, Dict, List, Optional
import logging

from services.audit_log import AuditLogger
from services.compliance_gate import ComplianceGate
from services.reference_price import ReferencePriceBook
from services.settlement_config import PRECISION_AMOUNT, SettlementConfig
from services.settlement_errors import (
    ConflictReason,
    RecordNotFound,
    StateConflict,
    ValidationError,
)
from services.settlement_models import (
    AuditAction,
    GatedAction,
    LoanRequest,
    LoanStatus,
    PRECISION_QUANTITY,
    new_id,
    to_decimal,
    utc_now,
)
from services.settlement_observability import record_loan_transition
from services.settlement_store import SettlementStore
from services.state_machine import require_transition

# Configure module logger
logger = logging.getLogger(__name__)

LOAN_INTEREST_RATE = Decimal("0.05")
LOAN_TERM_MONTHS = 12
LTV_EXCEEDED = "LTV_EXCEEDED"


@dataclass(frozen=True)
class LoanTerms:
    """Quote for a prospective loan."""
    collateral_grams: Decimal
    reference_price: Decimal
    max_loan_amount: Decimal
    requested_amount: Decimal
    interest_rate: Decimal
    term_months: int
    monthly_payment: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collateral_grams": str(self.collateral_grams),
            "reference_price": str(self.reference_price),
            "max_loan_amount": str(self.max_loan_amount),
            "requested_amount": str(self.requested_amount),
            "interest_rate": str(self.interest_rate),
            "term_months": self.term_months,
            "monthly_payment": str(self.monthly_payment),
        }


def max_loan_amount(collateral_grams: Decimal, reference_price: Decimal, max_ltv: Decimal) -> Decimal:
    return (collateral_grams * reference_price * max_ltv).quantize(
        PRECISION_AMOUNT, rounding=ROUND_HALF_EVEN
    )


class LoanWorkflow:
    """
    LTV-capped loan applications with an admin-driven lifecycle.

    Reliability Level: L6 Critical
    Side Effects: Store writes, audit records
    """

    def __init__(
        self,
        store: SettlementStore,
        gate: ComplianceGate,
        audit: AuditLogger,
        prices: ReferencePriceBook,
        config: SettlementConfig,
    ) -> None:
        self._store = store
        self._gate = gate
        self._audit = audit
        self._prices = prices
        self._config = config

    def calculate_loan_terms(
        self,
        collateral_grams: Decimal,
        requested_amount: Decimal,
    ) -> LoanTerms:
        """
        Quote terms at the current reference price.

        Raises:
            ValidationError: non-positive inputs, or LTV_EXCEEDED
        """
        collateral = _positive(collateral_grams, "collateral_grams")
        amount = _positive(requested_amount, "requested_amount")
        price = self._prices.current_price()
        cap = max_loan_amount(collateral, price, self._config.max_ltv)
        _require_within_cap(amount, cap)

        monthly = (amount * (Decimal("1") + LOAN_INTEREST_RATE) / LOAN_TERM_MONTHS).quantize(
            PRECISION_AMOUNT, rounding=ROUND_HALF_EVEN
        )
        return LoanTerms(
            collateral_grams=collateral,
            reference_price=price,
            max_loan_amount=cap,
            requested_amount=amount,
            interest_rate=LOAN_INTEREST_RATE,
            term_months=LOAN_TERM_MONTHS,
            monthly_payment=monthly,
        )

    def apply_for_loan(
        self,
        owner_id: str,
        collateral_grams: Decimal,
        requested_amount: Decimal,
        correlation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LoanRequest:
        """
        Open a PENDING_APPROVAL loan.

        Raises:
            ValidationError: non-positive inputs, or LTV_EXCEEDED (no row written)
            ComplianceDenied: gate denial
        """
        collateral = _positive(collateral_grams, "collateral_grams")
        amount = _positive(requested_amount, "requested_amount")
        self._gate.require_eligible(owner_id, GatedAction.LOAN, None, correlation_id)

        price = self._prices.current_price()
        cap = max_loan_amount(collateral, price, self._config.max_ltv)
        _require_within_cap(amount, cap)

        now = now or utc_now()
        loan = LoanRequest(
            loan_id=new_id(),
            owner_id=owner_id,
            collateral_grams=collateral,
            requested_amount=amount,
            reference_price=price,
            status=LoanStatus.PENDING_APPROVAL,
            created_at=now,
            updated_at=now,
        )
        with self._store.transaction():
            self._store.add(loan)
            self._audit.record(
                owner_id,
                AuditAction.LOAN_REQUESTED,
                loan.loan_id,
                {
                    "collateral_grams": collateral,
                    "requested_amount": amount,
                    "reference_price": price,
                    "ltv": loan.ltv,
                },
                correlation_id,
            )

        record_loan_transition(LoanStatus.PENDING_APPROVAL.value)
        logger.info(
            f"[LOAN-FLOW] Loan requested | loan_id={loan.loan_id} | owner_id={owner_id} | "
            f"amount={amount} | ltv={loan.ltv} | correlation_id={correlation_id}"
        )
        return loan

    def approve_loan(self, admin_id: str, loan_id: str, correlation_id: Optional[str] = None) -> LoanRequest:
        return self._admin_transition(
            admin_id, loan_id, LoanStatus.APPROVED, AuditAction.LOAN_APPROVED, None, correlation_id
        )

    def reject_loan(
        self,
        admin_id: str,
        loan_id: str,
        reason: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> LoanRequest:
        return self._admin_transition(
            admin_id, loan_id, LoanStatus.REJECTED, AuditAction.LOAN_REJECTED, reason, correlation_id
        )

    def activate_loan(self, admin_id: str, loan_id: str, correlation_id: Optional[str] = None) -> LoanRequest:
        return self._admin_transition(
            admin_id, loan_id, LoanStatus.ACTIVE, AuditAction.LOAN_ACTIVATED, None, correlation_id
        )

    def repay_loan(self, admin_id: str, loan_id: str, correlation_id: Optional[str] = None) -> LoanRequest:
        return self._admin_transition(
            admin_id, loan_id, LoanStatus.REPAID, AuditAction.LOAN_REPAID, None, correlation_id
        )

    def liquidate_loan(
        self,
        admin_id: str,
        loan_id: str,
        reason: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> LoanRequest:
        return self._admin_transition(
            admin_id, loan_id, LoanStatus.LIQUIDATED, AuditAction.LOAN_LIQUIDATED, reason, correlation_id
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_loan(self, loan_id: str) -> LoanRequest:
        loan = self._store.get(LoanRequest, loan_id)
        if loan is None:
            raise RecordNotFound("LOAN_NOT_FOUND", f"Loan {loan_id} does not exist")
        return loan

    def get_user_loans(self, owner_id: str) -> List[LoanRequest]:
        return self._store.list(
            LoanRequest, {"owner_id": owner_id}, order_by="created_at", descending=True
        )

    def get_pending_loans(self) -> List[LoanRequest]:
        return self._store.list(
            LoanRequest, {"status": LoanStatus.PENDING_APPROVAL}, order_by="created_at"
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _admin_transition(
        self,
        admin_id: str,
        loan_id: str,
        target: LoanStatus,
        action: AuditAction,
        reason: Optional[str],
        correlation_id: Optional[str],
    ) -> LoanRequest:
        self._gate.require_admin(admin_id, correlation_id)
        loan = self.get_loan(loan_id)
        require_transition(loan.status, target, loan_id, correlation_id)

        with self._store.transaction():
            if not self._store.compare_and_set(
                LoanRequest,
                loan_id,
                {"status": loan.status},
                {"status": target, "updated_at": utc_now()},
            ):
                raise StateConflict(
                    ConflictReason.CONCURRENT_MODIFICATION,
                    f"Loan {loan_id} changed concurrently. Reload and retry.",
                    {"loan_id": loan_id, "expected": loan.status.value},
                )
            self._audit.record(
                admin_id,
                action,
                loan_id,
                {"from": loan.status.value, "to": target.value, "reason": reason},
                correlation_id,
            )

        record_loan_transition(target.value)
        logger.info(
            f"[LOAN-FLOW] {loan.status.value} → {target.value} | loan_id={loan_id} | "
            f"admin={admin_id} | correlation_id={correlation_id}"
        )
        return self.get_loan(loan_id)


def _positive(value: Decimal, field_name: str) -> Decimal:
    try:
        amount = to_decimal(value, PRECISION_QUANTITY)
    except (InvalidOperation, ValueError):
        raise ValidationError(
            f"INVALID_{field_name.upper()}", f"{field_name} is not a number: {value!r}"
        ) from None
    if amount <= Decimal("0"):
        raise ValidationError(
            f"INVALID_{field_name.upper()}", f"{field_name} must be positive, got {value}"
        )
    return amount


def _require_within_cap(amount: Decimal, cap: Decimal) -> None:
    if amount > cap:
        raise ValidationError(
            LTV_EXCEEDED,
            f"Requested amount {amount} exceeds the maximum loan of {cap}",
            {"requested_amount": str(amount), "max_loan_amount": str(cap)},
        )


__all__ = [
    "LoanTerms",
    "LoanWorkflow",
    "max_loan_amount",
    "LOAN_INTEREST_RATE",
    "LOAN_TERM_MONTHS",
    "LTV_EXCEEDED",
]
