"""
============================================================================
Redemption Workflow - Tokens Back to Physical Silver
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Decimal Integrity: Token quantities are Decimal (1 token = 1 gram)
Traceability: All operations include correlation_id for audit

REDEMPTION LIFECYCLE:
    PENDING   → APPROVED    (admin; ledger balance re-checked)
    APPROVED  → FULFILLED   (ledger burn succeeded, tx_ref stored)
    FULFILLED → DISPATCHED  (physical shipment, tracking number recorded)
    PENDING   → REJECTED    (admin)
    APPROVED  → REJECTED    (admin, or ledger burn failure)

    Terminal states: DISPATCHED, REJECTED

The balance is read at submission and again at approval. The burn itself
is authoritative: a burn the ledger refuses, or that runs past
SETTLEMENT_LEDGER_TIMEOUT_SECONDS, becomes REJECTED with reason
LEDGER_FAILURE.

============================================================================
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional
import logging

from services.audit_log import AuditLogger
from services.compliance_gate import ComplianceGate, require_custody_address
from services.ledger_adapter import LedgerAdapter, LedgerError, call_ledger
from services.settlement_config import SettlementConfig
from services.settlement_errors import (
    ConflictReason,
    InventoryExhausted,
    InventoryReason,
    LedgerFailure,
    RecordNotFound,
    SettlementErrorCode,
    StateConflict,
    ValidationError,
)
from services.settlement_models import (
    AuditAction,
    GatedAction,
    PRECISION_QUANTITY,
    RedemptionRequest,
    RedemptionStatus,
    SYSTEM_ACTOR,
    new_id,
    to_decimal,
    utc_now,
)
from services.settlement_observability import (
    log_settlement_error,
    record_ledger_failure,
    record_redemption_transition,
)
from services.settlement_store import SettlementStore
from services.state_machine import require_transition

# Configure module logger
logger = logging.getLogger(__name__)

LEDGER_FAILURE_REASON = "LEDGER_FAILURE"

_QUEUE_STATES = (RedemptionStatus.PENDING, RedemptionStatus.APPROVED, RedemptionStatus.FULFILLED)


class RedemptionWorkflow:
    """
    Admin-gated burn of tokens against physical delivery.

    Reliability Level: L6 Critical
    Side Effects: Store writes, ledger burns, audit records
    """

    def __init__(
        self,
        store: SettlementStore,
        gate: ComplianceGate,
        ledger: LedgerAdapter,
        audit: AuditLogger,
        config: SettlementConfig,
    ) -> None:
        self._store = store
        self._gate = gate
        self._ledger = ledger
        self._audit = audit
        self._config = config

    async def submit_redemption(
        self,
        owner_id: str,
        quantity: Decimal,
        delivery_address: str,
        correlation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RedemptionRequest:
        """
        Open a PENDING redemption.

        Raises:
            ValidationError: quantity not positive, empty delivery address
            ComplianceDenied: gate denial
            InventoryExhausted: token balance below quantity
        """
        quantity = _positive_quantity(quantity)
        if not delivery_address or not delivery_address.strip():
            raise ValidationError("DELIVERY_ADDRESS_REQUIRED", "delivery_address must not be empty")

        account = self._gate.require_eligible(owner_id, GatedAction.REDEEM, None, correlation_id)
        await self._require_balance(require_custody_address(account), quantity)

        now = now or utc_now()
        redemption = RedemptionRequest(
            redemption_id=new_id(),
            owner_id=owner_id,
            quantity=quantity,
            delivery_address=delivery_address.strip(),
            status=RedemptionStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        with self._store.transaction():
            self._store.add(redemption)
            self._audit.record(
                owner_id,
                AuditAction.REDEMPTION_REQUESTED,
                redemption.redemption_id,
                {"quantity": quantity},
                correlation_id,
            )

        record_redemption_transition(RedemptionStatus.PENDING.value)
        logger.info(
            f"[REDEMPTION-FLOW] Redemption requested | redemption_id={redemption.redemption_id} | "
            f"owner_id={owner_id} | quantity={quantity} | correlation_id={correlation_id}"
        )
        return redemption

    async def approve_redemption(
        self,
        admin_id: str,
        redemption_id: str,
        correlation_id: Optional[str] = None,
    ) -> RedemptionRequest:
        """
        PENDING → APPROVED after re-reading the owner's ledger balance.

        Raises:
            InventoryExhausted: balance now below quantity (status stays PENDING)
        """
        self._gate.require_admin(admin_id, correlation_id)
        redemption = self.get_redemption(redemption_id)
        require_transition(redemption.status, RedemptionStatus.APPROVED, redemption_id, correlation_id)

        owner = self._gate.load_account(redemption.owner_id)
        await self._require_balance(require_custody_address(owner), redemption.quantity)

        self._transition(
            admin_id,
            redemption,
            RedemptionStatus.PENDING,
            RedemptionStatus.APPROVED,
            AuditAction.REDEMPTION_APPROVED,
            {},
            {},
            correlation_id,
        )
        return self.get_redemption(redemption_id)

    async def fulfill_redemption(
        self,
        admin_id: str,
        redemption_id: str,
        correlation_id: Optional[str] = None,
    ) -> RedemptionRequest:
        """
        APPROVED → FULFILLED by burning the tokens.

        Raises:
            LedgerFailure: burn refused or timed out (redemption recorded REJECTED)
        """
        self._gate.require_admin(admin_id, correlation_id)
        redemption = self.get_redemption(redemption_id)
        require_transition(redemption.status, RedemptionStatus.FULFILLED, redemption_id, correlation_id)
        owner = self._gate.load_account(redemption.owner_id)
        address = require_custody_address(owner)

        try:
            tx_ref = await call_ledger(
                "burn",
                self._ledger.burn(address, redemption.quantity),
                self._config.ledger_timeout_seconds,
            )
        except LedgerError as e:
            self._record_burn_failure(redemption, str(e), correlation_id)
            raise LedgerFailure(
                "LEDGER_BURN_FAILED",
                f"Ledger burn for {redemption_id} failed: {e.message}",
                {"redemption_id": redemption_id},
            ) from e
        except BaseException as e:
            # Cancelled or broken adapter: the redemption must not stay APPROVED.
            self._record_burn_failure(
                redemption, f"burn interrupted: {type(e).__name__}", correlation_id
            )
            raise

        self._transition(
            admin_id,
            redemption,
            RedemptionStatus.APPROVED,
            RedemptionStatus.FULFILLED,
            AuditAction.REDEMPTION_COMPLETED,
            {"tx_ref": tx_ref},
            {"tx_ref": tx_ref, "quantity": redemption.quantity},
            correlation_id,
        )
        return self.get_redemption(redemption_id)

    def dispatch_redemption(
        self,
        admin_id: str,
        redemption_id: str,
        tracking_number: str,
        correlation_id: Optional[str] = None,
    ) -> RedemptionRequest:
        self._gate.require_admin(admin_id, correlation_id)
        if not tracking_number or not tracking_number.strip():
            raise ValidationError("TRACKING_NUMBER_REQUIRED", "tracking_number must not be empty")
        redemption = self.get_redemption(redemption_id)
        require_transition(redemption.status, RedemptionStatus.DISPATCHED, redemption_id, correlation_id)

        self._transition(
            admin_id,
            redemption,
            RedemptionStatus.FULFILLED,
            RedemptionStatus.DISPATCHED,
            AuditAction.REDEMPTION_DISPATCHED,
            {"tracking_number": tracking_number.strip()},
            {"tracking_number": tracking_number.strip()},
            correlation_id,
        )
        return self.get_redemption(redemption_id)

    def reject_redemption(
        self,
        admin_id: str,
        redemption_id: str,
        reason: str,
        correlation_id: Optional[str] = None,
    ) -> RedemptionRequest:
        self._gate.require_admin(admin_id, correlation_id)
        if not reason or not reason.strip():
            raise ValidationError("REASON_REQUIRED", "A rejection reason is required")
        redemption = self.get_redemption(redemption_id)
        require_transition(redemption.status, RedemptionStatus.REJECTED, redemption_id, correlation_id)

        self._transition(
            admin_id,
            redemption,
            redemption.status,
            RedemptionStatus.REJECTED,
            AuditAction.REDEMPTION_REJECTED,
            {"rejection_reason": reason},
            {"reason": reason},
            correlation_id,
        )
        return self.get_redemption(redemption_id)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_redemption(self, redemption_id: str) -> RedemptionRequest:
        redemption = self._store.get(RedemptionRequest, redemption_id)
        if redemption is None:
            raise RecordNotFound(
                "REDEMPTION_NOT_FOUND", f"Redemption {redemption_id} does not exist"
            )
        return redemption

    def get_user_redemptions(self, owner_id: str) -> List[RedemptionRequest]:
        return self._store.list(
            RedemptionRequest, {"owner_id": owner_id}, order_by="created_at", descending=True
        )

    def get_redemption_queue(self) -> List[RedemptionRequest]:
        """Open redemptions awaiting admin work, oldest first."""
        queue = [
            r for status in _QUEUE_STATES
            for r in self._store.list(RedemptionRequest, {"status": status})
        ]
        queue.sort(key=lambda r: r.created_at)
        return queue

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _require_balance(self, address: str, quantity: Decimal) -> None:
        try:
            balance = await call_ledger(
                "get_balance",
                self._ledger.get_balance(address),
                self._config.ledger_timeout_seconds,
            )
        except LedgerError as e:
            record_ledger_failure("get_balance")
            raise LedgerFailure("LEDGER_BALANCE_UNAVAILABLE", str(e)) from e
        if balance < quantity:
            raise InventoryExhausted(
                InventoryReason.INSUFFICIENT_BALANCE,
                f"Token balance {balance} is below redemption quantity {quantity}",
                {"balance": str(balance), "quantity": str(quantity)},
            )

    def _record_burn_failure(
        self,
        redemption: RedemptionRequest,
        ledger_error: str,
        correlation_id: Optional[str],
    ) -> None:
        self._transition(
            SYSTEM_ACTOR,
            redemption,
            RedemptionStatus.APPROVED,
            RedemptionStatus.REJECTED,
            AuditAction.REDEMPTION_REJECTED,
            {"rejection_reason": LEDGER_FAILURE_REASON},
            {"reason": LEDGER_FAILURE_REASON, "ledger_error": ledger_error},
            correlation_id,
        )
        record_ledger_failure("burn")
        log_settlement_error(
            SettlementErrorCode.LEDGER_FAILURE,
            f"Ledger burn failed, redemption rejected: {ledger_error}",
            correlation_id,
            {"redemption_id": redemption.redemption_id},
        )

    def _transition(
        self,
        actor_id: str,
        redemption: RedemptionRequest,
        expected: RedemptionStatus,
        target: RedemptionStatus,
        action: AuditAction,
        updates: dict,
        details: dict,
        correlation_id: Optional[str],
    ) -> None:
        with self._store.transaction():
            if not self._store.compare_and_set(
                RedemptionRequest,
                redemption.redemption_id,
                {"status": expected},
                {"status": target, "updated_at": utc_now(), **updates},
            ):
                raise StateConflict(
                    ConflictReason.CONCURRENT_MODIFICATION,
                    f"Redemption {redemption.redemption_id} changed concurrently. Reload and retry.",
                    {"redemption_id": redemption.redemption_id, "expected": expected.value},
                )
            self._audit.record(
                actor_id, action, redemption.redemption_id, details, correlation_id
            )

        record_redemption_transition(target.value)
        logger.info(
            f"[REDEMPTION-FLOW] {expected.value} → {target.value} | "
            f"redemption_id={redemption.redemption_id} | actor={actor_id} | "
            f"correlation_id={correlation_id}"
        )


def _positive_quantity(value: Decimal) -> Decimal:
    try:
        quantity = to_decimal(value, PRECISION_QUANTITY)
    except (InvalidOperation, ValueError):
        raise ValidationError("INVALID_QUANTITY", f"quantity is not a number: {value!r}") from None
    if quantity <= Decimal("0"):
        raise ValidationError("INVALID_QUANTITY", f"quantity must be positive, got {value}")
    return quantity


__all__ = ["RedemptionWorkflow", "LEDGER_FAILURE_REASON"]
