"""
============================================================================
Settlement Audit Log - Append-Only Transition Trail
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Traceability: Every record carries actor, reference and correlation_id

Every state transition in the settlement core appends exactly one
AuditRecord. Records are frozen dataclasses and the store rejects guarded
updates against them, so the trail can only grow.

Call record() inside the same store transaction as the transition it
describes; a rolled-back transition then leaves no audit row behind.

============================================================================
"""

from typing import Any, Dict, List, Optional
import logging

from services.settlement_models import (
    AuditAction,
    AuditRecord,
    new_id,
    utc_now,
)
from services.settlement_observability import record_audit
from services.settlement_store import SettlementStore

# Configure module logger
logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Append-only audit sink backed by the settlement store.

    Reliability Level: L6 Critical
    Side Effects: Store insert, log line, Prometheus counter
    """

    def __init__(self, store: SettlementStore) -> None:
        self._store = store

    def record(
        self,
        actor_id: str,
        action: AuditAction,
        reference_id: Optional[str],
        details: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> AuditRecord:
        entry = AuditRecord(
            audit_id=new_id(),
            actor_id=actor_id,
            action=action,
            reference_id=reference_id,
            details=dict(details or {}),
            correlation_id=correlation_id or new_id(),
            created_at=utc_now(),
        )
        self._store.add(entry)
        record_audit(action.value)

        logger.info(
            f"[AUDIT] {action.value} | actor={actor_id} | "
            f"reference_id={reference_id} | correlation_id={entry.correlation_id}"
        )
        return entry

    def history(
        self,
        reference_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
    ) -> List[AuditRecord]:
        """Audit records, oldest first, optionally filtered."""
        filters: Dict[str, Any] = {}
        if reference_id is not None:
            filters["reference_id"] = reference_id
        if action is not None:
            filters["action"] = action
        return self._store.list(AuditRecord, filters, order_by="created_at")


__all__ = ["AuditLogger"]
