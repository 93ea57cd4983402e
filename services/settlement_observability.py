"""
============================================================================
Settlement Core - Observability Module
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Traceability: All operations include correlation_id for audit

Prometheus counters for every settlement workflow plus the structured
error-log helper shared by the services.

METRICS EXPOSED:
    - settlement_intents_total{type, outcome}
    - settlement_trades_total{status}
    - settlement_mint_transitions_total{status}
    - settlement_redemption_transitions_total{status}
    - settlement_loan_transitions_total{status}
    - settlement_compliance_denials_total{action, reason}
    - settlement_ledger_failures_total{operation}
    - settlement_expired_total{kind}
    - settlement_audit_records_total{action}

LOG FORMAT:
    [{STL-XXX}] {message} | correlation_id={id} | context={...}

ZERO-FLOAT MANDATE:
    Counters carry event counts only. No Decimal value crosses this boundary.

============================================================================
"""

from typing import Any, Dict, Optional
import json
import logging

from prometheus_client import Counter

from services.settlement_models import SettlementJSONEncoder

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Prometheus Metrics
# =============================================================================

INTENTS_TOTAL = Counter(
    "settlement_intents_total",
    "Trade intents by side and outcome",
    ["type", "outcome"],
)

TRADES_TOTAL = Counter(
    "settlement_trades_total",
    "Trades by final status",
    ["status"],
)

MINT_TRANSITIONS_TOTAL = Counter(
    "settlement_mint_transitions_total",
    "Mint request status transitions",
    ["status"],
)

REDEMPTION_TRANSITIONS_TOTAL = Counter(
    "settlement_redemption_transitions_total",
    "Redemption request status transitions",
    ["status"],
)

LOAN_TRANSITIONS_TOTAL = Counter(
    "settlement_loan_transitions_total",
    "Loan request status transitions",
    ["status"],
)

COMPLIANCE_DENIALS_TOTAL = Counter(
    "settlement_compliance_denials_total",
    "Compliance gate denials by action and reason",
    ["action", "reason"],
)

LEDGER_FAILURES_TOTAL = Counter(
    "settlement_ledger_failures_total",
    "Failed ledger adapter calls by operation",
    ["operation"],
)

EXPIRED_TOTAL = Counter(
    "settlement_expired_total",
    "Rows moved to EXPIRED by the expiry sweep",
    ["kind"],
)

AUDIT_RECORDS_TOTAL = Counter(
    "settlement_audit_records_total",
    "Audit records appended by action",
    ["action"],
)


# =============================================================================
# Recording Helpers
# =============================================================================

def record_intent(intent_type: str, outcome: str) -> None:
    INTENTS_TOTAL.labels(type=intent_type, outcome=outcome).inc()


def record_trade(status: str) -> None:
    TRADES_TOTAL.labels(status=status).inc()


def record_mint_transition(status: str) -> None:
    MINT_TRANSITIONS_TOTAL.labels(status=status).inc()


def record_redemption_transition(status: str) -> None:
    REDEMPTION_TRANSITIONS_TOTAL.labels(status=status).inc()


def record_loan_transition(status: str) -> None:
    LOAN_TRANSITIONS_TOTAL.labels(status=status).inc()


def record_compliance_denial(action: str, reason: str) -> None:
    COMPLIANCE_DENIALS_TOTAL.labels(action=action, reason=reason).inc()


def record_ledger_failure(operation: str) -> None:
    LEDGER_FAILURES_TOTAL.labels(operation=operation).inc()


def record_expired(kind: str, count: int) -> None:
    if count > 0:
        EXPIRED_TOTAL.labels(kind=kind).inc(count)


def record_audit(action: str) -> None:
    AUDIT_RECORDS_TOTAL.labels(action=action).inc()


def log_settlement_error(
    error_code: str,
    message: str,
    correlation_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log an error in the [STL-XXX] format.

    Args:
        error_code: STL-xxx code
        message: Human readable description
        correlation_id: Request correlation id
        context: Extra key/values serialised as JSON
    """
    context_str = json.dumps(context or {}, sort_keys=True, cls=SettlementJSONEncoder)
    logger.error(
        f"[{error_code}] {message} | "
        f"correlation_id={correlation_id} | context={context_str}"
    )


__all__ = [
    "INTENTS_TOTAL",
    "TRADES_TOTAL",
    "MINT_TRANSITIONS_TOTAL",
    "REDEMPTION_TRANSITIONS_TOTAL",
    "LOAN_TRANSITIONS_TOTAL",
    "COMPLIANCE_DENIALS_TOTAL",
    "LEDGER_FAILURES_TOTAL",
    "EXPIRED_TOTAL",
    "AUDIT_RECORDS_TOTAL",
    "record_intent",
    "record_trade",
    "record_mint_transition",
    "record_redemption_transition",
    "record_loan_transition",
    "record_compliance_denial",
    "record_ledger_failure",
    "record_expired",
    "record_audit",
    "log_settlement_error",
]
