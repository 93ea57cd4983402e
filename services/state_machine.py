"""
============================================================================
Settlement Lifecycle State Machines
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Traceability: All operations include correlation_id for audit

LIFECYCLES:
    TradeIntent:  PENDING → EXECUTED | CANCELLED | EXPIRED
    Trade:        PENDING → EXECUTED | FAILED | CANCELLED
    MintRequest:  REQUESTED → APPROVED → MINTED
                  REQUESTED → FAILED (admin rejection)
                  APPROVED → FAILED (ledger failure)
    Redemption:   PENDING → APPROVED → FULFILLED → DISPATCHED
                  PENDING → REJECTED, APPROVED → REJECTED
    Loan:         PENDING_APPROVAL → APPROVED | REJECTED
                  APPROVED → ACTIVE → REPAID | LIQUIDATED
    PriceLock:    ACTIVE → USED | EXPIRED | CANCELLED

    Terminal states have no outbound transitions.

The table check here is the first line of defence. The store's guarded
compare-and-swap update is what makes a transition atomic.

ERROR CODES:
    - STL-003: Invalid state transition attempted (INVALID_STATE)

============================================================================
"""

from typing import Optional, Dict, List, Tuple, Type
from enum import Enum
import logging

from services.settlement_errors import ConflictReason, SettlementErrorCode, StateConflict
from services.settlement_models import (
    IntentStatus,
    TradeStatus,
    MintStatus,
    RedemptionStatus,
    LoanStatus,
    PriceLockStatus,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# VALID_TRANSITIONS Constant
# =============================================================================

VALID_TRANSITIONS: Dict[Type[Enum], Dict[Enum, List[Enum]]] = {
    IntentStatus: {
        IntentStatus.PENDING: [
            IntentStatus.EXECUTED,
            IntentStatus.CANCELLED,
            IntentStatus.EXPIRED,
        ],
        IntentStatus.EXECUTED: [],
        IntentStatus.CANCELLED: [],
        IntentStatus.EXPIRED: [],
    },
    TradeStatus: {
        TradeStatus.PENDING: [TradeStatus.EXECUTED, TradeStatus.FAILED, TradeStatus.CANCELLED],
        TradeStatus.EXECUTED: [],
        TradeStatus.FAILED: [],
        TradeStatus.CANCELLED: [],
    },
    MintStatus: {
        MintStatus.REQUESTED: [MintStatus.APPROVED, MintStatus.FAILED],
        MintStatus.APPROVED: [MintStatus.MINTED, MintStatus.FAILED],
        MintStatus.MINTED: [],
        MintStatus.FAILED: [],
    },
    RedemptionStatus: {
        RedemptionStatus.PENDING: [RedemptionStatus.APPROVED, RedemptionStatus.REJECTED],
        RedemptionStatus.APPROVED: [RedemptionStatus.FULFILLED, RedemptionStatus.REJECTED],
        RedemptionStatus.FULFILLED: [RedemptionStatus.DISPATCHED],
        RedemptionStatus.DISPATCHED: [],
        RedemptionStatus.REJECTED: [],
    },
    LoanStatus: {
        LoanStatus.PENDING_APPROVAL: [LoanStatus.APPROVED, LoanStatus.REJECTED],
        LoanStatus.APPROVED: [LoanStatus.ACTIVE],
        LoanStatus.ACTIVE: [LoanStatus.REPAID, LoanStatus.LIQUIDATED],
        LoanStatus.REJECTED: [],
        LoanStatus.REPAID: [],
        LoanStatus.LIQUIDATED: [],
    },
    PriceLockStatus: {
        PriceLockStatus.ACTIVE: [
            PriceLockStatus.USED,
            PriceLockStatus.EXPIRED,
            PriceLockStatus.CANCELLED,
        ],
        PriceLockStatus.USED: [],
        PriceLockStatus.EXPIRED: [],
        PriceLockStatus.CANCELLED: [],
    },
}


# =============================================================================
# validate_transition() Function
# =============================================================================

def validate_transition(
    current_state: Enum,
    target_state: Enum,
    correlation_id: Optional[str] = None,
) -> Tuple[bool, Optional[str]]:
    """
    Validate if a state transition is allowed.

    Args:
        current_state: Current status enum member
        target_state: Target status enum member (same enum class)
        correlation_id: Optional correlation ID for audit logging

    Returns:
        (True, None) if valid, (False, "STL-003") otherwise
    """
    table = VALID_TRANSITIONS.get(type(current_state))

    if table is None or type(target_state) is not type(current_state):
        logger.error(
            f"[{SettlementErrorCode.STATE_CONFLICT}] "
            f"Unknown or mismatched lifecycle: {current_state!r} → {target_state!r} | "
            f"correlation_id={correlation_id}"
        )
        return (False, SettlementErrorCode.STATE_CONFLICT)

    valid_targets = table.get(current_state, [])

    if target_state not in valid_targets:
        valid_str = "/".join(s.value for s in valid_targets) if valid_targets else "NONE (terminal state)"
        logger.warning(
            f"[{SettlementErrorCode.STATE_CONFLICT}] "
            f"Invalid state transition: {current_state.value} → {target_state.value}. "
            f"Valid transitions from {current_state.value}: {valid_str} | "
            f"correlation_id={correlation_id}"
        )
        return (False, SettlementErrorCode.STATE_CONFLICT)

    logger.debug(
        f"[STATE-MACHINE] Transition validated: "
        f"{current_state.value} → {target_state.value} | "
        f"correlation_id={correlation_id}"
    )
    return (True, None)


def require_transition(
    current_state: Enum,
    target_state: Enum,
    reference_id: str,
    correlation_id: Optional[str] = None,
) -> None:
    """
    Raise StateConflict(INVALID_STATE) unless current → target is allowed.
    """
    is_valid, _ = validate_transition(current_state, target_state, correlation_id)
    if not is_valid:
        raise StateConflict(
            ConflictReason.INVALID_STATE,
            f"Cannot move {reference_id} from {current_state.value} to "
            f"{target_state.value}. Refresh and try again.",
            {
                "reference_id": reference_id,
                "current_status": current_state.value,
                "target_status": target_state.value,
            },
        )


def get_valid_transitions(state: Enum) -> List[Enum]:
    """Valid target states from a given state (empty for terminal states)."""
    return VALID_TRANSITIONS.get(type(state), {}).get(state, [])


def is_terminal_state(state: Enum) -> bool:
    """True if no outbound transitions exist from state."""
    return not get_valid_transitions(state)


__all__ = [
    "VALID_TRANSITIONS",
    "validate_transition",
    "require_transition",
    "get_valid_transitions",
    "is_terminal_state",
]
