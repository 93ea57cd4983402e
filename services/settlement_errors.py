"""
============================================================================
Settlement Core - Error Taxonomy
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Traceability: Every error carries an error_code and a stable reason code

ERROR FAMILIES:
    STL-001 ValidationError        Malformed input, never retried
    STL-002 ComplianceDenied       KYC/AML/role gate failure, never retried
    STL-003 StateConflict          Unexpected current status, retryable by caller
    STL-004 InventoryExhausted     No custody asset / insufficient balance
    STL-005 LedgerFailure          Ledger call failed, FAILED record written
    STL-006 RecordNotFound         Unknown id (AccountNotFound for accounts)
    STL-040 SettlementConfigurationError  Required configuration missing

Expected denials from the Compliance Gate are returned as values, not raised.
ComplianceDenied exists for callers that choose to turn a denial into an
exception (workflows do, the pure gate does not).

============================================================================
"""

from typing import Any, Dict, Optional


# =============================================================================
# Error Codes
# =============================================================================

class SettlementErrorCode:
    """Settlement error codes for audit logging and HTTP bodies."""
    VALIDATION = "STL-001"
    COMPLIANCE_DENIED = "STL-002"
    STATE_CONFLICT = "STL-003"
    INVENTORY_EXHAUSTED = "STL-004"
    LEDGER_FAILURE = "STL-005"
    NOT_FOUND = "STL-006"
    CONFIG_MISSING = "STL-040"


class ConflictReason:
    """Stable reason codes carried by StateConflict."""
    INVALID_STATE = "INVALID_STATE"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    PRICE_LOCK_EXPIRED = "PRICE_LOCK_EXPIRED"
    INTENT_EXPIRED = "INTENT_EXPIRED"
    MINTING_PAUSED = "MINTING_PAUSED"


class InventoryReason:
    """Stable reason codes carried by InventoryExhausted."""
    INSUFFICIENT_VAULT_INVENTORY = "INSUFFICIENT_VAULT_INVENTORY"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"


# =============================================================================
# Exceptions
# =============================================================================

class SettlementError(Exception):
    """
    Base class for all settlement core errors.

    Attributes:
        error_code: STL-xxx code
        reason: Stable machine-readable reason
        message: Human readable, actionable message
        details: Extra context for logging/HTTP bodies
    """

    error_code: str = "STL-000"
    retryable: bool = False

    def __init__(
        self,
        reason: str,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.reason = reason
        self.message = message or reason
        self.details = details or {}
        super().__init__(f"[{self.error_code}] {reason}: {self.message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for HTTP bodies and audit payloads."""
        return {
            "error_code": self.error_code,
            "reason": self.reason,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(SettlementError):
    """Malformed input (non-positive amount, missing field, LTV cap)."""
    error_code = SettlementErrorCode.VALIDATION


class ComplianceDenied(SettlementError):
    """KYC/AML/role gate failure. Reason is one of DenialReason."""
    error_code = SettlementErrorCode.COMPLIANCE_DENIED


class StateConflict(SettlementError):
    """
    Attempted transition from an unexpected current status.

    Includes the compare-and-swap miss (CONCURRENT_MODIFICATION). The caller
    may re-read and try again.
    """
    error_code = SettlementErrorCode.STATE_CONFLICT
    retryable = True


class InventoryExhausted(SettlementError):
    """No matching custody asset, or token balance below the requested amount."""
    error_code = SettlementErrorCode.INVENTORY_EXHAUSTED


class LedgerFailure(SettlementError):
    """
    The Ledger Adapter call failed or timed out.

    Raised only after the owning workflow has durably recorded its FAILED
    (or REJECTED) status and audit record. Never auto-retried.
    """
    error_code = SettlementErrorCode.LEDGER_FAILURE


class RecordNotFound(SettlementError):
    """Unknown entity id."""
    error_code = SettlementErrorCode.NOT_FOUND


class AccountNotFound(RecordNotFound):
    """Unknown account id. A programmer error at the Compliance Gate."""


class SettlementConfigurationError(Exception):
    """
    Exception raised when settlement configuration is invalid or missing.

    Raised during startup, enforcing fail-closed behaviour.
    """

    def __init__(self, message: str, error_code: str = SettlementErrorCode.CONFIG_MISSING):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


__all__ = [
    "SettlementErrorCode",
    "ConflictReason",
    "InventoryReason",
    "SettlementError",
    "ValidationError",
    "ComplianceDenied",
    "StateConflict",
    "InventoryExhausted",
    "LedgerFailure",
    "RecordNotFound",
    "AccountNotFound",
    "SettlementConfigurationError",
]
