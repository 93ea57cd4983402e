"""
============================================================================
Silver Settlement Core
API Dependencies - Authentication, Services and Error Mapping
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: Bearer token in Authorization header
Side Effects: None

AUTHENTICATION:
    Authorization: Bearer <account_id>

    The token IS the account id. Nothing here verifies it: any caller that
    sends "Bearer <admin id>" is treated as that admin. Deployments must put
    a gateway in front that authenticates the caller and sets this header;
    exposed directly, the admin routes are open to anyone who knows an admin
    id. Authorisation (owner, admin, KYC/AML) is decided by the Compliance
    Gate inside each workflow, but it trusts the identity this layer hands it.

ERROR MAPPING (SettlementError → HTTP):
    STL-001 ValidationError      422
    STL-002 ComplianceDenied     403
    STL-003 StateConflict        409
    STL-004 InventoryExhausted   409
    STL-005 LedgerFailure        502
    STL-006 RecordNotFound       404

============================================================================
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging

from fastapi import Header, HTTPException, Request

from services.settlement_core import SettlementServices
from services.settlement_errors import (
    ComplianceDenied,
    InventoryExhausted,
    LedgerFailure,
    RecordNotFound,
    SettlementError,
    StateConflict,
    ValidationError,
)

# Configure module logger
logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


# ============================================================================
# SERVICES REGISTRY
# ============================================================================

_services: Optional[SettlementServices] = None


def set_services(services: SettlementServices) -> None:
    """Install the process-wide services (called from the app lifespan)."""
    global _services
    _services = services


def reset_services() -> None:
    """Forget the installed services (for testing)."""
    global _services
    _services = None


def get_services() -> SettlementServices:
    """
    FastAPI dependency returning the settlement services.

    Raises:
        HTTPException: 503 if the app has not finished starting
    """
    if _services is None:
        raise HTTPException(
            status_code=503,
            detail={
                "error_code": "SYS-503",
                "message": "Settlement services are not initialised",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )
    return _services


# ============================================================================
# REQUEST CONTEXT
# ============================================================================

def get_correlation_id(
    request: Request,
    x_correlation_id: Optional[str] = Header(None, alias=CORRELATION_HEADER),
) -> str:
    """Caller-supplied correlation id, or a fresh UUID for this request."""
    correlation_id = (x_correlation_id or "").strip() or str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    return correlation_id


def get_current_account(
    authorization: Optional[str] = Header(None, description="Bearer token")
) -> str:
    """
    Extract the calling account from the authorization header.

    The header value is trusted as-is. See AUTHENTICATION above.

    Returns:
        str: Account ID extracted from token

    Raises:
        HTTPException: 401 SEC-001 if authentication missing/invalid
    """
    if not authorization:
        logger.warning("[SEC-001] Missing Authorization header")
        raise HTTPException(
            status_code=401,
            detail={
                "error_code": "SEC-001",
                "message": "Authorization header required. Use: Bearer <account_id>",
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )

    if not authorization.startswith("Bearer "):
        logger.warning(
            f"[SEC-001] Invalid authorization format: {authorization[:20]}..."
        )
        raise HTTPException(
            status_code=401,
            detail={
                "error_code": "SEC-001",
                "message": "Invalid authorization format. Use: Bearer <account_id>",
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )

    account_id = authorization[7:].strip()

    if not account_id:
        logger.warning("[SEC-001] Empty account_id in Bearer token")
        raise HTTPException(
            status_code=401,
            detail={
                "error_code": "SEC-001",
                "message": "Empty account ID in Bearer token",
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )

    return account_id


# ============================================================================
# OWNERSHIP
# ============================================================================

def require_owner_or_admin(
    services: SettlementServices,
    account_id: str,
    owner_id: str,
    correlation_id: Optional[str] = None,
) -> None:
    """Allow the record owner; anyone else must be an administrator."""
    if account_id != owner_id:
        services.gate.require_admin(account_id, correlation_id)


# ============================================================================
# ERROR MAPPING
# ============================================================================

_STATUS_BY_ERROR = (
    (ValidationError, 422),
    (ComplianceDenied, 403),
    (StateConflict, 409),
    (InventoryExhausted, 409),
    (LedgerFailure, 502),
    (RecordNotFound, 404),
)


def status_for_error(error: SettlementError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return 500


def error_body(error: SettlementError, correlation_id: Optional[str]) -> Dict[str, Any]:
    """Response body for a SettlementError."""
    return {
        "error_code": error.error_code,
        "reason": error.reason,
        "message": error.message,
        "retryable": error.retryable,
        "details": {k: str(v) if v is not None else None for k, v in error.details.items()},
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "correlation_id": correlation_id,
    }


__all__ = [
    "CORRELATION_HEADER",
    "set_services",
    "reset_services",
    "get_services",
    "get_correlation_id",
    "get_current_account",
    "require_owner_or_admin",
    "status_for_error",
    "error_body",
]
