"""
============================================================================
Compliance Gate - Eligibility Decisions for Money Movement
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Decimal Integrity: Notional limits compared as Decimal
Traceability: Denials logged with reason and correlation_id

RULES (first failure wins):
    1. ADMIN role bypasses every rule
    2. KYC must be VERIFIED                      → KYC_UNVERIFIED
    3. AML must not be FLAGGED or BLOCKED        → AML_BLOCKED
    4. Trade notional within the role ceiling    → LIMIT_EXCEEDED
         DOMESTIC_USER       1000 (configurable)
         INTERNATIONAL_USER  5000 (configurable)
         USER                uncapped

Expected denials are returned as EligibilityResult values. Only a missing
account raises (AccountNotFound). require_eligible()/require_admin() turn a
denial into ComplianceDenied for workflows that need an exception.

The same module owns compliance administration: the only code paths that
mutate KYC/AML status or link custody addresses. Every mutation is a
guarded update on the expected current status and is audited.

============================================================================
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional
import logging

from services.audit_log import AuditLogger
from services.settlement_config import SettlementConfig
from services.settlement_errors import (
    AccountNotFound,
    ComplianceDenied,
    ConflictReason,
    SettlementErrorCode,
    StateConflict,
    ValidationError,
)
from services.settlement_models import (
    Account,
    AmlStatus,
    AuditAction,
    GatedAction,
    KycStatus,
    Role,
    SYSTEM_ACTOR,
)
from services.settlement_observability import record_compliance_denial
from services.settlement_store import DuplicateRecordError, SettlementStore

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Denial Reasons
# =============================================================================

class DenialReason:
    """Stable reason codes returned by the gate and carried by ComplianceDenied."""
    KYC_UNVERIFIED = "KYC_UNVERIFIED"
    AML_BLOCKED = "AML_BLOCKED"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    NOT_ADMIN = "NOT_ADMIN"
    NOT_OWNER = "NOT_OWNER"


_AML_DENIED = (AmlStatus.FLAGGED, AmlStatus.BLOCKED)


@dataclass(frozen=True)
class EligibilityResult:
    """Outcome of one gate evaluation."""
    allowed: bool
    action: GatedAction
    account_id: str
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "allowed": self.allowed,
            "action": self.action.value,
            "account_id": self.account_id,
            "reason": self.reason,
        }


def role_limit(role: Role, config: SettlementConfig) -> Optional[Decimal]:
    """Per-trade notional ceiling for a role (None = uncapped)."""
    if role is Role.DOMESTIC_USER:
        return config.domestic_trade_limit
    if role is Role.INTERNATIONAL_USER:
        return config.international_trade_limit
    return None


def evaluate_eligibility(
    account: Account,
    action: GatedAction,
    config: SettlementConfig,
    notional: Optional[Decimal] = None,
) -> EligibilityResult:
    """
    Pure rule evaluation against an account snapshot.

    notional is only supplied for trades; other actions skip rule 4.
    """
    def deny(reason: str) -> EligibilityResult:
        return EligibilityResult(False, action, account.account_id, reason)

    if account.role is Role.ADMIN:
        return EligibilityResult(True, action, account.account_id)

    if account.kyc_status is not KycStatus.VERIFIED:
        return deny(DenialReason.KYC_UNVERIFIED)

    if account.aml_status in _AML_DENIED:
        return deny(DenialReason.AML_BLOCKED)

    if notional is not None:
        limit = role_limit(account.role, config)
        if limit is not None and notional > limit:
            return deny(DenialReason.LIMIT_EXCEEDED)

    return EligibilityResult(True, action, account.account_id)


# =============================================================================
# ComplianceGate Class
# =============================================================================

class ComplianceGate:
    """
    Eligibility checks plus compliance administration.

    Reliability Level: L6 Critical
    Side Effects: Administration methods write accounts and audit records
    """

    def __init__(
        self,
        store: SettlementStore,
        audit: AuditLogger,
        config: SettlementConfig,
    ) -> None:
        self._store = store
        self._audit = audit
        self._config = config

    # -------------------------------------------------------------------------
    # Eligibility
    # -------------------------------------------------------------------------

    def load_account(self, account_id: str) -> Account:
        account = self._store.get(Account, account_id)
        if account is None:
            raise AccountNotFound(
                "ACCOUNT_NOT_FOUND",
                f"Account {account_id} does not exist",
                {"account_id": account_id},
            )
        return account

    def check_eligibility(
        self,
        account_id: str,
        action: GatedAction,
        notional: Optional[Decimal] = None,
        correlation_id: Optional[str] = None,
    ) -> EligibilityResult:
        """
        Evaluate the rules against a freshly loaded account snapshot.

        Raises:
            AccountNotFound: unknown account_id
        """
        account = self.load_account(account_id)
        result = evaluate_eligibility(account, action, self._config, notional)

        if not result.allowed:
            record_compliance_denial(action.value, result.reason)
            logger.warning(
                f"[COMPLIANCE-GATE] Denied | account_id={account_id} | "
                f"action={action.value} | reason={result.reason} | "
                f"notional={notional} | correlation_id={correlation_id}"
            )
        return result

    def require_eligible(
        self,
        account_id: str,
        action: GatedAction,
        notional: Optional[Decimal] = None,
        correlation_id: Optional[str] = None,
    ) -> Account:
        """Return the fresh account snapshot or raise ComplianceDenied."""
        result = self.check_eligibility(account_id, action, notional, correlation_id)
        if not result.allowed:
            raise ComplianceDenied(
                result.reason,
                f"Account {account_id} may not perform {action.value}: {result.reason}",
                result.to_dict(),
            )
        return self.load_account(account_id)

    def require_admin(self, account_id: str, correlation_id: Optional[str] = None) -> Account:
        account = self.load_account(account_id)
        if not account.is_admin:
            record_compliance_denial("ADMIN", DenialReason.NOT_ADMIN)
            logger.warning(
                f"[{SettlementErrorCode.COMPLIANCE_DENIED}] Admin action refused | "
                f"account_id={account_id} | role={account.role.value} | "
                f"correlation_id={correlation_id}"
            )
            raise ComplianceDenied(
                DenialReason.NOT_ADMIN,
                f"Account {account_id} is not an administrator",
                {"account_id": account_id},
            )
        return account

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def seed_admin(self, account_id: str) -> Account:
        """
        Create the bootstrap administrator if it does not exist yet.

        Used once at startup; every later account goes through
        register_account().
        """
        existing = self._store.get(Account, account_id)
        if existing is not None:
            return existing
        account = Account(
            account_id=account_id,
            role=Role.ADMIN,
            kyc_status=KycStatus.VERIFIED,
            aml_status=AmlStatus.CLEARED,
        )
        with self._store.transaction():
            self._store.add(account)
            self._audit.record(
                SYSTEM_ACTOR,
                AuditAction.ACCOUNT_REGISTERED,
                account_id,
                {"role": Role.ADMIN.value, "bootstrap": True},
            )
        logger.info(f"[COMPLIANCE-ADMIN] Bootstrap admin created | account_id={account_id}")
        return account

    def register_account(
        self,
        admin_id: str,
        account_id: str,
        role: Role = Role.USER,
        country: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> Account:
        self.require_admin(admin_id, correlation_id)
        if not account_id or not account_id.strip():
            raise ValidationError("INVALID_ACCOUNT_ID", "account_id must not be empty")

        account = Account(account_id=account_id.strip(), role=role, country=country)
        try:
            with self._store.transaction():
                self._store.add(account)
                self._audit.record(
                    admin_id,
                    AuditAction.ACCOUNT_REGISTERED,
                    account.account_id,
                    {"role": role.value, "country": country},
                    correlation_id,
                )
        except DuplicateRecordError:
            raise StateConflict(
                ConflictReason.INVALID_STATE,
                f"Account {account.account_id} already exists",
                {"account_id": account.account_id},
            ) from None

        logger.info(
            f"[COMPLIANCE-ADMIN] Account registered | account_id={account.account_id} | "
            f"role={role.value} | admin={admin_id} | correlation_id={correlation_id}"
        )
        return account

    def link_custody_address(
        self,
        admin_id: str,
        account_id: str,
        custody_address: str,
        correlation_id: Optional[str] = None,
    ) -> Account:
        self.require_admin(admin_id, correlation_id)
        if not custody_address or not custody_address.strip():
            raise ValidationError("INVALID_ADDRESS", "custody_address must not be empty")
        account = self.load_account(account_id)

        with self._store.transaction():
            self._guarded_update(
                account,
                {"custody_address": account.custody_address},
                {"custody_address": custody_address.strip()},
            )
            self._audit.record(
                admin_id,
                AuditAction.CUSTODY_ADDRESS_LINKED,
                account_id,
                {"previous": account.custody_address, "custody_address": custody_address.strip()},
                correlation_id,
            )
        return self.load_account(account_id)

    def start_kyc(
        self,
        requester_id: str,
        account_id: str,
        correlation_id: Optional[str] = None,
    ) -> Account:
        """Submit KYC for review. Allowed for the account owner or an admin."""
        if requester_id != account_id:
            self.require_admin(requester_id, correlation_id)
        return self._kyc_transition(
            requester_id,
            account_id,
            (KycStatus.NOT_STARTED, KycStatus.REJECTED),
            KycStatus.IN_REVIEW,
            AuditAction.KYC_SUBMITTED,
            None,
            correlation_id,
        )

    def approve_kyc(
        self,
        admin_id: str,
        account_id: str,
        correlation_id: Optional[str] = None,
    ) -> Account:
        self.require_admin(admin_id, correlation_id)
        return self._kyc_transition(
            admin_id,
            account_id,
            (KycStatus.IN_REVIEW,),
            KycStatus.VERIFIED,
            AuditAction.KYC_APPROVED,
            None,
            correlation_id,
        )

    def reject_kyc(
        self,
        admin_id: str,
        account_id: str,
        reason: str,
        correlation_id: Optional[str] = None,
    ) -> Account:
        self.require_admin(admin_id, correlation_id)
        _require_reason(reason)
        return self._kyc_transition(
            admin_id,
            account_id,
            (KycStatus.IN_REVIEW,),
            KycStatus.REJECTED,
            AuditAction.KYC_REJECTED,
            reason,
            correlation_id,
        )

    def flag_aml(
        self,
        admin_id: str,
        account_id: str,
        reason: str,
        correlation_id: Optional[str] = None,
    ) -> Account:
        self.require_admin(admin_id, correlation_id)
        _require_reason(reason)
        return self._aml_transition(
            admin_id,
            account_id,
            (AmlStatus.PENDING, AmlStatus.CLEARED),
            AmlStatus.FLAGGED,
            AuditAction.AML_FLAG_RAISED,
            reason,
            correlation_id,
        )

    def block_aml(
        self,
        admin_id: str,
        account_id: str,
        reason: str,
        correlation_id: Optional[str] = None,
    ) -> Account:
        self.require_admin(admin_id, correlation_id)
        _require_reason(reason)
        return self._aml_transition(
            admin_id,
            account_id,
            (AmlStatus.PENDING, AmlStatus.CLEARED, AmlStatus.FLAGGED),
            AmlStatus.BLOCKED,
            AuditAction.AML_BLOCKED,
            reason,
            correlation_id,
        )

    def clear_aml(
        self,
        admin_id: str,
        account_id: str,
        reason: str,
        correlation_id: Optional[str] = None,
    ) -> Account:
        self.require_admin(admin_id, correlation_id)
        _require_reason(reason)
        return self._aml_transition(
            admin_id,
            account_id,
            (AmlStatus.PENDING, AmlStatus.FLAGGED, AmlStatus.BLOCKED),
            AmlStatus.CLEARED,
            AuditAction.AML_CLEARED,
            reason,
            correlation_id,
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _kyc_transition(
        self,
        actor_id: str,
        account_id: str,
        allowed_from: Iterable[KycStatus],
        target: KycStatus,
        action: AuditAction,
        reason: Optional[str],
        correlation_id: Optional[str],
    ) -> Account:
        account = self.load_account(account_id)
        current = account.kyc_status
        if current not in allowed_from:
            raise _invalid_status(account_id, "kyc_status", current.value, target.value)

        with self._store.transaction():
            self._guarded_update(account, {"kyc_status": current}, {"kyc_status": target})
            self._audit.record(
                actor_id,
                action,
                account_id,
                {"from": current.value, "to": target.value, "reason": reason},
                correlation_id,
            )

        logger.info(
            f"[COMPLIANCE-ADMIN] KYC {current.value} → {target.value} | "
            f"account_id={account_id} | actor={actor_id} | correlation_id={correlation_id}"
        )
        return self.load_account(account_id)

    def _aml_transition(
        self,
        actor_id: str,
        account_id: str,
        allowed_from: Iterable[AmlStatus],
        target: AmlStatus,
        action: AuditAction,
        reason: str,
        correlation_id: Optional[str],
    ) -> Account:
        account = self.load_account(account_id)
        current = account.aml_status
        if current not in allowed_from:
            raise _invalid_status(account_id, "aml_status", current.value, target.value)

        with self._store.transaction():
            self._guarded_update(account, {"aml_status": current}, {"aml_status": target})
            self._audit.record(
                actor_id,
                action,
                account_id,
                {"from": current.value, "to": target.value, "reason": reason},
                correlation_id,
            )

        logger.info(
            f"[COMPLIANCE-ADMIN] AML {current.value} → {target.value} | "
            f"account_id={account_id} | actor={actor_id} | correlation_id={correlation_id}"
        )
        return self.load_account(account_id)

    def _guarded_update(self, account: Account, expected: dict, updates: dict) -> None:
        if not self._store.compare_and_set(Account, account.account_id, expected, updates):
            raise StateConflict(
                ConflictReason.CONCURRENT_MODIFICATION,
                f"Account {account.account_id} changed concurrently. Reload and retry.",
                {"account_id": account.account_id},
            )


def require_custody_address(account: Account) -> str:
    """The account's linked custody address, or ValidationError."""
    if not account.custody_address:
        raise ValidationError(
            "CUSTODY_ADDRESS_REQUIRED",
            f"Account {account.account_id} has no linked custody address",
            {"account_id": account.account_id},
        )
    return account.custody_address


def _require_reason(reason: str) -> None:
    if not reason or not reason.strip():
        raise ValidationError("REASON_REQUIRED", "A reason is required for this action")


def _invalid_status(account_id: str, field_name: str, current: str, target: str) -> StateConflict:
    return StateConflict(
        ConflictReason.INVALID_STATE,
        f"Cannot move {field_name} of {account_id} from {current} to {target}",
        {"account_id": account_id, "current_status": current, "target_status": target},
    )


__all__ = [
    "DenialReason",
    "EligibilityResult",
    "evaluate_eligibility",
    "role_limit",
    "require_custody_address",
    "ComplianceGate",
]
