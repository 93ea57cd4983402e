"""
============================================================================
Unit Tests - Compliance Gate
============================================================================

Reliability Level: SOVEREIGN TIER

Tests the Compliance Gate:
- Rule order (ADMIN bypass, KYC, AML, role notional ceiling)
- Denials returned as values, AccountNotFound raised
- Compliance administration (register, custody address, KYC, AML)
- Audit records for every administrative mutation
============================================================================
"""

import os
import sys
from decimal import Decimal

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.compliance_gate import (
    DenialReason,
    evaluate_eligibility,
    require_custody_address,
    role_limit,
)
from services.settlement_config import SettlementConfig
from services.settlement_errors import (
    AccountNotFound,
    ComplianceDenied,
    ConflictReason,
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
)


def _account(**overrides) -> Account:
    values = {
        "account_id": "acct-1",
        "role": Role.USER,
        "kyc_status": KycStatus.VERIFIED,
        "aml_status": AmlStatus.CLEARED,
    }
    values.update(overrides)
    return Account(**values)


# =============================================================================
# Pure rule evaluation
# =============================================================================

class TestEvaluateEligibility:

    def test_verified_clear_user_is_allowed(self) -> None:
        result = evaluate_eligibility(_account(), GatedAction.TRADE, SettlementConfig())

        assert result.allowed is True
        assert result.reason is None

    def test_admin_bypasses_every_rule(self) -> None:
        admin = _account(
            role=Role.ADMIN, kyc_status=KycStatus.REJECTED, aml_status=AmlStatus.BLOCKED
        )

        result = evaluate_eligibility(
            admin, GatedAction.TRADE, SettlementConfig(), Decimal("999999")
        )

        assert result.allowed is True

    @pytest.mark.parametrize(
        "kyc", [KycStatus.NOT_STARTED, KycStatus.IN_REVIEW, KycStatus.REJECTED]
    )
    def test_unverified_kyc_is_denied(self, kyc: KycStatus) -> None:
        result = evaluate_eligibility(_account(kyc_status=kyc), GatedAction.MINT, SettlementConfig())

        assert result.allowed is False
        assert result.reason == DenialReason.KYC_UNVERIFIED

    @pytest.mark.parametrize("aml", [AmlStatus.FLAGGED, AmlStatus.BLOCKED])
    def test_flagged_or_blocked_aml_is_denied(self, aml: AmlStatus) -> None:
        result = evaluate_eligibility(_account(aml_status=aml), GatedAction.LOAN, SettlementConfig())

        assert result.allowed is False
        assert result.reason == DenialReason.AML_BLOCKED

    def test_pending_aml_is_allowed(self) -> None:
        result = evaluate_eligibility(
            _account(aml_status=AmlStatus.PENDING), GatedAction.REDEEM, SettlementConfig()
        )

        assert result.allowed is True

    def test_kyc_checked_before_aml(self) -> None:
        account = _account(kyc_status=KycStatus.NOT_STARTED, aml_status=AmlStatus.BLOCKED)

        result = evaluate_eligibility(account, GatedAction.TRADE, SettlementConfig())

        assert result.reason == DenialReason.KYC_UNVERIFIED

    def test_domestic_limit_applies_to_trades(self) -> None:
        account = _account(role=Role.DOMESTIC_USER)
        config = SettlementConfig()

        assert evaluate_eligibility(account, GatedAction.TRADE, config, Decimal("1000")).allowed
        denied = evaluate_eligibility(account, GatedAction.TRADE, config, Decimal("1000.01"))

        assert denied.allowed is False
        assert denied.reason == DenialReason.LIMIT_EXCEEDED

    def test_international_limit(self) -> None:
        account = _account(role=Role.INTERNATIONAL_USER)

        result = evaluate_eligibility(
            account, GatedAction.TRADE, SettlementConfig(), Decimal("5000.01")
        )

        assert result.reason == DenialReason.LIMIT_EXCEEDED

    def test_plain_user_is_uncapped(self) -> None:
        result = evaluate_eligibility(
            _account(), GatedAction.TRADE, SettlementConfig(), Decimal("10000000")
        )

        assert result.allowed is True

    def test_role_limit_mapping(self) -> None:
        config = SettlementConfig(domestic_trade_limit=Decimal("10"))

        assert role_limit(Role.DOMESTIC_USER, config) == Decimal("10")
        assert role_limit(Role.INTERNATIONAL_USER, config) == Decimal("5000")
        assert role_limit(Role.USER, config) is None
        assert role_limit(Role.ADMIN, config) is None

    def test_result_to_dict(self) -> None:
        result = evaluate_eligibility(
            _account(kyc_status=KycStatus.IN_REVIEW), GatedAction.WALLET_OP, SettlementConfig()
        )

        assert result.to_dict() == {
            "allowed": False,
            "action": "WALLET_OP",
            "account_id": "acct-1",
            "reason": "KYC_UNVERIFIED",
        }


# =============================================================================
# Gate against the store
# =============================================================================

class TestCheckEligibility:

    def test_unknown_account_raises(self, services) -> None:
        with pytest.raises(AccountNotFound):
            services.gate.check_eligibility("ghost", GatedAction.TRADE)

    def test_denial_is_returned_not_raised(self, services, onboard) -> None:
        onboard("alice", verify=False)

        result = services.gate.check_eligibility("alice", GatedAction.TRADE)

        assert result.allowed is False
        assert result.reason == DenialReason.KYC_UNVERIFIED

    def test_require_eligible_raises_compliance_denied(self, services, onboard) -> None:
        onboard("alice", verify=False)

        with pytest.raises(ComplianceDenied) as exc_info:
            services.gate.require_eligible("alice", GatedAction.MINT)

        assert exc_info.value.reason == DenialReason.KYC_UNVERIFIED
        assert exc_info.value.error_code == "STL-002"

    def test_fresh_snapshot_sees_aml_block(self, services, onboard, admin_id) -> None:
        onboard("alice")
        assert services.gate.check_eligibility("alice", GatedAction.TRADE).allowed

        services.gate.block_aml(admin_id, "alice", "sanctions hit")

        assert services.gate.check_eligibility("alice", GatedAction.TRADE).reason == (
            DenialReason.AML_BLOCKED
        )

    def test_require_admin(self, services, onboard, admin_id) -> None:
        onboard("alice")

        assert services.gate.require_admin(admin_id).is_admin
        with pytest.raises(ComplianceDenied) as exc_info:
            services.gate.require_admin("alice")
        assert exc_info.value.reason == DenialReason.NOT_ADMIN


# =============================================================================
# Administration
# =============================================================================

class TestAdministration:

    def test_seed_admin_is_idempotent(self, services, admin_id) -> None:
        first = services.gate.seed_admin(admin_id)
        second = services.gate.seed_admin(admin_id)

        assert first.account_id == second.account_id
        registered = services.audit.history(admin_id, AuditAction.ACCOUNT_REGISTERED)
        assert len(registered) == 1

    def test_register_account_defaults(self, services, admin_id) -> None:
        account = services.gate.register_account(admin_id, "bob", Role.DOMESTIC_USER, "ZA")

        assert account.kyc_status is KycStatus.NOT_STARTED
        assert account.aml_status is AmlStatus.PENDING
        assert account.role is Role.DOMESTIC_USER
        assert account.country == "ZA"

    def test_register_duplicate_is_conflict(self, services, admin_id) -> None:
        services.gate.register_account(admin_id, "bob")

        with pytest.raises(StateConflict) as exc_info:
            services.gate.register_account(admin_id, "bob")

        assert exc_info.value.reason == ConflictReason.INVALID_STATE

    def test_non_admin_cannot_register(self, services, onboard) -> None:
        onboard("alice")

        with pytest.raises(ComplianceDenied):
            services.gate.register_account("alice", "mallory")

    def test_register_rejects_blank_id(self, services, admin_id) -> None:
        with pytest.raises(ValidationError):
            services.gate.register_account(admin_id, "   ")

    def test_kyc_lifecycle(self, services, admin_id) -> None:
        services.gate.register_account(admin_id, "carol")

        assert services.gate.start_kyc("carol", "carol").kyc_status is KycStatus.IN_REVIEW
        assert services.gate.reject_kyc(admin_id, "carol", "blurry id").kyc_status is (
            KycStatus.REJECTED
        )
        assert services.gate.start_kyc("carol", "carol").kyc_status is KycStatus.IN_REVIEW
        assert services.gate.approve_kyc(admin_id, "carol").kyc_status is KycStatus.VERIFIED

        actions = [r.action for r in services.audit.history("carol")]
        assert actions == [
            AuditAction.ACCOUNT_REGISTERED,
            AuditAction.KYC_SUBMITTED,
            AuditAction.KYC_REJECTED,
            AuditAction.KYC_SUBMITTED,
            AuditAction.KYC_APPROVED,
        ]

    def test_approve_requires_in_review(self, services, admin_id) -> None:
        services.gate.register_account(admin_id, "carol")

        with pytest.raises(StateConflict):
            services.gate.approve_kyc(admin_id, "carol")

    def test_start_kyc_for_someone_else_requires_admin(self, services, onboard, admin_id) -> None:
        onboard("alice")
        services.gate.register_account(admin_id, "dave")

        with pytest.raises(ComplianceDenied):
            services.gate.start_kyc("alice", "dave")
        assert services.gate.start_kyc(admin_id, "dave").kyc_status is KycStatus.IN_REVIEW

    def test_aml_transitions(self, services, onboard, admin_id) -> None:
        onboard("alice")

        assert services.gate.flag_aml(admin_id, "alice", "pattern").aml_status is AmlStatus.FLAGGED
        assert services.gate.block_aml(admin_id, "alice", "confirmed").aml_status is (
            AmlStatus.BLOCKED
        )
        assert services.gate.clear_aml(admin_id, "alice", "appeal").aml_status is AmlStatus.CLEARED

    def test_aml_reason_required(self, services, onboard, admin_id) -> None:
        onboard("alice")

        with pytest.raises(ValidationError):
            services.gate.flag_aml(admin_id, "alice", "  ")

    def test_cannot_flag_blocked_account(self, services, onboard, admin_id) -> None:
        onboard("alice")
        services.gate.block_aml(admin_id, "alice", "confirmed")

        with pytest.raises(StateConflict):
            services.gate.flag_aml(admin_id, "alice", "again")

    def test_link_custody_address(self, services, admin_id) -> None:
        services.gate.register_account(admin_id, "erin")

        account = services.gate.link_custody_address(admin_id, "erin", " 0xabc ")

        assert account.custody_address == "0xabc"
        assert require_custody_address(account) == "0xabc"

    def test_require_custody_address_missing(self, services, admin_id) -> None:
        account = services.gate.register_account(admin_id, "frank")

        with pytest.raises(ValidationError) as exc_info:
            require_custody_address(account)

        assert exc_info.value.reason == "CUSTODY_ADDRESS_REQUIRED"
