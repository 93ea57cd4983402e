"""
============================================================================
Unit Tests - Redemption Workflow
============================================================================

Reliability Level: SOVEREIGN TIER

Tests the Redemption Workflow:
- Balance checks at submission and again at approval
- Burn on fulfilment, REJECTED + LedgerFailure when the burn fails or times out
- Dispatch with a tracking number
- Admin rejection and the work queue
============================================================================
"""

import asyncio
import os
import sys
from decimal import Decimal

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.redemption_workflow import LEDGER_FAILURE_REASON
from services.settlement_config import SettlementConfig
from services.settlement_errors import (
    ComplianceDenied,
    InventoryExhausted,
    InventoryReason,
    LedgerFailure,
    StateConflict,
    ValidationError,
)
from services.settlement_models import AuditAction, RedemptionRequest, RedemptionStatus

ADDRESS = "12 Main Road, Cape Town"


@pytest.fixture
def holder(services, onboard):
    onboard("alice")
    return services


async def _fund(services, amount: str) -> None:
    await services.ledger.mint("custody-alice", Decimal(amount), "test-seed")


class TestSubmitRedemption:

    @pytest.mark.asyncio
    async def test_creates_pending_request(self, holder) -> None:
        await _fund(holder, "100")

        redemption = await holder.redemptions.submit_redemption("alice", Decimal("40"), ADDRESS)

        assert redemption.status is RedemptionStatus.PENDING
        assert redemption.quantity == Decimal("40")
        assert holder.audit.history(redemption.redemption_id, AuditAction.REDEMPTION_REQUESTED)

    @pytest.mark.asyncio
    async def test_balance_below_quantity(self, holder) -> None:
        await _fund(holder, "10")

        with pytest.raises(InventoryExhausted) as exc_info:
            await holder.redemptions.submit_redemption("alice", Decimal("11"), ADDRESS)

        assert exc_info.value.reason == InventoryReason.INSUFFICIENT_BALANCE
        assert holder.store.list(RedemptionRequest) == []

    @pytest.mark.asyncio
    async def test_delivery_address_required(self, holder) -> None:
        await _fund(holder, "10")

        with pytest.raises(ValidationError):
            await holder.redemptions.submit_redemption("alice", Decimal("1"), "  ")

    @pytest.mark.asyncio
    async def test_blocked_account_is_denied(self, holder, admin_id) -> None:
        await _fund(holder, "10")
        holder.gate.block_aml(admin_id, "alice", "sanctions")

        with pytest.raises(ComplianceDenied):
            await holder.redemptions.submit_redemption("alice", Decimal("1"), ADDRESS)


class TestRedemptionLifecycle:

    @pytest.mark.asyncio
    async def test_full_path_to_dispatch(self, holder, admin_id) -> None:
        await _fund(holder, "100")
        redemption = await holder.redemptions.submit_redemption("alice", Decimal("100"), ADDRESS)
        rid = redemption.redemption_id

        approved = await holder.redemptions.approve_redemption(admin_id, rid)
        assert approved.status is RedemptionStatus.APPROVED

        fulfilled = await holder.redemptions.fulfill_redemption(admin_id, rid)
        assert fulfilled.status is RedemptionStatus.FULFILLED
        assert fulfilled.tx_ref is not None
        assert holder.ledger.peek_balance("custody-alice") == Decimal("0")

        dispatched = holder.redemptions.dispatch_redemption(admin_id, rid, "TRK-001")
        assert dispatched.status is RedemptionStatus.DISPATCHED
        assert dispatched.tracking_number == "TRK-001"

        actions = [r.action for r in holder.audit.history(rid)]
        assert actions == [
            AuditAction.REDEMPTION_REQUESTED,
            AuditAction.REDEMPTION_APPROVED,
            AuditAction.REDEMPTION_COMPLETED,
            AuditAction.REDEMPTION_DISPATCHED,
        ]

    @pytest.mark.asyncio
    async def test_balance_rechecked_at_approval(self, holder, admin_id) -> None:
        await _fund(holder, "500")
        redemption = await holder.redemptions.submit_redemption("alice", Decimal("500"), ADDRESS)
        await holder.ledger.transfer("custody-alice", "elsewhere", Decimal("100"))

        with pytest.raises(InventoryExhausted):
            await holder.redemptions.approve_redemption(admin_id, redemption.redemption_id)

        current = holder.redemptions.get_redemption(redemption.redemption_id)
        assert current.status is RedemptionStatus.PENDING

    @pytest.mark.asyncio
    async def test_burn_failure_rejects_redemption(self, holder, admin_id) -> None:
        await _fund(holder, "50")
        redemption = await holder.redemptions.submit_redemption("alice", Decimal("50"), ADDRESS)
        await holder.redemptions.approve_redemption(admin_id, redemption.redemption_id)
        holder.ledger.fail_next("burn")

        with pytest.raises(LedgerFailure):
            await holder.redemptions.fulfill_redemption(admin_id, redemption.redemption_id)

        current = holder.redemptions.get_redemption(redemption.redemption_id)
        assert current.status is RedemptionStatus.REJECTED
        assert current.rejection_reason == LEDGER_FAILURE_REASON
        assert holder.ledger.peek_balance("custody-alice") == Decimal("50")

    @pytest.mark.asyncio
    async def test_dispatch_requires_fulfilment(self, holder, admin_id) -> None:
        await _fund(holder, "5")
        redemption = await holder.redemptions.submit_redemption("alice", Decimal("5"), ADDRESS)
        await holder.redemptions.approve_redemption(admin_id, redemption.redemption_id)

        with pytest.raises(StateConflict):
            holder.redemptions.dispatch_redemption(admin_id, redemption.redemption_id, "TRK")

    @pytest.mark.asyncio
    async def test_dispatch_requires_tracking_number(self, holder, admin_id) -> None:
        await _fund(holder, "5")
        redemption = await holder.redemptions.submit_redemption("alice", Decimal("5"), ADDRESS)
        await holder.redemptions.approve_redemption(admin_id, redemption.redemption_id)
        await holder.redemptions.fulfill_redemption(admin_id, redemption.redemption_id)

        with pytest.raises(ValidationError):
            holder.redemptions.dispatch_redemption(admin_id, redemption.redemption_id, "")

    @pytest.mark.asyncio
    async def test_admin_rejection(self, holder, admin_id) -> None:
        await _fund(holder, "5")
        redemption = await holder.redemptions.submit_redemption("alice", Decimal("5"), ADDRESS)

        rejected = holder.redemptions.reject_redemption(
            admin_id, redemption.redemption_id, "address unverifiable"
        )

        assert rejected.status is RedemptionStatus.REJECTED
        assert rejected.rejection_reason == "address unverifiable"
        with pytest.raises(StateConflict):
            await holder.redemptions.approve_redemption(admin_id, redemption.redemption_id)

    @pytest.mark.asyncio
    async def test_only_admin_approves(self, holder) -> None:
        await _fund(holder, "5")
        redemption = await holder.redemptions.submit_redemption("alice", Decimal("5"), ADDRESS)

        with pytest.raises(ComplianceDenied):
            await holder.redemptions.approve_redemption("alice", redemption.redemption_id)

    @pytest.mark.asyncio
    async def test_queue_holds_open_requests_oldest_first(self, holder, admin_id) -> None:
        await _fund(holder, "30")
        first = await holder.redemptions.submit_redemption("alice", Decimal("10"), ADDRESS)
        second = await holder.redemptions.submit_redemption("alice", Decimal("10"), ADDRESS)
        third = await holder.redemptions.submit_redemption("alice", Decimal("10"), ADDRESS)
        holder.redemptions.reject_redemption(admin_id, third.redemption_id, "duplicate")

        queue = holder.redemptions.get_redemption_queue()

        assert [r.redemption_id for r in queue] == [first.redemption_id, second.redemption_id]
        assert len(holder.redemptions.get_user_redemptions("alice")) == 3


class TestLedgerTimeouts:

    @pytest.fixture
    def config(self) -> SettlementConfig:
        return SettlementConfig(ledger_timeout_seconds=0.05)

    async def _approved(self, holder, admin_id) -> RedemptionRequest:
        await _fund(holder, "20")
        redemption = await holder.redemptions.submit_redemption("alice", Decimal("20"), ADDRESS)
        return await holder.redemptions.approve_redemption(admin_id, redemption.redemption_id)

    @pytest.mark.asyncio
    async def test_hung_burn_rejects_redemption(self, holder, admin_id) -> None:
        redemption = await self._approved(holder, admin_id)
        holder.ledger.hang_operations.add("burn")

        with pytest.raises(LedgerFailure) as exc_info:
            await holder.redemptions.fulfill_redemption(admin_id, redemption.redemption_id)

        assert exc_info.value.reason == "LEDGER_BURN_FAILED"
        current = holder.redemptions.get_redemption(redemption.redemption_id)
        assert current.status is RedemptionStatus.REJECTED
        assert current.rejection_reason == LEDGER_FAILURE_REASON
        assert holder.ledger.peek_balance("custody-alice") == Decimal("20")
        rejected = holder.audit.history(redemption.redemption_id, AuditAction.REDEMPTION_REJECTED)
        assert "timed out" in rejected[0].details["ledger_error"]

    @pytest.mark.asyncio
    async def test_cancelled_caller_rejects_redemption(self, holder, admin_id) -> None:
        redemption = await self._approved(holder, admin_id)
        holder.ledger.hang_operations.add("burn")

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                holder.redemptions.fulfill_redemption(admin_id, redemption.redemption_id), 0.01
            )

        current = holder.redemptions.get_redemption(redemption.redemption_id)
        assert current.status is RedemptionStatus.REJECTED
        assert current.rejection_reason == LEDGER_FAILURE_REASON

    @pytest.mark.asyncio
    async def test_hung_balance_read_keeps_request_pending(self, holder, admin_id) -> None:
        await _fund(holder, "20")
        redemption = await holder.redemptions.submit_redemption("alice", Decimal("20"), ADDRESS)
        holder.ledger.hang_operations.add("get_balance")

        with pytest.raises(LedgerFailure) as exc_info:
            await holder.redemptions.approve_redemption(admin_id, redemption.redemption_id)

        assert exc_info.value.reason == "LEDGER_BALANCE_UNAVAILABLE"
        current = holder.redemptions.get_redemption(redemption.redemption_id)
        assert current.status is RedemptionStatus.PENDING
