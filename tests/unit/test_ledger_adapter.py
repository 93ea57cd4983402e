"""
============================================================================
Unit Tests - Ledger Adapter (InMemoryLedger)
============================================================================

Reliability Level: SOVEREIGN TIER

Tests the in-process ledger:
- mint / burn / transfer balance and supply effects
- LedgerError on insufficient balance and non-positive amounts
- Fault injection (fail_operations, fail_next, hang_operations)
- call_ledger deadline turning timeouts into LedgerError
============================================================================
"""

import asyncio
import os
import sys
from decimal import Decimal

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.ledger_adapter import InMemoryLedger, LedgerError, call_ledger, reserves_proof_for


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


class TestBalances:

    @pytest.mark.asyncio
    async def test_mint_credits_and_grows_supply(self, ledger) -> None:
        tx_ref = await ledger.mint("addr-a", Decimal("12.5"), "vault-v-asset-a")

        assert tx_ref.startswith("tx-")
        assert await ledger.get_balance("addr-a") == Decimal("12.5")
        assert await ledger.get_total_supply() == Decimal("12.5")

    @pytest.mark.asyncio
    async def test_transfer_moves_tokens(self, ledger) -> None:
        await ledger.mint("addr-a", Decimal("10"), "proof")

        await ledger.transfer("addr-a", "addr-b", Decimal("4"))

        assert ledger.peek_balance("addr-a") == Decimal("6")
        assert ledger.peek_balance("addr-b") == Decimal("4")
        assert await ledger.get_total_supply() == Decimal("10")

    @pytest.mark.asyncio
    async def test_burn_shrinks_supply(self, ledger) -> None:
        await ledger.mint("addr-a", Decimal("10"), "proof")

        await ledger.burn("addr-a", Decimal("10"))

        assert ledger.peek_balance("addr-a") == Decimal("0")
        assert await ledger.get_total_supply() == Decimal("0")

    @pytest.mark.asyncio
    async def test_overdraw_is_refused(self, ledger) -> None:
        await ledger.mint("addr-a", Decimal("1"), "proof")

        with pytest.raises(LedgerError):
            await ledger.transfer("addr-a", "addr-b", Decimal("2"))
        with pytest.raises(LedgerError):
            await ledger.burn("addr-a", Decimal("2"))
        assert ledger.peek_balance("addr-a") == Decimal("1")

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, ledger) -> None:
        with pytest.raises(LedgerError):
            await ledger.mint("addr-a", Decimal("0"), "proof")

    def test_peek_unknown_address(self, ledger) -> None:
        assert ledger.peek_balance(None) == Decimal("0")
        assert ledger.peek_balance("nobody") == Decimal("0")


class TestFaultInjection:

    @pytest.mark.asyncio
    async def test_fail_next_only_once(self, ledger) -> None:
        ledger.fail_next("mint")

        with pytest.raises(LedgerError) as exc_info:
            await ledger.mint("addr-a", Decimal("1"), "proof")
        assert exc_info.value.operation == "mint"

        await ledger.mint("addr-a", Decimal("1"), "proof")
        assert ledger.peek_balance("addr-a") == Decimal("1")

    @pytest.mark.asyncio
    async def test_fail_operations_persist(self, ledger) -> None:
        ledger.fail_operations.add("get_balance")

        for _ in range(2):
            with pytest.raises(LedgerError):
                await ledger.get_balance("addr-a")


class TestCallLedger:

    @pytest.mark.asyncio
    async def test_returns_result_within_deadline(self, ledger) -> None:
        tx_ref = await call_ledger("mint", ledger.mint("addr-a", Decimal("2"), "proof"), 1.0)

        assert tx_ref.startswith("tx-")
        assert ledger.peek_balance("addr-a") == Decimal("2")

    @pytest.mark.asyncio
    async def test_hung_call_becomes_ledger_error(self, ledger) -> None:
        ledger.hang_operations.add("transfer")

        with pytest.raises(LedgerError) as exc_info:
            await call_ledger("transfer", ledger.transfer("a", "b", Decimal("1")), 0.02)

        assert exc_info.value.operation == "transfer"
        assert "timed out" in exc_info.value.message
        assert ledger.transactions == []

    @pytest.mark.asyncio
    async def test_timeout_raised_by_adapter_becomes_ledger_error(self) -> None:
        async def timing_out():
            raise asyncio.TimeoutError()

        with pytest.raises(LedgerError):
            await call_ledger("burn", timing_out(), 1.0)

    @pytest.mark.asyncio
    async def test_ledger_error_passes_through(self, ledger) -> None:
        ledger.fail_next("burn")

        with pytest.raises(LedgerError) as exc_info:
            await call_ledger("burn", ledger.burn("addr-a", Decimal("1")), 1.0)

        assert exc_info.value.message == "ledger unavailable"

def test_reserves_proof_format() -> None:
    assert reserves_proof_for("jhb", "bar-7") == "vault-jhb-asset-bar-7"
