"""
============================================================================
Property-Based Tests for Mint, Redemption and Loan Workflows
============================================================================

Reliability Level: SOVEREIGN TIER

Tests the custody-backed workflows using Hypothesis.

Properties tested:
- Property 5: A custody asset backs at most one mint, and always covers it
- Property 6: Minted minus burned supply reconciles with the ledger
- Property 7: Loans above the LTV cap are refused without a row
- Property 8: Compliance denial has no side effects
============================================================================
"""

import asyncio
from decimal import Decimal
from typing import List

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from conftest import ADMIN_ID, address_for, build_services, onboard_account
from services.loan_workflow import max_loan_amount
from services.settlement_errors import ComplianceDenied, InventoryExhausted, ValidationError
from services.settlement_models import (
    CustodyAsset,
    IntentType,
    LoanRequest,
    MintRequest,
    MintStatus,
    RedemptionStatus,
    TradeIntent,
)


# =============================================================================
# HYPOTHESIS STRATEGIES
# =============================================================================

grams_strategy = st.decimals(
    min_value=Decimal("1"),
    max_value=Decimal("1000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

amount_strategy = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("50000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


# =============================================================================
# PROPERTY 5: Custody exclusivity
# =============================================================================

class TestCustodyExclusivityProperty:
    """
    **Feature: silver-settlement, Property 5: Custody Exclusivity**
    """

    @settings(
        max_examples=50,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(
        weights=st.lists(grams_strategy, min_size=1, max_size=6),
        requests=st.lists(grams_strategy, min_size=1, max_size=8),
    )
    def test_assets_are_never_shared(self, weights: List[Decimal], requests: List[Decimal]) -> None:
        """
        **Feature: silver-settlement, Property 5: Custody Exclusivity**

        Whatever the order of mint requests, each reserved asset is held by
        exactly one mint, weighs at least the grams requested, and a refused
        request reserves nothing.
        """
        services = build_services()
        onboard_account(services, "owner")
        for weight in weights:
            services.mints.add_custody_asset(ADMIN_ID, "vault-1", weight)

        accepted = []
        refused = 0
        for grams in requests:
            try:
                accepted.append(services.mints.initiate_mint_intent("owner", grams))
            except InventoryExhausted:
                refused += 1

        assets = {a.asset_id: a for a in services.store.list(CustodyAsset)}
        reserved = [a for a in assets.values() if a.reserved_by is not None]
        mint_ids = {m.mint_request.mint_id for m in accepted}

        assert len(reserved) == len(accepted)
        assert len({a.reserved_by for a in reserved}) == len(reserved)
        assert {a.reserved_by for a in reserved} == mint_ids
        for result in accepted:
            asset = assets[result.mint_request.custody_asset_id]
            assert asset.reserved_by == result.mint_request.mint_id
            assert asset.weight_grams >= result.mint_request.requested_grams
        assert len(services.store.list(MintRequest)) == len(requests) - refused


# =============================================================================
# PROPERTY 6: Supply reconciliation
# =============================================================================

class TestSupplyReconciliationProperty:
    """
    **Feature: silver-settlement, Property 6: Supply Reconciliation**
    """

    @settings(
        max_examples=40,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(grams=grams_strategy, redeem_share=st.decimals(
        min_value=Decimal("0.01"), max_value=Decimal("1"), places=2
    ))
    def test_mint_then_redeem_reconciles(self, grams: Decimal, redeem_share: Decimal) -> None:
        """
        **Feature: silver-settlement, Property 6: Supply Reconciliation**

        After a mint and a burned redemption, ledger supply equals minted
        grams minus burned quantity and reconcile_ledger reports balanced.
        """
        quantity = (grams * redeem_share).quantize(Decimal("0.01"))
        if quantity <= Decimal("0"):
            quantity = Decimal("0.01")

        async def scenario():
            services = build_services()
            onboard_account(services, "owner")
            services.mints.add_custody_asset(ADMIN_ID, "vault-1", grams)
            intent = services.mints.initiate_mint_intent("owner", grams)
            mint = await services.mints.execute_mint_flow(ADMIN_ID, intent.mint_request.mint_id)

            redemption = await services.redemptions.submit_redemption(
                "owner", quantity, "1 Vault Road"
            )
            await services.redemptions.approve_redemption(ADMIN_ID, redemption.redemption_id)
            burned = await services.redemptions.fulfill_redemption(
                ADMIN_ID, redemption.redemption_id
            )
            reconciliation = await services.mints.reconcile_ledger()
            return services, mint, burned, reconciliation

        services, mint, burned, reconciliation = asyncio.run(scenario())

        assert mint.status is MintStatus.MINTED
        assert burned.status is RedemptionStatus.FULFILLED
        assert reconciliation.expected_supply == grams - quantity
        assert reconciliation.ledger_supply == grams - quantity
        assert reconciliation.balanced is True
        assert services.ledger.peek_balance(address_for("owner")) == grams - quantity


# =============================================================================
# PROPERTY 7: LTV cap
# =============================================================================

class TestLtvCapProperty:
    """
    **Feature: silver-settlement, Property 7: LTV Cap**
    """

    @settings(
        max_examples=100,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(collateral=grams_strategy, amount=amount_strategy)
    def test_cap_decides_acceptance(self, collateral: Decimal, amount: Decimal) -> None:
        """
        **Feature: silver-settlement, Property 7: LTV Cap**

        A loan is accepted exactly when amount <= collateral * price * max_ltv;
        a refused application writes no loan row.
        """
        services = build_services()
        onboard_account(services, "borrower")
        cap = max_loan_amount(
            collateral, services.prices.current_price(), services.config.max_ltv
        )

        if amount <= cap:
            loan = services.loans.apply_for_loan("borrower", collateral, amount)
            assert loan.ltv <= services.config.max_ltv
            assert len(services.store.list(LoanRequest)) == 1
        else:
            with pytest.raises(ValidationError) as exc_info:
                services.loans.apply_for_loan("borrower", collateral, amount)
            assert exc_info.value.reason == "LTV_EXCEEDED"
            assert services.store.list(LoanRequest) == []


# =============================================================================
# PROPERTY 8: Denials have no side effects
# =============================================================================

class TestDenialSideEffectsProperty:
    """
    **Feature: silver-settlement, Property 8: Denial Without Side Effects**
    """

    @settings(
        max_examples=30,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(
        action=st.sampled_from(["trade", "mint", "redeem", "loan"]),
        aml=st.sampled_from(["unverified", "flag", "block"]),
        grams=grams_strategy,
    )
    def test_denied_account_changes_nothing(self, action: str, aml: str, grams: Decimal) -> None:
        """
        **Feature: silver-settlement, Property 8: Denial Without Side Effects**

        An account the gate refuses leaves no intents, mints, redemptions,
        loans or reservations behind.
        """
        async def scenario():
            services = build_services()
            onboard_account(services, "subject", verify=(aml != "unverified"))
            if aml == "flag":
                services.gate.flag_aml(ADMIN_ID, "subject", "watchlist hit")
            elif aml == "block":
                services.gate.block_aml(ADMIN_ID, "subject", "sanctions")
            services.mints.add_custody_asset(ADMIN_ID, "vault-1", Decimal("1000"))
            await services.ledger.mint(address_for("subject"), grams, "seed")
            audit_before = len(services.audit.history())

            with pytest.raises(ComplianceDenied):
                if action == "trade":
                    await services.trading.submit_intent("subject", IntentType.SELL, grams, Decimal("10"))
                elif action == "mint":
                    services.mints.initiate_mint_intent("subject", grams)
                elif action == "redeem":
                    await services.redemptions.submit_redemption("subject", grams, "Vault Road")
                else:
                    services.loans.apply_for_loan("subject", grams, Decimal("1"))
            return services, audit_before

        services, audit_before = asyncio.run(scenario())

        store = services.store
        assert store.list(TradeIntent) == []
        assert store.list(MintRequest) == []
        assert store.list(LoanRequest) == []
        assert services.redemptions.get_user_redemptions("subject") == []
        assert all(a.reserved_by is None for a in store.list(CustodyAsset))
        assert len(services.audit.history()) == audit_before
