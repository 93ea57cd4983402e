"""
============================================================================
Integration Test: End-to-End Settlement Flows
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Input Constraints: FastAPI TestClient, in-memory store and ledger
Side Effects: None (in-process services)

Flows:
- Custody stock -> mint -> trade -> redemption -> dispatch, reconciled
- Loan quote -> application -> approve -> activate -> repay
- Admin audit history and manual expiry sweep
============================================================================
"""

import asyncio
import os
import sys
from datetime import timedelta
from decimal import Decimal
from typing import Dict

import pytest
from fastapi.testclient import TestClient

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app.main import create_app
from services.settlement_models import IntentType, utc_now

ADMIN_ID = "admin-root"


@pytest.fixture
def client(services):
    app = create_app(services=services, start_expiry_worker=False)
    with TestClient(app) as test_client:
        yield test_client


def auth(account_id: str, correlation_id: str = None) -> Dict[str, str]:
    headers = {"Authorization": f"Bearer {account_id}"}
    if correlation_id:
        headers["X-Correlation-ID"] = correlation_id
    return headers


def onboard_via_api(client: TestClient, account_id: str) -> None:
    client.post("/api/admin/accounts", json={"account_id": account_id}, headers=auth(ADMIN_ID))
    client.post(
        f"/api/admin/accounts/{account_id}/custody-address",
        json={"custody_address": f"custody-{account_id}"},
        headers=auth(ADMIN_ID),
    )
    client.post("/api/accounts/me/kyc", headers=auth(account_id))
    client.post(f"/api/admin/accounts/{account_id}/kyc/approve", headers=auth(ADMIN_ID))


def mint_via_api(client: TestClient, owner_id: str, grams: str) -> Dict:
    client.post(
        "/api/admin/custody-assets",
        json={"vault_id": "vault-jhb", "weight_grams": grams},
        headers=auth(ADMIN_ID),
    )
    requested = client.post(
        "/api/mint", json={"requested_grams": grams}, headers=auth(owner_id)
    )
    assert requested.status_code == 201
    mint_id = requested.json()["mint_request"]["mint_id"]

    executed = client.post(f"/api/admin/mints/{mint_id}/execute", headers=auth(ADMIN_ID))
    assert executed.status_code == 200
    return executed.json()


def balance_of(client: TestClient, account_id: str) -> Decimal:
    body = client.get("/api/accounts/me/balance", headers=auth(account_id)).json()
    return Decimal(body["balance"])


class TestMintTradeRedeemFlow:

    def test_full_custody_cycle(self, client) -> None:
        onboard_via_api(client, "alice")
        onboard_via_api(client, "bob")

        # Mint 20g to bob
        mint = mint_via_api(client, "bob", "20")
        assert mint["status"] == "MINTED"
        assert mint["tx_ref"]
        assert balance_of(client, "bob") == Decimal("20")

        # Alice rests a bid, bob sells into it
        buy = client.post(
            "/api/trading/intents",
            json={"type": "BUY", "quantity": "20", "limit_price": "60"},
            headers=auth("alice"),
        )
        sell = client.post(
            "/api/trading/intents",
            json={"type": "SELL", "quantity": "20", "limit_price": "55"},
            headers=auth("bob"),
        )
        assert buy.status_code == sell.status_code == 201

        match = client.post(
            f"/api/trading/intents/{sell.json()['intent_id']}/match",
            headers=auth("bob", "corr-match"),
        ).json()

        assert match["matched"] is True
        assert Decimal(match["trade"]["execution_price"]) == Decimal("60")
        assert match["trade"]["buyer_id"] == "alice"
        assert balance_of(client, "alice") == Decimal("20")
        assert balance_of(client, "bob") == Decimal("0")
        assert len(client.get("/api/trading/trades", headers=auth("alice")).json()) == 1

        # Alice redeems half for physical delivery
        redemption = client.post(
            "/api/redemptions",
            json={"quantity": "10", "delivery_address": "12 Main Road, Johannesburg"},
            headers=auth("alice"),
        ).json()
        redemption_id = redemption["redemption_id"]
        assert redemption["status"] == "PENDING"

        queue = client.get("/api/admin/redemptions/queue", headers=auth(ADMIN_ID)).json()
        assert [r["redemption_id"] for r in queue] == [redemption_id]

        for step in ("approve", "fulfill"):
            response = client.post(
                f"/api/admin/redemptions/{redemption_id}/{step}", headers=auth(ADMIN_ID)
            )
            assert response.status_code == 200
        dispatched = client.post(
            f"/api/admin/redemptions/{redemption_id}/dispatch",
            json={"tracking_number": "TRK-001"},
            headers=auth(ADMIN_ID),
        ).json()

        assert dispatched["status"] == "DISPATCHED"
        assert dispatched["tracking_number"] == "TRK-001"
        assert balance_of(client, "alice") == Decimal("10")

        reconciliation = client.get("/api/admin/vault/reconcile", headers=auth(ADMIN_ID)).json()
        assert reconciliation["balanced"] is True
        assert Decimal(reconciliation["expected_supply"]) == Decimal("10")

        inventory = client.get("/api/admin/vault/inventory", headers=auth(ADMIN_ID)).json()
        assert inventory["available_assets"] == 0

    def test_no_match_is_not_an_error(self, client) -> None:
        onboard_via_api(client, "alice")
        intent = client.post(
            "/api/trading/intents",
            json={"type": "BUY", "quantity": "1", "limit_price": "10"},
            headers=auth("alice"),
        ).json()

        response = client.post(
            f"/api/trading/intents/{intent['intent_id']}/match", headers=auth("alice")
        )

        assert response.status_code == 200
        assert response.json()["matched"] is False
        assert response.json()["trade"] is None

    def test_other_users_cannot_match(self, client) -> None:
        onboard_via_api(client, "alice")
        onboard_via_api(client, "bob")
        intent = client.post(
            "/api/trading/intents",
            json={"type": "BUY", "quantity": "1", "limit_price": "10"},
            headers=auth("alice"),
        ).json()

        response = client.post(
            f"/api/trading/intents/{intent['intent_id']}/match", headers=auth("bob")
        )

        assert response.status_code == 403


class TestLoanFlow:

    def test_quote_apply_and_repay(self, client) -> None:
        onboard_via_api(client, "alice")
        body = {"collateral_grams": "100", "requested_amount": "1200"}

        terms = client.post("/api/loans/terms", json=body, headers=auth("alice")).json()
        assert Decimal(terms["max_loan_amount"]) == Decimal("2500")
        assert Decimal(terms["monthly_payment"]) == Decimal("105")

        loan = client.post("/api/loans", json=body, headers=auth("alice")).json()
        assert loan["status"] == "PENDING_APPROVAL"

        pending = client.get("/api/admin/loans/pending", headers=auth(ADMIN_ID)).json()
        assert [p["loan_id"] for p in pending] == [loan["loan_id"]]

        statuses = []
        for decision in ("approve", "activate", "repay"):
            response = client.post(
                f"/api/admin/loans/{loan['loan_id']}/{decision}", headers=auth(ADMIN_ID)
            )
            statuses.append(response.json()["status"])

        assert statuses == ["APPROVED", "ACTIVE", "REPAID"]

        again = client.post(f"/api/admin/loans/{loan['loan_id']}/liquidate", headers=auth(ADMIN_ID))
        assert again.status_code == 409

    def test_reject_with_reason(self, client) -> None:
        onboard_via_api(client, "alice")
        loan = client.post(
            "/api/loans",
            json={"collateral_grams": "10", "requested_amount": "100"},
            headers=auth("alice"),
        ).json()

        response = client.post(
            f"/api/admin/loans/{loan['loan_id']}/reject",
            json={"reason": "collateral unverified"},
            headers=auth(ADMIN_ID),
        )

        assert response.json()["status"] == "REJECTED"


class TestOperations:

    def test_audit_history_follows_correlation(self, client) -> None:
        onboard_via_api(client, "alice")
        intent = client.post(
            "/api/trading/intents",
            json={"type": "BUY", "quantity": "1", "limit_price": "10"},
            headers=auth("alice", "corr-audit"),
        ).json()

        history = client.get(
            "/api/admin/audit",
            params={"reference_id": intent["intent_id"]},
            headers=auth(ADMIN_ID),
        ).json()

        assert history["total"] == 1
        assert history["records"][0]["action"] == "TRADE_INTENT_SUBMITTED"
        assert history["records"][0]["correlation_id"] == "corr-audit"

    def test_unknown_audit_action_is_422(self, client) -> None:
        response = client.get(
            "/api/admin/audit", params={"action": "NOPE"}, headers=auth(ADMIN_ID)
        )

        assert response.status_code == 422

    def test_manual_expiry_sweep(self, client, services) -> None:
        onboard_via_api(client, "alice")
        asyncio.run(services.trading.submit_intent(
            "alice", IntentType.BUY, Decimal("1"), Decimal("10"),
            now=utc_now() - timedelta(days=2),
        ))

        response = client.post("/api/admin/expiry/sweep", headers=auth(ADMIN_ID))

        assert response.json() == {"intents_expired": 1, "price_locks_expired": 0}
        assert client.get("/api/trading/intents", headers=auth("alice")).json() == []

    def test_minting_pause(self, client) -> None:
        onboard_via_api(client, "alice")
        client.post(
            "/api/admin/custody-assets",
            json={"vault_id": "vault-jhb", "weight_grams": "10"},
            headers=auth(ADMIN_ID),
        )

        paused = client.put("/api/admin/minting", json={"paused": True}, headers=auth(ADMIN_ID))
        refused = client.post("/api/mint", json={"requested_grams": "5"}, headers=auth("alice"))

        assert paused.json() == {"paused": True}
        assert refused.status_code == 409
        assert refused.json()["reason"] == "MINTING_PAUSED"
