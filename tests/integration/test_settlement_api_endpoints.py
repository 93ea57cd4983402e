"""
============================================================================
Integration Test: Settlement API Endpoints
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Input Constraints: FastAPI TestClient, in-memory store and ledger
Side Effects: None (in-process services)

Covers:
- 401 SEC-001 for unauthenticated requests
- SettlementError -> HTTP status mapping with correlation_id echo
- Account onboarding through the admin and account routers
- System endpoints (/, /health, /metrics)
============================================================================
"""

import os
import sys
from decimal import Decimal
from typing import Dict

import pytest
from fastapi.testclient import TestClient

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app.main import create_app
from services.settlement_models import MintStatus

ADMIN_ID = "admin-root"


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def client(services):
    """TestClient over prebuilt in-memory services, expiry worker off."""
    app = create_app(services=services, start_expiry_worker=False)
    with TestClient(app) as test_client:
        yield test_client


def auth(account_id: str, correlation_id: str = None) -> Dict[str, str]:
    headers = {"Authorization": f"Bearer {account_id}"}
    if correlation_id:
        headers["X-Correlation-ID"] = correlation_id
    return headers


def onboard_via_api(client: TestClient, account_id: str, verify: bool = True) -> None:
    response = client.post(
        "/api/admin/accounts", json={"account_id": account_id}, headers=auth(ADMIN_ID)
    )
    assert response.status_code == 201
    response = client.post(
        f"/api/admin/accounts/{account_id}/custody-address",
        json={"custody_address": f"custody-{account_id}"},
        headers=auth(ADMIN_ID),
    )
    assert response.status_code == 200
    if verify:
        assert client.post("/api/accounts/me/kyc", headers=auth(account_id)).status_code == 200
        response = client.post(
            f"/api/admin/accounts/{account_id}/kyc/approve", headers=auth(ADMIN_ID)
        )
        assert response.json()["kyc_status"] == "VERIFIED"


# ============================================================================
# Authentication
# ============================================================================

class TestAuthentication:

    def test_missing_header_is_401(self, client) -> None:
        response = client.get("/api/accounts/me")

        assert response.status_code == 401
        assert response.json()["detail"]["error_code"] == "SEC-001"

    def test_wrong_scheme_is_401(self, client) -> None:
        response = client.get("/api/accounts/me", headers={"Authorization": "Basic abc"})

        assert response.status_code == 401

    def test_unknown_account_is_404(self, client) -> None:
        response = client.get("/api/accounts/me", headers=auth("ghost", "corr-ghost"))

        assert response.status_code == 404
        assert response.json()["error_code"] == "STL-006"

    def test_bearer_value_is_trusted_as_identity(self, client) -> None:
        # Whoever presents the admin id is the admin; the gateway must authenticate.
        response = client.get("/api/admin/reference-price", headers=auth(ADMIN_ID))

        assert response.status_code == 200


# ============================================================================
# Onboarding
# ============================================================================

class TestOnboarding:

    def test_register_link_and_verify(self, client) -> None:
        onboard_via_api(client, "alice")

        me = client.get("/api/accounts/me", headers=auth("alice")).json()
        eligibility = client.get(
            "/api/accounts/me/eligibility",
            params={"action": "TRADE", "notional": "100"},
            headers=auth("alice"),
        ).json()

        assert me["custody_address"] == "custody-alice"
        assert me["role"] == "USER"
        assert eligibility["allowed"] is True

    def test_duplicate_registration_is_409(self, client) -> None:
        onboard_via_api(client, "alice", verify=False)

        response = client.post(
            "/api/admin/accounts", json={"account_id": "alice"}, headers=auth(ADMIN_ID)
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "STL-003"

    def test_non_admin_is_403_with_correlation_id(self, client) -> None:
        onboard_via_api(client, "alice")

        response = client.post(
            "/api/admin/accounts",
            json={"account_id": "mallory"},
            headers=auth("alice", "corr-403"),
        )

        body = response.json()
        assert response.status_code == 403
        assert body["error_code"] == "STL-002"
        assert body["reason"] == "NOT_ADMIN"
        assert body["correlation_id"] == "corr-403"

    def test_blocked_account_is_denied(self, client) -> None:
        onboard_via_api(client, "alice")
        client.post(
            "/api/admin/accounts/alice/aml/block",
            json={"reason": "sanctions match"},
            headers=auth(ADMIN_ID),
        )

        eligibility = client.get(
            "/api/accounts/me/eligibility", params={"action": "MINT"}, headers=auth("alice")
        ).json()

        assert eligibility == {
            "allowed": False,
            "action": "MINT",
            "account_id": "alice",
            "reason": "AML_BLOCKED",
        }

    def test_unknown_aml_decision_is_422(self, client) -> None:
        onboard_via_api(client, "alice", verify=False)

        response = client.post(
            "/api/admin/accounts/alice/aml/maybe",
            json={"reason": "?"},
            headers=auth(ADMIN_ID),
        )

        assert response.status_code == 422
        assert response.json()["reason"] == "INVALID_AML_DECISION"


# ============================================================================
# Error mapping on settlement routes
# ============================================================================

class TestErrorMapping:

    def test_unverified_intent_is_403(self, client) -> None:
        onboard_via_api(client, "newbie", verify=False)

        response = client.post(
            "/api/trading/intents",
            json={"type": "BUY", "quantity": "1", "limit_price": "10"},
            headers=auth("newbie", "corr-kyc"),
        )

        assert response.status_code == 403
        assert response.json()["reason"] == "KYC_UNVERIFIED"
        assert response.json()["correlation_id"] == "corr-kyc"

    def test_float_body_is_422(self, client) -> None:
        onboard_via_api(client, "alice")

        response = client.post(
            "/api/trading/intents",
            json={"type": "BUY", "quantity": 1.5, "limit_price": "10"},
            headers=auth("alice"),
        )

        assert response.status_code == 422

    def test_unknown_intent_is_404(self, client) -> None:
        onboard_via_api(client, "alice")

        response = client.post("/api/trading/intents/nope/match", headers=auth("alice"))

        assert response.status_code == 404
        assert response.json()["error_code"] == "STL-006"

    def test_cancel_twice_is_409(self, client) -> None:
        onboard_via_api(client, "alice")
        intent = client.post(
            "/api/trading/intents",
            json={"type": "BUY", "quantity": "1", "limit_price": "10"},
            headers=auth("alice"),
        ).json()

        first = client.post(f"/api/trading/intents/{intent['intent_id']}/cancel", headers=auth("alice"))
        second = client.post(f"/api/trading/intents/{intent['intent_id']}/cancel", headers=auth("alice"))

        assert first.json()["status"] == "CANCELLED"
        assert second.status_code == 409
        assert second.json()["retryable"] is True

    def test_mint_without_stock_is_409(self, client) -> None:
        onboard_via_api(client, "alice")

        response = client.post(
            "/api/mint", json={"requested_grams": "50"}, headers=auth("alice")
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "STL-004"

    def test_loan_above_ltv_is_422(self, client) -> None:
        onboard_via_api(client, "alice")

        response = client.post(
            "/api/loans",
            json={"collateral_grams": "100", "requested_amount": "2500.01"},
            headers=auth("alice"),
        )

        assert response.status_code == 422
        assert response.json()["reason"] == "LTV_EXCEEDED"
        assert client.get("/api/loans", headers=auth("alice")).json() == []

    def test_ledger_failure_is_502(self, client, services) -> None:
        onboard_via_api(client, "alice")
        client.post(
            "/api/admin/custody-assets",
            json={"vault_id": "vault-jhb", "weight_grams": "100"},
            headers=auth(ADMIN_ID),
        )
        mint = client.post(
            "/api/mint", json={"requested_grams": "100"}, headers=auth("alice")
        ).json()["mint_request"]
        services.ledger.fail_next("mint")

        response = client.post(
            f"/api/admin/mints/{mint['mint_id']}/execute", headers=auth(ADMIN_ID)
        )

        assert response.status_code == 502
        assert response.json()["error_code"] == "STL-005"
        assert services.mints.get_mint_request(mint["mint_id"]).status is MintStatus.FAILED


# ============================================================================
# Account wallet routes
# ============================================================================

class TestWallet:

    def test_transfer_is_unsupported_by_default(self, client) -> None:
        onboard_via_api(client, "alice")

        response = client.post(
            "/api/accounts/me/transfers",
            json={"to_address": "0xdest", "amount": "1"},
            headers=auth("alice"),
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "UNSUPPORTED"

    def test_balance_starts_at_zero(self, client) -> None:
        onboard_via_api(client, "alice")

        body = client.get("/api/accounts/me/balance", headers=auth("alice")).json()

        assert Decimal(body["balance"]) == Decimal("0")
        assert body["custody_address"] == "custody-alice"


# ============================================================================
# System endpoints
# ============================================================================

class TestSystemEndpoints:

    def test_root(self, client) -> None:
        body = client.get("/").json()

        assert body["status"] == "operational"
        assert body["components"]["store"] == "InMemorySettlementStore"
        assert body["components"]["expiry_worker"] is False

    def test_health(self, client) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_metrics(self, client) -> None:
        client.get("/health")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "settlement_reference_price" in response.text

    def test_reference_price_round_trip(self, client) -> None:
        response = client.put(
            "/api/admin/reference-price",
            json={"price_per_gram": "80"},
            headers=auth(ADMIN_ID),
        )
        current = client.get("/api/admin/reference-price", headers=auth(ADMIN_ID)).json()

        assert response.status_code == 200
        assert Decimal(current["price_per_gram"]) == Decimal("80")
