"""
============================================================================
Unit Tests - SQL Settlement Store
============================================================================

Reliability Level: SOVEREIGN TIER

Tests SqlSettlementStore against in-memory SQLite:
- Round trip of Decimal, enum and timezone-aware datetime fields
- NUMERIC(38, 8) amount columns on PostgreSQL, exact text on SQLite
- Guarded updates (compare_and_set) including IS NULL expectations
- Transaction rollback
- Append-only audit rows and system settings
- A full settlement flow over the SQL store
============================================================================
"""

import os
import sys
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import Numeric, String, create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.schema import CreateTable
from sqlalchemy.pool import StaticPool

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.ledger_adapter import InMemoryLedger
from services.settlement_config import SettlementConfig
from services.settlement_core import build_settlement_services
from services.settlement_models import (
    Account,
    AuditAction,
    AuditRecord,
    CustodyAsset,
    IntentStatus,
    IntentType,
    KycStatus,
    MintStatus,
    Role,
    TradeIntent,
    TradeStatus,
    utc_now,
)
from services.settlement_store import DuplicateRecordError
from services.sql_store import DecimalAmount, SqlSettlementStore, trade_intents

ADMIN_ID = "admin-sql"


@pytest.fixture
def store() -> SqlSettlementStore:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield SqlSettlementStore(engine, create_schema=True)
    engine.dispose()


def _intent(intent_id: str = "intent-1") -> TradeIntent:
    now = utc_now()
    return TradeIntent(
        intent_id=intent_id,
        account_id="alice",
        type=IntentType.BUY,
        quantity=Decimal("10.12345678"),
        limit_price=Decimal("99.5"),
        status=IntentStatus.PENDING,
        created_at=now,
        expires_at=now + timedelta(hours=24),
    )


class TestRoundTrip:

    def test_decimal_enum_datetime_round_trip(self, store) -> None:
        original = _intent()
        store.add(original)

        loaded = store.get(TradeIntent, "intent-1")

        assert loaded == original
        assert isinstance(loaded.quantity, Decimal)
        assert loaded.type is IntentType.BUY
        assert loaded.created_at.tzinfo is not None

    def test_missing_returns_none(self, store) -> None:
        assert store.get(Account, "nobody") is None

    def test_duplicate_insert(self, store) -> None:
        store.add(Account(account_id="alice"))

        with pytest.raises(DuplicateRecordError):
            store.add(Account(account_id="alice"))

    def test_list_filters_and_order(self, store) -> None:
        store.add(CustodyAsset(asset_id="a", vault_id="v1", weight_grams=Decimal("5")))
        store.add(
            CustodyAsset(asset_id="b", vault_id="v1", weight_grams=Decimal("7"), reserved_by="m")
        )

        unreserved = store.list(CustodyAsset, {"reserved_by": None})
        ordered = store.list(CustodyAsset, order_by="asset_id", descending=True)

        assert [a.asset_id for a in unreserved] == ["a"]
        assert [a.asset_id for a in ordered] == ["b", "a"]


class TestAmountColumns:

    def test_postgresql_uses_numeric(self) -> None:
        impl = DecimalAmount().load_dialect_impl(postgresql.dialect())

        assert isinstance(impl, Numeric)
        assert (impl.precision, impl.scale) == (38, 8)
        ddl = str(CreateTable(trade_intents).compile(dialect=postgresql.dialect()))
        assert "quantity NUMERIC(38, 8) NOT NULL" in ddl

    def test_sqlite_keeps_exact_text(self) -> None:
        amount = DecimalAmount()
        dialect = sqlite.dialect()

        assert isinstance(amount.load_dialect_impl(dialect), String)
        assert amount.process_bind_param(Decimal("0.00000001"), dialect) == "0.00000001"
        assert amount.process_result_value("10.12345678", dialect) == Decimal("10.12345678")

    def test_postgresql_binds_decimal(self) -> None:
        bound = DecimalAmount().process_bind_param(Decimal("99.5"), postgresql.dialect())

        assert isinstance(bound, Decimal)
        assert bound == Decimal("99.5")

class TestGuardedUpdates:

    def test_applies_when_expected_matches(self, store) -> None:
        store.add(_intent())

        applied = store.compare_and_set(
            TradeIntent,
            "intent-1",
            {"status": IntentStatus.PENDING, "claimed_by": None},
            {"claimed_by": "trade-1"},
        )

        assert applied is True
        assert store.get(TradeIntent, "intent-1").claimed_by == "trade-1"

    def test_misses_when_state_moved(self, store) -> None:
        store.add(_intent())
        store.compare_and_set(TradeIntent, "intent-1", {"claimed_by": None}, {"claimed_by": "t1"})

        second = store.compare_and_set(
            TradeIntent, "intent-1", {"claimed_by": None}, {"claimed_by": "t2"}
        )

        assert second is False
        assert store.get(TradeIntent, "intent-1").claimed_by == "t1"

    def test_unknown_row_misses(self, store) -> None:
        assert store.compare_and_set(Account, "ghost", {}, {"country": "ZA"}) is False

    def test_audit_rows_are_append_only(self, store) -> None:
        with pytest.raises(TypeError):
            store.compare_and_set(AuditRecord, "x", {}, {"actor_id": "y"})


class TestTransactions:

    def test_rollback_discards_every_write(self, store) -> None:
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.add(Account(account_id="alice"))
                store.add(Account(account_id="bob"))
                raise RuntimeError("boom")

        assert store.list(Account) == []

    def test_commit_persists(self, store) -> None:
        with store.transaction():
            store.add(Account(account_id="alice"))
            with store.transaction():
                store.compare_and_set(
                    Account,
                    "alice",
                    {"kyc_status": KycStatus.NOT_STARTED},
                    {"kyc_status": KycStatus.IN_REVIEW},
                )

        assert store.get(Account, "alice").kyc_status is KycStatus.IN_REVIEW

    def test_settings_upsert(self, store) -> None:
        assert store.get_setting("MINTING_PAUSED") is None

        store.set_setting("MINTING_PAUSED", "true", "admin")
        store.set_setting("MINTING_PAUSED", "false", "admin")

        assert store.get_setting("MINTING_PAUSED") == "false"


class TestSettlementOverSql:

    @pytest.mark.asyncio
    async def test_mint_then_trade(self, store) -> None:
        services = build_settlement_services(store, InMemoryLedger(), SettlementConfig())
        gate = services.gate
        gate.seed_admin(ADMIN_ID)
        for account_id in ("alice", "bob"):
            gate.register_account(ADMIN_ID, account_id, Role.USER)
            gate.link_custody_address(ADMIN_ID, account_id, f"custody-{account_id}")
            gate.start_kyc(account_id, account_id)
            gate.approve_kyc(ADMIN_ID, account_id)

        services.mints.add_custody_asset(ADMIN_ID, "vault-1", Decimal("100"))
        intent = services.mints.initiate_mint_intent("bob", Decimal("20"))
        mint = await services.mints.execute_mint_flow(ADMIN_ID, intent.mint_request.mint_id)
        assert mint.status is MintStatus.MINTED

        await services.trading.submit_intent("alice", IntentType.BUY, Decimal("20"), Decimal("60"))
        sell = await services.trading.submit_intent(
            "bob", IntentType.SELL, Decimal("20"), Decimal("55")
        )
        trade = await services.trading.match_and_execute(sell.intent_id)

        assert trade.status is TradeStatus.EXECUTED
        assert trade.execution_price == Decimal("60")
        assert services.ledger.peek_balance("custody-alice") == Decimal("20")
        assert services.audit.history(trade.trade_id, AuditAction.TRADE_EXECUTED)
        assert (await services.mints.reconcile_ledger()).balanced is True
