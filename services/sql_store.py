"""
============================================================================
SQL Settlement Store - SQLAlchemy Core Implementation
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Decimal Integrity: NUMERIC(38, 8) amounts (exact text on SQLite), never floats
Traceability: Guarded update misses are logged with the expected state

GUARDED UPDATE:
    UPDATE <table>
       SET <updates>
     WHERE <id> = :id
       AND <field> = :expected ...        (IS NULL for None)

    rowcount == 1 → transition applied
    rowcount == 0 → concurrent modification / wrong state

TRANSACTIONS:
    transaction() opens one connection with BEGIN; every store call made
    inside the block on the same thread reuses it. Outside a block each call
    runs in its own short transaction.

============================================================================
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar
import dataclasses
import json
import logging
import threading

from sqlalchemy import (
    Column,
    DateTime,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    and_,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.types import TypeDecorator

from services.settlement_models import (
    Account,
    AmlStatus,
    AuditAction,
    AuditRecord,
    CustodyAsset,
    IntentStatus,
    IntentType,
    KycStatus,
    LoanRequest,
    LoanStatus,
    MintRequest,
    MintStatus,
    PriceLock,
    PriceLockStatus,
    RedemptionRequest,
    RedemptionStatus,
    Role,
    SettlementJSONEncoder,
    Trade,
    TradeIntent,
    TradeStatus,
)
from services.settlement_store import (
    APPEND_ONLY,
    DuplicateRecordError,
    SettlementStore,
    entity_key,
)

# Configure module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Column Types
# =============================================================================

class DecimalAmount(TypeDecorator):
    """
    Exact Decimal amount.

    NUMERIC(38, 8) on PostgreSQL and other dialects with a native decimal
    type, so amounts sort and compare numerically in SQL. SQLite NUMERIC
    goes through float, so there the value is kept as exact text.
    """
    impl = Numeric(38, 8, asdecimal=True)
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(Numeric(38, 8, asdecimal=True))

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        if dialect.name == "sqlite":
            return str(value)
        return Decimal(str(value))

    def process_result_value(self, value: Any, dialect: Any) -> Optional[Decimal]:
        if value is None:
            return None
        return Decimal(str(value))


class UTCDateTime(TypeDecorator):
    """Naive UTC in the database, timezone-aware UTC in Python."""
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value: Any, dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class JSONText(TypeDecorator):
    """JSON object persisted as sorted-key text."""
    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Optional[str]:
        if value is None:
            return None
        return json.dumps(value, sort_keys=True, cls=SettlementJSONEncoder)

    def process_result_value(self, value: Any, dialect: Any) -> Optional[Dict[str, Any]]:
        if value is None:
            return None
        return json.loads(value)


# =============================================================================
# Schema
# =============================================================================

metadata = MetaData()

accounts = Table(
    "accounts", metadata,
    Column("account_id", String(64), primary_key=True),
    Column("role", String(32), nullable=False),
    Column("kyc_status", String(32), nullable=False),
    Column("aml_status", String(32), nullable=False),
    Column("custody_address", String(128), nullable=True),
    Column("country", String(64), nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
)

custody_assets = Table(
    "custody_assets", metadata,
    Column("asset_id", String(64), primary_key=True),
    Column("vault_id", String(64), nullable=False),
    Column("weight_grams", DecimalAmount, nullable=False),
    Column("purity", DecimalAmount, nullable=False),
    Column("reserved_by", String(64), nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
)

trade_intents = Table(
    "trade_intents", metadata,
    Column("intent_id", String(64), primary_key=True),
    Column("account_id", String(64), nullable=False, index=True),
    Column("type", String(8), nullable=False),
    Column("quantity", DecimalAmount, nullable=False),
    Column("limit_price", DecimalAmount, nullable=False),
    Column("status", String(16), nullable=False, index=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column("expires_at", UTCDateTime, nullable=False),
    Column("claimed_by", String(64), nullable=True),
    Column("executed_at", UTCDateTime, nullable=True),
)

trades = Table(
    "trades", metadata,
    Column("trade_id", String(64), primary_key=True),
    Column("buy_intent_id", String(64), nullable=False),
    Column("sell_intent_id", String(64), nullable=False),
    Column("buyer_id", String(64), nullable=False, index=True),
    Column("seller_id", String(64), nullable=False, index=True),
    Column("quantity", DecimalAmount, nullable=False),
    Column("execution_price", DecimalAmount, nullable=False),
    Column("status", String(16), nullable=False),
    Column("created_at", UTCDateTime, nullable=False),
    Column("tx_ref", String(128), nullable=True),
    Column("failure_reason", Text, nullable=True),
    Column("executed_at", UTCDateTime, nullable=True),
)

price_locks = Table(
    "price_locks", metadata,
    Column("lock_id", String(64), primary_key=True),
    Column("account_id", String(64), nullable=False, index=True),
    Column("custody_asset_id", String(64), nullable=False),
    Column("locked_price", DecimalAmount, nullable=False),
    Column("status", String(16), nullable=False),
    Column("expires_at", UTCDateTime, nullable=False),
    Column("created_at", UTCDateTime, nullable=False),
)

mint_requests = Table(
    "mint_requests", metadata,
    Column("mint_id", String(64), primary_key=True),
    Column("owner_id", String(64), nullable=False, index=True),
    Column("custody_asset_id", String(64), nullable=False),
    Column("requested_grams", DecimalAmount, nullable=False),
    Column("status", String(16), nullable=False),
    Column("price_lock_id", String(64), nullable=True),
    Column("tx_ref", String(128), nullable=True),
    Column("failure_reason", Text, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
)

redemption_requests = Table(
    "redemption_requests", metadata,
    Column("redemption_id", String(64), primary_key=True),
    Column("owner_id", String(64), nullable=False, index=True),
    Column("quantity", DecimalAmount, nullable=False),
    Column("delivery_address", Text, nullable=False),
    Column("status", String(16), nullable=False),
    Column("tx_ref", String(128), nullable=True),
    Column("tracking_number", String(128), nullable=True),
    Column("rejection_reason", Text, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
)

loan_requests = Table(
    "loan_requests", metadata,
    Column("loan_id", String(64), primary_key=True),
    Column("owner_id", String(64), nullable=False, index=True),
    Column("collateral_grams", DecimalAmount, nullable=False),
    Column("requested_amount", DecimalAmount, nullable=False),
    Column("reference_price", DecimalAmount, nullable=False),
    Column("status", String(24), nullable=False),
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
)

audit_log = Table(
    "audit_log", metadata,
    Column("audit_id", String(64), primary_key=True),
    Column("actor_id", String(64), nullable=False, index=True),
    Column("action", String(48), nullable=False),
    Column("reference_id", String(64), nullable=True, index=True),
    Column("details", JSONText, nullable=False),
    Column("correlation_id", String(64), nullable=False),
    Column("created_at", UTCDateTime, nullable=False),
)

system_settings = Table(
    "system_settings", metadata,
    Column("key", String(64), primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_by", String(64), nullable=False),
)

# Entity class -> (table, enum-typed fields)
_MAPPINGS: Dict[type, tuple] = {
    Account: (accounts, {"role": Role, "kyc_status": KycStatus, "aml_status": AmlStatus}),
    CustodyAsset: (custody_assets, {}),
    TradeIntent: (trade_intents, {"type": IntentType, "status": IntentStatus}),
    Trade: (trades, {"status": TradeStatus}),
    PriceLock: (price_locks, {"status": PriceLockStatus}),
    MintRequest: (mint_requests, {"status": MintStatus}),
    RedemptionRequest: (redemption_requests, {"status": RedemptionStatus}),
    LoanRequest: (loan_requests, {"status": LoanStatus}),
    AuditRecord: (audit_log, {"action": AuditAction}),
}


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _to_row(entity: Any) -> Dict[str, Any]:
    return {f.name: _plain(getattr(entity, f.name)) for f in dataclasses.fields(entity)}


def _from_row(kind: Type[T], row: Any) -> T:
    _, enums = _MAPPINGS[kind]
    data = dict(row._mapping)
    for name, enum_cls in enums.items():
        data[name] = enum_cls(data[name])
    return kind(**data)


# =============================================================================
# SqlSettlementStore
# =============================================================================

class SqlSettlementStore(SettlementStore):
    """
    SQLAlchemy Core store. Works against PostgreSQL in production and
    SQLite in tests.

    Reliability Level: L6 Critical
    Side Effects: Database reads/writes
    """

    def __init__(self, engine: Engine, create_schema: bool = False) -> None:
        self._engine = engine
        self._local = threading.local()

        if create_schema:
            metadata.create_all(engine)

        logger.info(
            f"[SETTLEMENT-STORE] SQL store initialized | "
            f"dialect={engine.dialect.name} | create_schema={create_schema}"
        )

    # -------------------------------------------------------------------------
    # Connection handling
    # -------------------------------------------------------------------------

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        current = getattr(self._local, "connection", None)
        if current is not None:
            yield current
            return
        with self._engine.begin() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, "connection", None) is not None:
            yield
            return
        with self._engine.begin() as conn:
            self._local.connection = conn
            try:
                yield
            finally:
                self._local.connection = None

    # -------------------------------------------------------------------------
    # Entity operations
    # -------------------------------------------------------------------------

    def add(self, entity: Any) -> None:
        kind = type(entity)
        entity_key(kind)
        table, _ = _MAPPINGS[kind]
        try:
            with self._connection() as conn:
                conn.execute(insert(table).values(**_to_row(entity)))
        except IntegrityError as e:
            raise DuplicateRecordError(
                f"{kind.__name__} {getattr(entity, entity_key(kind))} already exists"
            ) from e

    def get(self, kind: Type[T], entity_id: str) -> Optional[T]:
        table, _ = _MAPPINGS[kind]
        key_column = table.c[entity_key(kind)]
        with self._connection() as conn:
            row = conn.execute(select(table).where(key_column == entity_id)).first()
        return _from_row(kind, row) if row is not None else None

    def list(
        self,
        kind: Type[T],
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[T]:
        table, _ = _MAPPINGS[kind]
        query = select(table)
        conditions = self._conditions(table, filters or {})
        if conditions:
            query = query.where(and_(*conditions))
        if order_by:
            column = table.c[order_by]
            query = query.order_by(column.desc() if descending else column.asc())
        with self._connection() as conn:
            rows = conn.execute(query).fetchall()
        return [_from_row(kind, row) for row in rows]

    def compare_and_set(
        self,
        kind: type,
        entity_id: str,
        expected: Dict[str, Any],
        updates: Dict[str, Any],
    ) -> bool:
        if kind in APPEND_ONLY:
            raise TypeError(f"{kind.__name__} is append-only")
        table, _ = _MAPPINGS[kind]
        conditions = [table.c[entity_key(kind)] == entity_id]
        conditions.extend(self._conditions(table, expected))
        statement = (
            update(table)
            .where(and_(*conditions))
            .values(**{name: _plain(value) for name, value in updates.items()})
        )
        with self._connection() as conn:
            result = conn.execute(statement)
        if result.rowcount != 1:
            logger.debug(
                f"[SETTLEMENT-STORE] Guarded update missed | "
                f"table={table.name} | id={entity_id} | "
                f"rowcount={result.rowcount} | expected={expected}"
            )
            return False
        return True

    def get_setting(self, key: str) -> Optional[str]:
        with self._connection() as conn:
            row = conn.execute(
                select(system_settings.c.value).where(system_settings.c.key == key)
            ).first()
        return row[0] if row is not None else None

    def set_setting(self, key: str, value: str, updated_by: str) -> None:
        with self._connection() as conn:
            result = conn.execute(
                update(system_settings)
                .where(system_settings.c.key == key)
                .values(value=value, updated_by=updated_by)
            )
            if result.rowcount == 0:
                conn.execute(
                    insert(system_settings).values(key=key, value=value, updated_by=updated_by)
                )

    @staticmethod
    def _conditions(table: Table, filters: Dict[str, Any]) -> List[Any]:
        conditions = []
        for name, value in filters.items():
            column = table.c[name]
            if value is None:
                conditions.append(column.is_(None))
            else:
                conditions.append(column == _plain(value))
        return conditions


__all__ = [
    "metadata",
    "SqlSettlementStore",
    "DecimalAmount",
    "UTCDateTime",
    "JSONText",
]
