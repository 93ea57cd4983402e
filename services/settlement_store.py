"""
============================================================================
Settlement Store - Persistence Interface with Guarded Updates
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Traceability: Every failed guarded update is logged

GUARDED UPDATE CONTRACT:
    compare_and_set(kind, entity_id, expected, updates) writes `updates`
    only if every field in `expected` currently holds the given value
    (None means "is empty"). Returns True when exactly one row changed.
    Callers treat False as CONCURRENT_MODIFICATION, never ignore it.

TRANSACTIONS:
    with store.transaction():
        ...  # multi-row step; any exception rolls every write back

    Transactions nest (inner blocks join the outer one). Ledger calls must
    never run while a transaction is open.

IMPLEMENTATIONS:
    - InMemorySettlementStore: thread-safe (RLock), snapshot rollback
    - SqlSettlementStore (services/sql_store.py): SQLAlchemy Core

============================================================================
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar
import copy
import dataclasses
import logging
import threading

from services.settlement_models import (
    Account,
    AuditRecord,
    CustodyAsset,
    LoanRequest,
    MintRequest,
    PriceLock,
    RedemptionRequest,
    Trade,
    TradeIntent,
)

# Configure module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Entity Registry
# =============================================================================

# Entity class -> primary key field
ENTITY_KEYS: Dict[type, str] = {
    Account: "account_id",
    CustodyAsset: "asset_id",
    TradeIntent: "intent_id",
    Trade: "trade_id",
    PriceLock: "lock_id",
    MintRequest: "mint_id",
    RedemptionRequest: "redemption_id",
    LoanRequest: "loan_id",
    AuditRecord: "audit_id",
}

# Append-only entities reject compare_and_set
APPEND_ONLY: tuple = (AuditRecord,)


class DuplicateRecordError(Exception):
    """Insert with an id that already exists."""


def entity_key(kind: type) -> str:
    try:
        return ENTITY_KEYS[kind]
    except KeyError:
        raise TypeError(f"Unsupported entity type: {kind.__name__}") from None


# =============================================================================
# SettlementStore Interface
# =============================================================================

class SettlementStore(ABC):
    """
    Opaque relational store used by every settlement workflow.

    Reliability Level: L6 Critical
    """

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes atomically. Nested blocks join the outer block."""

    @abstractmethod
    def add(self, entity: Any) -> None:
        """Insert a new entity. Raises DuplicateRecordError on id collision."""

    @abstractmethod
    def get(self, kind: Type[T], entity_id: str) -> Optional[T]:
        """Fetch one entity by id (a detached copy)."""

    @abstractmethod
    def list(
        self,
        kind: Type[T],
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[T]:
        """List entities matching equality filters (None filters on empty)."""

    @abstractmethod
    def compare_and_set(
        self,
        kind: type,
        entity_id: str,
        expected: Dict[str, Any],
        updates: Dict[str, Any],
    ) -> bool:
        """Guarded update. True only if exactly one row changed."""

    @abstractmethod
    def get_setting(self, key: str) -> Optional[str]:
        """Read a system setting."""

    @abstractmethod
    def set_setting(self, key: str, value: str, updated_by: str) -> None:
        """Upsert a system setting."""


# =============================================================================
# InMemorySettlementStore
# =============================================================================

class InMemorySettlementStore(SettlementStore):
    """
    Thread-safe in-memory store.

    A single re-entrant lock serialises every operation; an open transaction
    holds it until commit or rollback, so guarded updates are atomic across
    threads. Rollback restores a snapshot taken at the outermost entry.

    Reliability Level: L6 Critical
    Side Effects: None outside process memory
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tables: Dict[type, Dict[str, Any]] = {kind: {} for kind in ENTITY_KEYS}
        self._settings: Dict[str, Dict[str, str]] = {}
        self._depth = 0

        logger.info("[SETTLEMENT-STORE] In-memory store initialized")

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            snapshot = None
            if outermost:
                snapshot = (copy.deepcopy(self._tables), copy.deepcopy(self._settings))
            self._depth += 1
            try:
                yield
            except BaseException:
                if outermost and snapshot is not None:
                    self._tables, self._settings = snapshot
                    logger.debug("[SETTLEMENT-STORE] Transaction rolled back")
                raise
            finally:
                self._depth -= 1

    def add(self, entity: Any) -> None:
        kind = type(entity)
        key = getattr(entity, entity_key(kind))
        with self._lock:
            table = self._tables[kind]
            if key in table:
                raise DuplicateRecordError(f"{kind.__name__} {key} already exists")
            table[key] = copy.deepcopy(entity)

    def get(self, kind: Type[T], entity_id: str) -> Optional[T]:
        entity_key(kind)
        with self._lock:
            found = self._tables[kind].get(entity_id)
            return copy.deepcopy(found) if found is not None else None

    def list(
        self,
        kind: Type[T],
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[T]:
        entity_key(kind)
        filters = filters or {}
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._tables[kind].values()
                if all(getattr(row, name) == value for name, value in filters.items())
            ]
        if order_by:
            rows.sort(key=lambda row: getattr(row, order_by), reverse=descending)
        return rows

    def compare_and_set(
        self,
        kind: type,
        entity_id: str,
        expected: Dict[str, Any],
        updates: Dict[str, Any],
    ) -> bool:
        if kind in APPEND_ONLY:
            raise TypeError(f"{kind.__name__} is append-only")
        entity_key(kind)
        with self._lock:
            current = self._tables[kind].get(entity_id)
            if current is None:
                return False
            if any(getattr(current, name) != value for name, value in expected.items()):
                logger.debug(
                    f"[SETTLEMENT-STORE] Guarded update missed | "
                    f"kind={kind.__name__} | id={entity_id} | expected={expected}"
                )
                return False
            self._tables[kind][entity_id] = dataclasses.replace(current, **updates)
            return True

    def get_setting(self, key: str) -> Optional[str]:
        with self._lock:
            setting = self._settings.get(key)
            return setting["value"] if setting else None

    def set_setting(self, key: str, value: str, updated_by: str) -> None:
        with self._lock:
            self._settings[key] = {"value": value, "updated_by": updated_by}


__all__ = [
    "ENTITY_KEYS",
    "APPEND_ONLY",
    "DuplicateRecordError",
    "entity_key",
    "SettlementStore",
    "InMemorySettlementStore",
]
