"""
============================================================================
Reference Price Book
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Decimal Integrity: Prices quantised to 8 places with ROUND_HALF_EVEN

Holds the admin-set silver reference price per gram used for mint price
locks and loan collateral valuation. Price-feed ingestion is out of scope;
the price is seeded from SETTLEMENT_REFERENCE_PRICE_PER_GRAM and changed
only by an admin. The current value lives in the store's system settings
so every process sees the same price.

============================================================================
"""

from decimal import Decimal, InvalidOperation
from typing import Optional
import logging

from services.audit_log import AuditLogger
from services.compliance_gate import ComplianceGate
from services.settlement_config import SettlementConfig
from services.settlement_errors import ValidationError
from services.settlement_models import AuditAction, PRECISION_PRICE, to_decimal
from services.settlement_store import SettlementStore

# Configure module logger
logger = logging.getLogger(__name__)

REFERENCE_PRICE_SETTING = "REFERENCE_PRICE_PER_GRAM"


class ReferencePriceBook:
    """Admin-maintained reference price per gram."""

    def __init__(
        self,
        store: SettlementStore,
        gate: ComplianceGate,
        audit: AuditLogger,
        config: SettlementConfig,
    ) -> None:
        self._store = store
        self._gate = gate
        self._audit = audit
        self._config = config

    def current_price(self) -> Decimal:
        raw = self._store.get_setting(REFERENCE_PRICE_SETTING)
        if raw is None:
            return self._config.reference_price_per_gram
        try:
            return to_decimal(raw, PRECISION_PRICE)
        except InvalidOperation:
            logger.warning(
                f"[REFERENCE-PRICE] Stored price unreadable, using configured default | "
                f"stored={raw!r} | default={self._config.reference_price_per_gram}"
            )
            return self._config.reference_price_per_gram

    def set_price(
        self,
        admin_id: str,
        price_per_gram: Decimal,
        correlation_id: Optional[str] = None,
    ) -> Decimal:
        self._gate.require_admin(admin_id, correlation_id)
        try:
            price = to_decimal(price_per_gram, PRECISION_PRICE)
        except InvalidOperation:
            raise ValidationError("INVALID_PRICE", f"Not a number: {price_per_gram!r}") from None
        if price <= Decimal("0"):
            raise ValidationError("INVALID_PRICE", "Reference price must be positive")

        previous = self.current_price()
        with self._store.transaction():
            self._store.set_setting(REFERENCE_PRICE_SETTING, str(price), admin_id)
            self._audit.record(
                admin_id,
                AuditAction.ADMIN_ACTION,
                REFERENCE_PRICE_SETTING,
                {"operation": "SET_REFERENCE_PRICE", "previous": previous, "price": price},
                correlation_id,
            )

        logger.info(
            f"[REFERENCE-PRICE] Price updated | previous={previous} | price={price} | "
            f"admin={admin_id} | correlation_id={correlation_id}"
        )
        return price


__all__ = ["ReferencePriceBook", "REFERENCE_PRICE_SETTING"]
