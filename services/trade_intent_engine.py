"""
============================================================================
Trade Intent Engine - Order Intents, Matching and Settlement
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Decimal Integrity: All financial calculations use decimal.Decimal with ROUND_HALF_EVEN
Traceability: All operations include correlation_id for audit

INTENT LIFECYCLE:
    PENDING → EXECUTED   (settled through the ledger)
    PENDING → CANCELLED  (owner cancel)
    PENDING → EXPIRED    (expiry sweep, expires_at <= now)

    Terminal states: EXECUTED, CANCELLED, EXPIRED (immutable)

MATCHING:
    Candidates for intent X are opposite-side, PENDING, unclaimed,
    unexpired intents of other accounts with quantity >= X.quantity and a
    compatible price (buy.limit >= sell.limit), earliest created_at first.
    Trade quantity is X.quantity; the execution price is the limit price
    of whichever intent rested first.

SETTLEMENT (at-most-once):
    1. One transaction: claim both intents (claimed_by = trade_id where
       PENDING and unclaimed) + insert Trade(PENDING). Any miss rolls back
       and raises StateConflict.
    2. Ledger transfer seller → buyer (outside any transaction, bounded by
       ledger_timeout_seconds).
    3a. Success: both intents EXECUTED, trade EXECUTED with tx_ref.
    3b. Failure or timeout: trade FAILED, claims released (intents stay
        PENDING), LedgerFailure raised. A cancelled call records the same
        FAILED trade and re-raises the cancellation.

ERROR CODES:
    - STL-001: Non-positive quantity or price
    - STL-002: Compliance gate denial / not the intent owner
    - STL-003: Intent not PENDING, already claimed, or expired
    - STL-004: SELL quantity above ledger balance
    - STL-005: Ledger transfer failed

============================================================================
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union
import logging

from services.audit_log import AuditLogger
from services.compliance_gate import ComplianceGate, DenialReason, require_custody_address
from services.ledger_adapter import LedgerAdapter, LedgerError, call_ledger
from services.settlement_config import SettlementConfig
from services.settlement_errors import (
    ComplianceDenied,
    ConflictReason,
    InventoryExhausted,
    InventoryReason,
    LedgerFailure,
    RecordNotFound,
    SettlementErrorCode,
    StateConflict,
    ValidationError,
)
from services.settlement_models import (
    AuditAction,
    GatedAction,
    IntentStatus,
    IntentType,
    PRECISION_PRICE,
    PRECISION_QUANTITY,
    SYSTEM_ACTOR,
    Trade,
    TradeIntent,
    TradeStatus,
    new_id,
    to_decimal,
    utc_now,
)
from services.settlement_observability import (
    log_settlement_error,
    record_expired,
    record_intent,
    record_ledger_failure,
    record_trade,
)
from services.settlement_store import SettlementStore
from services.state_machine import require_transition

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Result Types
# =============================================================================

@dataclass(frozen=True)
class NoMatch:
    """No compatible counter-intent exists right now. Not an error."""
    intent_id: str
    reason: str = "NO_COMPATIBLE_INTENT"

    def to_dict(self) -> dict:
        return {"intent_id": self.intent_id, "matched": False, "reason": self.reason}


MatchOutcome = Union[Trade, NoMatch]


def _positive(value: Decimal, precision: Decimal, field_name: str) -> Decimal:
    try:
        amount = to_decimal(value, precision)
    except (InvalidOperation, ValueError):
        raise ValidationError(
            f"INVALID_{field_name.upper()}", f"{field_name} is not a number: {value!r}"
        ) from None
    if amount <= Decimal("0"):
        raise ValidationError(
            f"INVALID_{field_name.upper()}", f"{field_name} must be positive, got {value}"
        )
    return amount


def prices_compatible(buy_limit: Decimal, sell_limit: Decimal) -> bool:
    return buy_limit >= sell_limit


# =============================================================================
# TradeIntentEngine Class
# =============================================================================

class TradeIntentEngine:
    """
    Buy/sell intents with best-effort matching and ledger settlement.

    Reliability Level: L6 Critical
    Side Effects: Store writes, ledger transfers, audit records
    """

    def __init__(
        self,
        store: SettlementStore,
        gate: ComplianceGate,
        ledger: LedgerAdapter,
        audit: AuditLogger,
        config: SettlementConfig,
    ) -> None:
        self._store = store
        self._gate = gate
        self._ledger = ledger
        self._audit = audit
        self._config = config

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------

    async def submit_intent(
        self,
        account_id: str,
        intent_type: IntentType,
        quantity: Decimal,
        limit_price: Decimal,
        correlation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TradeIntent:
        """
        Record a new PENDING intent.

        Raises:
            ValidationError: quantity or price not positive
            ComplianceDenied: gate denial (KYC, AML, role limit)
            InventoryExhausted: SELL above current ledger balance
        """
        quantity = _positive(quantity, PRECISION_QUANTITY, "quantity")
        limit_price = _positive(limit_price, PRECISION_PRICE, "limit_price")
        notional = to_decimal(quantity * limit_price, PRECISION_PRICE)

        try:
            account = self._gate.require_eligible(
                account_id, GatedAction.TRADE, notional, correlation_id
            )
        except ComplianceDenied:
            record_intent(intent_type.value, "DENIED")
            raise

        address = require_custody_address(account)

        if intent_type is IntentType.SELL:
            balance = await self._ledger_balance(address)
            if balance < quantity:
                record_intent(intent_type.value, "INSUFFICIENT_BALANCE")
                raise InventoryExhausted(
                    InventoryReason.INSUFFICIENT_BALANCE,
                    f"Token balance {balance} is below sell quantity {quantity}",
                    {"balance": str(balance), "quantity": str(quantity)},
                )

        created_at = now or utc_now()
        intent = TradeIntent(
            intent_id=new_id(),
            account_id=account_id,
            type=intent_type,
            quantity=quantity,
            limit_price=limit_price,
            status=IntentStatus.PENDING,
            created_at=created_at,
            expires_at=created_at + timedelta(hours=self._config.intent_ttl_hours),
        )

        with self._store.transaction():
            self._store.add(intent)
            self._audit.record(
                account_id,
                AuditAction.TRADE_INTENT_SUBMITTED,
                intent.intent_id,
                {
                    "type": intent_type.value,
                    "quantity": quantity,
                    "limit_price": limit_price,
                    "expires_at": intent.expires_at,
                },
                correlation_id,
            )

        record_intent(intent_type.value, "SUBMITTED")
        logger.info(
            f"[TRADE-ENGINE] Intent submitted | intent_id={intent.intent_id} | "
            f"account_id={account_id} | type={intent_type.value} | "
            f"quantity={quantity} | limit_price={limit_price} | "
            f"correlation_id={correlation_id}"
        )
        return intent

    # -------------------------------------------------------------------------
    # Match and settle
    # -------------------------------------------------------------------------

    async def match_and_execute(
        self,
        intent_id: str,
        correlation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> MatchOutcome:
        """
        Find the best counter-intent and settle it through the ledger.

        Returns:
            The EXECUTED Trade, or NoMatch when nothing is compatible

        Raises:
            StateConflict: intent not PENDING, already claimed, or expired
            ComplianceDenied: the requester is no longer eligible
            LedgerFailure: the transfer failed or timed out (trade recorded FAILED)
        """
        now = now or utc_now()
        intent = self.get_intent(intent_id)
        _require_open(intent, now)

        requester = self._gate.require_eligible(
            intent.account_id, GatedAction.TRADE, intent.notional, correlation_id
        )

        counter = self._find_counter_intent(intent, now, correlation_id)
        if counter is None:
            logger.info(
                f"[TRADE-ENGINE] No match | intent_id={intent_id} | "
                f"type={intent.type.value} | correlation_id={correlation_id}"
            )
            return NoMatch(intent_id)

        counterparty = self._gate.load_account(counter.account_id)
        buy, sell = (intent, counter) if intent.type is IntentType.BUY else (counter, intent)
        buyer, seller = (
            (requester, counterparty) if intent.type is IntentType.BUY else (counterparty, requester)
        )
        resting = counter if counter.created_at <= intent.created_at else intent

        trade = Trade(
            trade_id=new_id(),
            buy_intent_id=buy.intent_id,
            sell_intent_id=sell.intent_id,
            buyer_id=buy.account_id,
            seller_id=sell.account_id,
            quantity=intent.quantity,
            execution_price=resting.limit_price,
            status=TradeStatus.PENDING,
            created_at=now,
        )

        from_address = require_custody_address(seller)
        to_address = require_custody_address(buyer)
        self._claim(trade, (intent, counter), correlation_id)

        try:
            tx_ref = await call_ledger(
                "transfer",
                self._ledger.transfer(from_address, to_address, trade.quantity),
                self._config.ledger_timeout_seconds,
            )
        except LedgerError as e:
            self._record_failure(trade, str(e), correlation_id)
            raise LedgerFailure(
                "LEDGER_TRANSFER_FAILED",
                f"Settlement transfer for trade {trade.trade_id} failed: {e.message}",
                {"trade_id": trade.trade_id},
            ) from e
        except BaseException as e:
            # Cancelled or broken adapter: the claim must not outlive this call.
            self._record_failure(trade, f"transfer interrupted: {type(e).__name__}", correlation_id)
            raise

        return self._record_execution(trade, tx_ref, correlation_id)

    def _find_counter_intent(
        self,
        intent: TradeIntent,
        now: datetime,
        correlation_id: Optional[str],
    ) -> Optional[TradeIntent]:
        candidates = self._store.list(
            TradeIntent,
            {"type": intent.type.opposite, "status": IntentStatus.PENDING, "claimed_by": None},
        )
        candidates = [
            c for c in candidates
            if c.account_id != intent.account_id
            and c.expires_at > now
            and c.quantity >= intent.quantity
            and (
                prices_compatible(intent.limit_price, c.limit_price)
                if intent.type is IntentType.BUY
                else prices_compatible(c.limit_price, intent.limit_price)
            )
        ]
        candidates.sort(key=lambda c: (c.created_at, c.intent_id))

        for candidate in candidates:
            result = self._gate.check_eligibility(
                candidate.account_id, GatedAction.TRADE, candidate.notional, correlation_id
            )
            if result.allowed:
                return candidate
            logger.info(
                f"[TRADE-ENGINE] Skipping ineligible counter-intent | "
                f"intent_id={candidate.intent_id} | reason={result.reason} | "
                f"correlation_id={correlation_id}"
            )
        return None

    def _claim(self, trade: Trade, intents: tuple, correlation_id: Optional[str]) -> None:
        with self._store.transaction():
            for claimed in intents:
                if not self._store.compare_and_set(
                    TradeIntent,
                    claimed.intent_id,
                    {"status": IntentStatus.PENDING, "claimed_by": None},
                    {"claimed_by": trade.trade_id},
                ):
                    logger.warning(
                        f"[{SettlementErrorCode.STATE_CONFLICT}] Intent claim lost | "
                        f"intent_id={claimed.intent_id} | trade_id={trade.trade_id} | "
                        f"correlation_id={correlation_id}"
                    )
                    raise StateConflict(
                        ConflictReason.CONCURRENT_MODIFICATION,
                        f"Intent {claimed.intent_id} was matched or changed concurrently",
                        {"intent_id": claimed.intent_id},
                    )
            self._store.add(trade)

    def _record_execution(
        self,
        trade: Trade,
        tx_ref: str,
        correlation_id: Optional[str],
    ) -> Trade:
        executed_at = utc_now()
        with self._store.transaction():
            for intent_id in (trade.buy_intent_id, trade.sell_intent_id):
                self._require_cas(
                    TradeIntent,
                    intent_id,
                    {"status": IntentStatus.PENDING, "claimed_by": trade.trade_id},
                    {"status": IntentStatus.EXECUTED, "executed_at": executed_at},
                )
            self._require_cas(
                Trade,
                trade.trade_id,
                {"status": TradeStatus.PENDING},
                {"status": TradeStatus.EXECUTED, "tx_ref": tx_ref, "executed_at": executed_at},
            )
            self._audit.record(
                trade.buyer_id,
                AuditAction.TRADE_EXECUTED,
                trade.trade_id,
                {
                    "buy_intent_id": trade.buy_intent_id,
                    "sell_intent_id": trade.sell_intent_id,
                    "seller_id": trade.seller_id,
                    "quantity": trade.quantity,
                    "execution_price": trade.execution_price,
                    "tx_ref": tx_ref,
                },
                correlation_id,
            )

        record_trade(TradeStatus.EXECUTED.value)
        logger.info(
            f"[TRADE-ENGINE] Trade executed | trade_id={trade.trade_id} | "
            f"quantity={trade.quantity} | price={trade.execution_price} | "
            f"tx_ref={tx_ref} | correlation_id={correlation_id}"
        )
        return self._store.get(Trade, trade.trade_id)

    def _record_failure(self, trade: Trade, reason: str, correlation_id: Optional[str]) -> None:
        with self._store.transaction():
            self._require_cas(
                Trade,
                trade.trade_id,
                {"status": TradeStatus.PENDING},
                {"status": TradeStatus.FAILED, "failure_reason": reason},
            )
            for intent_id in (trade.buy_intent_id, trade.sell_intent_id):
                self._require_cas(
                    TradeIntent,
                    intent_id,
                    {"status": IntentStatus.PENDING, "claimed_by": trade.trade_id},
                    {"claimed_by": None},
                )
            self._audit.record(
                SYSTEM_ACTOR,
                AuditAction.TRADE_FAILED,
                trade.trade_id,
                {"reason": reason, "quantity": trade.quantity},
                correlation_id,
            )

        record_trade(TradeStatus.FAILED.value)
        record_ledger_failure("transfer")
        log_settlement_error(
            SettlementErrorCode.LEDGER_FAILURE,
            f"Trade settlement failed, intents released: {reason}",
            correlation_id,
            {"trade_id": trade.trade_id},
        )

    # -------------------------------------------------------------------------
    # Cancel / expire
    # -------------------------------------------------------------------------

    def cancel_intent(
        self,
        intent_id: str,
        requester_id: str,
        correlation_id: Optional[str] = None,
    ) -> TradeIntent:
        intent = self.get_intent(intent_id)
        if intent.account_id != requester_id:
            raise ComplianceDenied(
                DenialReason.NOT_OWNER,
                f"Intent {intent_id} does not belong to {requester_id}",
                {"intent_id": intent_id},
            )
        require_transition(intent.status, IntentStatus.CANCELLED, intent_id, correlation_id)
        if intent.claimed_by is not None:
            raise StateConflict(
                ConflictReason.INVALID_STATE,
                f"Intent {intent_id} is being settled and cannot be cancelled",
                {"intent_id": intent_id, "claimed_by": intent.claimed_by},
            )

        with self._store.transaction():
            self._require_cas(
                TradeIntent,
                intent_id,
                {"status": IntentStatus.PENDING, "claimed_by": None},
                {"status": IntentStatus.CANCELLED},
            )
            self._audit.record(
                requester_id,
                AuditAction.TRADE_INTENT_CANCELLED,
                intent_id,
                {"type": intent.type.value, "quantity": intent.quantity},
                correlation_id,
            )

        record_intent(intent.type.value, "CANCELLED")
        logger.info(
            f"[TRADE-ENGINE] Intent cancelled | intent_id={intent_id} | "
            f"requester={requester_id} | correlation_id={correlation_id}"
        )
        return self.get_intent(intent_id)

    def expire_stale_intents(
        self,
        now: Optional[datetime] = None,
        correlation_id: Optional[str] = None,
    ) -> int:
        """
        Move PENDING, unclaimed intents with expires_at <= now to EXPIRED.

        Idempotent: a second run at the same instant expires nothing.
        """
        now = now or utc_now()
        stale = [
            intent
            for intent in self._store.list(
                TradeIntent, {"status": IntentStatus.PENDING, "claimed_by": None}
            )
            if intent.expires_at <= now
        ]

        expired = 0
        for intent in stale:
            with self._store.transaction():
                if not self._store.compare_and_set(
                    TradeIntent,
                    intent.intent_id,
                    {"status": IntentStatus.PENDING, "claimed_by": None},
                    {"status": IntentStatus.EXPIRED},
                ):
                    continue
                self._audit.record(
                    SYSTEM_ACTOR,
                    AuditAction.TRADE_INTENT_EXPIRED,
                    intent.intent_id,
                    {"expires_at": intent.expires_at, "swept_at": now},
                    correlation_id,
                )
            expired += 1

        record_expired("trade_intent", expired)
        if expired:
            logger.info(
                f"[TRADE-ENGINE] Expired stale intents | count={expired} | "
                f"correlation_id={correlation_id}"
            )
        return expired

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_intent(self, intent_id: str) -> TradeIntent:
        intent = self._store.get(TradeIntent, intent_id)
        if intent is None:
            raise RecordNotFound("INTENT_NOT_FOUND", f"Intent {intent_id} does not exist")
        return intent

    def get_pending_intents(
        self,
        account_id: Optional[str] = None,
        intent_type: Optional[IntentType] = None,
    ) -> List[TradeIntent]:
        filters = {"status": IntentStatus.PENDING}
        if account_id is not None:
            filters["account_id"] = account_id
        if intent_type is not None:
            filters["type"] = intent_type
        return self._store.list(TradeIntent, filters, order_by="created_at")

    def get_user_trades(self, account_id: str) -> List[Trade]:
        trades = self._store.list(Trade, {"buyer_id": account_id}) + [
            t for t in self._store.list(Trade, {"seller_id": account_id})
            if t.buyer_id != account_id
        ]
        trades.sort(key=lambda t: t.created_at, reverse=True)
        return trades

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _ledger_balance(self, address: str) -> Decimal:
        try:
            return await call_ledger(
                "get_balance",
                self._ledger.get_balance(address),
                self._config.ledger_timeout_seconds,
            )
        except LedgerError as e:
            record_ledger_failure("get_balance")
            raise LedgerFailure("LEDGER_BALANCE_UNAVAILABLE", str(e)) from e

    def _require_cas(self, kind: type, entity_id: str, expected: dict, updates: dict) -> None:
        if not self._store.compare_and_set(kind, entity_id, expected, updates):
            raise StateConflict(
                ConflictReason.CONCURRENT_MODIFICATION,
                f"{kind.__name__} {entity_id} changed concurrently. Reload and retry.",
                {"reference_id": entity_id, "expected": {k: str(v) for k, v in expected.items()}},
            )


def _require_open(intent: TradeIntent, now: datetime) -> None:
    if intent.status is not IntentStatus.PENDING or intent.claimed_by is not None:
        raise StateConflict(
            ConflictReason.INVALID_STATE,
            f"Intent {intent.intent_id} is {intent.status.value} and cannot be matched",
            {"intent_id": intent.intent_id, "status": intent.status.value},
        )
    if intent.expires_at <= now:
        raise StateConflict(
            ConflictReason.INTENT_EXPIRED,
            f"Intent {intent.intent_id} expired at {intent.expires_at.isoformat()}",
            {"intent_id": intent.intent_id},
        )


__all__ = [
    "NoMatch",
    "MatchOutcome",
    "prices_compatible",
    "TradeIntentEngine",
]
