"""
============================================================================
Wallet Service - User-Initiated Token Transfers
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Decimal Integrity: Amounts are Decimal quantised to 8 places
Traceability: All operations include correlation_id for audit

User-signed transfers out of custody need wallet key custody, which this
core does not provide. The Compliance Gate (WALLET_OP) runs first, so a
denied account always sees its denial reason. After that, while
WALLET_TRANSFERS_ENABLED is false the call returns an UNSUPPORTED result
instead of raising, so callers can tell "not offered" apart from "failed".

When enabled, the transfer runs through the Ledger Adapter after a balance
check.

============================================================================
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional
import logging

from services.audit_log import AuditLogger
from services.compliance_gate import ComplianceGate, require_custody_address
from services.ledger_adapter import LedgerAdapter, LedgerError, call_ledger
from services.settlement_config import SettlementConfig
from services.settlement_errors import (
    InventoryExhausted,
    InventoryReason,
    LedgerFailure,
    SettlementErrorCode,
    ValidationError,
)
from services.settlement_models import (
    AuditAction,
    GatedAction,
    PRECISION_QUANTITY,
    to_decimal,
)
from services.settlement_observability import log_settlement_error, record_ledger_failure

# Configure module logger
logger = logging.getLogger(__name__)


class TransferOutcome(Enum):
    COMPLETED = "COMPLETED"
    UNSUPPORTED = "UNSUPPORTED"


@dataclass(frozen=True)
class WalletTransferResult:
    """Result of transfer_tokens()."""
    outcome: TransferOutcome
    tx_ref: Optional[str] = None
    message: Optional[str] = None

    @property
    def supported(self) -> bool:
        return self.outcome is not TransferOutcome.UNSUPPORTED

    def to_dict(self) -> Dict[str, Any]:
        return {"outcome": self.outcome.value, "tx_ref": self.tx_ref, "message": self.message}


class WalletService:
    """Token transfers out of a custody address."""

    def __init__(
        self,
        gate: ComplianceGate,
        ledger: LedgerAdapter,
        audit: AuditLogger,
        config: SettlementConfig,
    ) -> None:
        self._gate = gate
        self._ledger = ledger
        self._audit = audit
        self._config = config

    async def transfer_tokens(
        self,
        account_id: str,
        to_address: str,
        amount: Decimal,
        correlation_id: Optional[str] = None,
    ) -> WalletTransferResult:
        account = self._gate.require_eligible(account_id, GatedAction.WALLET_OP, None, correlation_id)

        if not self._config.wallet_transfers_enabled:
            logger.info(
                f"[WALLET] Transfer not offered | account_id={account_id} | "
                f"correlation_id={correlation_id}"
            )
            return WalletTransferResult(
                TransferOutcome.UNSUPPORTED,
                message="User-initiated wallet transfers are not available",
            )

        try:
            value = to_decimal(amount, PRECISION_QUANTITY)
        except (InvalidOperation, ValueError):
            raise ValidationError("INVALID_AMOUNT", f"amount is not a number: {amount!r}") from None
        if value <= Decimal("0"):
            raise ValidationError("INVALID_AMOUNT", f"amount must be positive, got {amount}")
        if not to_address or not to_address.strip():
            raise ValidationError("INVALID_ADDRESS", "to_address must not be empty")

        from_address = require_custody_address(account)

        try:
            balance = await call_ledger(
                "get_balance",
                self._ledger.get_balance(from_address),
                self._config.ledger_timeout_seconds,
            )
            if balance < value:
                raise InventoryExhausted(
                    InventoryReason.INSUFFICIENT_BALANCE,
                    f"Token balance {balance} is below transfer amount {value}",
                    {"balance": str(balance), "amount": str(value)},
                )
            tx_ref = await call_ledger(
                "transfer",
                self._ledger.transfer(from_address, to_address.strip(), value),
                self._config.ledger_timeout_seconds,
            )
        except LedgerError as e:
            record_ledger_failure(e.operation)
            log_settlement_error(
                SettlementErrorCode.LEDGER_FAILURE,
                f"Wallet transfer failed: {e}",
                correlation_id,
                {"account_id": account_id},
            )
            raise LedgerFailure("LEDGER_TRANSFER_FAILED", f"Wallet transfer failed: {e.message}") from e

        self._audit.record(
            account_id,
            AuditAction.BALANCE_TRANSFER,
            tx_ref,
            {"from": from_address, "to": to_address.strip(), "amount": value},
            correlation_id,
        )
        logger.info(
            f"[WALLET] Transfer completed | account_id={account_id} | amount={value} | "
            f"tx_ref={tx_ref} | correlation_id={correlation_id}"
        )
        return WalletTransferResult(TransferOutcome.COMPLETED, tx_ref=tx_ref)

    async def get_balance(self, account_id: str) -> Decimal:
        account = self._gate.load_account(account_id)
        if not account.custody_address:
            return Decimal("0")
        try:
            return await call_ledger(
                "get_balance",
                self._ledger.get_balance(account.custody_address),
                self._config.ledger_timeout_seconds,
            )
        except LedgerError as e:
            record_ledger_failure("get_balance")
            raise LedgerFailure("LEDGER_BALANCE_UNAVAILABLE", str(e)) from e


__all__ = ["TransferOutcome", "WalletTransferResult", "WalletService"]
