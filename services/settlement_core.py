"""
============================================================================
Settlement Core - Service Wiring
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)

Builds every settlement component over one store and one ledger. The app
layer creates a single SettlementServices at startup; tests build their own
over an InMemorySettlementStore and InMemoryLedger.

============================================================================
"""

from dataclasses import dataclass
from typing import Optional
import logging

from services.audit_log import AuditLogger
from services.compliance_gate import ComplianceGate
from services.expiry_worker import ExpiryWorker
from services.ledger_adapter import LedgerAdapter
from services.loan_workflow import LoanWorkflow
from services.mint_workflow import MintWorkflow
from services.redemption_workflow import RedemptionWorkflow
from services.reference_price import ReferencePriceBook
from services.settlement_config import SettlementConfig, get_settlement_config
from services.settlement_store import SettlementStore
from services.trade_intent_engine import TradeIntentEngine
from services.wallet_service import WalletService

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass
class SettlementServices:
    """All settlement components sharing one store and ledger."""
    config: SettlementConfig
    store: SettlementStore
    ledger: LedgerAdapter
    audit: AuditLogger
    gate: ComplianceGate
    prices: ReferencePriceBook
    trading: TradeIntentEngine
    mints: MintWorkflow
    redemptions: RedemptionWorkflow
    loans: LoanWorkflow
    wallet: WalletService
    expiry_worker: ExpiryWorker


def build_settlement_services(
    store: SettlementStore,
    ledger: LedgerAdapter,
    config: Optional[SettlementConfig] = None,
) -> SettlementServices:
    config = config or get_settlement_config()
    audit = AuditLogger(store)
    gate = ComplianceGate(store, audit, config)
    prices = ReferencePriceBook(store, gate, audit, config)
    trading = TradeIntentEngine(store, gate, ledger, audit, config)
    mints = MintWorkflow(store, gate, ledger, audit, prices, config)

    services = SettlementServices(
        config=config,
        store=store,
        ledger=ledger,
        audit=audit,
        gate=gate,
        prices=prices,
        trading=trading,
        mints=mints,
        redemptions=RedemptionWorkflow(store, gate, ledger, audit, config),
        loans=LoanWorkflow(store, gate, audit, prices, config),
        wallet=WalletService(gate, ledger, audit, config),
        expiry_worker=ExpiryWorker(trading, mints, config.expiry_interval_seconds),
    )
    logger.info(
        f"[SETTLEMENT-CORE] Services built | store={type(store).__name__} | "
        f"ledger={type(ledger).__name__}"
    )
    return services


__all__ = ["SettlementServices", "build_settlement_services"]
