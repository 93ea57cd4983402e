"""
============================================================================
Silver Settlement Core - Services Layer
============================================================================

Compliance gate, trade intent engine, mint/redemption and loan workflows,
ledger adapter and the stores they share.

Reliability Level: L6 Critical
============================================================================
"""

from services.settlement_errors import (
    SettlementErrorCode,
    ConflictReason,
    InventoryReason,
    SettlementError,
    ValidationError,
    ComplianceDenied,
    StateConflict,
    InventoryExhausted,
    LedgerFailure,
    RecordNotFound,
    AccountNotFound,
    SettlementConfigurationError,
)

from services.settlement_config import (
    SettlementConfig,
    get_settlement_config,
    reset_settlement_config,
)

from services.settlement_store import (
    SettlementStore,
    InMemorySettlementStore,
    DuplicateRecordError,
)

from services.ledger_adapter import (
    LedgerAdapter,
    LedgerError,
    InMemoryLedger,
)

from services.compliance_gate import (
    ComplianceGate,
    DenialReason,
    EligibilityResult,
)

from services.trade_intent_engine import (
    TradeIntentEngine,
    NoMatch,
)

from services.mint_workflow import (
    MintWorkflow,
    MintIntent,
)

from services.redemption_workflow import RedemptionWorkflow

from services.loan_workflow import (
    LoanWorkflow,
    LoanTerms,
)

from services.wallet_service import (
    WalletService,
    WalletTransferResult,
    TransferOutcome,
)

from services.expiry_worker import ExpiryWorker

from services.settlement_core import (
    SettlementServices,
    build_settlement_services,
)

__all__ = [
    # Errors
    "SettlementErrorCode",
    "ConflictReason",
    "InventoryReason",
    "SettlementError",
    "ValidationError",
    "ComplianceDenied",
    "StateConflict",
    "InventoryExhausted",
    "LedgerFailure",
    "RecordNotFound",
    "AccountNotFound",
    "SettlementConfigurationError",
    # Configuration
    "SettlementConfig",
    "get_settlement_config",
    "reset_settlement_config",
    # Persistence
    "SettlementStore",
    "InMemorySettlementStore",
    "DuplicateRecordError",
    # Ledger
    "LedgerAdapter",
    "LedgerError",
    "InMemoryLedger",
    # Compliance
    "ComplianceGate",
    "DenialReason",
    "EligibilityResult",
    # Workflows
    "TradeIntentEngine",
    "NoMatch",
    "MintWorkflow",
    "MintIntent",
    "RedemptionWorkflow",
    "LoanWorkflow",
    "LoanTerms",
    "WalletService",
    "WalletTransferResult",
    "TransferOutcome",
    "ExpiryWorker",
    # Wiring
    "SettlementServices",
    "build_settlement_services",
]
