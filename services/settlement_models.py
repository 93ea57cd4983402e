"""
============================================================================
Settlement Core - Data Models
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Decimal Integrity: All financial values use decimal.Decimal with ROUND_HALF_EVEN
Traceability: All operations include correlation_id for audit

This module defines the entities shared by every settlement workflow:
- Account: principal with role, KYC status, AML status, custody address
- CustodyAsset: one physical silver unit held in vault
- TradeIntent / Trade: order intents and their matched settlement
- MintRequest / RedemptionRequest: custody <-> token conversion
- LoanRequest: collateralised loan application
- PriceLock: time-bounded valuation freeze
- AuditRecord: append-only transition trail

Tokens are minted 1 gram = 1 token, so grams and token quantities share
PRECISION_QUANTITY.

============================================================================
"""

from decimal import Decimal, ROUND_HALF_EVEN
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import json
import uuid


# =============================================================================
# Constants
# =============================================================================

PRECISION_PRICE = Decimal("0.00000001")     # 8 decimal places
PRECISION_QUANTITY = Decimal("0.00000001")  # 8 decimal places (grams == tokens)

SYSTEM_ACTOR = "SYSTEM"


def to_decimal(value: Any, precision: Decimal = PRECISION_QUANTITY) -> Decimal:
    """Coerce to Decimal via str() and quantize with ROUND_HALF_EVEN."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(precision, rounding=ROUND_HALF_EVEN)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Enums
# =============================================================================

class Role(Enum):
    """Account role. DOMESTIC/INTERNATIONAL carry different trade caps."""
    USER = "USER"
    DOMESTIC_USER = "DOMESTIC_USER"
    INTERNATIONAL_USER = "INTERNATIONAL_USER"
    ADMIN = "ADMIN"


class KycStatus(Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_REVIEW = "IN_REVIEW"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class AmlStatus(Enum):
    PENDING = "PENDING"
    CLEARED = "CLEARED"
    FLAGGED = "FLAGGED"
    BLOCKED = "BLOCKED"


class GatedAction(Enum):
    """Privileged actions evaluated by the Compliance Gate."""
    TRADE = "TRADE"
    MINT = "MINT"
    REDEEM = "REDEEM"
    LOAN = "LOAN"
    WALLET_OP = "WALLET_OP"


class IntentType(Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "IntentType":
        return IntentType.SELL if self is IntentType.BUY else IntentType.BUY


class IntentStatus(Enum):
    PENDING = "PENDING"
    EXECUTED = "EXECUTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class TradeStatus(Enum):
    PENDING = "PENDING"
    EXECUTED = "EXECUTED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class MintStatus(Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    MINTED = "MINTED"
    FAILED = "FAILED"


class RedemptionStatus(Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    FULFILLED = "FULFILLED"
    DISPATCHED = "DISPATCHED"
    REJECTED = "REJECTED"


class LoanStatus(Enum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ACTIVE = "ACTIVE"
    REPAID = "REPAID"
    LIQUIDATED = "LIQUIDATED"


class PriceLockStatus(Enum):
    ACTIVE = "ACTIVE"
    USED = "USED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class AuditAction(Enum):
    """Action recorded on every AuditRecord."""
    ACCOUNT_REGISTERED = "ACCOUNT_REGISTERED"
    CUSTODY_ADDRESS_LINKED = "CUSTODY_ADDRESS_LINKED"
    KYC_SUBMITTED = "KYC_SUBMITTED"
    KYC_APPROVED = "KYC_APPROVED"
    KYC_REJECTED = "KYC_REJECTED"
    AML_FLAG_RAISED = "AML_FLAG_RAISED"
    AML_BLOCKED = "AML_BLOCKED"
    AML_CLEARED = "AML_CLEARED"
    TRADE_INTENT_SUBMITTED = "TRADE_INTENT_SUBMITTED"
    TRADE_INTENT_CANCELLED = "TRADE_INTENT_CANCELLED"
    TRADE_INTENT_EXPIRED = "TRADE_INTENT_EXPIRED"
    TRADE_EXECUTED = "TRADE_EXECUTED"
    TRADE_FAILED = "TRADE_FAILED"
    MINT_REQUESTED = "MINT_REQUESTED"
    MINT_APPROVED = "MINT_APPROVED"
    MINT_COMPLETED = "MINT_COMPLETED"
    MINT_FAILED = "MINT_FAILED"
    MINT_REJECTED = "MINT_REJECTED"
    PRICE_LOCK_CREATED = "PRICE_LOCK_CREATED"
    PRICE_LOCK_EXPIRED = "PRICE_LOCK_EXPIRED"
    REDEMPTION_REQUESTED = "REDEMPTION_REQUESTED"
    REDEMPTION_APPROVED = "REDEMPTION_APPROVED"
    REDEMPTION_COMPLETED = "REDEMPTION_COMPLETED"
    REDEMPTION_DISPATCHED = "REDEMPTION_DISPATCHED"
    REDEMPTION_REJECTED = "REDEMPTION_REJECTED"
    LOAN_REQUESTED = "LOAN_REQUESTED"
    LOAN_APPROVED = "LOAN_APPROVED"
    LOAN_REJECTED = "LOAN_REJECTED"
    LOAN_ACTIVATED = "LOAN_ACTIVATED"
    LOAN_REPAID = "LOAN_REPAID"
    LOAN_LIQUIDATED = "LOAN_LIQUIDATED"
    BALANCE_TRANSFER = "BALANCE_TRANSFER"
    ADMIN_ACTION = "ADMIN_ACTION"


# =============================================================================
# Custom JSON Encoder for Decimal and datetime
# =============================================================================

class SettlementJSONEncoder(json.JSONEncoder):
    """
    JSON encoder for settlement data types.

    Handles Decimal -> str (preserves precision), datetime -> ISO string,
    UUID -> str, Enum -> value.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, uuid.UUID):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# =============================================================================
# Entities
# =============================================================================

@dataclass
class Account:
    """
    Principal with role and compliance state. Never physically deleted.

    Reliability Level: L6 Critical
    Side Effects: None (data container)
    """
    account_id: str
    role: Role = Role.USER
    kyc_status: KycStatus = KycStatus.NOT_STARTED
    aml_status: AmlStatus = AmlStatus.PENDING
    custody_address: Optional[str] = None
    country: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "role": self.role.value,
            "kyc_status": self.kyc_status.value,
            "aml_status": self.aml_status.value,
            "custody_address": self.custody_address,
            "country": self.country,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class CustodyAsset:
    """A specific physical silver unit in vault."""
    asset_id: str
    vault_id: str
    weight_grams: Decimal
    purity: Decimal = Decimal("0.999")
    reserved_by: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "vault_id": self.vault_id,
            "weight_grams": str(self.weight_grams),
            "purity": str(self.purity),
            "reserved_by": self.reserved_by,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class TradeIntent:
    """
    Desire to buy or sell at a limit price.

    claimed_by holds the trade id while a settlement for this intent is in
    flight; a claimed intent cannot be cancelled, expired or matched again.
    """
    intent_id: str
    account_id: str
    type: IntentType
    quantity: Decimal
    limit_price: Decimal
    status: IntentStatus
    created_at: datetime
    expires_at: datetime
    claimed_by: Optional[str] = None
    executed_at: Optional[datetime] = None

    @property
    def notional(self) -> Decimal:
        return to_decimal(self.quantity * self.limit_price, PRECISION_PRICE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent_id": self.intent_id,
            "account_id": self.account_id,
            "type": self.type.value,
            "quantity": str(self.quantity),
            "limit_price": str(self.limit_price),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "claimed_by": self.claimed_by,
            "executed_at": _iso(self.executed_at),
        }


@dataclass
class Trade:
    """Record of two matched intents."""
    trade_id: str
    buy_intent_id: str
    sell_intent_id: str
    buyer_id: str
    seller_id: str
    quantity: Decimal
    execution_price: Decimal
    status: TradeStatus
    created_at: datetime = field(default_factory=utc_now)
    tx_ref: Optional[str] = None
    failure_reason: Optional[str] = None
    executed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trade_id": self.trade_id,
            "buy_intent_id": self.buy_intent_id,
            "sell_intent_id": self.sell_intent_id,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "quantity": str(self.quantity),
            "execution_price": str(self.execution_price),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "tx_ref": self.tx_ref,
            "failure_reason": self.failure_reason,
            "executed_at": _iso(self.executed_at),
        }


@dataclass
class PriceLock:
    """Time-bounded valuation freeze for one (account, custody asset) pair."""
    lock_id: str
    account_id: str
    custody_asset_id: str
    locked_price: Decimal
    status: PriceLockStatus
    expires_at: datetime
    created_at: datetime = field(default_factory=utc_now)

    def is_live(self, now: datetime) -> bool:
        return self.status is PriceLockStatus.ACTIVE and now < self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lock_id": self.lock_id,
            "account_id": self.account_id,
            "custody_asset_id": self.custody_asset_id,
            "locked_price": str(self.locked_price),
            "status": self.status.value,
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class MintRequest:
    """Custody-to-token conversion in progress."""
    mint_id: str
    owner_id: str
    custody_asset_id: str
    requested_grams: Decimal
    status: MintStatus
    price_lock_id: Optional[str] = None
    tx_ref: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mint_id": self.mint_id,
            "owner_id": self.owner_id,
            "custody_asset_id": self.custody_asset_id,
            "requested_grams": str(self.requested_grams),
            "status": self.status.value,
            "price_lock_id": self.price_lock_id,
            "tx_ref": self.tx_ref,
            "failure_reason": self.failure_reason,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class RedemptionRequest:
    """Token-to-physical-silver conversion in progress."""
    redemption_id: str
    owner_id: str
    quantity: Decimal
    delivery_address: str
    status: RedemptionStatus
    tx_ref: Optional[str] = None
    tracking_number: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "redemption_id": self.redemption_id,
            "owner_id": self.owner_id,
            "quantity": str(self.quantity),
            "delivery_address": self.delivery_address,
            "status": self.status.value,
            "tx_ref": self.tx_ref,
            "tracking_number": self.tracking_number,
            "rejection_reason": self.rejection_reason,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class LoanRequest:
    """Collateralised loan application."""
    loan_id: str
    owner_id: str
    collateral_grams: Decimal
    requested_amount: Decimal
    reference_price: Decimal
    status: LoanStatus
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def ltv(self) -> Decimal:
        collateral_value = self.collateral_grams * self.reference_price
        return (self.requested_amount / collateral_value).quantize(
            Decimal("0.0001"), rounding=ROUND_HALF_EVEN
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loan_id": self.loan_id,
            "owner_id": self.owner_id,
            "collateral_grams": str(self.collateral_grams),
            "requested_amount": str(self.requested_amount),
            "reference_price": str(self.reference_price),
            "ltv": str(self.ltv),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class AuditRecord:
    """Append-only trail entry. Frozen: never mutated after creation."""
    audit_id: str
    actor_id: str
    action: AuditAction
    reference_id: Optional[str]
    details: Dict[str, Any]
    correlation_id: str
    created_at: datetime

    def details_json(self) -> str:
        return json.dumps(self.details, sort_keys=True, cls=SettlementJSONEncoder)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "audit_id": self.audit_id,
            "actor_id": self.actor_id,
            "action": self.action.value,
            "reference_id": self.reference_id,
            "details": json.loads(self.details_json()),
            "correlation_id": self.correlation_id,
            "created_at": self.created_at.isoformat(),
        }


__all__ = [
    "PRECISION_PRICE",
    "PRECISION_QUANTITY",
    "SYSTEM_ACTOR",
    "to_decimal",
    "utc_now",
    "new_id",
    "Role",
    "KycStatus",
    "AmlStatus",
    "GatedAction",
    "IntentType",
    "IntentStatus",
    "TradeStatus",
    "MintStatus",
    "RedemptionStatus",
    "LoanStatus",
    "PriceLockStatus",
    "AuditAction",
    "SettlementJSONEncoder",
    "Account",
    "CustodyAsset",
    "TradeIntent",
    "Trade",
    "PriceLock",
    "MintRequest",
    "RedemptionRequest",
    "LoanRequest",
    "AuditRecord",
]
