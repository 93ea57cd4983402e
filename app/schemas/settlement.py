"""
============================================================================
Silver Settlement Core
Settlement Schemas - Pydantic Models for the HTTP API
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: Financial values as Decimal strings or integers, zero floats
Side Effects: None (pure validation)

SOVEREIGN MANDATE:
- All financial values MUST use decimal.Decimal
- Float JSON numbers are rejected before they reach a workflow
- Positivity and business rules are enforced by the services, so the
  caller receives the same STL reason codes from every entry point

Responses carry Decimal values as strings to preserve precision.

============================================================================
"""

from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional
from enum import Enum

from pydantic import (
    BaseModel,
    Field,
    field_validator,
    ConfigDict,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Maximum decimal places accepted on input (matches store precision)
MAX_DECIMAL_PLACES = 8


# ============================================================================
# ENUMS
# ============================================================================

class IntentSide(str, Enum):
    """Valid intent sides."""
    BUY = "BUY"
    SELL = "SELL"


class AccountRole(str, Enum):
    """Roles an administrator may assign."""
    USER = "USER"
    DOMESTIC_USER = "DOMESTIC_USER"
    INTERNATIONAL_USER = "INTERNATIONAL_USER"
    ADMIN = "ADMIN"


class GatedActionName(str, Enum):
    TRADE = "TRADE"
    MINT = "MINT"
    REDEEM = "REDEEM"
    LOAN = "LOAN"
    WALLET_OP = "WALLET_OP"


# ============================================================================
# CUSTOM VALIDATORS
# ============================================================================

def validate_decimal_value(value: Any, field_name: str) -> Decimal:
    """
    Coerce an input value to Decimal under the Zero-Float Mandate.

    Raises:
        ValueError: float input, non-numeric input, too many decimal places
    """
    if value is None:
        raise ValueError(f"[STL-001] {field_name} cannot be None")

    if isinstance(value, float):
        raise ValueError(
            f"[STL-001] {field_name} received float type. "
            f"Send financial values as decimal strings. Received: {value}"
        )

    if isinstance(value, bool) or not isinstance(value, (Decimal, str, int)):
        raise ValueError(
            f"[STL-001] {field_name} must be a decimal string or integer. "
            f"Received: {type(value).__name__}"
        )

    try:
        decimal_value = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"[STL-001] {field_name} is not a valid decimal number: {value!r}")

    if not decimal_value.is_finite():
        raise ValueError(f"[STL-001] {field_name} must be a finite number. Received: {value}")

    exponent = decimal_value.as_tuple().exponent
    if isinstance(exponent, int) and exponent < -MAX_DECIMAL_PLACES:
        raise ValueError(
            f"[STL-001] {field_name} exceeds maximum {MAX_DECIMAL_PLACES} decimal places. "
            f"Received: {value}"
        )

    return decimal_value


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class SubmitIntentRequest(BaseModel):
    """Buy or sell intent at a limit price."""

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {"type": "BUY", "quantity": "10", "limit_price": "110.00"}
        }
    )

    type: IntentSide = Field(..., description="BUY or SELL")
    quantity: Decimal = Field(..., description="Tokens (grams). Decimal string, NO FLOATS.")
    limit_price: Decimal = Field(..., description="Limit price per token. Decimal string.")

    @field_validator("quantity", "limit_price", mode="before")
    @classmethod
    def validate_amounts(cls, v: Any, info) -> Decimal:
        return validate_decimal_value(v, info.field_name)


class MintInitiateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    requested_grams: Decimal = Field(..., description="Grams of vaulted silver to tokenise")

    @field_validator("requested_grams", mode="before")
    @classmethod
    def validate_grams(cls, v: Any) -> Decimal:
        return validate_decimal_value(v, "requested_grams")


class RedemptionSubmitRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    quantity: Decimal = Field(..., description="Tokens to redeem for physical silver")
    delivery_address: str = Field(..., min_length=1, max_length=500)

    @field_validator("quantity", mode="before")
    @classmethod
    def validate_quantity(cls, v: Any) -> Decimal:
        return validate_decimal_value(v, "quantity")


class LoanApplicationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    collateral_grams: Decimal = Field(..., description="Silver grams pledged as collateral")
    requested_amount: Decimal = Field(..., description="Loan principal requested")

    @field_validator("collateral_grams", "requested_amount", mode="before")
    @classmethod
    def validate_amounts(cls, v: Any, info) -> Decimal:
        return validate_decimal_value(v, info.field_name)


class WalletTransferRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    to_address: str = Field(..., min_length=1, max_length=128)
    amount: Decimal = Field(..., description="Tokens to transfer")

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Decimal:
        return validate_decimal_value(v, "amount")


class RegisterAccountRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: str = Field(..., min_length=1, max_length=64)
    role: AccountRole = Field(AccountRole.USER)
    country: Optional[str] = Field(None, max_length=2, description="ISO 3166-1 alpha-2")


class LinkCustodyAddressRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    custody_address: str = Field(..., min_length=1, max_length=128)


class ReasonRequest(BaseModel):
    """Body for admin actions that require a reason."""
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(..., min_length=1, max_length=500)


class OptionalReasonRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: Optional[str] = Field(None, max_length=500)


class DispatchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tracking_number: str = Field(..., min_length=1, max_length=128)


class CustodyAssetRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    vault_id: str = Field(..., min_length=1, max_length=64)
    weight_grams: Decimal = Field(..., description="Unit weight in grams")
    purity: Decimal = Field(Decimal("0.999"), description="Fineness in (0, 1]")
    asset_id: Optional[str] = Field(None, max_length=64)

    @field_validator("weight_grams", "purity", mode="before")
    @classmethod
    def validate_amounts(cls, v: Any, info) -> Decimal:
        return validate_decimal_value(v, info.field_name)


class ReferencePriceRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    price_per_gram: Decimal = Field(..., description="New reference price per gram")

    @field_validator("price_per_gram", mode="before")
    @classmethod
    def validate_price(cls, v: Any) -> Decimal:
        return validate_decimal_value(v, "price_per_gram")


class PauseMintingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    paused: bool


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class AccountResponse(BaseModel):
    account_id: str
    role: str
    kyc_status: str
    aml_status: str
    custody_address: Optional[str] = None
    country: Optional[str] = None
    created_at: str


class EligibilityResponse(BaseModel):
    allowed: bool
    action: str
    account_id: str
    reason: Optional[str] = None


class IntentResponse(BaseModel):
    intent_id: str
    account_id: str
    type: str
    quantity: str
    limit_price: str
    status: str
    created_at: str
    expires_at: str
    claimed_by: Optional[str] = None
    executed_at: Optional[str] = None


class TradeResponse(BaseModel):
    trade_id: str
    buy_intent_id: str
    sell_intent_id: str
    buyer_id: str
    seller_id: str
    quantity: str
    execution_price: str
    status: str
    created_at: str
    tx_ref: Optional[str] = None
    failure_reason: Optional[str] = None
    executed_at: Optional[str] = None


class MatchResponse(BaseModel):
    """Result of a match attempt. trade is None when nothing matched."""
    intent_id: str
    matched: bool
    reason: Optional[str] = None
    trade: Optional[TradeResponse] = None


class PriceLockResponse(BaseModel):
    lock_id: str
    account_id: str
    custody_asset_id: str
    locked_price: str
    status: str
    expires_at: str
    created_at: str


class MintRequestResponse(BaseModel):
    mint_id: str
    owner_id: str
    custody_asset_id: str
    requested_grams: str
    status: str
    price_lock_id: Optional[str] = None
    tx_ref: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: str
    updated_at: str


class MintIntentResponse(BaseModel):
    mint_request: MintRequestResponse
    price_lock: PriceLockResponse
    estimated_tokens: str
    expires_at: str


class RedemptionResponse(BaseModel):
    redemption_id: str
    owner_id: str
    quantity: str
    delivery_address: str
    status: str
    tx_ref: Optional[str] = None
    tracking_number: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: str
    updated_at: str


class LoanResponse(BaseModel):
    loan_id: str
    owner_id: str
    collateral_grams: str
    requested_amount: str
    reference_price: str
    ltv: str
    status: str
    created_at: str
    updated_at: str


class LoanTermsResponse(BaseModel):
    collateral_grams: str
    reference_price: str
    max_loan_amount: str
    requested_amount: str
    interest_rate: str
    term_months: int
    monthly_payment: str


class WalletTransferResponse(BaseModel):
    outcome: str
    tx_ref: Optional[str] = None
    message: Optional[str] = None


class BalanceResponse(BaseModel):
    account_id: str
    custody_address: Optional[str] = None
    balance: str


class CustodyAssetResponse(BaseModel):
    asset_id: str
    vault_id: str
    weight_grams: str
    purity: str
    reserved_by: Optional[str] = None
    created_at: str


class VaultInventoryResponse(BaseModel):
    total_assets: int
    available_assets: int
    total_grams: str
    reserved_grams: str
    available_grams: str
    minted_grams: str


class ReconciliationResponse(BaseModel):
    expected_supply: str
    ledger_supply: str
    difference: str
    balanced: bool


class ReferencePriceResponse(BaseModel):
    price_per_gram: str


class MintingStatusResponse(BaseModel):
    paused: bool


class AuditRecordResponse(BaseModel):
    audit_id: str
    actor_id: str
    action: str
    reference_id: Optional[str] = None
    details: dict
    correlation_id: str
    created_at: str


class AuditHistoryResponse(BaseModel):
    records: List[AuditRecordResponse]
    total: int


# ============================================================================
# END OF SETTLEMENT SCHEMA
# ============================================================================
