# ============================================================================
# Silver Settlement Core
# Pydantic Schemas - Data Validation Layer
# ============================================================================

from app.schemas.settlement import (
    SubmitIntentRequest,
    MintInitiateRequest,
    RedemptionSubmitRequest,
    LoanApplicationRequest,
    WalletTransferRequest,
    RegisterAccountRequest,
    LinkCustodyAddressRequest,
    ReasonRequest,
    OptionalReasonRequest,
    DispatchRequest,
    CustodyAssetRequest,
    ReferencePriceRequest,
    PauseMintingRequest,
    AccountResponse,
    IntentResponse,
    TradeResponse,
    MatchResponse,
    MintIntentResponse,
    MintRequestResponse,
    RedemptionResponse,
    LoanResponse,
    LoanTermsResponse,
    WalletTransferResponse,
    validate_decimal_value,
)

__all__ = [
    "SubmitIntentRequest",
    "MintInitiateRequest",
    "RedemptionSubmitRequest",
    "LoanApplicationRequest",
    "WalletTransferRequest",
    "RegisterAccountRequest",
    "LinkCustodyAddressRequest",
    "ReasonRequest",
    "OptionalReasonRequest",
    "DispatchRequest",
    "CustodyAssetRequest",
    "ReferencePriceRequest",
    "PauseMintingRequest",
    "AccountResponse",
    "IntentResponse",
    "TradeResponse",
    "MatchResponse",
    "MintIntentResponse",
    "MintRequestResponse",
    "RedemptionResponse",
    "LoanResponse",
    "LoanTermsResponse",
    "WalletTransferResponse",
    "validate_decimal_value",
]
