"""
============================================================================
Settlement Core - Configuration
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Decimal Integrity: All financial values use decimal.Decimal with ROUND_HALF_EVEN
Traceability: Configuration loading is logged

This module provides configuration management for the settlement core:
- Environment variable parsing with type safety
- Default values for optional configuration
- Validation with fail-closed behaviour (STL-040)

ENVIRONMENT VARIABLES:
    - SETTLEMENT_INTENT_TTL_HOURS: Trade intent lifetime (default: 24)
    - SETTLEMENT_PRICE_LOCK_TTL_MINUTES: Mint price lock lifetime (default: 15)
    - SETTLEMENT_MAX_LTV: Maximum loan-to-value ratio (default: 0.50)
    - SETTLEMENT_REFERENCE_PRICE_PER_GRAM: Starting reference price (default: 50.00)
    - SETTLEMENT_DOMESTIC_TRADE_LIMIT: Per-trade notional cap, DOMESTIC_USER (default: 1000)
    - SETTLEMENT_INTERNATIONAL_TRADE_LIMIT: Per-trade notional cap, INTERNATIONAL_USER (default: 5000)
    - SETTLEMENT_EXPIRY_INTERVAL_SECONDS: Expiry sweep interval (default: 60)
    - SETTLEMENT_LEDGER_TIMEOUT_SECONDS: Deadline for each ledger call (default: 30)
    - WALLET_TRANSFERS_ENABLED: Allow user-initiated custody transfers (default: false)

ERROR CODES:
    - STL-040: Required configuration missing or invalid

============================================================================
"""

from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation
from typing import Optional, List
from dataclasses import dataclass, field
import logging
import os

from services.settlement_errors import SettlementConfigurationError, SettlementErrorCode

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

PRECISION_RATIO = Decimal("0.0001")     # 4 decimal places for LTV
PRECISION_AMOUNT = Decimal("0.00000001")  # 8 decimal places for money/grams


# =============================================================================
# Default Values
# =============================================================================

DEFAULT_INTENT_TTL_HOURS = 24
DEFAULT_PRICE_LOCK_TTL_MINUTES = 15
DEFAULT_MAX_LTV = Decimal("0.50")
DEFAULT_REFERENCE_PRICE_PER_GRAM = Decimal("50.00")
DEFAULT_DOMESTIC_TRADE_LIMIT = Decimal("1000")
DEFAULT_INTERNATIONAL_TRADE_LIMIT = Decimal("5000")
DEFAULT_EXPIRY_INTERVAL_SECONDS = 60
DEFAULT_LEDGER_TIMEOUT_SECONDS = 30.0
DEFAULT_WALLET_TRANSFERS_ENABLED = False


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "true" if default else "false").lower().strip()
    return value in ("true", "1", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, str(default))
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning(
            f"[SETTLEMENT-CONFIG] Invalid {name} value: {raw}, "
            f"using default: {default}"
        )
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, str(default))
    try:
        return float(raw.strip())
    except ValueError:
        logger.warning(
            f"[SETTLEMENT-CONFIG] Invalid {name} value: {raw}, "
            f"using default: {default}"
        )
        return default


def _env_decimal(name: str, default: Decimal, precision: Decimal) -> Decimal:
    raw = os.environ.get(name, str(default))
    try:
        return Decimal(raw.strip()).quantize(precision, rounding=ROUND_HALF_EVEN)
    except (InvalidOperation, ValueError):
        logger.warning(
            f"[SETTLEMENT-CONFIG] Invalid {name} value: {raw}, "
            f"using default: {default}"
        )
        return default


# =============================================================================
# SettlementConfig Class
# =============================================================================

@dataclass
class SettlementConfig:
    """
    Settlement core configuration.

    ============================================================================
    CONFIGURATION PARAMETERS:
    ============================================================================
    - intent_ttl_hours: Trade intent expiry horizon (default: 24)
    - price_lock_ttl_minutes: Price lock expiry horizon (default: 15)
    - max_ltv: Loan-to-value cap (default: 0.50)
    - reference_price_per_gram: Initial reference price (default: 50.00)
    - domestic_trade_limit: Notional cap for DOMESTIC_USER (default: 1000)
    - international_trade_limit: Notional cap for INTERNATIONAL_USER (default: 5000)
    - expiry_interval_seconds: Sweep interval for the expiry worker (default: 60)
    - ledger_timeout_seconds: Deadline for each ledger call (default: 30)
    - wallet_transfers_enabled: User-initiated custody transfers (default: False)
    ============================================================================

    Reliability Level: L6 Critical (Sovereign Tier)
    Side Effects: Logs configuration on load
    """

    intent_ttl_hours: int = DEFAULT_INTENT_TTL_HOURS
    price_lock_ttl_minutes: int = DEFAULT_PRICE_LOCK_TTL_MINUTES
    max_ltv: Decimal = field(default_factory=lambda: DEFAULT_MAX_LTV)
    reference_price_per_gram: Decimal = field(
        default_factory=lambda: DEFAULT_REFERENCE_PRICE_PER_GRAM
    )
    domestic_trade_limit: Decimal = field(default_factory=lambda: DEFAULT_DOMESTIC_TRADE_LIMIT)
    international_trade_limit: Decimal = field(
        default_factory=lambda: DEFAULT_INTERNATIONAL_TRADE_LIMIT
    )
    expiry_interval_seconds: int = DEFAULT_EXPIRY_INTERVAL_SECONDS
    ledger_timeout_seconds: float = DEFAULT_LEDGER_TIMEOUT_SECONDS
    wallet_transfers_enabled: bool = DEFAULT_WALLET_TRANSFERS_ENABLED

    def __post_init__(self) -> None:
        # Coerce and quantize Decimal fields with ROUND_HALF_EVEN
        self.max_ltv = Decimal(str(self.max_ltv)).quantize(
            PRECISION_RATIO, rounding=ROUND_HALF_EVEN
        )
        self.reference_price_per_gram = Decimal(str(self.reference_price_per_gram)).quantize(
            PRECISION_AMOUNT, rounding=ROUND_HALF_EVEN
        )
        self.domestic_trade_limit = Decimal(str(self.domestic_trade_limit)).quantize(
            PRECISION_AMOUNT, rounding=ROUND_HALF_EVEN
        )
        self.international_trade_limit = Decimal(str(self.international_trade_limit)).quantize(
            PRECISION_AMOUNT, rounding=ROUND_HALF_EVEN
        )

    def validate(self) -> None:
        """
        Validate configuration completeness.

        Raises:
            SettlementConfigurationError: If any value is out of range (STL-040)
        """
        errors: List[str] = []

        if self.intent_ttl_hours <= 0:
            errors.append(
                f"SETTLEMENT_INTENT_TTL_HOURS must be positive, got: {self.intent_ttl_hours}"
            )
        if self.price_lock_ttl_minutes <= 0:
            errors.append(
                f"SETTLEMENT_PRICE_LOCK_TTL_MINUTES must be positive, "
                f"got: {self.price_lock_ttl_minutes}"
            )
        if not (Decimal("0") < self.max_ltv <= Decimal("1")):
            errors.append(f"SETTLEMENT_MAX_LTV must be in (0, 1], got: {self.max_ltv}")
        if self.reference_price_per_gram <= Decimal("0"):
            errors.append(
                f"SETTLEMENT_REFERENCE_PRICE_PER_GRAM must be positive, "
                f"got: {self.reference_price_per_gram}"
            )
        if self.domestic_trade_limit <= Decimal("0") or self.international_trade_limit <= Decimal("0"):
            errors.append("Trade notional limits must be positive")
        if self.expiry_interval_seconds <= 0:
            errors.append(
                f"SETTLEMENT_EXPIRY_INTERVAL_SECONDS must be positive, "
                f"got: {self.expiry_interval_seconds}"
            )
        if self.ledger_timeout_seconds <= 0:
            errors.append(
                f"SETTLEMENT_LEDGER_TIMEOUT_SECONDS must be positive, "
                f"got: {self.ledger_timeout_seconds}"
            )

        if errors:
            error_msg = "Settlement configuration validation failed: " + "; ".join(errors)
            logger.error(f"[{SettlementErrorCode.CONFIG_MISSING}] {error_msg}")
            raise SettlementConfigurationError(error_msg)

        logger.info(
            f"[SETTLEMENT-CONFIG] Configuration validated | "
            f"intent_ttl_hours={self.intent_ttl_hours} | "
            f"price_lock_ttl_minutes={self.price_lock_ttl_minutes} | "
            f"max_ltv={self.max_ltv} | "
            f"reference_price_per_gram={self.reference_price_per_gram}"
        )

    @classmethod
    def from_environment(cls, validate: bool = True) -> "SettlementConfig":
        """
        Load configuration from environment variables.

        Args:
            validate: Whether to validate configuration after loading (default: True)

        Returns:
            SettlementConfig instance with values from environment

        Raises:
            SettlementConfigurationError: If configuration is invalid (STL-040)
        """
        config = cls(
            intent_ttl_hours=_env_int("SETTLEMENT_INTENT_TTL_HOURS", DEFAULT_INTENT_TTL_HOURS),
            price_lock_ttl_minutes=_env_int(
                "SETTLEMENT_PRICE_LOCK_TTL_MINUTES", DEFAULT_PRICE_LOCK_TTL_MINUTES
            ),
            max_ltv=_env_decimal("SETTLEMENT_MAX_LTV", DEFAULT_MAX_LTV, PRECISION_RATIO),
            reference_price_per_gram=_env_decimal(
                "SETTLEMENT_REFERENCE_PRICE_PER_GRAM",
                DEFAULT_REFERENCE_PRICE_PER_GRAM,
                PRECISION_AMOUNT,
            ),
            domestic_trade_limit=_env_decimal(
                "SETTLEMENT_DOMESTIC_TRADE_LIMIT", DEFAULT_DOMESTIC_TRADE_LIMIT, PRECISION_AMOUNT
            ),
            international_trade_limit=_env_decimal(
                "SETTLEMENT_INTERNATIONAL_TRADE_LIMIT",
                DEFAULT_INTERNATIONAL_TRADE_LIMIT,
                PRECISION_AMOUNT,
            ),
            expiry_interval_seconds=_env_int(
                "SETTLEMENT_EXPIRY_INTERVAL_SECONDS", DEFAULT_EXPIRY_INTERVAL_SECONDS
            ),
            ledger_timeout_seconds=_env_float(
                "SETTLEMENT_LEDGER_TIMEOUT_SECONDS", DEFAULT_LEDGER_TIMEOUT_SECONDS
            ),
            wallet_transfers_enabled=_env_bool(
                "WALLET_TRANSFERS_ENABLED", DEFAULT_WALLET_TRANSFERS_ENABLED
            ),
        )

        logger.info(
            f"[SETTLEMENT-CONFIG] Loading configuration from environment | "
            f"intent_ttl_hours={config.intent_ttl_hours} | "
            f"expiry_interval_seconds={config.expiry_interval_seconds} | "
            f"ledger_timeout_seconds={config.ledger_timeout_seconds} | "
            f"wallet_transfers_enabled={config.wallet_transfers_enabled}"
        )

        if validate:
            config.validate()

        return config

    def to_dict(self) -> dict:
        """Convert configuration to dictionary for serialization/logging."""
        return {
            "intent_ttl_hours": self.intent_ttl_hours,
            "price_lock_ttl_minutes": self.price_lock_ttl_minutes,
            "max_ltv": str(self.max_ltv),
            "reference_price_per_gram": str(self.reference_price_per_gram),
            "domestic_trade_limit": str(self.domestic_trade_limit),
            "international_trade_limit": str(self.international_trade_limit),
            "expiry_interval_seconds": self.expiry_interval_seconds,
            "ledger_timeout_seconds": self.ledger_timeout_seconds,
            "wallet_transfers_enabled": self.wallet_transfers_enabled,
        }


# =============================================================================
# Module-Level Configuration Instance
# =============================================================================

_config_instance: Optional[SettlementConfig] = None


def get_settlement_config(validate: bool = True) -> SettlementConfig:
    """
    Get the global settlement configuration, loading from the environment
    on first access.
    """
    global _config_instance

    if _config_instance is None:
        _config_instance = SettlementConfig.from_environment(validate=validate)

    return _config_instance


def reset_settlement_config() -> None:
    """Reset the global configuration instance (for testing)."""
    global _config_instance
    _config_instance = None
    logger.debug("[SETTLEMENT-CONFIG] Configuration instance reset")


__all__ = [
    "SettlementConfig",
    "SettlementConfigurationError",
    "DEFAULT_INTENT_TTL_HOURS",
    "DEFAULT_PRICE_LOCK_TTL_MINUTES",
    "DEFAULT_MAX_LTV",
    "DEFAULT_REFERENCE_PRICE_PER_GRAM",
    "DEFAULT_LEDGER_TIMEOUT_SECONDS",
    "PRECISION_AMOUNT",
    "get_settlement_config",
    "reset_settlement_config",
]
