"""
============================================================================
Silver Settlement Core
Shared pytest fixtures
============================================================================

Provides:
- In-memory settlement services (store + ledger) per test
- A seeded bootstrap administrator
- onboard(): register, link custody address, pass KYC
- stock(): add a custody asset to the vault

No database, no network. Every fixture builds fresh state.
============================================================================
"""

import os
import sys
from decimal import Decimal
from typing import Callable, Optional

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from services.ledger_adapter import InMemoryLedger
from services.settlement_config import SettlementConfig, reset_settlement_config
from services.settlement_core import SettlementServices, build_settlement_services
from services.settlement_models import Account, CustodyAsset, Role
from services.settlement_store import InMemorySettlementStore

ADMIN_ID = "admin-root"


def address_for(account_id: str) -> str:
    return f"custody-{account_id}"


def onboard_account(
    services: SettlementServices,
    account_id: str,
    role: Role = Role.USER,
    custody_address: Optional[str] = None,
    verify: bool = True,
) -> Account:
    """Register an account through the admin paths and (optionally) verify KYC."""
    gate = services.gate
    gate.register_account(ADMIN_ID, account_id, role)
    gate.link_custody_address(ADMIN_ID, account_id, custody_address or address_for(account_id))
    if verify:
        gate.start_kyc(account_id, account_id)
        gate.approve_kyc(ADMIN_ID, account_id)
    return gate.load_account(account_id)


def build_services(config: Optional[SettlementConfig] = None) -> SettlementServices:
    services = build_settlement_services(
        InMemorySettlementStore(), InMemoryLedger(), config or SettlementConfig()
    )
    services.gate.seed_admin(ADMIN_ID)
    return services


@pytest.fixture(autouse=True)
def _fresh_settlement_config():
    reset_settlement_config()
    yield
    reset_settlement_config()


@pytest.fixture
def config() -> SettlementConfig:
    return SettlementConfig()


@pytest.fixture
def services(config: SettlementConfig) -> SettlementServices:
    return build_services(config)


@pytest.fixture
def ledger(services: SettlementServices) -> InMemoryLedger:
    return services.ledger


@pytest.fixture
def admin_id(services: SettlementServices) -> str:
    return ADMIN_ID


@pytest.fixture
def onboard(services: SettlementServices) -> Callable[..., Account]:
    def _onboard(account_id: str, role: Role = Role.USER, **kwargs) -> Account:
        return onboard_account(services, account_id, role, **kwargs)
    return _onboard


@pytest.fixture
def stock(services: SettlementServices) -> Callable[..., CustodyAsset]:
    def _stock(weight_grams: str, vault_id: str = "vault-jhb", asset_id: Optional[str] = None) -> CustodyAsset:
        return services.mints.add_custody_asset(
            ADMIN_ID, vault_id, Decimal(weight_grams), asset_id=asset_id
        )
    return _stock
