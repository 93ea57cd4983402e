"""
============================================================================
Mint Workflow - Custody Silver to Tokens
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Decimal Integrity: Grams and tokens are Decimal, 1 gram = 1 token
Traceability: All operations include correlation_id for audit

MINT LIFECYCLE:
    REQUESTED → APPROVED   (admin executes, price lock consumed)
    APPROVED  → MINTED     (ledger mint succeeded, tx_ref stored)
    APPROVED  → FAILED     (ledger mint failed or timed out, asset released)
    REQUESTED → FAILED     (admin rejection, custody asset released)

    Terminal states: MINTED, FAILED

CUSTODY EXCLUSIVITY:
    initiate_mint_intent() reserves one custody asset for the new request
    with a guarded update on reserved_by. A reserved asset is never offered
    to another mint until its holder reaches FAILED, so at most one
    non-FAILED MintRequest references any asset.

PRICE LOCKS:
    ACTIVE → USED       (consumed when the mint is approved)
    ACTIVE → EXPIRED    (expires_at passed; sweep or execute-time check)
    ACTIVE → CANCELLED  (superseded by a newer lock, or mint rejected)

ERROR CODES:
    - STL-001: Non-positive grams, missing custody address
    - STL-002: Gate denial, non-admin approver
    - STL-003: Wrong status, expired price lock, minting paused
    - STL-004: No unreserved custody asset large enough
    - STL-005: Ledger mint failed or timed out

============================================================================
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
import logging

from services.audit_log import AuditLogger
from services.compliance_gate import ComplianceGate, DenialReason, require_custody_address
from services.ledger_adapter import LedgerAdapter, LedgerError, call_ledger, reserves_proof_for
from services.reference_price import ReferencePriceBook
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
    CustodyAsset,
    GatedAction,
    MintRequest,
    MintStatus,
    PRECISION_QUANTITY,
    PriceLock,
    PriceLockStatus,
    RedemptionRequest,
    RedemptionStatus,
    SYSTEM_ACTOR,
    new_id,
    to_decimal,
    utc_now,
)
from services.settlement_observability import (
    log_settlement_error,
    record_expired,
    record_ledger_failure,
    record_mint_transition,
)
from services.settlement_store import SettlementStore
from services.state_machine import require_transition

# Configure module logger
logger = logging.getLogger(__name__)

MINTING_PAUSED_SETTING = "MINTING_PAUSED"
RECONCILIATION_TOLERANCE = Decimal("0.01")

# Redemption states whose tokens have been burned
_BURNED_REDEMPTION_STATES = (RedemptionStatus.FULFILLED, RedemptionStatus.DISPATCHED)


# =============================================================================
# Result Types
# =============================================================================

@dataclass(frozen=True)
class MintIntent:
    """Outcome of initiate_mint_intent / refresh_price_lock."""
    mint_request: MintRequest
    price_lock: PriceLock
    estimated_tokens: Decimal
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mint_request": self.mint_request.to_dict(),
            "price_lock": self.price_lock.to_dict(),
            "estimated_tokens": str(self.estimated_tokens),
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class VaultInventory:
    """Vault snapshot for the admin dashboard."""
    total_assets: int
    available_assets: int
    total_grams: Decimal
    reserved_grams: Decimal
    available_grams: Decimal
    minted_grams: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_assets": self.total_assets,
            "available_assets": self.available_assets,
            "total_grams": str(self.total_grams),
            "reserved_grams": str(self.reserved_grams),
            "available_grams": str(self.available_grams),
            "minted_grams": str(self.minted_grams),
        }


@dataclass(frozen=True)
class LedgerReconciliation:
    """Expected circulating supply versus the ledger's reported supply."""
    expected_supply: Decimal
    ledger_supply: Decimal
    difference: Decimal
    balanced: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expected_supply": str(self.expected_supply),
            "ledger_supply": str(self.ledger_supply),
            "difference": str(self.difference),
            "balanced": self.balanced,
        }


# =============================================================================
# MintWorkflow Class
# =============================================================================

class MintWorkflow:
    """
    Admin-gated conversion of vaulted silver into tokens.

    Reliability Level: L6 Critical
    Side Effects: Store writes, ledger mints, audit records
    """

    def __init__(
        self,
        store: SettlementStore,
        gate: ComplianceGate,
        ledger: LedgerAdapter,
        audit: AuditLogger,
        prices: ReferencePriceBook,
        config: SettlementConfig,
    ) -> None:
        self._store = store
        self._gate = gate
        self._ledger = ledger
        self._audit = audit
        self._prices = prices
        self._config = config

    # -------------------------------------------------------------------------
    # Initiate
    # -------------------------------------------------------------------------

    def initiate_mint_intent(
        self,
        owner_id: str,
        requested_grams: Decimal,
        correlation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> MintIntent:
        """
        Reserve a custody asset, lock the price and open a REQUESTED mint.

        Raises:
            ValidationError: grams not positive, no custody address
            StateConflict: minting paused
            ComplianceDenied: gate denial
            InventoryExhausted: no unreserved asset with enough weight
        """
        grams = _positive_grams(requested_grams)
        self._require_not_paused()
        account = self._gate.require_eligible(owner_id, GatedAction.MINT, None, correlation_id)
        require_custody_address(account)

        now = now or utc_now()
        price = self._prices.current_price()
        mint_id = new_id()

        with self._store.transaction():
            asset = self._select_asset(grams, correlation_id)
            if not self._store.compare_and_set(
                CustodyAsset, asset.asset_id, {"reserved_by": None}, {"reserved_by": mint_id}
            ):
                raise StateConflict(
                    ConflictReason.CONCURRENT_MODIFICATION,
                    f"Custody asset {asset.asset_id} was reserved concurrently. Retry.",
                    {"asset_id": asset.asset_id},
                )

            lock = self._issue_lock(owner_id, asset.asset_id, price, now, correlation_id)
            mint = MintRequest(
                mint_id=mint_id,
                owner_id=owner_id,
                custody_asset_id=asset.asset_id,
                requested_grams=grams,
                status=MintStatus.REQUESTED,
                price_lock_id=lock.lock_id,
                created_at=now,
                updated_at=now,
            )
            self._store.add(mint)
            self._audit.record(
                owner_id,
                AuditAction.MINT_REQUESTED,
                mint_id,
                {
                    "custody_asset_id": asset.asset_id,
                    "vault_id": asset.vault_id,
                    "requested_grams": grams,
                    "price_lock_id": lock.lock_id,
                    "locked_price": price,
                },
                correlation_id,
            )

        record_mint_transition(MintStatus.REQUESTED.value)
        logger.info(
            f"[MINT-FLOW] Mint requested | mint_id={mint_id} | owner_id={owner_id} | "
            f"grams={grams} | asset_id={asset.asset_id} | lock_id={lock.lock_id} | "
            f"correlation_id={correlation_id}"
        )
        return MintIntent(mint, lock, grams, lock.expires_at)

    def refresh_price_lock(
        self,
        owner_id: str,
        mint_id: str,
        correlation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> MintIntent:
        """
        Issue a fresh price lock for a REQUESTED mint whose lock lapsed.

        The custody asset stays reserved for the same mint request.
        """
        now = now or utc_now()
        mint = self.get_mint_request(mint_id)
        if mint.owner_id != owner_id:
            raise ComplianceDenied(
                DenialReason.NOT_OWNER,
                f"Mint {mint_id} does not belong to {owner_id}",
                {"mint_id": mint_id},
            )
        if mint.status is not MintStatus.REQUESTED:
            raise StateConflict(
                ConflictReason.INVALID_STATE,
                f"Mint {mint_id} is {mint.status.value}; only REQUESTED mints can be re-priced",
                {"mint_id": mint_id, "status": mint.status.value},
            )
        self._require_not_paused()
        self._gate.require_eligible(owner_id, GatedAction.MINT, None, correlation_id)

        current = self._store.get(PriceLock, mint.price_lock_id) if mint.price_lock_id else None
        if current is not None and current.is_live(now):
            raise StateConflict(
                ConflictReason.INVALID_STATE,
                f"Price lock {current.lock_id} is still active until "
                f"{current.expires_at.isoformat()}",
                {"mint_id": mint_id, "lock_id": current.lock_id},
            )

        price = self._prices.current_price()
        with self._store.transaction():
            if current is not None and current.status is PriceLockStatus.ACTIVE:
                self._expire_lock(current, now, correlation_id)
            lock = self._issue_lock(owner_id, mint.custody_asset_id, price, now, correlation_id)
            self._require_cas(
                MintRequest,
                mint_id,
                {"status": MintStatus.REQUESTED, "price_lock_id": mint.price_lock_id},
                {"price_lock_id": lock.lock_id, "updated_at": now},
            )

        logger.info(
            f"[MINT-FLOW] Price lock refreshed | mint_id={mint_id} | lock_id={lock.lock_id} | "
            f"locked_price={price} | correlation_id={correlation_id}"
        )
        return MintIntent(self.get_mint_request(mint_id), lock, mint.requested_grams, lock.expires_at)

    # -------------------------------------------------------------------------
    # Execute / reject
    # -------------------------------------------------------------------------

    async def execute_mint_flow(
        self,
        admin_id: str,
        mint_id: str,
        correlation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> MintRequest:
        """
        Approve a REQUESTED mint and issue tokens on the ledger.

        Raises:
            ComplianceDenied: caller is not an admin, or owner no longer eligible
            StateConflict: mint not REQUESTED, price lock expired, minting paused
            InventoryExhausted: custody asset missing or too light
            LedgerFailure: ledger mint failed or timed out (mint recorded FAILED)
        """
        self._gate.require_admin(admin_id, correlation_id)
        now = now or utc_now()
        mint = self.get_mint_request(mint_id)
        require_transition(mint.status, MintStatus.APPROVED, mint_id, correlation_id)
        self._require_not_paused()

        lock = self._require_live_lock(mint, now, correlation_id)
        asset = self._verify_vault(mint)
        owner = self._gate.require_eligible(mint.owner_id, GatedAction.MINT, None, correlation_id)
        address = require_custody_address(owner)

        with self._store.transaction():
            self._require_cas(
                MintRequest,
                mint_id,
                {"status": MintStatus.REQUESTED},
                {"status": MintStatus.APPROVED, "updated_at": now},
            )
            self._require_cas(
                PriceLock,
                lock.lock_id,
                {"status": PriceLockStatus.ACTIVE},
                {"status": PriceLockStatus.USED},
            )
            self._audit.record(
                admin_id,
                AuditAction.MINT_APPROVED,
                mint_id,
                {"price_lock_id": lock.lock_id, "locked_price": lock.locked_price},
                correlation_id,
            )
        record_mint_transition(MintStatus.APPROVED.value)

        try:
            tx_ref = await call_ledger(
                "mint",
                self._ledger.mint(
                    address, mint.requested_grams, reserves_proof_for(asset.vault_id, asset.asset_id)
                ),
                self._config.ledger_timeout_seconds,
            )
        except LedgerError as e:
            self._record_failure(mint, str(e), correlation_id)
            raise LedgerFailure(
                "LEDGER_MINT_FAILED",
                f"Ledger mint for {mint_id} failed: {e.message}",
                {"mint_id": mint_id},
            ) from e
        except BaseException as e:
            # Cancelled or broken adapter: the mint must not stay APPROVED.
            self._record_failure(mint, f"mint interrupted: {type(e).__name__}", correlation_id)
            raise

        with self._store.transaction():
            self._require_cas(
                MintRequest,
                mint_id,
                {"status": MintStatus.APPROVED},
                {"status": MintStatus.MINTED, "tx_ref": tx_ref, "updated_at": utc_now()},
            )
            self._audit.record(
                admin_id,
                AuditAction.MINT_COMPLETED,
                mint_id,
                {"tx_ref": tx_ref, "tokens": mint.requested_grams, "address": address},
                correlation_id,
            )

        record_mint_transition(MintStatus.MINTED.value)
        logger.info(
            f"[MINT-FLOW] Tokens minted | mint_id={mint_id} | tokens={mint.requested_grams} | "
            f"tx_ref={tx_ref} | admin={admin_id} | correlation_id={correlation_id}"
        )
        return self.get_mint_request(mint_id)

    def reject_mint(
        self,
        admin_id: str,
        mint_id: str,
        reason: str,
        correlation_id: Optional[str] = None,
    ) -> MintRequest:
        self._gate.require_admin(admin_id, correlation_id)
        if not reason or not reason.strip():
            raise ValidationError("REASON_REQUIRED", "A rejection reason is required")
        mint = self.get_mint_request(mint_id)
        require_transition(mint.status, MintStatus.FAILED, mint_id, correlation_id)
        if mint.status is not MintStatus.REQUESTED:
            raise StateConflict(
                ConflictReason.INVALID_STATE,
                f"Mint {mint_id} is {mint.status.value}; only REQUESTED mints can be rejected",
                {"mint_id": mint_id, "status": mint.status.value},
            )

        with self._store.transaction():
            self._require_cas(
                MintRequest,
                mint_id,
                {"status": MintStatus.REQUESTED},
                {"status": MintStatus.FAILED, "failure_reason": reason, "updated_at": utc_now()},
            )
            if mint.price_lock_id:
                self._store.compare_and_set(
                    PriceLock,
                    mint.price_lock_id,
                    {"status": PriceLockStatus.ACTIVE},
                    {"status": PriceLockStatus.CANCELLED},
                )
            self._release_asset(mint)
            self._audit.record(
                admin_id,
                AuditAction.MINT_REJECTED,
                mint_id,
                {"reason": reason},
                correlation_id,
            )

        record_mint_transition(MintStatus.FAILED.value)
        logger.info(
            f"[MINT-FLOW] Mint rejected | mint_id={mint_id} | reason={reason} | "
            f"admin={admin_id} | correlation_id={correlation_id}"
        )
        return self.get_mint_request(mint_id)

    # -------------------------------------------------------------------------
    # Price lock sweep
    # -------------------------------------------------------------------------

    def expire_price_locks(
        self,
        now: Optional[datetime] = None,
        correlation_id: Optional[str] = None,
    ) -> int:
        """ACTIVE locks past expires_at → EXPIRED. Idempotent."""
        now = now or utc_now()
        expired = 0
        for lock in self._store.list(PriceLock, {"status": PriceLockStatus.ACTIVE}):
            if lock.expires_at > now:
                continue
            with self._store.transaction():
                if self._expire_lock(lock, now, correlation_id):
                    expired += 1

        record_expired("price_lock", expired)
        if expired:
            logger.info(
                f"[MINT-FLOW] Expired price locks | count={expired} | "
                f"correlation_id={correlation_id}"
            )
        return expired

    # -------------------------------------------------------------------------
    # Administration / reporting
    # -------------------------------------------------------------------------

    def pause_minting(
        self,
        admin_id: str,
        paused: bool,
        correlation_id: Optional[str] = None,
    ) -> bool:
        self._gate.require_admin(admin_id, correlation_id)
        with self._store.transaction():
            self._store.set_setting(MINTING_PAUSED_SETTING, "true" if paused else "false", admin_id)
            self._audit.record(
                admin_id,
                AuditAction.ADMIN_ACTION,
                MINTING_PAUSED_SETTING,
                {"operation": "PAUSE_MINTING" if paused else "RESUME_MINTING"},
                correlation_id,
            )
        logger.warning(
            f"[MINT-FLOW] Minting {'paused' if paused else 'resumed'} | admin={admin_id} | "
            f"correlation_id={correlation_id}"
        )
        return paused

    def add_custody_asset(
        self,
        admin_id: str,
        vault_id: str,
        weight_grams: Decimal,
        purity: Decimal = Decimal("0.999"),
        asset_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> CustodyAsset:
        """Record a physical silver unit received into the vault."""
        self._gate.require_admin(admin_id, correlation_id)
        if not vault_id or not vault_id.strip():
            raise ValidationError("INVALID_VAULT_ID", "vault_id must not be empty")
        weight = _positive_grams(weight_grams)
        purity = to_decimal(purity, Decimal("0.0001"))
        if not (Decimal("0") < purity <= Decimal("1")):
            raise ValidationError("INVALID_PURITY", f"purity must be in (0, 1], got {purity}")

        asset = CustodyAsset(
            asset_id=asset_id or new_id(),
            vault_id=vault_id.strip(),
            weight_grams=weight,
            purity=purity,
        )
        with self._store.transaction():
            self._store.add(asset)
            self._audit.record(
                admin_id,
                AuditAction.ADMIN_ACTION,
                asset.asset_id,
                {"operation": "ADD_CUSTODY_ASSET", "vault_id": asset.vault_id, "weight_grams": weight},
                correlation_id,
            )
        logger.info(
            f"[MINT-FLOW] Custody asset added | asset_id={asset.asset_id} | "
            f"vault_id={asset.vault_id} | weight_grams={weight} | correlation_id={correlation_id}"
        )
        return asset

    def is_minting_paused(self) -> bool:
        return self._store.get_setting(MINTING_PAUSED_SETTING) == "true"

    def get_vault_inventory(self) -> VaultInventory:
        assets = self._store.list(CustodyAsset)
        reserved = [a for a in assets if a.reserved_by is not None]
        minted = self._store.list(MintRequest, {"status": MintStatus.MINTED})
        total = sum((a.weight_grams for a in assets), Decimal("0"))
        reserved_grams = sum((a.weight_grams for a in reserved), Decimal("0"))
        return VaultInventory(
            total_assets=len(assets),
            available_assets=len(assets) - len(reserved),
            total_grams=total,
            reserved_grams=reserved_grams,
            available_grams=total - reserved_grams,
            minted_grams=sum((m.requested_grams for m in minted), Decimal("0")),
        )

    async def reconcile_ledger(self, correlation_id: Optional[str] = None) -> LedgerReconciliation:
        """Minted grams minus burned redemptions versus ledger total supply."""
        minted = sum(
            (m.requested_grams for m in self._store.list(MintRequest, {"status": MintStatus.MINTED})),
            Decimal("0"),
        )
        burned = sum(
            (
                r.quantity
                for status in _BURNED_REDEMPTION_STATES
                for r in self._store.list(RedemptionRequest, {"status": status})
            ),
            Decimal("0"),
        )
        expected = minted - burned
        try:
            supply = await call_ledger(
                "get_total_supply",
                self._ledger.get_total_supply(),
                self._config.ledger_timeout_seconds,
            )
        except LedgerError as e:
            record_ledger_failure("get_total_supply")
            raise LedgerFailure("LEDGER_SUPPLY_UNAVAILABLE", str(e)) from e

        difference = supply - expected
        balanced = abs(difference) <= RECONCILIATION_TOLERANCE
        if not balanced:
            log_settlement_error(
                SettlementErrorCode.LEDGER_FAILURE,
                "Ledger supply does not match custody records",
                correlation_id,
                {"expected": expected, "ledger": supply, "difference": difference},
            )
        return LedgerReconciliation(expected, supply, difference, balanced)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_mint_request(self, mint_id: str) -> MintRequest:
        mint = self._store.get(MintRequest, mint_id)
        if mint is None:
            raise RecordNotFound("MINT_NOT_FOUND", f"Mint request {mint_id} does not exist")
        return mint

    def get_user_mints(self, owner_id: str) -> List[MintRequest]:
        return self._store.list(
            MintRequest, {"owner_id": owner_id}, order_by="created_at", descending=True
        )

    def get_pending_mints(self) -> List[MintRequest]:
        return self._store.list(MintRequest, {"status": MintStatus.REQUESTED}, order_by="created_at")

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_not_paused(self) -> None:
        if self.is_minting_paused():
            raise StateConflict(ConflictReason.MINTING_PAUSED, "Minting is paused by an administrator")

    def _select_asset(self, grams: Decimal, correlation_id: Optional[str]) -> CustodyAsset:
        fits = [
            a for a in self._store.list(CustodyAsset, {"reserved_by": None})
            if a.weight_grams >= grams
        ]
        if not fits:
            logger.warning(
                f"[{SettlementErrorCode.INVENTORY_EXHAUSTED}] No custody asset for mint | "
                f"grams={grams} | correlation_id={correlation_id}"
            )
            raise InventoryExhausted(
                InventoryReason.INSUFFICIENT_VAULT_INVENTORY,
                f"No unreserved custody asset holds {grams} g",
                {"requested_grams": str(grams)},
            )
        fits.sort(key=lambda a: (a.weight_grams, a.asset_id))
        return fits[0]

    def _issue_lock(
        self,
        owner_id: str,
        asset_id: str,
        price: Decimal,
        now: datetime,
        correlation_id: Optional[str],
    ) -> PriceLock:
        # At most one ACTIVE lock per (account, asset)
        for previous in self._store.list(
            PriceLock,
            {"account_id": owner_id, "custody_asset_id": asset_id, "status": PriceLockStatus.ACTIVE},
        ):
            self._require_cas(
                PriceLock,
                previous.lock_id,
                {"status": PriceLockStatus.ACTIVE},
                {"status": PriceLockStatus.CANCELLED},
            )

        lock = PriceLock(
            lock_id=new_id(),
            account_id=owner_id,
            custody_asset_id=asset_id,
            locked_price=price,
            status=PriceLockStatus.ACTIVE,
            expires_at=now + timedelta(minutes=self._config.price_lock_ttl_minutes),
            created_at=now,
        )
        self._store.add(lock)
        self._audit.record(
            owner_id,
            AuditAction.PRICE_LOCK_CREATED,
            lock.lock_id,
            {"custody_asset_id": asset_id, "locked_price": price, "expires_at": lock.expires_at},
            correlation_id,
        )
        return lock

    def _expire_lock(self, lock: PriceLock, now: datetime, correlation_id: Optional[str]) -> bool:
        if not self._store.compare_and_set(
            PriceLock, lock.lock_id, {"status": PriceLockStatus.ACTIVE}, {"status": PriceLockStatus.EXPIRED}
        ):
            return False
        self._audit.record(
            SYSTEM_ACTOR,
            AuditAction.PRICE_LOCK_EXPIRED,
            lock.lock_id,
            {"expires_at": lock.expires_at, "swept_at": now},
            correlation_id,
        )
        return True

    def _require_live_lock(
        self,
        mint: MintRequest,
        now: datetime,
        correlation_id: Optional[str],
    ) -> PriceLock:
        lock = self._store.get(PriceLock, mint.price_lock_id) if mint.price_lock_id else None
        if lock is None or lock.status is not PriceLockStatus.ACTIVE:
            raise StateConflict(
                ConflictReason.PRICE_LOCK_EXPIRED,
                f"Mint {mint.mint_id} has no active price lock. Refresh the lock first.",
                {"mint_id": mint.mint_id, "lock_id": mint.price_lock_id},
            )
        if not lock.is_live(now):
            with self._store.transaction():
                self._expire_lock(lock, now, correlation_id)
            raise StateConflict(
                ConflictReason.PRICE_LOCK_EXPIRED,
                f"Price lock {lock.lock_id} expired at {lock.expires_at.isoformat()}. "
                f"Refresh the lock first.",
                {"mint_id": mint.mint_id, "lock_id": lock.lock_id},
            )
        return lock

    def _verify_vault(self, mint: MintRequest) -> CustodyAsset:
        asset = self._store.get(CustodyAsset, mint.custody_asset_id)
        if asset is None or asset.weight_grams < mint.requested_grams:
            raise InventoryExhausted(
                InventoryReason.INSUFFICIENT_VAULT_INVENTORY,
                f"Custody asset {mint.custody_asset_id} no longer covers {mint.requested_grams} g",
                {"mint_id": mint.mint_id, "asset_id": mint.custody_asset_id},
            )
        if asset.reserved_by != mint.mint_id:
            raise StateConflict(
                ConflictReason.CONCURRENT_MODIFICATION,
                f"Custody asset {asset.asset_id} is not reserved for mint {mint.mint_id}",
                {"mint_id": mint.mint_id, "asset_id": asset.asset_id},
            )
        return asset

    def _release_asset(self, mint: MintRequest) -> None:
        self._require_cas(
            CustodyAsset,
            mint.custody_asset_id,
            {"reserved_by": mint.mint_id},
            {"reserved_by": None},
        )

    def _record_failure(self, mint: MintRequest, reason: str, correlation_id: Optional[str]) -> None:
        with self._store.transaction():
            self._require_cas(
                MintRequest,
                mint.mint_id,
                {"status": MintStatus.APPROVED},
                {"status": MintStatus.FAILED, "failure_reason": reason, "updated_at": utc_now()},
            )
            self._release_asset(mint)
            self._audit.record(
                SYSTEM_ACTOR,
                AuditAction.MINT_FAILED,
                mint.mint_id,
                {"reason": reason, "custody_asset_id": mint.custody_asset_id},
                correlation_id,
            )
        record_mint_transition(MintStatus.FAILED.value)
        record_ledger_failure("mint")
        log_settlement_error(
            SettlementErrorCode.LEDGER_FAILURE,
            f"Ledger mint failed, custody asset released: {reason}",
            correlation_id,
            {"mint_id": mint.mint_id},
        )

    def _require_cas(self, kind: type, entity_id: str, expected: dict, updates: dict) -> None:
        if not self._store.compare_and_set(kind, entity_id, expected, updates):
            raise StateConflict(
                ConflictReason.CONCURRENT_MODIFICATION,
                f"{kind.__name__} {entity_id} changed concurrently. Reload and retry.",
                {"reference_id": entity_id},
            )


def _positive_grams(value: Decimal) -> Decimal:
    try:
        grams = to_decimal(value, PRECISION_QUANTITY)
    except (InvalidOperation, ValueError):
        raise ValidationError("INVALID_GRAMS", f"requested_grams is not a number: {value!r}") from None
    if grams <= Decimal("0"):
        raise ValidationError("INVALID_GRAMS", f"requested_grams must be positive, got {value}")
    return grams


__all__ = [
    "MintIntent",
    "VaultInventory",
    "LedgerReconciliation",
    "MintWorkflow",
    "MINTING_PAUSED_SETTING",
    "RECONCILIATION_TOLERANCE",
]
