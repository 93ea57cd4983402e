"""
============================================================================
Ledger Adapter - Opaque Token Ledger Interface
============================================================================

Reliability Level: L6 Critical (Sovereign Tier)
Decimal Integrity: Amounts are Decimal quantised to 8 places (1 gram = 1 token)
Traceability: Every ledger call is logged with its tx_ref

OPERATIONS (all async):
    mint(address, amount, reserves_proof) -> tx_ref
    burn(address, amount)                 -> tx_ref
    transfer(from_address, to_address, amount) -> tx_ref
    get_balance(address)                  -> Decimal
    get_total_supply()                    -> Decimal

Implementations raise LedgerError on any failure. Workflows never call the
ledger while a store transaction is open. Every workflow call goes through
call_ledger(), which bounds it by SETTLEMENT_LEDGER_TIMEOUT_SECONDS and turns
a timeout into LedgerError, so a hung ledger ends in the same durable
FAILED/REJECTED record plus LedgerFailure as a refused call.

The InMemoryLedger is the reference implementation used by tests and local
runs. It mirrors the DemoBroker approach: a full in-process simulation with
fault injection instead of a network client.

============================================================================
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Awaitable, Dict, List, Optional, Set, TypeVar
import asyncio
import logging
import threading
import uuid

from services.settlement_models import PRECISION_QUANTITY, to_decimal

# Configure module logger
logger = logging.getLogger(__name__)

ZERO = Decimal("0")

T = TypeVar("T")


class LedgerError(Exception):
    """Ledger call failed (rejected, insufficient funds, unreachable)."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = message
        super().__init__(f"{operation}: {message}")


def reserves_proof_for(vault_id: str, asset_id: str) -> str:
    """Proof-of-reserves reference attached to a mint."""
    return f"vault-{vault_id}-asset-{asset_id}"


async def call_ledger(operation: str, call: Awaitable[T], timeout_seconds: float) -> T:
    """
    Await a ledger call under a deadline.

    A call that runs past timeout_seconds, or that raises a timeout itself,
    surfaces as LedgerError(operation, ...).
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout_seconds)
    except (asyncio.TimeoutError, TimeoutError) as e:
        logger.warning(
            f"[LEDGER] {operation} timed out | timeout_seconds={timeout_seconds}"
        )
        raise LedgerError(operation, f"timed out after {timeout_seconds}s") from e


# =============================================================================
# LedgerAdapter Interface
# =============================================================================

class LedgerAdapter(ABC):
    """Token ledger seen by the settlement core."""

    @abstractmethod
    async def mint(self, address: str, amount: Decimal, reserves_proof: str) -> str:
        """Credit newly issued tokens to address. Returns tx_ref."""

    @abstractmethod
    async def burn(self, address: str, amount: Decimal) -> str:
        """Destroy tokens held by address. Returns tx_ref."""

    @abstractmethod
    async def transfer(self, from_address: str, to_address: str, amount: Decimal) -> str:
        """Move tokens between addresses. Returns tx_ref."""

    @abstractmethod
    async def get_balance(self, address: str) -> Decimal:
        """Current token balance of address."""

    @abstractmethod
    async def get_total_supply(self) -> Decimal:
        """Total tokens in circulation."""


# =============================================================================
# InMemoryLedger
# =============================================================================

class InMemoryLedger(LedgerAdapter):
    """
    In-process token ledger.

    Balances are guarded by a threading lock so the ledger can be shared by
    request handlers running on different event loops. Each call yields to
    the event loop once before touching state, which lets concurrent
    settlements interleave in tests.

    Fault injection:
        ledger.fail_operations.add("transfer")   # every transfer raises
        ledger.fail_next("mint")                  # only the next mint raises
        ledger.hang_operations.add("burn")       # every burn waits forever
    """

    def __init__(self, latency_seconds: float = 0.0) -> None:
        self._balances: Dict[str, Decimal] = {}
        self._total_supply = ZERO
        self._lock = threading.Lock()
        self._latency_seconds = latency_seconds
        self.fail_operations: Set[str] = set()
        self.hang_operations: Set[str] = set()
        self._fail_once: List[str] = []
        self.transactions: List[Dict[str, str]] = []

        logger.info("[LEDGER] In-memory ledger initialized")

    def fail_next(self, operation: str) -> None:
        self._fail_once.append(operation)

    async def _enter(self, operation: str) -> None:
        await asyncio.sleep(self._latency_seconds)
        if operation in self.hang_operations:
            await asyncio.Event().wait()
        if operation in self.fail_operations:
            raise LedgerError(operation, "ledger unavailable")
        if operation in self._fail_once:
            self._fail_once.remove(operation)
            raise LedgerError(operation, "ledger unavailable")

    def _commit(self, operation: str, **fields: str) -> str:
        tx_ref = f"tx-{uuid.uuid4().hex}"
        self.transactions.append({"tx_ref": tx_ref, "operation": operation, **fields})
        logger.info(
            f"[LEDGER] {operation} committed | tx_ref={tx_ref} | "
            + " | ".join(f"{k}={v}" for k, v in fields.items())
        )
        return tx_ref

    @staticmethod
    def _amount(operation: str, amount: Decimal) -> Decimal:
        value = to_decimal(amount, PRECISION_QUANTITY)
        if value <= ZERO:
            raise LedgerError(operation, f"amount must be positive, got {amount}")
        return value

    async def mint(self, address: str, amount: Decimal, reserves_proof: str) -> str:
        await self._enter("mint")
        value = self._amount("mint", amount)
        with self._lock:
            self._balances[address] = self._balances.get(address, ZERO) + value
            self._total_supply += value
            return self._commit(
                "mint", address=address, amount=str(value), reserves_proof=reserves_proof
            )

    async def burn(self, address: str, amount: Decimal) -> str:
        await self._enter("burn")
        value = self._amount("burn", amount)
        with self._lock:
            balance = self._balances.get(address, ZERO)
            if balance < value:
                raise LedgerError("burn", f"insufficient balance {balance} < {value}")
            self._balances[address] = balance - value
            self._total_supply -= value
            return self._commit("burn", address=address, amount=str(value))

    async def transfer(self, from_address: str, to_address: str, amount: Decimal) -> str:
        await self._enter("transfer")
        value = self._amount("transfer", amount)
        with self._lock:
            balance = self._balances.get(from_address, ZERO)
            if balance < value:
                raise LedgerError("transfer", f"insufficient balance {balance} < {value}")
            self._balances[from_address] = balance - value
            self._balances[to_address] = self._balances.get(to_address, ZERO) + value
            return self._commit(
                "transfer", from_address=from_address, to_address=to_address, amount=str(value)
            )

    async def get_balance(self, address: str) -> Decimal:
        await self._enter("get_balance")
        with self._lock:
            return self._balances.get(address, ZERO)

    async def get_total_supply(self) -> Decimal:
        await self._enter("get_total_supply")
        with self._lock:
            return self._total_supply

    def peek_balance(self, address: Optional[str]) -> Decimal:
        """Synchronous balance read for tests and diagnostics."""
        if address is None:
            return ZERO
        with self._lock:
            return self._balances.get(address, ZERO)


__all__ = [
    "LedgerError",
    "LedgerAdapter",
    "InMemoryLedger",
    "call_ledger",
    "reserves_proof_for",
]
