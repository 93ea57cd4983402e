"""
============================================================================
Silver Settlement Core
FastAPI Application Entry Point - Settlement API
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: Bearer-authenticated JSON requests
Side Effects: Database writes, ledger calls, append-only audit trail

SOVEREIGN MANDATE:
- Every money movement passes the Compliance Gate
- Zero tolerance for floating-point math
- Every transition guarded, audited and traceable by correlation_id
- Ledger failures are recorded durably before they are reported

STARTUP:
- Load and validate settlement configuration (STL-040 on failure)
- Build services over the SQL store and the ledger adapter
- Seed the bootstrap administrator (SETTLEMENT_BOOTSTRAP_ADMIN_ID)
- Start the expiry worker (intents and price locks)

============================================================================
"""

import os
import time
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from app.api.accounts import router as accounts_router
from app.api.admin import router as admin_router
from app.api.dependencies import error_body, reset_services, set_services, status_for_error
from app.api.loans import router as loans_router
from app.api.mint import router as mint_router
from app.api.redemption import router as redemption_router
from app.api.trading import router as trading_router
from app.database.session import get_store, reset_engine
from app.observability.metrics import record_http_request, update_reference_price
from services.ledger_adapter import InMemoryLedger
from services.settlement_config import get_settlement_config
from services.settlement_core import SettlementServices, build_settlement_services
from services.settlement_errors import SettlementError

# Load environment variables
load_dotenv()

# Configure module logger
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# ============================================================================
# SERVICE CONSTRUCTION
# ============================================================================

def build_default_services() -> SettlementServices:
    """
    Services for a running server: SQL store from DATABASE_URL and the
    in-process ledger.

    Raises:
        SettlementConfigurationError: invalid configuration (STL-040)
    """
    config = get_settlement_config()
    return build_settlement_services(get_store(), InMemoryLedger(), config)


def _env_flag(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() in ("true", "1", "yes", "on")


# ============================================================================
# APPLICATION FACTORY
# ============================================================================

def create_app(
    services: Optional[SettlementServices] = None,
    start_expiry_worker: Optional[bool] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Prebuilt services (tests); None builds the defaults at startup
        start_expiry_worker: Override SETTLEMENT_EXPIRY_WORKER_ENABLED
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager for startup/shutdown events.

        Startup:
            - Build services (fails closed on bad configuration)
            - Seed bootstrap admin
            - Start expiry worker
        Shutdown:
            - Stop expiry worker
            - Dispose database engine
        """
        print("=" * 60)
        print(f"SILVER SETTLEMENT CORE v{VERSION}")
        print("=" * 60)
        print(f"Startup Time: {datetime.now(timezone.utc).isoformat()}")

        owns_services = services is None
        active = services if services is not None else build_default_services()
        set_services(active)
        app.state.services = active
        print(f"[OK] Settlement services built | store={type(active.store).__name__}")

        bootstrap_admin = os.getenv("SETTLEMENT_BOOTSTRAP_ADMIN_ID", "").strip()
        if bootstrap_admin:
            active.gate.seed_admin(bootstrap_admin)
            print(f"[OK] Bootstrap admin ready | account_id={bootstrap_admin}")
        else:
            print("[INFO] No SETTLEMENT_BOOTSTRAP_ADMIN_ID set; admin seeding skipped")

        update_reference_price(active.prices.current_price(), "STARTUP_INIT")

        run_worker = (
            start_expiry_worker
            if start_expiry_worker is not None
            else _env_flag("SETTLEMENT_EXPIRY_WORKER_ENABLED", True)
        )
        if run_worker:
            await active.expiry_worker.start()
            print(
                f"[OK] Expiry worker started | "
                f"interval={active.expiry_worker.interval_seconds}s"
            )

        print("=" * 60)

        yield

        # Shutdown
        if active.expiry_worker.is_running:
            await active.expiry_worker.stop()
            print("[OK] Expiry worker stopped")

        reset_services()
        if owns_services:
            reset_engine()
            print("[OK] Database connections closed")
        print("=" * 60)

    app = FastAPI(
        title="Silver Settlement Core",
        description=(
            "Compliance-gated settlement for a silver-backed token.\n\n"
            "Trade intents with ledger settlement, custody-backed minting, "
            "physical redemption and silver-collateralised loans.\n\n"
            "**Authentication:** Authorization: Bearer <account_id>"
        ),
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # ========================================================================
    # MIDDLEWARE
    # ========================================================================

    # CORS middleware (restrict in production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def http_metrics(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        route = request.scope.get("route")
        record_http_request(
            request.method,
            getattr(route, "path", "unmatched"),
            response.status_code,
            time.perf_counter() - started,
        )
        return response

    # ========================================================================
    # EXCEPTION HANDLERS
    # ========================================================================

    @app.exception_handler(SettlementError)
    async def settlement_error_handler(request: Request, exc: SettlementError):
        """Map settlement errors to their HTTP status with a stable body."""
        correlation_id = getattr(request.state, "correlation_id", None)
        status_code = status_for_error(exc)
        logger.warning(
            f"[{exc.error_code}] {exc.reason} | status={status_code} | "
            f"path={request.url.path} | correlation_id={correlation_id}"
        )
        return JSONResponse(status_code=status_code, content=error_body(exc, correlation_id))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Global exception handler for unhandled errors.

        SOVEREIGN MANDATE: No silent failures
        """
        error_code = "SYS-500"
        logger.exception(f"[{error_code}] Unhandled exception: {exc}")

        return JSONResponse(
            status_code=500,
            content={
                "error_code": error_code,
                "message": "Internal server error. This incident has been logged.",
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )

    # ========================================================================
    # ROUTERS
    # ========================================================================

    app.include_router(accounts_router, prefix="/api/accounts", tags=["Accounts"])
    app.include_router(trading_router, prefix="/api/trading", tags=["Trading"])
    app.include_router(mint_router, prefix="/api/mint", tags=["Mint"])
    app.include_router(redemption_router, prefix="/api/redemptions", tags=["Redemption"])
    app.include_router(loans_router, prefix="/api/loans", tags=["Loans"])
    app.include_router(admin_router, prefix="/api/admin", tags=["Admin"])

    # ========================================================================
    # SYSTEM ENDPOINTS
    # ========================================================================

    @app.get(
        "/",
        summary="System Status",
        description="Returns the current system status.",
        tags=["System"]
    )
    async def root():
        active: Optional[SettlementServices] = getattr(app.state, "services", None)
        return {
            "system": "Silver Settlement Core",
            "version": VERSION,
            "status": "operational" if active is not None else "starting",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {
                "store": type(active.store).__name__ if active else None,
                "ledger": type(active.ledger).__name__ if active else None,
                "expiry_worker": bool(active and active.expiry_worker.is_running),
                "wallet_transfers": bool(active and active.config.wallet_transfers_enabled),
            },
        }

    @app.get(
        "/health",
        summary="Health Check",
        description="Lightweight health check for load balancers and monitoring.",
        tags=["System"]
    )
    async def health_check():
        active: Optional[SettlementServices] = getattr(app.state, "services", None)
        if active is None:
            return JSONResponse(status_code=503, content={"status": "starting"})
        try:
            active.store.get_setting("HEALTH_CHECK")
            return {"status": "healthy", "store": "connected"}
        except Exception as e:
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "store": "disconnected", "error": str(e)}
            )

    @app.get(
        "/metrics",
        summary="Prometheus Metrics",
        description="Exposes Prometheus metrics for observability.",
        tags=["Observability"]
    )
    async def metrics():
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST
        )

    return app


app = create_app()


# ============================================================================
# END OF MAIN APPLICATION
# ============================================================================
