"""
============================================================================
Silver Settlement Core
Database Session - SQLAlchemy Engine & Settlement Store
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: DATABASE_URL (or DB_* parts) from environment / .env
Side Effects: Database connections

SOVEREIGN MANDATE:
- One engine per process, created lazily on first use
- Connection pooling for PostgreSQL
- All PostgreSQL sessions run in UTC

============================================================================
"""

import os
from typing import Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool
from dotenv import load_dotenv

from services.sql_store import SqlSettlementStore

# Load environment variables
load_dotenv()


# ============================================================================
# DATABASE CONFIGURATION
# ============================================================================

def get_database_url() -> str:
    """
    Resolve the database URL.

    Reliability Level: SOVEREIGN TIER
    Side Effects: Reads from environment

    Environment Variables:
        DATABASE_URL: Full SQLAlchemy URL (wins when set)
        DB_HOST: Database host (default: localhost)
        DB_PORT: Database port (default: 5432)
        DB_NAME: Database name (default: silver_settlement)
        DB_USER: Database user (default: settlement_app)
        DB_PASSWORD: Database password
    """
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "5432")
    name = os.getenv("DB_NAME", "silver_settlement")
    user = os.getenv("DB_USER", "settlement_app")
    password = os.getenv("DB_PASSWORD", "")

    return f"postgresql://{user}:{password}@{host}:{port}/{name}"


# ============================================================================
# SQLALCHEMY ENGINE
# ============================================================================

_engine: Optional[Engine] = None


def _build_engine(url: str) -> Engine:
    echo = os.getenv("DB_ECHO", "false").lower() == "true"

    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )

    built = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=10,           # Maintain 10 connections
        max_overflow=20,        # Allow up to 20 additional connections under load
        pool_timeout=30,        # Wait up to 30s for a connection
        pool_recycle=1800,      # Recycle connections after 30 minutes
        pool_pre_ping=True,     # Verify connections before use
        echo=echo,
        execution_options={"isolation_level": "READ COMMITTED"},
    )

    if built.dialect.name == "postgresql":
        event.listen(built, "connect", set_timezone)

    return built


def get_engine() -> Engine:
    """Process-wide engine, created on first access."""
    global _engine

    if _engine is None:
        _engine = _build_engine(get_database_url())

    return _engine


def reset_engine() -> None:
    """Dispose and forget the engine (for testing)."""
    global _engine

    if _engine is not None:
        _engine.dispose()
    _engine = None


def get_store() -> SqlSettlementStore:
    """
    Settlement store over the process engine.

    SETTLEMENT_CREATE_SCHEMA=true (default) creates missing tables on
    startup; set it to false when migrations own the schema.
    """
    create_schema = os.getenv("SETTLEMENT_CREATE_SCHEMA", "true").lower() == "true"
    return SqlSettlementStore(get_engine(), create_schema=create_schema)


# ============================================================================
# CONNECTION EVENT LISTENERS
# ============================================================================

def set_timezone(dbapi_connection, connection_record):
    """
    Ensure all PostgreSQL connections use UTC timezone.

    SOVEREIGN MANDATE: All timestamps must be UTC
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("SET timezone TO 'UTC'")
    cursor.close()


# ============================================================================
# HEALTH CHECK
# ============================================================================

def check_database_connection() -> bool:
    """
    Verify database connectivity.

    Returns:
        bool: True if database is reachable

    Raises:
        ConnectionError: If database connection fails
    """
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        raise ConnectionError(f"Database connection failed: {e}") from e


# ============================================================================
# END OF DATABASE SESSION MODULE
# ============================================================================
