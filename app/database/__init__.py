# ============================================================================
# Silver Settlement Core
# Database Module - SQLAlchemy Engine & Settlement Store
# ============================================================================

from app.database.session import (
    get_engine,
    reset_engine,
    get_store,
    get_database_url,
    check_database_connection,
)

__all__ = [
    "get_engine",
    "reset_engine",
    "get_store",
    "get_database_url",
    "check_database_connection",
]
