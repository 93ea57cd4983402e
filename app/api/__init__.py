# ============================================================================
# Silver Settlement Core
# API Routes Module
# ============================================================================

from app.api.accounts import router as accounts_router
from app.api.admin import router as admin_router
from app.api.loans import router as loans_router
from app.api.mint import router as mint_router
from app.api.redemption import router as redemption_router
from app.api.trading import router as trading_router

__all__ = [
    "accounts_router",
    "admin_router",
    "loans_router",
    "mint_router",
    "redemption_router",
    "trading_router",
]
