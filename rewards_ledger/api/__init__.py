# API Routes
from rewards_ledger.api.health import router as health_router
from rewards_ledger.api.users import router as users_router
from rewards_ledger.api.receipts import router as receipts_router
from rewards_ledger.api.points import router as points_router
from rewards_ledger.api.rewards import router as rewards_router
from rewards_ledger.api.admin import router as admin_router

__all__ = [
    "health_router",
    "users_router",
    "receipts_router",
    "points_router",
    "rewards_router",
    "admin_router",
]
