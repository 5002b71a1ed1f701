"""Health check endpoint."""

from fastapi import APIRouter, Depends

from rewards_ledger.api.deps import get_accumulator
from rewards_ledger.core.config import get_settings
from rewards_ledger.services.points_accumulator import PointsAccumulator

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(accumulator: PointsAccumulator = Depends(get_accumulator)):
    """Service health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "pending_ledger_entries": accumulator.pending_entries,
    }
