"""
Admin API endpoints.
Point-of-sale validation, expiry sweep, ledger outbox flush, and fraud flag
review proxied to the backend.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from rewards_ledger.api.deps import get_accumulator, get_backend_client, get_redemptions
from rewards_ledger.api.rewards import active_response
from rewards_ledger.core.database import get_db
from rewards_ledger.schemas.admin import ReviewFlagRequest, ReviewFlagResponse, SuspiciousFlagsPage
from rewards_ledger.schemas.reward import RedemptionCodeRequest, SweepResponse, ValidateResponse
from rewards_ledger.services.backend_client import BackendClient
from rewards_ledger.services.points_accumulator import PointsAccumulator
from rewards_ledger.services.redemption import RedemptionLifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/rewards/validate", response_model=ValidateResponse)
async def validate_code(
    request: RedemptionCodeRequest,
    db: Session = Depends(get_db),
    redemptions: RedemptionLifecycle = Depends(get_redemptions),
):
    """Look up a code at the counter without consuming it."""
    status, redemption = redemptions.validate(db, request.redemption_code)
    return ValidateResponse(
        status=status,
        reward=active_response(redemption) if redemption is not None else None,
    )


@router.post("/rewards/consume", response_model=ValidateResponse)
async def consume_code(
    request: RedemptionCodeRequest,
    db: Session = Depends(get_db),
    redemptions: RedemptionLifecycle = Depends(get_redemptions),
):
    """Mark a reward as handed over. Only an "ok" status changes anything."""
    status, redemption = redemptions.fulfill(db, request.redemption_code)
    return ValidateResponse(
        status=status,
        reward=active_response(redemption) if redemption is not None else None,
    )


@router.post("/redemptions/sweep", response_model=SweepResponse)
async def sweep_expired(
    db: Session = Depends(get_db),
    redemptions: RedemptionLifecycle = Depends(get_redemptions),
):
    """Refund every overdue redemption. Safe to call from a scheduler."""
    return redemptions.sweep_expired(db)


@router.post("/ledger/flush")
async def flush_ledger(
    db: Session = Depends(get_db),
    accumulator: PointsAccumulator = Depends(get_accumulator),
):
    written = accumulator.flush_outbox(db)
    return {"written": written, "pending": accumulator.pending_entries}


@router.get("/suspicious-flags", response_model=SuspiciousFlagsPage)
async def list_suspicious_flags(
    status: Optional[str] = Query("pending"),
    severity: Optional[str] = Query(None),
    flag_type: Optional[str] = Query(None),
    cursor: Optional[str] = Query(None),
    backend: BackendClient = Depends(get_backend_client),
):
    return await backend.list_suspicious_flags(
        status=status,
        severity=severity,
        flag_type=flag_type,
        cursor=cursor,
    )


@router.post("/suspicious-flags/{flag_id}/review", response_model=ReviewFlagResponse)
async def review_suspicious_flag(
    flag_id: str,
    request: ReviewFlagRequest,
    backend: BackendClient = Depends(get_backend_client),
):
    logger.info("[BACKEND] Reviewing flag %s with action %s", flag_id, request.action)
    return await backend.review_suspicious_flag(flag_id, request.action, request.notes)
