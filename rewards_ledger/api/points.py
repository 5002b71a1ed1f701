"""
Points API endpoints.
Ledger history, summary and admin balance edits.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from rewards_ledger.api.deps import get_accumulator
from rewards_ledger.core.database import get_db
from rewards_ledger.models.points_transaction import PointsTransaction
from rewards_ledger.schemas.points import (
    AdminAdjustRequest,
    AdminAdjustResponse,
    PointsHistoryResponse,
    PointsHistorySummary,
    PointsTransactionResponse,
)
from rewards_ledger.services.points_accumulator import PointsAccumulator

router = APIRouter(prefix="/points", tags=["Points"])


def _to_response(txn: PointsTransaction) -> PointsTransactionResponse:
    effective = txn.effective_type
    return PointsTransactionResponse(
        id=txn.id,
        user_id=txn.user_id,
        type=effective.value,
        display_name=effective.display_name,
        amount=txn.amount,
        description=txn.description,
        metadata=txn.meta,
        timestamp=txn.timestamp,
    )


@router.get("/{user_id}/history", response_model=PointsHistoryResponse)
async def get_history(
    user_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    accumulator: PointsAccumulator = Depends(get_accumulator),
):
    """Newest-first ledger entries for a user."""
    rows, total = accumulator.history(db, user_id, limit=limit, offset=offset)
    return PointsHistoryResponse(
        user_id=user_id,
        transactions=[_to_response(t) for t in rows],
        total=total,
    )


@router.get("/{user_id}/summary", response_model=PointsHistorySummary)
async def get_summary(
    user_id: str,
    db: Session = Depends(get_db),
    accumulator: PointsAccumulator = Depends(get_accumulator),
):
    return accumulator.summary(db, user_id)


@router.post("/{user_id}/adjust", response_model=AdminAdjustResponse)
async def adjust_points(
    user_id: str,
    request: AdminAdjustRequest,
    db: Session = Depends(get_db),
    accumulator: PointsAccumulator = Depends(get_accumulator),
):
    """Admin sets an absolute balance. Lifetime points are not touched."""
    change = accumulator.set_balance(db, user_id, request.points, request.admin_id, request.reason)
    return AdminAdjustResponse(
        user_id=user_id,
        previous_points=change.previous_balance,
        new_points=change.new_balance,
        delta=change.delta,
        lifetime_points=change.new_lifetime_points,
    )
