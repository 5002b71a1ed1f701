"""
Rewards API endpoints.
Catalog, eligible items, and the redeem / refund / cancel lifecycle.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from rewards_ledger.api.deps import get_backend_client, get_redemptions
from rewards_ledger.core.database import get_db
from rewards_ledger.core.errors import RewardNotFound
from rewards_ledger.models.reward import Redemption, RewardOption
from rewards_ledger.schemas.reward import (
    ActiveRedemptionResponse,
    CancelRequest,
    RedeemRequest,
    RedeemResponse,
    RefundRequest,
    RedemptionHistoryResponse,
    RefundResponse,
    RewardCatalogResponse,
    RewardEligibleItem,
    RewardOptionResponse,
    RewardTierItemsResponse,
)
from rewards_ledger.services.backend_client import BackendClient
from rewards_ledger.services.points_accumulator import load_user
from rewards_ledger.services.redemption import RedemptionLifecycle

router = APIRouter(prefix="/rewards", tags=["Rewards"])


def active_response(redemption: Redemption) -> ActiveRedemptionResponse:
    selection = redemption.selection or {}
    return ActiveRedemptionResponse(
        reward_id=redemption.id,
        reward_title=redemption.reward_title,
        redemption_code=redemption.redemption_code,
        points_cost=redemption.points_cost,
        expires_at=redemption.expires_at,
        status=redemption.status,
        selected_item_name=selection.get("selected_item_name"),
        redeemed_at=redemption.redeemed_at,
    )


@router.get("", response_model=RewardCatalogResponse)
async def list_rewards(
    category: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None, description="Mark rewards this user can afford"),
    db: Session = Depends(get_db),
):
    """Active catalog rewards, cheapest first."""
    query = db.query(RewardOption).filter(RewardOption.is_active.is_(True))
    if category:
        query = query.filter(RewardOption.category == category)
    rewards = query.order_by(RewardOption.points_required).all()

    balance = load_user(db, user_id, refresh=True).points if user_id else None
    items = []
    for reward in rewards:
        item = RewardOptionResponse.model_validate(reward)
        if balance is not None:
            item.available = balance >= reward.points_required
        items.append(item)
    return RewardCatalogResponse(rewards=items, total=len(items), user_points=balance)


@router.get("/eligible-items", response_model=RewardTierItemsResponse)
async def eligible_items(
    reward_id: str = Query(...),
    db: Session = Depends(get_db),
    backend: BackendClient = Depends(get_backend_client),
):
    """Menu items a reward can be spent on."""
    reward = db.get(RewardOption, reward_id)
    if reward is None or not reward.is_active:
        raise RewardNotFound(details={"rewardId": reward_id})

    if reward.eligible_item_ids:
        return RewardTierItemsResponse(
            points_required=reward.points_required,
            tier_name=reward.title,
            eligible_items=[
                RewardEligibleItem(item_id=item_id, item_name=item_id)
                for item_id in reward.eligible_item_ids
            ],
        )
    return await backend.fetch_eligible_items(reward.points_required, reward.tier_id)


@router.post("/redeem", response_model=RedeemResponse)
async def redeem_reward(
    request: RedeemRequest,
    db: Session = Depends(get_db),
    redemptions: RedemptionLifecycle = Depends(get_redemptions),
):
    """Debit the reward cost and issue a redemption code with a countdown."""
    redemption = redemptions.reserve(
        db,
        request.user_id,
        request.reward_id,
        selection=request.selection,
        idempotency_key=request.idempotency_key,
    )
    balance = load_user(db, request.user_id, refresh=True).points
    minutes = int(redemptions.expiry.total_seconds() // 60)
    return RedeemResponse(
        redemption_code=redemption.redemption_code,
        reward_id=redemption.id,
        reward_title=redemption.reward_title,
        selected_item_name=(redemption.selection or {}).get("selected_item_name"),
        points_deducted=redemption.points_cost,
        new_points_balance=balance,
        expires_at=redemption.expires_at,
        status=redemption.status,
        message=f"Show code {redemption.redemption_code} at the counter within {minutes} minutes.",
    )


@router.get("/active/{user_id}", response_model=Optional[ActiveRedemptionResponse])
async def get_active(
    user_id: str,
    db: Session = Depends(get_db),
    redemptions: RedemptionLifecycle = Depends(get_redemptions),
):
    """The user's live redemption, or null. An overdue one is refunded first."""
    active = redemptions.observe_active(db, user_id)
    return active_response(active) if active is not None else None


@router.get("/redeemed/{user_id}", response_model=RedemptionHistoryResponse)
async def redeemed_rewards(
    user_id: str,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    redemptions: RedemptionLifecycle = Depends(get_redemptions),
):
    """Every reward the user has redeemed, newest first."""
    history = redemptions.history(db, user_id, limit=limit)
    return RedemptionHistoryResponse(
        user_id=user_id,
        redemptions=[active_response(r) for r in history],
        total=len(history),
    )


@router.post("/refund", response_model=RefundResponse)
async def refund_expired(
    request: RefundRequest,
    db: Session = Depends(get_db),
    redemptions: RedemptionLifecycle = Depends(get_redemptions),
):
    """Refund a redemption whose countdown ran out. Repeat calls credit nothing."""
    return redemptions.refund_expired(
        db,
        reward_id=request.reward_id,
        redemption_code=request.redemption_code,
    )


@router.post("/cancel", response_model=RefundResponse)
async def cancel_redemption(
    request: CancelRequest,
    db: Session = Depends(get_db),
    redemptions: RedemptionLifecycle = Depends(get_redemptions),
):
    return redemptions.cancel(db, request.user_id, request.redemption_code)
