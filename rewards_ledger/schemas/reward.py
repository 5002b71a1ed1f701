"""
Pydantic schemas for the reward catalog and the redemption lifecycle.
Covers catalog listing, eligible items, redeem/refund/cancel payloads and
point-of-sale validation.
"""

from datetime import datetime
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field, model_validator


class RewardOptionResponse(BaseModel):
    """Catalog entry, with availability against the caller's live balance."""
    reward_id: str
    title: str
    description: str = ""
    points_required: int = Field(..., gt=0)
    category: str
    tier_id: Optional[str] = None
    eligible_item_ids: Optional[list[str]] = None
    available: Optional[bool] = Field(None, description="Balance covers this reward")

    model_config = {"from_attributes": True}


class RewardCatalogResponse(BaseModel):
    rewards: list[RewardOptionResponse]
    total: int
    user_points: Optional[int] = None


class RewardEligibleItem(BaseModel):
    """Menu item a reward tier can be spent on."""
    item_id: str
    item_name: str
    category_id: Optional[str] = None
    image_url: Optional[str] = None


class RewardTierItemsResponse(BaseModel):
    points_required: int
    tier_name: Optional[str] = None
    eligible_items: list[RewardEligibleItem]


class RewardSelection(BaseModel):
    """Item choices collected before confirming a redemption."""
    selected_item_id: Optional[str] = None
    selected_item_name: Optional[str] = None
    selected_item_id2: Optional[str] = Field(None, description="Second half of a half-and-half")
    selected_item_name2: Optional[str] = None
    selected_topping_id: Optional[str] = None
    selected_topping_name: Optional[str] = None
    cooking_method: Optional[str] = None
    drink_type: Optional[str] = None
    selected_drink_item_id: Optional[str] = None
    selected_drink_item_name: Optional[str] = None

    def as_metadata(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class RedeemRequest(BaseModel):
    """Redeem a catalog reward."""
    user_id: str
    reward_id: str
    idempotency_key: Optional[str] = Field(None, max_length=64)
    selection: RewardSelection = Field(default_factory=RewardSelection)


class ActiveRedemptionResponse(BaseModel):
    reward_id: str = Field(..., description="Id of the redeemed reward")
    reward_title: str
    redemption_code: str
    points_cost: int
    expires_at: datetime
    status: str
    selected_item_name: Optional[str] = None
    redeemed_at: Optional[datetime] = None


class RedemptionHistoryResponse(BaseModel):
    """Past and present redemptions, newest first."""
    user_id: str
    redemptions: list[ActiveRedemptionResponse]
    total: int


class RedeemResponse(BaseModel):
    success: bool = True
    redemption_code: str
    reward_id: str
    reward_title: str
    selected_item_name: Optional[str] = None
    points_deducted: int
    new_points_balance: int
    expires_at: datetime
    status: str = Field("reserved", description="Lifecycle state of the returned redemption")
    message: str


class RefundRequest(BaseModel):
    """Either identifier is enough."""
    reward_id: Optional[str] = None
    redemption_code: Optional[str] = None

    @model_validator(mode="after")
    def _require_identifier(self):
        if not self.reward_id and not self.redemption_code:
            raise ValueError("Must provide either reward_id or redemption_code")
        return self


class CancelRequest(BaseModel):
    user_id: str
    redemption_code: str


class RefundResponse(BaseModel):
    success: bool = True
    points_refunded: int
    new_points_balance: Optional[int] = None
    already_refunded: bool = False
    status: str


class RedemptionCodeRequest(BaseModel):
    redemption_code: str = Field(..., min_length=1)


class ValidateResponse(BaseModel):
    """Point-of-sale lookup of a redemption code."""
    status: Literal["ok", "expired", "cancelled", "already_used", "not_found"]
    reward: Optional[ActiveRedemptionResponse] = None


class SweepResponse(BaseModel):
    expired: int
    points_refunded: int
