"""Pydantic schemas for the points ledger: history, summary and admin edits."""

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field


class BalanceChange(BaseModel):
    """Result of one atomic balance mutation."""
    user_id: str
    previous_balance: int
    new_balance: int
    previous_lifetime_points: int
    new_lifetime_points: int

    @property
    def delta(self) -> int:
        return self.new_balance - self.previous_balance


class PointsTransactionResponse(BaseModel):
    """Single ledger entry."""
    id: str = Field(..., description="Transaction identifier")
    user_id: str = Field(..., description="Owning user")
    type: str = Field(..., description="Effective transaction type")
    display_name: str = Field(..., description="Human readable type")
    amount: int = Field(..., description="Signed amount (+ earned, - spent)")
    description: str = Field("", description="Free-text description")
    metadata: Optional[dict[str, Any]] = Field(None, description="Context snapshot")
    timestamp: datetime = Field(..., description="When the entry was written")


class PointsHistoryResponse(BaseModel):
    """Newest-first page of ledger entries."""
    user_id: str
    transactions: list[PointsTransactionResponse]
    total: int


class PointsHistorySummary(BaseModel):
    """Aggregates over a user's ledger."""
    user_id: str
    total_earned: int = Field(..., ge=0, description="Sum of positive entries")
    total_spent: int = Field(..., le=0, description="Sum of negative entries")
    current_balance: int = Field(..., ge=0, description="Live balance")
    lifetime_points: int = Field(..., ge=0, description="Live lifetime total")
    transaction_count: int = Field(..., ge=0)
    last_transaction_date: Optional[datetime] = None

    @property
    def net_points(self) -> int:
        return self.total_earned + self.total_spent


class AdminAdjustRequest(BaseModel):
    """Admin sets an absolute balance for a user."""
    admin_id: str = Field(..., description="Admin performing the edit")
    points: int = Field(..., ge=0, description="Requested new balance")
    reason: Optional[str] = Field(None, max_length=200, description="Optional note for the ledger")


class AdminAdjustResponse(BaseModel):
    success: bool = True
    user_id: str
    previous_points: int
    new_points: int
    delta: int
    lifetime_points: int
