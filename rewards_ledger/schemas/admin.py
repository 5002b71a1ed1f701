"""Pydantic schemas for fraud-signal review, proxied from the backend."""

from typing import Any, Literal, Optional
from pydantic import BaseModel, Field

Severity = Literal["low", "medium", "high", "critical"]
FlagStatus = Literal["pending", "reviewed", "dismissed", "action_taken"]
ReviewAction = Literal["dismiss", "watch", "restrict", "ban"]


class FlaggedUserInfo(BaseModel):
    """Snapshot of the flagged user at flag time."""
    id: str
    first_name: str = Field("", alias="firstName")
    last_name: str = Field("", alias="lastName")
    phone: str = ""
    email: str = ""
    points: int = 0

    model_config = {"populate_by_name": True}


class SuspiciousFlag(BaseModel):
    id: str
    user_id: str = Field(..., alias="userId")
    flag_type: str = Field(..., alias="flagType")
    severity: Severity
    risk_score: int = Field(..., ge=0, le=100, alias="riskScore")
    description: str = ""
    evidence: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = Field(None, alias="createdAt")
    status: FlagStatus
    reviewed_by: Optional[str] = Field(None, alias="reviewedBy")
    reviewed_at: Optional[str] = Field(None, alias="reviewedAt")
    review_notes: Optional[str] = Field(None, alias="reviewNotes")
    action_taken: Optional[str] = Field(None, alias="actionTaken")
    user_info: Optional[FlaggedUserInfo] = Field(None, alias="userInfo")

    model_config = {"populate_by_name": True}


class SuspiciousFlagsPage(BaseModel):
    flags: list[SuspiciousFlag]
    has_more: bool = Field(False, alias="hasMore")
    next_cursor: Optional[str] = Field(None, alias="nextCursor")

    model_config = {"populate_by_name": True}


class ReviewFlagRequest(BaseModel):
    action: ReviewAction
    notes: Optional[str] = Field(None, max_length=500)


class ReviewFlagResponse(BaseModel):
    success: bool
    message: str = ""
