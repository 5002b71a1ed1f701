"""Pydantic schemas for User API responses."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class UserResponse(BaseModel):
    """User account with its live balance."""
    user_id: str = Field(..., description="Unique user identifier")
    name: str = Field(..., description="User display name")
    phone: Optional[str] = Field(None, description="Phone number")
    email: Optional[str] = Field(None, description="User email address")
    points: int = Field(..., ge=0, description="Current spendable balance")
    lifetime_points: int = Field(..., ge=0, description="Cumulative points earned")
    is_banned: bool = Field(False, description="Whether the account is banned")
    is_admin: bool = Field(False, description="Admin flag")
    is_employee: bool = Field(False, description="Employee flag")
    created_at: datetime = Field(..., description="Account creation date")

    model_config = {"from_attributes": True}


class UserListResponse(BaseModel):
    """List of users."""
    users: list[UserResponse]
    total: int
