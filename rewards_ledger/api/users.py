"""
Users API endpoints.
Account listing and lookup with live balances.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rewards_ledger.core.database import get_db
from rewards_ledger.models.user import UserAccount
from rewards_ledger.schemas.user import UserListResponse, UserResponse
from rewards_ledger.services.points_accumulator import load_user

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("", response_model=UserListResponse)
async def list_users(db: Session = Depends(get_db)):
    """List all accounts."""
    users = db.query(UserAccount).order_by(UserAccount.created_at).all()
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in users],
        total=len(users),
    )


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, db: Session = Depends(get_db)):
    """Get one account by ID."""
    return UserResponse.model_validate(load_user(db, user_id))
