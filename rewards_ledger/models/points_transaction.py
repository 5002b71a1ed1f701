"""
Append-only points ledger.

One row per balance mutation; rows are never updated or deleted.
"""

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import String, Integer, DateTime, ForeignKey, JSON, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rewards_ledger.core.database import Base


class PointsTransactionType(str, enum.Enum):
    UNKNOWN = "unknown"
    RECEIPT_CREDIT = "receipt_scan"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    REDEMPTION_DEBIT = "reward_redeemed"
    REDEMPTION_REFUND = "reward_expiration_refund"
    WELCOME = "welcome"
    BONUS = "bonus"
    REFERRAL = "referral"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def is_earning(self) -> bool:
        """Earning credits are the only mutations that grow lifetime points."""
        return self in _EARNING_TYPES


_DISPLAY_NAMES = {
    PointsTransactionType.UNKNOWN: "Transaction",
    PointsTransactionType.RECEIPT_CREDIT: "Receipt Scan",
    PointsTransactionType.ADMIN_ADJUSTMENT: "Points Adjustment",
    PointsTransactionType.REDEMPTION_DEBIT: "Reward Redeemed",
    PointsTransactionType.REDEMPTION_REFUND: "Reward Refund",
    PointsTransactionType.WELCOME: "Welcome Points",
    PointsTransactionType.BONUS: "Bonus Points",
    PointsTransactionType.REFERRAL: "Referral Bonus",
}

_EARNING_TYPES = frozenset({
    PointsTransactionType.RECEIPT_CREDIT,
    PointsTransactionType.WELCOME,
    PointsTransactionType.BONUS,
    PointsTransactionType.REFERRAL,
})


class PointsTransaction(Base):
    __tablename__ = "points_transactions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.user_id"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        default=PointsTransactionType.UNKNOWN.value,
        doc="PointsTransactionType value"
    )
    amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        doc="Positive for earned, negative for spent"
    )
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    meta: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
        doc="Free-form context, e.g. previous/new balance snapshot"
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime,
        default=func.now(),
        nullable=False,
        index=True,
    )

    user = relationship("UserAccount", back_populates="transactions")

    @property
    def effective_type(self) -> PointsTransactionType:
        """Stored type, or a best-effort guess from the description for legacy rows."""
        try:
            stored = PointsTransactionType(self.type)
        except ValueError:
            stored = PointsTransactionType.UNKNOWN
        if stored is not PointsTransactionType.UNKNOWN:
            return stored
        return infer_transaction_type(self.description)

    def __repr__(self) -> str:
        return f"<PointsTransaction(user={self.user_id}, type={self.type}, amount={self.amount})>"


def infer_transaction_type(description: str) -> PointsTransactionType:
    lower = (description or "").lower()
    if "refund" in lower and "expired" in lower:
        return PointsTransactionType.REDEMPTION_REFUND
    if "redeemed" in lower:
        return PointsTransactionType.REDEMPTION_DEBIT
    if "receipt" in lower:
        return PointsTransactionType.RECEIPT_CREDIT
    if "welcome" in lower:
        return PointsTransactionType.WELCOME
    if "admin" in lower:
        return PointsTransactionType.ADMIN_ADJUSTMENT
    if "bonus" in lower:
        return PointsTransactionType.BONUS
    if "referral" in lower:
        return PointsTransactionType.REFERRAL
    return PointsTransactionType.UNKNOWN
