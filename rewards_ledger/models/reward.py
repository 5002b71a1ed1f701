"""
Reward catalog and redeemed rewards.

A Redemption row is the ActiveRedemption while its status is "reserved".
Transitions: reserved -> fulfilled | expired | cancelled. Expired and
cancelled redemptions have had their points refunded in the same transaction
that set the status.
"""

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, Index, JSON, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from rewards_ledger.core.database import Base


class RedemptionStatus(str, enum.Enum):
    RESERVED = "reserved"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class RewardOption(Base):
    __tablename__ = "reward_options"

    reward_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    points_required: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(60), nullable=False, index=True)
    tier_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        doc="Restricts eligible menu items to one reward tier"
    )
    eligible_item_ids: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<RewardOption(title={self.title}, points={self.points_required})>"


class Redemption(Base):
    __tablename__ = "redemptions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        doc="Reward id of the redeemed reward"
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.user_id"),
        nullable=False,
        index=True,
    )
    reward_option_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("reward_options.reward_id"),
        nullable=True,
    )
    reward_title: Mapped[str] = mapped_column(String(120), nullable=False)
    reward_category: Mapped[str] = mapped_column(String(60), nullable=False, default="")
    points_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    redemption_code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True, index=True)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=RedemptionStatus.RESERVED.value,
    )
    selection: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
        doc="Item choices made before confirming (half-and-half, drink type, ...)"
    )
    redeemed_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        # At most one reserved redemption per user
        Index(
            "uq_redemptions_one_reserved_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'reserved'"),
            postgresql_where=text("status = 'reserved'"),
        ),
    )

    @property
    def is_reserved(self) -> bool:
        return self.status == RedemptionStatus.RESERVED.value

    def __repr__(self) -> str:
        return f"<Redemption(code={self.redemption_code}, user={self.user_id}, status={self.status})>"
