"""
User account holding a spendable points balance and a lifetime total.

The balance document is the one shared mutable resource of the ledger, so it
carries a version column: every UPDATE is conditional on the version read, and
concurrent writers lose with StaleDataError instead of overwriting each other.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Boolean, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rewards_ledger.core.database import Base


class UserAccount(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        doc="Unique user identifier (UUID)"
    )
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="",
        doc="User display name"
    )
    phone: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        doc="Phone number used to sign in"
    )
    email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        doc="User email address"
    )
    points: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Current spendable balance (never negative)"
    )
    lifetime_points: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Cumulative points earned; grows only on earning credits"
    )
    is_banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_employee: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=func.now(),
        nullable=False,
        doc="Account creation timestamp"
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    transactions = relationship(
        "PointsTransaction",
        back_populates="user",
        lazy="dynamic",
        order_by="PointsTransaction.timestamp.desc()",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<UserAccount(user_id={self.user_id}, points={self.points}, lifetime={self.lifetime_points})>"
