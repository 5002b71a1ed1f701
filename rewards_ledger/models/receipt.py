"""
Permanent dedup index of receipts that have already earned points.

The primary key is the normalized natural key itself, so admitting the same
receipt twice is rejected by the database in one conditional insert.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Float, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from rewards_ledger.core.database import Base


class UsedReceipt(Base):
    __tablename__ = "used_receipts"

    receipt_key: Mapped[str] = mapped_column(
        String(128),
        primary_key=True,
        doc="Normalized '<order number>|<date>' key"
    )
    order_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    order_date: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        doc="MM/DD, or YYYY-MM-DD when keys include the year"
    )
    order_total: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("users.user_id"),
        nullable=True,
        index=True,
    )
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<UsedReceipt(key={self.receipt_key}, user={self.user_id})>"
