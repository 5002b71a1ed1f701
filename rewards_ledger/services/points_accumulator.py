"""
Points Accumulator.

The single chokepoint for balance mutation. apply_delta() is the only code
that writes UserAccount.points / lifetime_points, and it must run inside
run_transaction(), so every writer (receipt credit, redemption debit/refund,
admin edit) gets an optimistic read-modify-write instead of a plain
read-then-write.

Ledger rows are written after the balance commit. A failed ledger write does
not undo the balance change: the entry is parked in an in-process outbox and
retried on the next write or by flush_outbox().
"""

import logging
import uuid
from collections import deque
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rewards_ledger.core.database import run_transaction, utcnow
from rewards_ledger.core.errors import InsufficientPoints, UserNotFound
from rewards_ledger.models.points_transaction import PointsTransaction, PointsTransactionType
from rewards_ledger.models.user import UserAccount
from rewards_ledger.schemas.points import BalanceChange, PointsHistorySummary

logger = logging.getLogger(__name__)

CREDIT_TYPES = {
    PointsTransactionType.RECEIPT_CREDIT,
    PointsTransactionType.REDEMPTION_REFUND,
    PointsTransactionType.WELCOME,
    PointsTransactionType.BONUS,
    PointsTransactionType.REFERRAL,
}
DEBIT_TYPES = {PointsTransactionType.REDEMPTION_DEBIT}


def check_amount_sign(txn_type: PointsTransactionType, amount: int) -> None:
    """Credits are never negative, debits always negative, adjustments never zero."""
    if txn_type in CREDIT_TYPES and amount < 0:
        raise ValueError(f"{txn_type.value} amount must not be negative (got {amount})")
    if txn_type in DEBIT_TYPES and amount >= 0:
        raise ValueError(f"{txn_type.value} amount must be negative (got {amount})")
    if txn_type is PointsTransactionType.ADMIN_ADJUSTMENT and amount == 0:
        raise ValueError("admin adjustment amount must not be zero")


def load_user(db: Session, user_id: str, refresh: bool = False) -> UserAccount:
    user = db.get(UserAccount, user_id, populate_existing=refresh)
    if user is None:
        raise UserNotFound(details={"userId": user_id})
    return user


class PointsAccumulator:
    """Applies signed point deltas atomically and keeps the audit ledger."""

    def __init__(self):
        self._outbox: deque[dict[str, Any]] = deque()

    # ─── Balance mutation ───────────────────────────────────────

    @staticmethod
    def apply_delta(
        db: Session,
        user_id: str,
        delta: int,
        txn_type: PointsTransactionType,
    ) -> BalanceChange:
        """
        Read the live balance and stage the new one. Call only from inside
        run_transaction(); the version check happens at commit.
        """
        check_amount_sign(txn_type, delta)
        user = load_user(db, user_id, refresh=True)

        previous = user.points
        previous_lifetime = user.lifetime_points
        new_balance = previous + delta
        if new_balance < 0:
            raise InsufficientPoints(details={
                "currentPoints": previous,
                "pointsRequired": -delta,
            })

        user.points = new_balance
        if txn_type.is_earning:
            user.lifetime_points = previous_lifetime + delta

        return BalanceChange(
            user_id=user_id,
            previous_balance=previous,
            new_balance=new_balance,
            previous_lifetime_points=previous_lifetime,
            new_lifetime_points=user.lifetime_points,
        )

    def credit_or_debit(
        self,
        db: Session,
        user_id: str,
        delta: int,
        txn_type: PointsTransactionType,
        description: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> BalanceChange:
        """Apply delta in one optimistic transaction, then record it in the ledger."""
        change = run_transaction(db, lambda s: self.apply_delta(s, user_id, delta, txn_type))
        logger.info(
            "[POINTS] %s %+d for %s (%d -> %d)",
            txn_type.value, delta, user_id, change.previous_balance, change.new_balance,
        )
        self.record_transaction(db, change, txn_type, description, metadata)
        return change

    def set_balance(
        self,
        db: Session,
        user_id: str,
        requested_points: int,
        admin_id: str,
        reason: Optional[str] = None,
    ) -> BalanceChange:
        """
        Admin edit: set an absolute balance. The delta is computed from the
        balance read inside the transaction, so a concurrent redemption is
        not overwritten. Lifetime points are left alone.
        """
        if requested_points < 0:
            raise ValueError("requested_points must not be negative")

        def _adjust(s: Session) -> BalanceChange:
            user = load_user(s, user_id, refresh=True)
            delta = requested_points - user.points
            if delta == 0:
                return BalanceChange(
                    user_id=user_id,
                    previous_balance=user.points,
                    new_balance=user.points,
                    previous_lifetime_points=user.lifetime_points,
                    new_lifetime_points=user.lifetime_points,
                )
            return self.apply_delta(s, user_id, delta, PointsTransactionType.ADMIN_ADJUSTMENT)

        change = run_transaction(db, _adjust)
        if change.delta == 0:
            logger.info("[POINTS] Admin %s left %s unchanged at %d", admin_id, user_id, change.new_balance)
            return change

        logger.info(
            "[POINTS] Admin %s adjusted %s: %d -> %d",
            admin_id, user_id, change.previous_balance, change.new_balance,
        )
        metadata: dict[str, Any] = {"adminId": admin_id}
        if reason:
            metadata["reason"] = reason
        self.record_transaction(
            db,
            change,
            PointsTransactionType.ADMIN_ADJUSTMENT,
            "Points adjusted by admin",
            metadata,
        )
        return change

    # ─── Audit ledger ───────────────────────────────────────────

    def record_transaction(
        self,
        db: Session,
        change: BalanceChange,
        txn_type: PointsTransactionType,
        description: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        """
        Append the ledger row for a committed balance change. Never raises on
        storage failure; returns the entry id either way.
        """
        entry = {
            "id": str(uuid.uuid4()),
            "user_id": change.user_id,
            "type": txn_type.value,
            "amount": change.delta,
            "description": description,
            "meta": {
                **(metadata or {}),
                "previousPoints": change.previous_balance,
                "newPoints": change.new_balance,
            },
            "timestamp": utcnow(),
        }

        if self._outbox:
            self.flush_outbox(db)

        if not self._write_entry(db, entry):
            self._outbox.append(entry)
            logger.warning(
                "[POINTS] Ledger write for %s parked in outbox (%d pending)",
                change.user_id, len(self._outbox),
            )
        return entry["id"]

    def flush_outbox(self, db: Session) -> int:
        """Retry parked ledger entries in order. Returns how many were written."""
        written = 0
        while self._outbox:
            entry = self._outbox[0]
            if not self._write_entry(db, entry):
                break
            self._outbox.popleft()
            written += 1
        if written:
            logger.info("[POINTS] Flushed %d parked ledger entries", written)
        return written

    @property
    def pending_entries(self) -> int:
        return len(self._outbox)

    @staticmethod
    def _write_entry(db: Session, entry: dict[str, Any]) -> bool:
        try:
            db.add(PointsTransaction(**entry))
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("[POINTS] Error logging transaction %s: %s", entry["id"], e)
            return False

    # ─── Reads ──────────────────────────────────────────────────

    @staticmethod
    def history(
        db: Session,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[PointsTransaction], int]:
        """Newest-first page of a user's ledger, plus the total row count."""
        load_user(db, user_id)
        query = db.query(PointsTransaction).filter(PointsTransaction.user_id == user_id)
        total = query.count()
        rows = (
            query
            .order_by(PointsTransaction.timestamp.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return rows, total

    @staticmethod
    def summary(db: Session, user_id: str) -> PointsHistorySummary:
        user = load_user(db, user_id, refresh=True)
        amount = PointsTransaction.amount
        earned, spent, count, last = (
            db.query(
                func.coalesce(func.sum(amount).filter(amount > 0), 0),
                func.coalesce(func.sum(amount).filter(amount < 0), 0),
                func.count(PointsTransaction.id),
                func.max(PointsTransaction.timestamp),
            )
            .filter(PointsTransaction.user_id == user_id)
            .one()
        )
        return PointsHistorySummary(
            user_id=user_id,
            total_earned=int(earned),
            total_spent=int(spent),
            current_balance=user.points,
            lifetime_points=user.lifetime_points,
            transaction_count=int(count),
            last_transaction_date=last,
        )
