"""
Redemption Lifecycle.

State machine for a user's single active redemption:

    reserved -> fulfilled                 reward consumed at the counter
    reserved -> expired    (+ refund)     countdown ran out
    reserved -> cancelled  (+ refund)     user gave the reward back

Reserve debits the reward cost against the live balance; expiry and
cancellation credit the same amount back. Each transition is one optimistic
transaction over the user's balance and the redemption row, so a refund that
races another refund (or a fulfilment) applies at most once.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rewards_ledger.core.config import get_settings
from rewards_ledger.core.database import run_transaction, utcnow
from rewards_ledger.core.errors import (
    AccountBanned,
    AlreadyHasActiveRedemption,
    RedemptionClosed,
    RedemptionNotExpired,
    RedemptionNotFound,
    RewardNotFound,
    TransactionConflict,
)
from rewards_ledger.models.points_transaction import PointsTransactionType
from rewards_ledger.models.reward import Redemption, RedemptionStatus, RewardOption
from rewards_ledger.schemas.points import BalanceChange
from rewards_ledger.schemas.reward import RefundResponse, RewardSelection, SweepResponse
from rewards_ledger.services.points_accumulator import PointsAccumulator, load_user

logger = logging.getLogger(__name__)
settings = get_settings()

REFUND_STATUSES = {RedemptionStatus.EXPIRED.value, RedemptionStatus.CANCELLED.value}


def generate_redemption_code() -> str:
    """Eight digit code shown to staff at the counter."""
    return f"{secrets.randbelow(10 ** 8):08d}"


def expire_if_due(redemption: Redemption, now: Optional[datetime] = None) -> bool:
    """True when a still-reserved redemption has reached its expiry time."""
    now = now or utcnow()
    return redemption.is_reserved and now >= redemption.expires_at


class RedemptionLifecycle:
    """Reserve, fulfil, expire and refund rewards."""

    def __init__(self, accumulator: PointsAccumulator, expiry_minutes: Optional[int] = None):
        self.accumulator = accumulator
        self.expiry = timedelta(
            minutes=expiry_minutes if expiry_minutes is not None else settings.REDEMPTION_EXPIRY_MINUTES
        )

    # ─── Lookups ────────────────────────────────────────────────

    @staticmethod
    def active_for(db: Session, user_id: str) -> Optional[Redemption]:
        return (
            db.query(Redemption)
            .filter(
                Redemption.user_id == user_id,
                Redemption.status == RedemptionStatus.RESERVED.value,
            )
            .populate_existing()
            .first()
        )

    @staticmethod
    def find(
        db: Session,
        reward_id: Optional[str] = None,
        redemption_code: Optional[str] = None,
    ) -> Optional[Redemption]:
        """Look a redemption up by reward id, falling back to its code."""
        query = db.query(Redemption).populate_existing()
        if reward_id:
            found = query.filter(Redemption.id == reward_id).first()
            if found is not None or not redemption_code:
                return found
        return query.filter(Redemption.redemption_code == redemption_code).first()

    @staticmethod
    def history(db: Session, user_id: str, limit: int = 50) -> list[Redemption]:
        """Every redemption the user has made, newest first."""
        load_user(db, user_id)
        return (
            db.query(Redemption)
            .filter(Redemption.user_id == user_id)
            .order_by(Redemption.redeemed_at.desc())
            .limit(limit)
            .all()
        )

    # ─── Reserve ────────────────────────────────────────────────

    def reserve(
        self,
        db: Session,
        user_id: str,
        reward_id: str,
        selection: Optional[RewardSelection] = None,
        idempotency_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Redemption:
        """
        Debit the reward cost and open a redemption. The balance is re-read
        inside the transaction, so a balance that was enough when the reward
        screen opened but is not any more fails with InsufficientPoints.
        """
        now = now or utcnow()
        reward = db.get(RewardOption, reward_id)
        if reward is None or not reward.is_active:
            raise RewardNotFound(details={"rewardId": reward_id})

        user = load_user(db, user_id)
        if user.is_banned:
            raise AccountBanned(details={"userId": user_id})

        if idempotency_key:
            repeat = (
                db.query(Redemption)
                .filter(Redemption.user_id == user_id, Redemption.idempotency_key == idempotency_key)
                .first()
            )
            if repeat is not None:
                if expire_if_due(repeat, now):
                    self.refund(db, reward_id=repeat.id, reason=RedemptionStatus.EXPIRED, now=now)
                if not repeat.is_reserved:
                    raise RedemptionClosed(details={
                        "redemptionCode": repeat.redemption_code,
                        "status": repeat.status,
                    })
                logger.info("[REDEEM] Replayed request %s for %s", idempotency_key, user_id)
                return repeat

        # An overdue redemption the client never reported is resolved first
        active = self.active_for(db, user_id)
        if active is not None and expire_if_due(active, now):
            self.refund(db, reward_id=active.id, reason=RedemptionStatus.EXPIRED, now=now)

        selection = selection or RewardSelection()

        def _reserve(s: Session) -> tuple[Redemption, BalanceChange]:
            current = self.active_for(s, user_id)
            if current is not None:
                raise AlreadyHasActiveRedemption(details={
                    "redemptionCode": current.redemption_code,
                    "expiresAt": current.expires_at.isoformat(),
                })

            change = self.accumulator.apply_delta(
                s, user_id, -reward.points_required, PointsTransactionType.REDEMPTION_DEBIT
            )

            code = generate_redemption_code()
            while s.query(Redemption.id).filter(Redemption.redemption_code == code).first():
                code = generate_redemption_code()

            redemption = Redemption(
                user_id=user_id,
                reward_option_id=reward.reward_id,
                reward_title=reward.title,
                reward_category=reward.category,
                points_cost=reward.points_required,
                redemption_code=code,
                idempotency_key=idempotency_key,
                status=RedemptionStatus.RESERVED.value,
                selection=selection.as_metadata() or None,
                redeemed_at=now,
                expires_at=now + self.expiry,
            )
            s.add(redemption)
            try:
                s.flush()
            except IntegrityError as e:
                # Another request opened a redemption between our check and insert
                raise AlreadyHasActiveRedemption() from e
            return redemption, change

        redemption, change = run_transaction(db, _reserve)
        logger.info(
            "[REDEEM] %s redeemed '%s' for %d points (code %s, expires %s)",
            user_id, redemption.reward_title, redemption.points_cost,
            redemption.redemption_code, redemption.expires_at.isoformat(),
        )
        self.accumulator.record_transaction(
            db,
            change,
            PointsTransactionType.REDEMPTION_DEBIT,
            f"Redeemed {redemption.reward_title}",
            {
                "rewardId": redemption.id,
                "rewardTitle": redemption.reward_title,
                "redemptionCode": redemption.redemption_code,
                "pointsRequired": redemption.points_cost,
                **(redemption.selection or {}),
            },
        )
        return redemption

    # ─── Refund ─────────────────────────────────────────────────

    def refund(
        self,
        db: Session,
        reward_id: Optional[str] = None,
        redemption_code: Optional[str] = None,
        reason: RedemptionStatus = RedemptionStatus.EXPIRED,
        now: Optional[datetime] = None,
    ) -> RefundResponse:
        """
        Credit a reserved redemption's cost back and close it as expired or
        cancelled. Either identifier is enough. Refunding a redemption that
        is no longer reserved is a no-op.
        """
        if not reward_id and not redemption_code:
            raise ValueError("Must provide either reward_id or redemption_code")
        if reason.value not in REFUND_STATUSES:
            raise ValueError(f"Cannot refund with reason {reason.value}")
        now = now or utcnow()

        def _refund(s: Session) -> tuple[Redemption, Optional[BalanceChange]]:
            redemption = self.find(s, reward_id, redemption_code)
            if redemption is None:
                raise RedemptionNotFound(details={"rewardId": reward_id, "redemptionCode": redemption_code})
            if not redemption.is_reserved:
                return redemption, None

            change = self.accumulator.apply_delta(
                s, redemption.user_id, redemption.points_cost, PointsTransactionType.REDEMPTION_REFUND
            )
            redemption.status = reason.value
            redemption.resolved_at = now
            return redemption, change

        redemption, change = run_transaction(db, _refund)

        if change is None:
            logger.info("[REFUND] %s already %s, nothing to refund", redemption.redemption_code, redemption.status)
            return RefundResponse(
                points_refunded=0,
                already_refunded=redemption.status in REFUND_STATUSES,
                status=redemption.status,
            )

        logger.info(
            "[REFUND] %d points refunded to %s for %s reward %s",
            redemption.points_cost, redemption.user_id, reason.value, redemption.redemption_code,
        )
        verb = "expired" if reason is RedemptionStatus.EXPIRED else "cancelled"
        self.accumulator.record_transaction(
            db,
            change,
            PointsTransactionType.REDEMPTION_REFUND,
            f"Refund for {verb} reward: {redemption.reward_title}",
            {
                "rewardId": redemption.id,
                "rewardTitle": redemption.reward_title,
                "redemptionCode": redemption.redemption_code,
                "reason": reason.value,
            },
        )
        return RefundResponse(
            points_refunded=change.delta,
            new_points_balance=change.new_balance,
            status=redemption.status,
        )

    def refund_expired(
        self,
        db: Session,
        reward_id: Optional[str] = None,
        redemption_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RefundResponse:
        """Refund only once the countdown has actually run out."""
        now = now or utcnow()
        redemption = self.find(db, reward_id, redemption_code)
        if redemption is None:
            raise RedemptionNotFound(details={"rewardId": reward_id, "redemptionCode": redemption_code})
        if redemption.is_reserved and not expire_if_due(redemption, now):
            raise RedemptionNotExpired(details={"expiresAt": redemption.expires_at.isoformat()})
        return self.refund(db, reward_id=redemption.id, reason=RedemptionStatus.EXPIRED, now=now)

    def cancel(
        self,
        db: Session,
        user_id: str,
        redemption_code: str,
        now: Optional[datetime] = None,
    ) -> RefundResponse:
        redemption = self.find(db, redemption_code=redemption_code)
        if redemption is None or redemption.user_id != user_id:
            raise RedemptionNotFound(details={"redemptionCode": redemption_code})
        return self.refund(db, reward_id=redemption.id, reason=RedemptionStatus.CANCELLED, now=now)

    # ─── Observation / fulfilment ───────────────────────────────

    def observe_active(self, db: Session, user_id: str, now: Optional[datetime] = None) -> Optional[Redemption]:
        """
        The user's active redemption as of now. One found past its expiry is
        refunded on the spot and None is returned.
        """
        load_user(db, user_id)
        active = self.active_for(db, user_id)
        if active is not None and expire_if_due(active, now):
            self.refund(db, reward_id=active.id, reason=RedemptionStatus.EXPIRED, now=now)
            return None
        return active

    def validate(
        self,
        db: Session,
        redemption_code: str,
        now: Optional[datetime] = None,
    ) -> tuple[str, Optional[Redemption]]:
        """Point-of-sale check: ok | expired | cancelled | already_used | not_found."""
        redemption = self.find(db, redemption_code=redemption_code)
        return self._counter_status(redemption, now or utcnow()), redemption

    def fulfill(
        self,
        db: Session,
        redemption_code: str,
        now: Optional[datetime] = None,
    ) -> tuple[str, Optional[Redemption]]:
        """Consume a reward at the counter. Overdue ones are refunded instead."""
        now = now or utcnow()

        def _consume(s: Session) -> tuple[str, Optional[Redemption]]:
            redemption = self.find(s, redemption_code=redemption_code)
            status = self._counter_status(redemption, now)
            if status == "ok":
                redemption.status = RedemptionStatus.FULFILLED.value
                redemption.resolved_at = now
            return status, redemption

        status, redemption = run_transaction(db, _consume)

        if status == "ok":
            logger.info("[REDEEM] Reward %s fulfilled for %s", redemption_code, redemption.user_id)
        elif status == "expired" and redemption.is_reserved:
            self.refund(db, reward_id=redemption.id, reason=RedemptionStatus.EXPIRED, now=now)
        return status, redemption

    @staticmethod
    def _counter_status(redemption: Optional[Redemption], now: datetime) -> str:
        if redemption is None:
            return "not_found"
        if redemption.status == RedemptionStatus.FULFILLED.value:
            return "already_used"
        if redemption.status == RedemptionStatus.CANCELLED.value:
            return "cancelled"
        if redemption.status == RedemptionStatus.EXPIRED.value or expire_if_due(redemption, now):
            return "expired"
        return "ok"

    # ─── Server-side sweep ──────────────────────────────────────

    def sweep_expired(self, db: Session, now: Optional[datetime] = None) -> SweepResponse:
        """Refund every reserved redemption past its expiry."""
        now = now or utcnow()
        overdue_ids = [
            row[0]
            for row in db.query(Redemption.id)
            .filter(
                Redemption.status == RedemptionStatus.RESERVED.value,
                Redemption.expires_at <= now,
            )
            .all()
        ]

        expired = 0
        refunded = 0
        for redemption_id in overdue_ids:
            try:
                result = self.refund(db, reward_id=redemption_id, reason=RedemptionStatus.EXPIRED, now=now)
            except TransactionConflict:
                logger.warning("[REFUND] Sweep skipped %s after repeated conflicts", redemption_id)
                continue
            if result.points_refunded:
                expired += 1
                refunded += result.points_refunded

        logger.info("[REFUND] Sweep refunded %d redemptions (%d points)", expired, refunded)
        return SweepResponse(expired=expired, points_refunded=refunded)
