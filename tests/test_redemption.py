from datetime import datetime, timedelta

import pytest

from rewards_ledger.core.errors import (
    AccountBanned,
    AlreadyHasActiveRedemption,
    InsufficientPoints,
    RedemptionClosed,
    RedemptionNotExpired,
    RedemptionNotFound,
    RewardNotFound,
    UserNotFound,
)
from rewards_ledger.models.points_transaction import PointsTransaction, PointsTransactionType
from rewards_ledger.models.reward import Redemption, RedemptionStatus
from rewards_ledger.schemas.reward import RewardSelection
from rewards_ledger.services.redemption import expire_if_due, generate_redemption_code

NOW = datetime(2025, 3, 1, 12, 0, 0)
LATER = NOW + timedelta(minutes=16)


@pytest.fixture
def customer(make_user):
    return make_user("user-1", points=120)


@pytest.fixture
def reward(make_reward):
    return make_reward("reward-100", points_required=100, title="Free Fried Rice")


def balance(db, user):
    db.refresh(user)
    return user.points


def test_generate_redemption_code_is_eight_digits():
    code = generate_redemption_code()
    assert len(code) == 8
    assert code.isdigit()


def test_reserve_debits_and_opens_countdown(db, customer, reward, redemptions):
    selection = RewardSelection(selected_item_id="egg", selected_item_name="Egg Fried Rice")
    redemption = redemptions.reserve(db, "user-1", "reward-100", selection=selection, now=NOW)

    assert redemption.status == RedemptionStatus.RESERVED.value
    assert redemption.expires_at == NOW + timedelta(minutes=15)
    assert len(redemption.redemption_code) == 8
    assert balance(db, customer) == 20
    assert customer.lifetime_points == 120

    (entry,) = db.query(PointsTransaction).all()
    assert entry.type == PointsTransactionType.REDEMPTION_DEBIT.value
    assert entry.amount == -100
    assert entry.description == "Redeemed Free Fried Rice"
    assert entry.meta["redemptionCode"] == redemption.redemption_code
    assert entry.meta["selected_item_name"] == "Egg Fried Rice"
    assert entry.meta["previousPoints"] == 120
    assert entry.meta["newPoints"] == 20


def test_expired_redemption_refunds_full_cost(db, customer, reward, redemptions):
    redemption = redemptions.reserve(db, "user-1", "reward-100", now=NOW)

    assert expire_if_due(redemption, NOW + timedelta(minutes=14)) is False
    assert expire_if_due(redemption, LATER) is True

    result = redemptions.refund_expired(db, reward_id=redemption.id, now=LATER)

    assert result.points_refunded == 100
    assert result.new_points_balance == 120
    assert result.status == RedemptionStatus.EXPIRED.value
    assert balance(db, customer) == 120
    assert customer.lifetime_points == 120

    refund = (
        db.query(PointsTransaction)
        .filter(PointsTransaction.type == PointsTransactionType.REDEMPTION_REFUND.value)
        .one()
    )
    assert refund.amount == 100
    assert refund.description == "Refund for expired reward: Free Fried Rice"


def test_refund_twice_credits_once(db, customer, reward, redemptions):
    redemption = redemptions.reserve(db, "user-1", "reward-100", now=NOW)

    first = redemptions.refund(db, reward_id=redemption.id, now=LATER)
    second = redemptions.refund(db, redemption_code=redemption.redemption_code, now=LATER)

    assert first.points_refunded == 100
    assert second.points_refunded == 0
    assert second.already_refunded is True
    assert balance(db, customer) == 120


def test_refund_requires_identifier_and_known_redemption(db, redemptions):
    with pytest.raises(ValueError):
        redemptions.refund(db)
    with pytest.raises(RedemptionNotFound):
        redemptions.refund(db, redemption_code="00000000")


def test_refund_before_expiry_is_refused(db, customer, reward, redemptions):
    redemption = redemptions.reserve(db, "user-1", "reward-100", now=NOW)

    with pytest.raises(RedemptionNotExpired):
        redemptions.refund_expired(db, reward_id=redemption.id, now=NOW + timedelta(minutes=5))
    assert balance(db, customer) == 20


def test_reserve_checks_live_balance(db, customer, reward, redemptions, accumulator):
    # Balance was 120 when the reward screen opened; another device spent it down
    accumulator.set_balance(db, "user-1", 50, admin_id="admin-1")

    with pytest.raises(InsufficientPoints) as exc_info:
        redemptions.reserve(db, "user-1", "reward-100", now=NOW)

    assert exc_info.value.details["currentPoints"] == 50
    assert balance(db, customer) == 50
    assert db.query(Redemption).count() == 0


def test_only_one_active_redemption(db, customer, reward, make_reward, redemptions):
    make_reward("reward-10", points_required=10)
    first = redemptions.reserve(db, "user-1", "reward-100", now=NOW)

    with pytest.raises(AlreadyHasActiveRedemption) as exc_info:
        redemptions.reserve(db, "user-1", "reward-10", now=NOW + timedelta(minutes=1))

    assert exc_info.value.details["redemptionCode"] == first.redemption_code
    assert balance(db, customer) == 20


def test_overdue_redemption_is_refunded_before_next_reserve(db, customer, reward, make_reward, redemptions):
    make_reward("reward-10", points_required=10)
    first = redemptions.reserve(db, "user-1", "reward-100", now=NOW)

    second = redemptions.reserve(db, "user-1", "reward-10", now=LATER)

    db.refresh(first)
    assert first.status == RedemptionStatus.EXPIRED.value
    assert second.is_reserved
    assert balance(db, customer) == 110


def test_idempotency_key_replay_does_not_debit_twice(db, customer, reward, redemptions):
    first = redemptions.reserve(db, "user-1", "reward-100", idempotency_key="tap-1", now=NOW)
    again = redemptions.reserve(db, "user-1", "reward-100", idempotency_key="tap-1", now=NOW)

    assert again.id == first.id
    assert balance(db, customer) == 20
    assert db.query(PointsTransaction).count() == 1


@pytest.mark.parametrize("close", ["cancel", "expire"])
def test_replay_of_closed_redemption_is_refused(db, customer, reward, redemptions, close):
    first = redemptions.reserve(db, "user-1", "reward-100", idempotency_key="tap-1", now=NOW)
    if close == "cancel":
        redemptions.cancel(db, "user-1", first.redemption_code, now=NOW)
        replay_at = NOW
    else:
        replay_at = LATER

    with pytest.raises(RedemptionClosed) as exc_info:
        redemptions.reserve(db, "user-1", "reward-100", idempotency_key="tap-1", now=replay_at)

    expected = "cancelled" if close == "cancel" else "expired"
    assert exc_info.value.details == {"redemptionCode": first.redemption_code, "status": expected}
    assert balance(db, customer) == 120
    assert redemptions.active_for(db, "user-1") is None


def test_history_lists_every_redemption_newest_first(db, customer, reward, make_reward, redemptions):
    make_reward("reward-10", points_required=10, title="Extra Sauce")
    older = redemptions.reserve(db, "user-1", "reward-100", now=NOW)
    redemptions.cancel(db, "user-1", older.redemption_code, now=NOW)
    newer = redemptions.reserve(db, "user-1", "reward-10", now=NOW + timedelta(minutes=5))

    history = redemptions.history(db, "user-1")
    assert [r.id for r in history] == [newer.id, older.id]
    assert [r.status for r in history] == ["reserved", "cancelled"]
    assert redemptions.history(db, "user-1", limit=1)[0].id == newer.id

    with pytest.raises(UserNotFound):
        redemptions.history(db, "nobody")

def test_reserve_rejects_unknown_reward_and_banned_user(db, make_user, reward, redemptions):
    make_user("banned", points=500, is_banned=True)
    with pytest.raises(RewardNotFound):
        redemptions.reserve(db, "banned", "no-such-reward", now=NOW)
    with pytest.raises(AccountBanned):
        redemptions.reserve(db, "banned", "reward-100", now=NOW)


def test_validate_and_fulfill_at_counter(db, customer, reward, redemptions):
    redemption = redemptions.reserve(db, "user-1", "reward-100", now=NOW)
    code = redemption.redemption_code

    assert redemptions.validate(db, code, now=NOW)[0] == "ok"
    status, consumed = redemptions.fulfill(db, code, now=NOW + timedelta(minutes=3))
    assert status == "ok"
    assert consumed.status == RedemptionStatus.FULFILLED.value

    assert redemptions.validate(db, code, now=NOW)[0] == "already_used"
    assert redemptions.fulfill(db, code, now=NOW)[0] == "already_used"
    assert redemptions.validate(db, "99999999")[0] == "not_found"

    # Fulfilled rewards are never refunded
    result = redemptions.refund(db, reward_id=redemption.id, now=LATER)
    assert result.points_refunded == 0
    assert result.already_refunded is False
    assert balance(db, customer) == 20


def test_fulfilling_overdue_code_refunds_instead(db, customer, reward, redemptions):
    redemption = redemptions.reserve(db, "user-1", "reward-100", now=NOW)

    status, found = redemptions.fulfill(db, redemption.redemption_code, now=LATER)

    assert status == "expired"
    assert found.status == RedemptionStatus.EXPIRED.value
    assert balance(db, customer) == 120


def test_cancel_refunds_and_checks_owner(db, customer, reward, make_user, redemptions):
    make_user("user-2")
    redemption = redemptions.reserve(db, "user-1", "reward-100", now=NOW)

    with pytest.raises(RedemptionNotFound):
        redemptions.cancel(db, "user-2", redemption.redemption_code, now=NOW)

    result = redemptions.cancel(db, "user-1", redemption.redemption_code, now=NOW)
    assert result.status == RedemptionStatus.CANCELLED.value
    assert result.points_refunded == 100
    assert balance(db, customer) == 120
    assert redemptions.validate(db, redemption.redemption_code, now=NOW)[0] == "cancelled"


def test_observe_active_refunds_overdue(db, customer, reward, redemptions):
    redemptions.reserve(db, "user-1", "reward-100", now=NOW)

    assert redemptions.observe_active(db, "user-1", now=NOW + timedelta(minutes=1)) is not None
    assert redemptions.observe_active(db, "user-1", now=LATER) is None
    assert balance(db, customer) == 120


def test_sweep_refunds_only_overdue(db, make_user, reward, make_reward, redemptions):
    for user_id in ("user-1", "user-2", "user-3"):
        make_user(user_id, points=100)

    redemptions.reserve(db, "user-1", "reward-100", now=NOW)
    redemptions.reserve(db, "user-2", "reward-100", now=NOW)
    redemptions.reserve(db, "user-3", "reward-100", now=NOW + timedelta(minutes=10))

    result = redemptions.sweep_expired(db, now=LATER)

    assert result.expired == 2
    assert result.points_refunded == 200
    assert redemptions.active_for(db, "user-3") is not None
    assert redemptions.sweep_expired(db, now=LATER).expired == 0
