from rewards_ledger.models.points_transaction import PointsTransaction
from rewards_ledger.models.receipt import UsedReceipt
from rewards_ledger.models.reward import RewardOption
from rewards_ledger.models.user import UserAccount
from rewards_ledger.services.seed_data import CUSTOMERS, REWARDS, seed_database


def test_seed_balances_are_backed_by_ledger(db, accumulator):
    seed_database(db, accumulator)

    assert db.query(RewardOption).count() == len(REWARDS)
    assert db.query(UserAccount).count() == len(CUSTOMERS) + 1

    leo = db.get(UserAccount, "22222222-2222-2222-2222-222222222222")
    assert leo.points == 117
    assert leo.lifetime_points == 117

    sam = db.get(UserAccount, "44444444-4444-4444-4444-444444444444")
    assert sam.points == 321 + 279 + 356 + 240

    for user in db.query(UserAccount).all():
        ledger_total = sum(
            t.amount for t in db.query(PointsTransaction).filter(PointsTransaction.user_id == user.user_id)
        )
        assert ledger_total == user.points

    receipts = sum(len(totals) for _, _, _, totals in CUSTOMERS)
    assert db.query(UsedReceipt).count() == receipts


def test_seed_is_skipped_when_users_exist(db, make_user, accumulator):
    make_user("someone")
    seed_database(db, accumulator)
    assert db.query(UserAccount).count() == 1
    assert db.query(RewardOption).count() == 0
