"""
Database Seed Script.

Seeds a small demo restaurant:
1. Reward catalog   - sauces, food and drinks at 100 to 650 points
2. Four customers   - balances built from historical receipt credits, so
                      every seeded point has a matching ledger entry
3. One admin        - for the adjustment and point-of-sale endpoints
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from rewards_ledger.core.database import run_transaction, utcnow
from rewards_ledger.models.points_transaction import PointsTransactionType
from rewards_ledger.models.reward import RewardOption
from rewards_ledger.models.user import UserAccount
from rewards_ledger.services.points_accumulator import PointsAccumulator
from rewards_ledger.services.receipt_intake import ReceiptIntakeGuard, normalize_receipt_key, points_for_total

logger = logging.getLogger(__name__)

REWARDS = [
    {"reward_id": "peanut-sauce", "title": "Free Peanut Sauce", "points_required": 250,
     "category": "Sauce", "description": "One side of house peanut sauce"},
    {"reward_id": "drink-any", "title": "Free Drink", "points_required": 450,
     "category": "Drinks", "tier_id": "tier-drinks-450",
     "description": "Any fruit tea, milk tea or coffee"},
    {"reward_id": "dumplings-6", "title": "6 Piece Dumplings", "points_required": 650,
     "category": "Food", "tier_id": "tier-dumplings-650",
     "description": "Pick one flavor, or go half and half"},
    {"reward_id": "fried-rice", "title": "Free Fried Rice", "points_required": 400,
     "category": "Food", "description": "Choose your cooking method"},
    {"reward_id": "drink-topping", "title": "Free Drink Topping", "points_required": 100,
     "category": "Drinks", "eligible_item_ids": ["boba", "lychee-jelly", "coffee-jelly"],
     "description": "Add one topping to any drink"},
]

# (user_id, name, phone, receipt totals in dollars)
CUSTOMERS = [
    ("11111111-1111-1111-1111-111111111111", "Mia Chen", "+15550000001", []),
    ("22222222-2222-2222-2222-222222222222", "Leo Park", "+15550000002", [23.40]),
    ("33333333-3333-3333-3333-333333333333", "Ana Ruiz", "+15550000003", [18.75, 42.10, 31.00]),
    ("44444444-4444-4444-4444-444444444444", "Sam Okafor", "+15550000004", [64.20, 55.85, 71.30, 48.00]),
]

ADMIN = ("99999999-9999-9999-9999-999999999999", "Store Admin", "+15550000099")


def seed_database(db: Session, accumulator: PointsAccumulator) -> None:
    """
    Seeds the catalog, customers and their receipt history.
    Skips seeding if users already exist.
    """
    existing = db.query(UserAccount).count()
    if existing > 0:
        logger.info(f"Database already has {existing} users, skipping seed")
        return

    logger.info("Seeding database with demo catalog and customers...")

    for reward in REWARDS:
        db.add(RewardOption(**reward))

    admin_id, admin_name, admin_phone = ADMIN
    db.add(UserAccount(user_id=admin_id, name=admin_name, phone=admin_phone, is_admin=True, is_employee=True))

    for user_id, name, phone, _ in CUSTOMERS:
        db.add(UserAccount(user_id=user_id, name=name, phone=phone))
    db.commit()

    for user_id, _, _, totals in CUSTOMERS:
        _credit_receipt_history(db, accumulator, user_id, totals)

    logger.info("Database seeded with %d rewards and %d customers", len(REWARDS), len(CUSTOMERS))


def _credit_receipt_history(db: Session, accumulator: PointsAccumulator, user_id: str, totals: list[float]) -> None:
    """Replay past receipts through intake and the accumulator so balances are audited."""
    today = utcnow()
    for i, total in enumerate(totals):
        order_day: datetime = today - timedelta(days=7 * (i + 1))
        order_number = f"{user_id[:4]}-{i + 1:03d}"
        key = normalize_receipt_key(order_number, order_day.strftime("%m/%d"))
        points = points_for_total(total)

        def _admit_and_credit(s: Session):
            ReceiptIntakeGuard.admit_receipt(s, key, user_id, Decimal(str(total)), points)
            return accumulator.apply_delta(s, user_id, points, PointsTransactionType.RECEIPT_CREDIT)

        change = run_transaction(db, _admit_and_credit)
        accumulator.record_transaction(
            db,
            change,
            PointsTransactionType.RECEIPT_CREDIT,
            f"Receipt scan - Order #{order_number}",
            {"orderNumber": order_number, "orderTotal": total, "orderDate": key.order_date, "seeded": True},
        )
