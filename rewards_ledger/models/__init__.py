# ORM models
from rewards_ledger.models.user import UserAccount
from rewards_ledger.models.points_transaction import PointsTransaction, PointsTransactionType
from rewards_ledger.models.receipt import UsedReceipt
from rewards_ledger.models.reward import RewardOption, Redemption, RedemptionStatus

__all__ = [
    "UserAccount",
    "PointsTransaction",
    "PointsTransactionType",
    "UsedReceipt",
    "RewardOption",
    "Redemption",
    "RedemptionStatus",
]
