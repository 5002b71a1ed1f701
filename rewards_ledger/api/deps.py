"""
Service singletons handed to the routers through Depends().

The accumulator owns the audit outbox, so every router must share one
instance. Tests swap these out via app.dependency_overrides.
"""

from functools import lru_cache

from rewards_ledger.services.backend_client import BackendClient
from rewards_ledger.services.points_accumulator import PointsAccumulator
from rewards_ledger.services.receipt_intake import ReceiptIntakeGuard
from rewards_ledger.services.redemption import RedemptionLifecycle


@lru_cache()
def get_accumulator() -> PointsAccumulator:
    return PointsAccumulator()


@lru_cache()
def get_backend_client() -> BackendClient:
    return BackendClient()


@lru_cache()
def get_intake_guard() -> ReceiptIntakeGuard:
    return ReceiptIntakeGuard(get_backend_client(), get_accumulator())


@lru_cache()
def get_redemptions() -> RedemptionLifecycle:
    return RedemptionLifecycle(get_accumulator())
