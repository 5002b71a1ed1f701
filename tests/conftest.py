import os
import sys

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from rewards_ledger import models  # noqa: F401,E402
from rewards_ledger.api.deps import (  # noqa: E402
    get_accumulator,
    get_backend_client,
    get_intake_guard,
    get_redemptions,
)
from rewards_ledger.core.database import Base, get_db  # noqa: E402
from rewards_ledger.main import app  # noqa: E402
from rewards_ledger.models.reward import RewardOption  # noqa: E402
from rewards_ledger.models.user import UserAccount  # noqa: E402
from rewards_ledger.services.backend_client import BackendClient  # noqa: E402
from rewards_ledger.services.points_accumulator import PointsAccumulator  # noqa: E402
from rewards_ledger.services.receipt_intake import ReceiptIntakeGuard  # noqa: E402
from rewards_ledger.services.redemption import RedemptionLifecycle  # noqa: E402

BACKEND_URL = "http://backend.test"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make(user_id="user-1", points=0, lifetime_points=None, **kwargs):
        user = UserAccount(
            user_id=user_id,
            name=kwargs.pop("name", "Test User"),
            points=points,
            lifetime_points=points if lifetime_points is None else lifetime_points,
            **kwargs,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_reward(db):
    def _make(reward_id="reward-100", points_required=100, **kwargs):
        reward = RewardOption(
            reward_id=reward_id,
            title=kwargs.pop("title", f"Reward {points_required}"),
            points_required=points_required,
            category=kwargs.pop("category", "Food"),
            **kwargs,
        )
        db.add(reward)
        db.commit()
        return reward

    return _make


@pytest.fixture
def backend_handler():
    """Mutable request handler; tests replace .handler to script the backend."""

    class Script:
        def __init__(self):
            self.requests = []
            self.handler = lambda request: httpx.Response(404, json={"error": "not scripted"})

        def __call__(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return self.handler(request)

    return Script()


@pytest.fixture
def backend(backend_handler):
    return BackendClient(base_url=BACKEND_URL, transport=httpx.MockTransport(backend_handler))


@pytest.fixture
def accumulator():
    return PointsAccumulator()


@pytest.fixture
def guard(backend, accumulator):
    return ReceiptIntakeGuard(backend, accumulator)


@pytest.fixture
def redemptions(accumulator):
    return RedemptionLifecycle(accumulator, expiry_minutes=15)


@pytest.fixture
def client(session_factory, backend, accumulator, guard, redemptions):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_accumulator] = lambda: accumulator
    app.dependency_overrides[get_backend_client] = lambda: backend
    app.dependency_overrides[get_intake_guard] = lambda: guard
    app.dependency_overrides[get_redemptions] = lambda: redemptions
    try:
        # No context manager: the startup hook (file database, demo seed) stays off
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
