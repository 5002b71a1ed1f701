import time
from decimal import Decimal

import httpx
import pytest
from sqlalchemy.orm import Session

from rewards_ledger.core.errors import AccountBanned, AlreadyUsed, ExtractionFailed, LookupTimeout
from rewards_ledger.models.points_transaction import PointsTransaction, PointsTransactionType
from rewards_ledger.models.receipt import UsedReceipt
from rewards_ledger.services.receipt_intake import (
    ReceiptIntakeGuard,
    normalize_order_date,
    normalize_receipt_key,
    points_for_total,
)


def receipt(order_number="A-1001", total=23.40, date="03/15/2024"):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={
            "orderNumber": order_number,
            "orderTotal": total,
            "orderDate": date,
        })
    return handler


@pytest.mark.parametrize("raw, expected", [
    ("03/15", "03/15"),
    ("3/5", "03/05"),
    ("03-15", "03/15"),
    ("2024-03-15", "03/15"),
    ("03/15/2024", "03/15"),
    ("03-15-24", "03/15"),
    ("03-15 12:40", "03/15"),
])
def test_normalize_order_date_reduces_to_month_day(raw, expected):
    assert normalize_order_date(raw) == expected


def test_normalize_order_date_with_year():
    assert normalize_order_date("03/15/24", include_year=True) == "2024-03-15"
    # No year printed, nothing to keep
    assert normalize_order_date("03/15", include_year=True) == "03/15"


def test_normalize_receipt_key_trims_and_lowercases():
    key = normalize_receipt_key("  AB-1001 ", "2024-03-15", include_year=False)
    assert key.order_number == "ab-1001"
    assert key.order_date == "03/15"
    assert key.value == "ab-1001|03/15"
    assert key.cache_key == "receipt:used:ab-1001|03/15"


def test_normalize_receipt_key_requires_order_number():
    with pytest.raises(ExtractionFailed):
        normalize_receipt_key("   ", "03/15")


def test_points_for_total_floors_in_decimal():
    assert points_for_total(23.40) == 117
    assert points_for_total("19.99") == 99
    assert points_for_total(Decimal("0")) == 0
    assert points_for_total(10, points_per_dollar=2) == 20
    with pytest.raises(ValueError):
        points_for_total(-1)


@pytest.mark.asyncio
async def test_scan_credits_points_and_records_ledger(db, make_user, guard, backend_handler):
    user = make_user("user-1")
    backend_handler.handler = receipt()

    result = await guard.scan_receipt(db, "user-1", b"jpeg-bytes")

    assert result.points_awarded == 117
    assert result.new_points_balance == 117
    assert result.new_lifetime_points == 117
    assert result.order_date == "03/15"

    db.refresh(user)
    assert user.points == 117
    assert user.lifetime_points == 117

    entries = db.query(PointsTransaction).filter(PointsTransaction.user_id == "user-1").all()
    assert len(entries) == 1
    assert entries[0].type == PointsTransactionType.RECEIPT_CREDIT.value
    assert entries[0].amount == 117
    assert entries[0].description == "Receipt scan - Order #A-1001"
    assert entries[0].meta["previousPoints"] == 0
    assert entries[0].meta["newPoints"] == 117
    assert entries[0].meta["receiptKey"] == "a-1001|03/15"

    assert db.get(UsedReceipt, "a-1001|03/15").user_id == "user-1"

    # The upload reached the backend as multipart
    upload = backend_handler.requests[0]
    assert upload.url.path == "/analyze-receipt"
    assert b"jpeg-bytes" in upload.read()


@pytest.mark.asyncio
async def test_second_scan_of_same_receipt_earns_nothing(db, make_user, guard, backend_handler):
    first = make_user("user-1")
    second = make_user("user-2")
    backend_handler.handler = receipt()
    await guard.scan_receipt(db, "user-1", b"photo-1")

    # Same receipt, different photo, date printed differently, another account
    backend_handler.handler = receipt(order_number="a-1001", date="2024-03-15")
    with pytest.raises(AlreadyUsed) as exc_info:
        await guard.scan_receipt(db, "user-2", b"photo-2")

    assert exc_info.value.details == {"orderNumber": "a-1001", "orderDate": "03/15"}
    db.refresh(first)
    db.refresh(second)
    assert first.points == 117
    assert second.points == 0
    assert db.query(PointsTransaction).count() == 1


@pytest.mark.asyncio
async def test_duplicate_found_in_database_by_fresh_guard(db, make_user, backend, accumulator, backend_handler):
    make_user("user-1")
    backend_handler.handler = receipt()
    await ReceiptIntakeGuard(backend, accumulator).scan_receipt(db, "user-1", b"photo")

    restarted = ReceiptIntakeGuard(backend, accumulator)
    key = normalize_receipt_key("A-1001", "03/15")
    assert not restarted.is_cached(key)
    assert await restarted.is_duplicate(db, key)
    assert restarted.is_cached(key)


@pytest.mark.asyncio
async def test_lost_admission_race_rolls_back_credit(db, make_user, guard, backend_handler, monkeypatch):
    user = make_user("user-1", points=50)
    # Another device admitted the receipt after our duplicate check passed
    ReceiptIntakeGuard.admit_receipt(db, normalize_receipt_key("A-1001", "03/15"), "user-2")
    db.commit()

    async def not_duplicate(db, key):
        return False

    monkeypatch.setattr(guard, "is_duplicate", not_duplicate)
    backend_handler.handler = receipt()

    with pytest.raises(AlreadyUsed):
        await guard.scan_receipt(db, "user-1", b"photo")

    db.refresh(user)
    assert user.points == 50
    assert user.lifetime_points == 50
    assert db.query(PointsTransaction).count() == 0


def test_admit_receipt_twice_fails(db, make_user):
    make_user("user-1")
    key = normalize_receipt_key("B-7", "04/01")
    ReceiptIntakeGuard.admit_receipt(db, key, "user-1", Decimal("12.00"), 60)
    db.commit()

    with pytest.raises(AlreadyUsed):
        ReceiptIntakeGuard.admit_receipt(db, key, "user-1", Decimal("12.00"), 60)
    db.rollback()
    assert db.query(UsedReceipt).count() == 1


@pytest.mark.asyncio
async def test_slow_duplicate_lookup_times_out(db, backend, accumulator, monkeypatch):
    guard = ReceiptIntakeGuard(backend, accumulator, lookup_timeout=0.05)

    def slow_exists(db, key):
        time.sleep(0.5)
        return False

    monkeypatch.setattr(guard, "exists", slow_exists)

    with pytest.raises(LookupTimeout) as exc_info:
        await guard.is_duplicate(db, normalize_receipt_key("C-1", "05/05"))
    assert exc_info.value.retryable


@pytest.mark.asyncio
async def test_duplicate_lookup_uses_its_own_session(db, make_user, backend, accumulator, monkeypatch):
    make_user("user-1")
    key = normalize_receipt_key("D-4", "06/01")
    ReceiptIntakeGuard.admit_receipt(db, key, "user-1", Decimal("8.00"), 40)
    db.commit()

    guard = ReceiptIntakeGuard(backend, accumulator)
    seen = []
    real_exists = guard.exists

    def recording_exists(session, lookup_key):
        seen.append(session)
        return real_exists(session, lookup_key)

    closed = []
    real_close = Session.close

    def recording_close(self):
        closed.append(self)
        real_close(self)

    monkeypatch.setattr(guard, "exists", recording_exists)
    monkeypatch.setattr(Session, "close", recording_close)

    assert await guard.is_duplicate(db, key)
    assert len(seen) == 1
    assert seen[0] is not db
    assert seen[0].get_bind() is db.get_bind()
    assert closed == seen


@pytest.mark.asyncio
async def test_banned_user_cannot_scan(db, make_user, guard, backend_handler):
    make_user("user-1", is_banned=True)
    backend_handler.handler = receipt()

    with pytest.raises(AccountBanned):
        await guard.scan_receipt(db, "user-1", b"photo")
    assert backend_handler.requests == []


@pytest.mark.asyncio
async def test_incomplete_extraction_credits_nothing(db, make_user, guard, backend_handler):
    user = make_user("user-1")
    backend_handler.handler = lambda request: httpx.Response(200, json={
        "success": True,
        "receipt": {"orderNumber": "D-9", "orderTotal": None, "orderDate": "06/01"},
    })

    with pytest.raises(ExtractionFailed) as exc_info:
        await guard.scan_receipt(db, "user-1", b"photo")

    assert exc_info.value.details["missingFields"] == ["orderTotal"]
    db.refresh(user)
    assert user.points == 0
    assert db.query(UsedReceipt).count() == 0


@pytest.mark.asyncio
async def test_check_receipt(db, make_user, guard, backend_handler):
    make_user("user-1")
    before = await guard.check_receipt(db, "E-5", "07/04/2024")
    assert before.already_used is False

    backend_handler.handler = receipt(order_number="E-5", total=8.10, date="07/04")
    await guard.scan_receipt(db, "user-1", b"photo")

    after = await guard.check_receipt(db, "e-5", "2024-07-04")
    assert after.already_used is True
    assert after.receipt_key == "e-5|07/04"
