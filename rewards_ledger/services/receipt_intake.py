"""
Receipt Intake Guard.

Turns a receipt photo into points at most once per physical receipt:
  1. OCR via the backend -> (order number, total, date)
  2. normalize to a natural key (order number + month/day)
  3. duplicate check: in-process/Redis fast path, then the database
  4. insert the key and credit the points in ONE transaction

Step 4 is a primary-key insert of the normalized key, so two devices racing
on the same receipt cannot both be credited: the second insert fails and the
whole transaction (including its credit) rolls back.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rewards_ledger.core.config import get_settings
from rewards_ledger.core.database import SessionLocal, run_transaction
from rewards_ledger.core.errors import AccountBanned, AlreadyUsed, ExtractionFailed, LookupTimeout
from rewards_ledger.core.redis import cache_has, cache_mark, cache_mark_many
from rewards_ledger.models.points_transaction import PointsTransactionType
from rewards_ledger.models.receipt import UsedReceipt
from rewards_ledger.schemas.receipt import RawExtraction, ReceiptCheckResponse, ReceiptScanResponse
from rewards_ledger.services.backend_client import BackendClient
from rewards_ledger.services.points_accumulator import PointsAccumulator, load_user

logger = logging.getLogger(__name__)
settings = get_settings()

_MONTH_DAY = re.compile(r"^(\d{1,2})[/-](\d{1,2})$")
_YEAR_MONTH_DAY = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})")
_MONTH_DAY_YEAR = re.compile(r"^(\d{1,2})([/-])(\d{1,2})\2(\d{4}|\d{2})$")


@dataclass(frozen=True)
class ReceiptKey:
    """Natural key of a physical receipt."""

    order_number: str
    order_date: str

    @property
    def value(self) -> str:
        return f"{self.order_number}|{self.order_date}"

    @property
    def cache_key(self) -> str:
        return f"receipt:used:{self.value}"


def normalize_order_date(raw: str, include_year: bool = False) -> str:
    """
    Reduce a printed date to MM/DD. Accepts MM/DD, MM-DD, YYYY-MM-DD,
    MM/DD/YYYY and MM-DD-YYYY. With include_year, dates that carry a year
    become YYYY-MM-DD. Unrecognized input is returned trimmed.
    """
    text = (raw or "").strip()
    if not text:
        return text

    year: Optional[str] = None
    match = _MONTH_DAY.match(text)
    if match:
        month, day = match.groups()
    elif _YEAR_MONTH_DAY.match(text):
        year, month, day = _YEAR_MONTH_DAY.match(text).groups()
    elif _MONTH_DAY_YEAR.match(text):
        month, _, day, year = _MONTH_DAY_YEAR.match(text).groups()
        if len(year) == 2:
            year = f"20{year}"
    else:
        # e.g. "03-15 12:40" -> "03/15"
        prefix = text[:5].replace("-", "/")
        if re.fullmatch(r"\d{2}/\d{2}", prefix):
            return prefix
        return text

    month_day = f"{int(month):02d}/{int(day):02d}"
    if include_year and year:
        return f"{year}-{int(month):02d}-{int(day):02d}"
    return month_day


def normalize_receipt_key(
    order_number: str,
    order_date: str,
    include_year: Optional[bool] = None,
) -> ReceiptKey:
    """Lowercase/trim the order number and truncate the date to month-day."""
    number = (order_number or "").strip().lower()
    if not number:
        raise ExtractionFailed(details={"missingFields": ["orderNumber"]})
    if include_year is None:
        include_year = settings.RECEIPT_KEY_INCLUDE_YEAR
    return ReceiptKey(order_number=number, order_date=normalize_order_date(order_date, include_year))


def points_for_total(
    order_total: Union[Decimal, float, str],
    points_per_dollar: Optional[int] = None,
) -> int:
    """floor(total * points per dollar), computed in decimal so 23.40 -> 117."""
    rate = points_per_dollar if points_per_dollar is not None else settings.POINTS_PER_DOLLAR
    total = Decimal(str(order_total))
    if total < 0:
        raise ValueError("order_total must not be negative")
    return int((total * rate).to_integral_value(rounding=ROUND_FLOOR))


class ReceiptIntakeGuard:
    """Admits each receipt for crediting at most once."""

    def __init__(
        self,
        backend: BackendClient,
        accumulator: PointsAccumulator,
        lookup_timeout: Optional[float] = None,
    ):
        self.backend = backend
        self.accumulator = accumulator
        self.lookup_timeout = (
            lookup_timeout if lookup_timeout is not None
            else settings.DUPLICATE_LOOKUP_TIMEOUT_SECONDS
        )
        self._known_keys: set[str] = set()

    # ─── Extraction ─────────────────────────────────────────────

    async def submit_receipt_image(
        self,
        image: bytes,
        filename: str = "receipt.jpg",
        content_type: str = "image/jpeg",
    ) -> RawExtraction:
        return await self.backend.analyze_receipt(image, filename=filename, content_type=content_type)

    # ─── Fast-path cache ────────────────────────────────────────

    def warm_cache(self, db: Session) -> int:
        """Load every used key into memory (and Redis). Called at startup."""
        keys = [row[0] for row in db.query(UsedReceipt.receipt_key).all()]
        self._known_keys.update(keys)
        cache_mark_many((f"receipt:used:{k}" for k in keys), settings.USED_RECEIPT_CACHE_TTL)
        logger.info("[RECEIPT] Duplicate cache warmed with %d keys", len(keys))
        return len(keys)

    def remember(self, key: ReceiptKey) -> None:
        self._known_keys.add(key.value)
        cache_mark(key.cache_key, settings.USED_RECEIPT_CACHE_TTL)

    def is_cached(self, key: ReceiptKey) -> bool:
        return key.value in self._known_keys or cache_has(key.cache_key)

    # ─── Duplicate detection ────────────────────────────────────

    @staticmethod
    def exists(db: Session, key: ReceiptKey) -> bool:
        """Authoritative existence query on the natural key."""
        row = (
            db.query(UsedReceipt.receipt_key)
            .filter(UsedReceipt.receipt_key == key.value)
            .first()
        )
        return row is not None

    def _exists_in_own_session(self, bind, key: ReceiptKey) -> bool:
        # Runs on a worker thread; Session objects must not cross threads
        session = SessionLocal(bind=bind)
        try:
            return self.exists(session, key)
        finally:
            session.close()

    async def is_duplicate(self, db: Session, key: ReceiptKey) -> bool:
        """
        Cache first, then the database. The database lookup is abandoned after
        lookup_timeout seconds; the query itself is left to finish on its own.
        """
        if self.is_cached(key):
            logger.info("[RECEIPT] Cache hit for used receipt %s", key.value)
            return True

        try:
            found = await asyncio.wait_for(
                asyncio.to_thread(self._exists_in_own_session, db.get_bind(), key),
                timeout=self.lookup_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("[RECEIPT] Duplicate lookup for %s timed out after %.1fs", key.value, self.lookup_timeout)
            raise LookupTimeout(details={"timeoutSeconds": self.lookup_timeout})

        if found:
            self.remember(key)
        return found

    # ─── Admission ──────────────────────────────────────────────

    @staticmethod
    def admit_receipt(
        db: Session,
        key: ReceiptKey,
        user_id: Optional[str] = None,
        order_total: Optional[Decimal] = None,
        points_awarded: int = 0,
    ) -> UsedReceipt:
        """
        Stage the UsedReceipt row in the caller's transaction and flush it.
        A second admission of the same key fails here with AlreadyUsed; the
        caller's transaction must then be rolled back.
        """
        record = UsedReceipt(
            receipt_key=key.value,
            order_number=key.order_number,
            order_date=key.order_date,
            order_total=float(order_total) if order_total is not None else None,
            user_id=user_id,
            points_awarded=points_awarded,
        )
        db.add(record)
        try:
            db.flush()
        except IntegrityError as e:
            raise AlreadyUsed(details={"orderNumber": key.order_number, "orderDate": key.order_date}) from e
        return record

    async def check_receipt(self, db: Session, order_number: str, order_date: str) -> ReceiptCheckResponse:
        key = normalize_receipt_key(order_number, order_date)
        used = await self.is_duplicate(db, key)
        return ReceiptCheckResponse(
            receipt_key=key.value,
            order_number=key.order_number,
            order_date=key.order_date,
            already_used=used,
        )

    async def scan_receipt(
        self,
        db: Session,
        user_id: str,
        image: bytes,
        filename: str = "receipt.jpg",
        content_type: str = "image/jpeg",
    ) -> ReceiptScanResponse:
        """Full intake: extract, dedupe, admit and credit, then audit."""
        user = load_user(db, user_id)
        if user.is_banned:
            raise AccountBanned(details={"userId": user_id})

        extraction = await self.submit_receipt_image(image, filename=filename, content_type=content_type)
        key = normalize_receipt_key(extraction.order_number, extraction.order_date)
        conflict = {"orderNumber": extraction.order_number, "orderDate": key.order_date}

        if await self.is_duplicate(db, key):
            logger.info("[RECEIPT] Duplicate receipt %s from %s", key.value, user_id)
            raise AlreadyUsed(details=conflict)

        points = points_for_total(extraction.order_total)

        def _admit_and_credit(s: Session):
            self.admit_receipt(s, key, user_id, extraction.order_total, points)
            return self.accumulator.apply_delta(s, user_id, points, PointsTransactionType.RECEIPT_CREDIT)

        try:
            change = run_transaction(db, _admit_and_credit)
        except AlreadyUsed:
            # Lost the race to another device
            self.remember(key)
            logger.info("[RECEIPT] Receipt %s admitted concurrently elsewhere", key.value)
            raise AlreadyUsed(details=conflict)

        self.remember(key)
        logger.info("[RECEIPT] %s earned %d points for order %s", user_id, points, key.value)

        self.accumulator.record_transaction(
            db,
            change,
            PointsTransactionType.RECEIPT_CREDIT,
            f"Receipt scan - Order #{extraction.order_number}",
            {
                "orderNumber": extraction.order_number,
                "orderTotal": float(extraction.order_total),
                "orderDate": key.order_date,
                "receiptKey": key.value,
            },
        )

        return ReceiptScanResponse(
            order_number=extraction.order_number,
            order_total=float(extraction.order_total),
            order_date=key.order_date,
            points_awarded=points,
            new_points_balance=change.new_balance,
            new_lifetime_points=change.new_lifetime_points,
        )
