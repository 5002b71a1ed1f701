"""
REST backend HTTP client.

Wraps the backend endpoints the ledger depends on:
  - POST /analyze-receipt            OCR of a receipt photo (multipart "image")
  - GET  /reward-tier-items/...      menu items a reward tier can be spent on
  - GET  /admin/suspicious-flags     fraud signals for admin review
  - POST /admin/suspicious-flags/{id}/review

Every call is single-attempt. Transport failures become NetworkError and
non-2xx answers become BackendError (or a more specific ledger error when the
backend's errorCode says so); the caller decides whether to try again.
"""

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from rewards_ledger.core.config import get_settings
from rewards_ledger.core.errors import (
    AlreadyUsed,
    BackendError,
    DailyLimitReached,
    ExtractionFailed,
    NetworkError,
    RateLimited,
    ReceiptRejected,
)
from rewards_ledger.schemas.admin import ReviewFlagResponse, SuspiciousFlagsPage
from rewards_ledger.schemas.receipt import RawExtraction
from rewards_ledger.schemas.reward import RewardEligibleItem, RewardTierItemsResponse

logger = logging.getLogger(__name__)

REQUIRED_RECEIPT_FIELDS = ("orderNumber", "orderTotal", "orderDate")

# Backend error codes meaning "the photo could not be read", as opposed to a server fault
EXTRACTION_ERROR_CODES = {
    "NO_IMAGE",
    "MISSING_FIELDS",
    "TOTAL_SECTION_NOT_VISIBLE",
    "TOTAL_INVALID",
    "TOTAL_INCONSISTENT",
    "DATE_FORMAT_INVALID",
    "TIME_FORMAT_INVALID",
    "ORDER_NUMBER_INVALID",
    "ORDER_NUMBER_SOURCE_INVALID",
    "AI_JSON_EXTRACT_FAILED",
    "DOUBLE_PARSE_MISMATCH",
    "KEY_FIELDS_INVALID",
}

# Receipt refused by backend policy rather than by a server fault
REJECTION_ERRORS = {
    "EXPIRED_48H": (ReceiptRejected, "Receipts must be scanned within 48 hours of purchase."),
    "FUTURE_DATE": (ReceiptRejected, "This receipt is dated in the future."),
    "RATE_LIMITED": (RateLimited, None),
    "DAILY_RECEIPT_LIMIT_REACHED": (DailyLimitReached, None),
}


class BackendClient:
    """Async client for the REST backend."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.BACKEND_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.BACKEND_TIMEOUT_SECONDS
        self.analyze_path = settings.RECEIPT_ANALYZE_PATH
        self._transport = transport

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.warning("[BACKEND] %s %s failed: %s", method, path, e)
            raise NetworkError(details={"path": path}) from e

        logger.info("[BACKEND] %s %s -> %d", method, path, response.status_code)
        return response

    @staticmethod
    def _body(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            if response.is_success:
                raise BackendError(response.status_code, "Failed to decode response")
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _raise_for_status(response: httpx.Response, body: dict[str, Any]) -> None:
        if response.is_success:
            return
        code = str(body.get("errorCode") or "").upper()
        message = body.get("error") or f"Server error {response.status_code}"
        details = {"backendErrorCode": code} if code else None
        raise BackendError(response.status_code, message, details)

    # ─── Receipt OCR ────────────────────────────────────────────

    async def analyze_receipt(
        self,
        image: bytes,
        filename: str = "receipt.jpg",
        content_type: str = "image/jpeg",
    ) -> RawExtraction:
        """Upload a receipt photo and return the extracted (order number, total, date)."""
        if not image:
            raise ExtractionFailed("No image was provided.", {"backendErrorCode": "NO_IMAGE"})

        response = await self._send(
            "POST",
            self.analyze_path,
            files={"image": (filename, image, content_type)},
        )
        body = self._body(response)

        if not response.is_success:
            code = str(body.get("errorCode") or "").upper()
            if code == "DUPLICATE_RECEIPT":
                raise AlreadyUsed(details={"backendErrorCode": code})
            if code in EXTRACTION_ERROR_CODES:
                raise ExtractionFailed(body.get("error"), {"backendErrorCode": code})
            if code in REJECTION_ERRORS:
                error_cls, message = REJECTION_ERRORS[code]
                raise error_cls(message, {"backendErrorCode": code})
            self._raise_for_status(response, body)

        # Newer backends nest the fields under "receipt"
        payload = body.get("receipt") if isinstance(body.get("receipt"), dict) else body

        missing = [f for f in REQUIRED_RECEIPT_FIELDS if payload.get(f) in (None, "")]
        if missing:
            raise ExtractionFailed(details={"missingFields": missing})

        try:
            return RawExtraction(
                order_number=str(payload["orderNumber"]).strip(),
                order_total=str(payload["orderTotal"]),
                order_date=str(payload["orderDate"]).strip(),
            )
        except ValidationError as e:
            raise ExtractionFailed(details={"invalidFields": [err["loc"][0] for err in e.errors()]}) from e

    # ─── Reward tiers ───────────────────────────────────────────

    async def fetch_eligible_items(
        self,
        points_required: int,
        tier_id: Optional[str] = None,
    ) -> RewardTierItemsResponse:
        """Menu items a reward can be spent on, by tier id when known, else by cost."""
        path = (
            f"/reward-tier-items/by-id/{tier_id}"
            if tier_id
            else f"/reward-tier-items/{points_required}"
        )
        response = await self._send("GET", path)
        body = self._body(response)
        self._raise_for_status(response, body)

        items = [
            RewardEligibleItem(
                item_id=str(item.get("itemId")),
                item_name=item.get("itemName") or "",
                category_id=item.get("categoryId"),
                image_url=item.get("imageURL"),
            )
            for item in body.get("eligibleItems") or []
            if item.get("itemId")
        ]
        return RewardTierItemsResponse(
            points_required=int(body.get("pointsRequired") or points_required),
            tier_name=body.get("tierName"),
            eligible_items=items,
        )

    # ─── Suspicious flags (admin) ───────────────────────────────

    async def list_suspicious_flags(
        self,
        status: Optional[str] = "pending",
        severity: Optional[str] = None,
        flag_type: Optional[str] = None,
        cursor: Optional[str] = None,
    ) -> SuspiciousFlagsPage:
        """One page of fraud flags; pass next_cursor back to continue."""
        params = {
            "status": status,
            "severity": severity,
            "flagType": flag_type,
            "cursor": cursor,
        }
        response = await self._send(
            "GET",
            "/admin/suspicious-flags",
            params={k: v for k, v in params.items() if v},
        )
        body = self._body(response)
        self._raise_for_status(response, body)
        try:
            return SuspiciousFlagsPage.model_validate(body)
        except ValidationError as e:
            raise BackendError(response.status_code, "Failed to decode response") from e

    async def review_suspicious_flag(
        self,
        flag_id: str,
        action: str,
        notes: Optional[str] = None,
    ) -> ReviewFlagResponse:
        payload: dict[str, Any] = {"action": action}
        if notes:
            payload["notes"] = notes
        response = await self._send(
            "POST",
            f"/admin/suspicious-flags/{flag_id}/review",
            json=payload,
        )
        body = self._body(response)
        self._raise_for_status(response, body)
        return ReviewFlagResponse(
            success=bool(body.get("success", True)),
            message=body.get("message") or "",
        )
