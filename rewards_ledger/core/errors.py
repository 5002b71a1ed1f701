"""
Ledger error taxonomy.

Services raise these; the API layer turns them into JSON responses of the form
{"success": false, "error": <message>, "errorCode": <code>, ...details}.
"""

from typing import Any, Optional


class LedgerError(Exception):
    """Base class for every error surfaced to a caller."""

    status_code: int = 500
    error_code: str = "SERVER_ERROR"
    message: str = "Something went wrong. Please try again."
    retryable: bool = False

    def __init__(self, message: Optional[str] = None, details: Optional[dict[str, Any]] = None):
        self.message = message or self.message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "errorCode": self.error_code,
            "retryable": self.retryable,
            **self.details,
        }


class NetworkError(LedgerError):
    status_code = 502
    error_code = "NETWORK_ERROR"
    message = "Could not reach the server. Please try again."
    retryable = True


class BackendError(NetworkError):
    """Backend answered with a non-success status."""

    error_code = "BACKEND_ERROR"
    message = "The server could not process the request."

    def __init__(self, status: int, message: Optional[str] = None, details: Optional[dict[str, Any]] = None):
        self.backend_status = status
        super().__init__(message, {"backendStatus": status, **(details or {})})


class ExtractionFailed(LedgerError):
    status_code = 422
    error_code = "EXTRACTION_FAILED"
    message = "Could not extract all fields from receipt."
    retryable = True


class AlreadyUsed(LedgerError):
    status_code = 409
    error_code = "DUPLICATE_RECEIPT"
    message = "This receipt has already been used. +0 points."


class InsufficientPoints(LedgerError):
    status_code = 409
    error_code = "INSUFFICIENT_POINTS"
    message = "Not enough points for this reward."


class AlreadyHasActiveRedemption(LedgerError):
    status_code = 409
    error_code = "ACTIVE_REDEMPTION_EXISTS"
    message = "You already have an active reward. Use or cancel it first."


class TransactionConflict(LedgerError):
    status_code = 409
    error_code = "TRANSACTION_CONFLICT"
    message = "Your balance changed while we were updating it. Please try again."
    retryable = True


class LookupTimeout(LedgerError):
    status_code = 504
    error_code = "TIMEOUT"
    message = "The request timed out. Please try again."
    retryable = True


class UserNotFound(LedgerError):
    status_code = 404
    error_code = "USER_NOT_FOUND"
    message = "User not found."


class RewardNotFound(LedgerError):
    status_code = 404
    error_code = "REWARD_NOT_FOUND"
    message = "Reward not found."


class RedemptionNotFound(LedgerError):
    status_code = 404
    error_code = "REDEMPTION_NOT_FOUND"
    message = "No matching reward found."


class AccountBanned(LedgerError):
    status_code = 403
    error_code = "ACCOUNT_BANNED"
    message = "This account is not allowed to earn or redeem points."


class RedemptionNotExpired(LedgerError):
    status_code = 409
    error_code = "NOT_EXPIRED"
    message = "This reward has not expired yet."


class ReceiptRejected(LedgerError):
    """Backend read the receipt but will never accept it (too old, future dated)."""

    status_code = 422
    error_code = "RECEIPT_REJECTED"
    message = "This receipt can no longer be scanned."


class RateLimited(LedgerError):
    status_code = 429
    error_code = "RATE_LIMITED"
    message = "Too many scans. Please wait a moment and try again."
    retryable = True


class DailyLimitReached(RateLimited):
    error_code = "DAILY_RECEIPT_LIMIT_REACHED"
    message = "You have reached today's receipt limit. Try again tomorrow."
    retryable = False


class RedemptionClosed(LedgerError):
    """A replayed redeem request whose redemption is no longer live."""

    status_code = 409
    error_code = "REDEMPTION_CLOSED"
    message = "This reward is no longer active. Start a new redemption."
