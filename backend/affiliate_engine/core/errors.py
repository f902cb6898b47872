"""
Error kinds raised by the affiliate engine.

Every error carries a machine-readable ``code`` so callers (HTTP
controllers, workers) can map it without string matching, plus the
human-readable message passed at construction.
"""

from __future__ import annotations

from decimal import Decimal


class AffiliateEngineError(Exception):
    code = "affiliate_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFound(AffiliateEngineError):
    """Raised when an affiliate, commission, order or payout does not exist."""

    code = "not_found"


class InvalidState(AffiliateEngineError):
    """Raised when an operation is illegal for the record's current status."""

    code = "invalid_state"


class ValidationError(AffiliateEngineError):
    """Raised for malformed or missing input."""

    code = "validation_error"


class ConflictError(AffiliateEngineError):
    """Raised when a unique key (referral code, order commission) already exists."""

    code = "conflict"


class InsufficientBalance(AffiliateEngineError):
    """Raised when a payout exceeds the affiliate's available earned balance."""

    code = "insufficient_balance"

    def __init__(self, message: str, *, available_balance: Decimal):
        super().__init__(message)
        self.available_balance = available_balance

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["available_balance"] = str(self.available_balance)
        return payload


class StoreError(AffiliateEngineError):
    """Raised when the underlying store fails or times out. Wraps the cause."""

    code = "store_error"

    def __init__(self, message: str, *, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause
