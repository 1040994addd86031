# flowaid/errors.py
"""
Donation pipeline error taxonomy.

Everything raised up to (and including) payment initiation is a
``DonationError`` carrying the HTTP status the API answers with. The
payments blueprint renders them as ``{"error": message}``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class DonationError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = int(status_code)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class ValidationError(DonationError):
    """Malformed or out-of-range request fields. ``fields`` maps payload key -> messages."""

    status_code = 400

    def __init__(self, message: str, fields: Optional[Dict[str, List[str]]] = None) -> None:
        super().__init__(message)
        self.fields = dict(fields or {})

    @classmethod
    def from_fields(cls, fields: Dict[str, List[str]]) -> "ValidationError":
        parts = [f"{key}: {msgs[0]}" for key, msgs in fields.items() if msgs]
        return cls("; ".join(parts) or "Invalid request", fields)

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.fields:
            body["fields"] = self.fields
        return body


class RateLimitExceeded(DonationError):
    status_code = 429

    def __init__(self, retry_after: int) -> None:
        self.retry_after = max(1, int(retry_after))
        super().__init__(f"Too many donation attempts. Retry after {self.retry_after} seconds.")

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["retryAfter"] = self.retry_after
        return body


class AuthenticationRequired(DonationError):
    status_code = 401


class NotFound(DonationError):
    status_code = 400


class PersistenceError(DonationError):
    status_code = 500


class GatewayConfigError(DonationError):
    """Gateway credentials absent at construction time. Fatal, not per-request."""

    status_code = 500


class GatewayError(DonationError):
    status_code = 502

    def __init__(self, message: str, http_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class GatewayAuthError(GatewayError):
    """HTTP 401 from the gateway: the operator's API key or environment is wrong."""

    status_code = 500

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(
            message
            or "Payment gateway rejected our credentials (HTTP 401). "
            "Check BITNOB_API_KEY and that it belongs to the configured gateway environment.",
            http_status=401,
        )


class NotificationError(Exception):
    """Email dispatch failure. Logged by the notifier, never surfaced to the donor."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable
