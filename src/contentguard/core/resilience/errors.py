"""
Classified remote-API errors.

Every failure that leaves the resilience core is a ``ClassifiedError``.
Whether it may be retried follows only from its kind and HTTP status.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Failure taxonomy."""

    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    VALIDATION = "validation"
    REMOTE_FAULT = "remote_fault"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMIT, ErrorKind.NETWORK, ErrorKind.REMOTE_FAULT})

TROUBLESHOOTING = {
    ErrorKind.AUTHENTICATION: (
        "Verify the API credentials are correct and have not expired. "
        "Re-authenticate if necessary."
    ),
    ErrorKind.RATE_LIMIT: (
        "Reduce the frequency of API requests or add delays between operations. "
        "The remote API allows 1000 requests per hour per user."
    ),
    ErrorKind.NETWORK: (
        "Check the internet connection and firewall settings. "
        "Ensure the API endpoints are reachable."
    ),
    ErrorKind.VALIDATION: (
        "Review the input parameters and ensure all required fields are "
        "provided with valid values."
    ),
    ErrorKind.REMOTE_FAULT: (
        "This appears to be a temporary server issue. Retrying later usually succeeds."
    ),
    ErrorKind.UNKNOWN: (
        "Check the error details and consult the API documentation for more information."
    ),
}


def is_retryable(kind: ErrorKind, http_status: int | None = None) -> bool:
    """Decide retryability from the kind and status alone."""
    if kind is ErrorKind.REMOTE_FAULT and http_status is not None:
        return 500 <= http_status < 600
    return kind in RETRYABLE_KINDS


class ClassifiedError(Exception):
    """A typed, retry-annotated failure.

    ``str(error)`` is the message exactly as extracted from the remote
    response, so callers can surface it verbatim.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        http_status: int | None = None,
        retry_after_seconds: float | None = None,
        occurred_at: datetime | None = None,
        details: dict[str, Any] | None = None,
        error_code: str | None = None,
        cause: BaseException | None = None,
        attempts: int = 1,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.http_status = http_status
        self.retry_after_seconds = retry_after_seconds
        self.occurred_at = occurred_at or datetime.now(timezone.utc)
        self.details = details or {}
        self.error_code = error_code
        self.cause = cause
        self.attempts = attempts

    @property
    def retryable(self) -> bool:
        return is_retryable(self.kind, self.http_status)

    @property
    def troubleshooting(self) -> str:
        return TROUBLESHOOTING[self.kind]

    def format_message(self) -> str:
        """Message for user display with troubleshooting guidance."""
        status = f" (HTTP {self.http_status})" if self.http_status else ""
        return (
            f"Remote API error ({self.kind.value}){status}: {self.message}"
            f"\n\nTroubleshooting: {self.troubleshooting}"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "kind": self.kind.value,
            "http_status": self.http_status,
            "message": self.message,
            "retryable": self.retryable,
            "retry_after_seconds": self.retry_after_seconds,
            "occurred_at": self.occurred_at.isoformat(),
            "error_code": self.error_code,
            "attempts": self.attempts,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return (
            f"ClassifiedError(kind={self.kind.value!r}, http_status={self.http_status!r}, "
            f"message={self.message!r}, retryable={self.retryable})"
        )
