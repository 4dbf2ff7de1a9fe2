"""
Error classification for remote API failures.

Maps whatever the transport produced into a ``ClassifiedError``:

    no response (timeout, DNS, reset) → network       → retry
    HTTP 401 / 403                    → authentication → fail immediately
    HTTP 429                          → rate_limit     → retry after hint
    HTTP 5xx                          → remote_fault   → retry
    other HTTP 4xx                    → validation     → fail immediately
    anything else                     → unknown        → fail immediately
"""

from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
import orjson

from contentguard.core.transport.base import (
    HttpStatusFailure,
    MalformedResponseError,
    RawResponse,
    TransportError,
)

from .errors import ClassifiedError, ErrorKind

logger = logging.getLogger(__name__)

# Failures where no response was received
NETWORK_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TransportError,
    httpx.TransportError,
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    socket.gaierror,
)

# Refused or dropped connections
CONNECTION_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
    ConnectionError,
)

# Resolver messages seen when the cause chain was not preserved
DNS_HINTS = ("name or service not known", "getaddrinfo", "nodename nor servname", "name resolution")

# Reset headers consulted when Retry-After is absent, in order
RESET_HEADERS = (
    "x-ratelimit-reset",
    "x-ratelimit-perhour-reset",
    "x-ratelimit-perday-reset",
)

# Values above this are treated as epoch timestamps rather than deltas
_EPOCH_THRESHOLD = 1_000_000_000

STATUS_MESSAGES = {
    400: "Bad request - Invalid parameters or request format",
    401: "Unauthorized - Invalid API credentials or expired token",
    403: "Forbidden - Insufficient permissions for this operation",
    404: "Resource not found - The requested resource does not exist",
    429: "Rate limit exceeded - Too many requests to the remote API",
    500: "Internal server error - The remote API is experiencing issues",
    502: "Bad gateway - Remote API gateway error",
    503: "Service unavailable - The remote API is temporarily unavailable",
    504: "Gateway timeout - Remote API response timeout",
}


def classify(raw: object, *, now: datetime | None = None) -> ClassifiedError:
    """Classify a raw failure.

    Total: every input maps to exactly one ClassifiedError and this
    function never raises.

    Args:
        raw: Exception, RawResponse or error envelope produced by a transport
        now: Timestamp for ``occurred_at`` and HTTP-date arithmetic

    Returns:
        ClassifiedError describing the failure
    """
    now = now or datetime.now(timezone.utc)
    try:
        return _classify(raw, now)
    except Exception as e:
        logger.debug("Classification of %r failed: %s", raw, e)
        return ClassifiedError(
            ErrorKind.UNKNOWN,
            f"Unknown error occurred: {raw!r}",
            occurred_at=now,
            cause=raw if isinstance(raw, BaseException) else None,
        )


def _classify(raw: object, now: datetime) -> ClassifiedError:
    if isinstance(raw, ClassifiedError):
        return raw

    if isinstance(raw, HttpStatusFailure):
        return _from_response(raw.response, now, cause=raw)

    if isinstance(raw, RawResponse):
        return _from_response(raw, now)

    if isinstance(raw, httpx.HTTPStatusError):
        response = RawResponse(
            status_code=raw.response.status_code,
            headers=dict(raw.response.headers),
            body=raw.response.content,
            method=raw.request.method,
            path=raw.request.url.path,
        )
        return _from_response(response, now, cause=raw)

    if isinstance(raw, MalformedResponseError):
        return ClassifiedError(
            ErrorKind.UNKNOWN,
            f"Malformed response: {raw}",
            http_status=raw.response.status_code if raw.response else None,
            occurred_at=now,
            cause=raw,
        )

    if isinstance(raw, NETWORK_EXCEPTIONS):
        return _network_error(raw, now)

    if isinstance(raw, Mapping) and isinstance(raw.get("code"), int):
        # Bare error envelope: {error, message, code}
        return _from_status(raw["code"], {}, dict(raw), now)

    status = getattr(raw, "status_code", None)
    if isinstance(raw, Exception) and isinstance(status, int):
        return _from_status(status, {}, None, now, fallback=str(raw), cause=raw)

    message = str(raw) if isinstance(raw, BaseException) else repr(raw)
    return ClassifiedError(
        ErrorKind.UNKNOWN,
        f"Unknown error occurred: {message or type(raw).__name__}",
        occurred_at=now,
        cause=raw if isinstance(raw, BaseException) else None,
    )


def _network_error(raw: BaseException, now: datetime) -> ClassifiedError:
    timed_out = isinstance(raw, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)) or (
        isinstance(raw, TransportError) and raw.timeout
    )
    description = "Network timeout" if timed_out else "Network error"
    return ClassifiedError(
        ErrorKind.NETWORK,
        f"{description}: {str(raw) or type(raw).__name__}",
        occurred_at=now,
        details={
            "exception": type(raw).__name__,
            "timeout": timed_out,
            "failure": "timeout" if timed_out else _network_failure(raw),
        },
        cause=raw,
    )


def _exception_chain(raw: BaseException) -> list[BaseException]:
    """The exception followed by its causes, outermost first."""
    chain: list[BaseException] = []
    current: BaseException | None = raw
    while current is not None and current not in chain:
        chain.append(current)
        nested = getattr(current, "cause", None)
        if not isinstance(nested, BaseException):
            nested = current.__cause__ or current.__context__
        current = nested
    return chain


def _network_failure(raw: BaseException) -> str:
    """Narrow a connection-level failure to dns, connection or other."""
    chain = _exception_chain(raw)
    if any(isinstance(exc, socket.gaierror) for exc in chain):
        return "dns"
    if any(hint in str(exc).lower() for exc in chain for hint in DNS_HINTS):
        return "dns"
    if any(isinstance(exc, CONNECTION_EXCEPTIONS) for exc in chain):
        return "connection"
    return "other"


def _from_response(
    response: RawResponse,
    now: datetime,
    cause: BaseException | None = None,
) -> ClassifiedError:
    body = _decode_body(response.body)
    return _from_status(response.status_code, response.headers, body, now, cause=cause)


def _from_status(
    status: int,
    headers: Mapping[str, str],
    body: Any,
    now: datetime,
    fallback: str | None = None,
    cause: BaseException | None = None,
) -> ClassifiedError:
    message, error_code = _extract_message(body)
    message = message or fallback or STATUS_MESSAGES.get(status) or f"HTTP {status}: Unknown API error"
    details = body if isinstance(body, dict) else ({"body": body} if body else {})

    retry_after: float | None = None
    if status in (401, 403):
        kind = ErrorKind.AUTHENTICATION
    elif status == 429:
        kind = ErrorKind.RATE_LIMIT
        retry_after = parse_retry_after(headers, now)
    elif 500 <= status < 600:
        kind = ErrorKind.REMOTE_FAULT
    elif 400 <= status < 500:
        kind = ErrorKind.VALIDATION
    else:
        kind = ErrorKind.UNKNOWN
        message = f"Unexpected HTTP {status}: {message}"

    return ClassifiedError(
        kind,
        message,
        http_status=status,
        retry_after_seconds=retry_after,
        occurred_at=now,
        details=details,
        error_code=error_code,
        cause=cause,
    )


def _decode_body(body: bytes) -> Any:
    if not body:
        return None
    try:
        return orjson.loads(body)
    except orjson.JSONDecodeError:
        return body.decode("utf-8", errors="replace")[:500]


def _extract_message(body: Any) -> tuple[str | None, str | None]:
    """Pull (message, error code) out of the known error body shapes."""
    if not isinstance(body, Mapping):
        return None, None

    error_code = body.get("error") if isinstance(body.get("error"), str) else None

    message = body.get("message")
    if isinstance(message, str) and message:
        return message, error_code

    meta = body.get("meta")
    if isinstance(meta, Mapping) and isinstance(meta.get("msg"), str):
        return meta["msg"], error_code

    errors = body.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], Mapping):
        first = errors[0]
        detail = first.get("detail") or first.get("title")
        if isinstance(detail, str):
            return detail, error_code

    return None, error_code


def parse_retry_after(headers: Mapping[str, str], now: datetime | None = None) -> float | None:
    """Seconds the server asked us to wait, if it said.

    Reads ``Retry-After`` (delta-seconds or HTTP-date) and falls back to
    the rate-limit reset headers. Header names must be lower-case.
    """
    now = now or datetime.now(timezone.utc)

    value = headers.get("retry-after")
    if value:
        seconds = _parse_seconds(value)
        if seconds is not None:
            return seconds
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            when = None
        if when is not None:
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            return max(0.0, (when - now).total_seconds())

    for name in RESET_HEADERS:
        seconds = _parse_seconds(headers.get(name))
        if seconds is None:
            continue
        if seconds > _EPOCH_THRESHOLD:
            return max(0.0, seconds - now.timestamp())
        return seconds

    return None


def _parse_seconds(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    if seconds < 0:
        return None
    return seconds
