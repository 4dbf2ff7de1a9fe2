"""Tests for error classification."""

from __future__ import annotations

import asyncio
import socket
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import orjson
import pytest

from contentguard.core.resilience.classifier import classify, parse_retry_after
from contentguard.core.resilience.errors import ClassifiedError, ErrorKind
from contentguard.core.transport.base import (
    HttpStatusFailure,
    MalformedResponseError,
    RawResponse,
    TransportError,
)
from contentguard.core.transport.http_transport import CredentialError

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def response(status: int, body: object = b"", headers: dict[str, str] | None = None) -> RawResponse:
    if not isinstance(body, (bytes, str)):
        body = orjson.dumps(body)
    return RawResponse(status_code=status, headers=headers or {}, body=body)


class TestRateLimitClassification:
    """HTTP 429 handling."""

    @pytest.mark.parametrize("seconds", [0, 1, 30, 3600])
    def test_retry_after_seconds(self, seconds):
        """Should carry the Retry-After delta as retry_after_seconds."""
        error = classify(response(429, headers={"Retry-After": str(seconds)}), now=NOW)

        assert error.kind is ErrorKind.RATE_LIMIT
        assert error.retryable is True
        assert error.retry_after_seconds == seconds
        assert error.http_status == 429

    def test_retry_after_http_date(self):
        """Should convert an HTTP-date Retry-After into seconds from now."""
        when = format_datetime(NOW + timedelta(seconds=120), usegmt=True)

        error = classify(response(429, headers={"Retry-After": when}), now=NOW)

        assert error.retry_after_seconds == pytest.approx(120.0)

    def test_reset_header_fallback(self):
        """Should fall back to the per-hour reset header."""
        error = classify(response(429, headers={"X-Ratelimit-Perhour-Reset": "45"}), now=NOW)

        assert error.retry_after_seconds == 45.0

    def test_reset_header_epoch_timestamp(self):
        """Should treat a reset timestamp as seconds until that moment."""
        reset = str(int(NOW.timestamp()) + 90)

        error = classify(response(429, headers={"X-RateLimit-Reset": reset}), now=NOW)

        assert error.retry_after_seconds == pytest.approx(90.0)

    def test_no_hint(self):
        """Should leave retry_after_seconds unset without headers."""
        error = classify(response(429), now=NOW)

        assert error.kind is ErrorKind.RATE_LIMIT
        assert error.retry_after_seconds is None
        assert error.message.startswith("Rate limit exceeded")

    def test_parse_retry_after_ignores_garbage(self):
        assert parse_retry_after({"retry-after": "soon"}, NOW) is None
        assert parse_retry_after({"retry-after": "-5"}, NOW) is None


class TestAuthenticationClassification:
    """HTTP 401 and 403 handling."""

    @pytest.mark.parametrize("status", [401, 403])
    @pytest.mark.parametrize(
        "body",
        [
            b"",
            b"not json at all",
            {"meta": {"status": 401, "msg": "Not Authorized"}, "response": []},
            {"error": "server_error", "message": "please retry", "code": 503},
        ],
    )
    def test_never_retryable(self, status, body):
        """Should classify as authentication regardless of body content."""
        error = classify(response(status, body), now=NOW)

        assert error.kind is ErrorKind.AUTHENTICATION
        assert error.retryable is False
        assert error.http_status == status

    def test_missing_credential(self):
        """Should classify a missing token as an authentication failure."""
        error = classify(CredentialError("alice"))

        assert error.kind is ErrorKind.AUTHENTICATION
        assert error.http_status == 401
        assert "alice" in error.message


class TestStatusClassification:
    """Remaining HTTP status ranges."""

    @pytest.mark.parametrize("status", [500, 502, 503, 504, 599])
    def test_server_errors_are_remote_faults(self, status):
        error = classify(response(status), now=NOW)

        assert error.kind is ErrorKind.REMOTE_FAULT
        assert error.retryable is True

    @pytest.mark.parametrize("status", [400, 404, 409, 422])
    def test_client_errors_are_validation(self, status):
        error = classify(response(status), now=NOW)

        assert error.kind is ErrorKind.VALIDATION
        assert error.retryable is False

    @pytest.mark.parametrize("status", [200, 204, 302])
    def test_non_error_status_is_unknown(self, status):
        """Should classify a success or redirect handed in as a failure as unknown."""
        error = classify(response(status), now=NOW)

        assert error.kind is ErrorKind.UNKNOWN
        assert error.retryable is False

    def test_status_failure_wrapper(self):
        """Should unwrap HttpStatusFailure and keep it as the cause."""
        failure = HttpStatusFailure(response(503))

        error = classify(failure, now=NOW)

        assert error.kind is ErrorKind.REMOTE_FAULT
        assert error.cause is failure

    def test_httpx_status_error(self):
        request = httpx.Request("GET", "https://api.example.test/v2/user/info")
        reply = httpx.Response(502, request=request, json={"meta": {"status": 502, "msg": "Bad Gateway"}})
        exc = httpx.HTTPStatusError("bad gateway", request=request, response=reply)

        error = classify(exc, now=NOW)

        assert error.kind is ErrorKind.REMOTE_FAULT
        assert error.http_status == 502
        assert error.message == "Bad Gateway"


class TestMessageExtraction:
    """Message selection from error bodies."""

    def test_envelope_message(self):
        body = {"error": "bad_request", "message": "missing field", "code": 400}

        error = classify(response(400, body), now=NOW)

        assert error.message == "missing field"
        assert str(error) == "missing field"
        assert error.error_code == "bad_request"
        assert error.details == body

    def test_meta_msg(self):
        error = classify(response(404, {"meta": {"status": 404, "msg": "Not Found"}}), now=NOW)

        assert error.message == "Not Found"

    def test_errors_detail(self):
        body = {"errors": [{"title": "Bad", "detail": "Invalid blog name"}]}

        error = classify(response(400, body), now=NOW)

        assert error.message == "Invalid blog name"

    def test_status_default(self):
        error = classify(response(503, b"<html>down</html>"), now=NOW)

        assert error.message.startswith("Service unavailable")
        assert error.details == {"body": "<html>down</html>"}

    def test_unlisted_status_default(self):
        error = classify(response(418), now=NOW)

        assert error.message == "HTTP 418: Unknown API error"

    def test_bare_envelope(self):
        """Should classify an envelope mapping by its code."""
        error = classify({"error": "bad_request", "message": "missing field", "code": 400}, now=NOW)

        assert error.kind is ErrorKind.VALIDATION
        assert error.http_status == 400
        assert error.message == "missing field"


class TestNetworkClassification:
    """Failures where no response arrived."""

    @pytest.mark.parametrize(
        "exc",
        [
            TransportError("connection reset", path="/user/info"),
            httpx.ConnectError("refused"),
            ConnectionResetError("reset by peer"),
        ],
    )
    def test_network_errors(self, exc):
        error = classify(exc, now=NOW)

        assert error.kind is ErrorKind.NETWORK
        assert error.retryable is True
        assert error.retry_after_seconds is None
        assert error.http_status is None
        assert error.cause is exc

    def test_timeout_message(self):
        error = classify(asyncio.TimeoutError(), now=NOW)

        assert error.kind is ErrorKind.NETWORK
        assert error.message.startswith("Network timeout")
        assert error.details["timeout"] is True

    def test_transport_timeout_flag(self):
        error = classify(TransportError("slow", timeout=True), now=NOW)

        assert error.message == "Network timeout: slow"
        assert error.details["failure"] == "timeout"

    @pytest.mark.parametrize(
        "exc, failure",
        [
            (TransportError("lookup failed", cause=socket.gaierror(-2, "Name or service not known")), "dns"),
            (httpx.ConnectError("[Errno -3] Temporary failure in name resolution"), "dns"),
            (TransportError("refused", cause=httpx.ConnectError("refused")), "connection"),
            (ConnectionResetError("reset by peer"), "connection"),
            (TransportError("stream closed"), "other"),
        ],
    )
    def test_failure_category(self, exc, failure):
        """Should narrow connection-level failures for pattern detection."""
        assert classify(exc, now=NOW).details["failure"] == failure


class TestFallbacks:
    """Inputs outside the known shapes."""

    def test_classified_error_passes_through(self):
        original = ClassifiedError(ErrorKind.VALIDATION, "bad input")

        assert classify(original) is original

    def test_malformed_response(self):
        raw = response(200, b"{not json")

        error = classify(MalformedResponseError("Undecodable", raw), now=NOW)

        assert error.kind is ErrorKind.UNKNOWN
        assert error.retryable is False
        assert error.http_status == 200

    @pytest.mark.parametrize("raw", [ValueError("odd"), object(), None, "text", 42])
    def test_unknown(self, raw):
        error = classify(raw, now=NOW)

        assert error.kind is ErrorKind.UNKNOWN
        assert error.retryable is False
        assert error.occurred_at == NOW

    def test_never_raises(self):
        """Should still produce an error when inspecting the input blows up."""

        class Hostile(Exception):
            @property
            def status_code(self):
                raise RuntimeError("no status for you")

        error = classify(Hostile("boom"), now=NOW)

        assert error.kind is ErrorKind.UNKNOWN


class TestClassifiedError:
    """ClassifiedError presentation."""

    def test_format_message_includes_troubleshooting(self):
        error = ClassifiedError(ErrorKind.RATE_LIMIT, "Too many requests", http_status=429)

        text = error.format_message()

        assert "(rate_limit)" in text
        assert "HTTP 429" in text
        assert "1000 requests per hour" in text

    def test_to_dict(self):
        error = ClassifiedError(ErrorKind.NETWORK, "reset", occurred_at=NOW, attempts=3)

        data = error.to_dict()

        assert data["kind"] == "network"
        assert data["retryable"] is True
        assert data["attempts"] == 3
        assert data["occurred_at"] == NOW.isoformat()

    @pytest.mark.parametrize("kind", [ErrorKind.VALIDATION, ErrorKind.AUTHENTICATION, ErrorKind.UNKNOWN])
    def test_non_retryable_kinds(self, kind):
        assert ClassifiedError(kind, "x", http_status=503).retryable is False

    def test_remote_fault_outside_5xx_not_retryable(self):
        assert ClassifiedError(ErrorKind.REMOTE_FAULT, "x", http_status=418).retryable is False
