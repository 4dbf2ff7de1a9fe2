"""
HTTP transport implementation using httpx.

Provides async requests against the remote content API with:
- Persistent connection pooling
- Bearer credentials looked up per credential identity
- Timeout and connection failures surfaced as TransportError
- Request/latency statistics
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from contentguard.core.config.models import TransportConfig

from .base import RawResponse, Transport, TransportError

# Methods whose parameters travel in the query string
QUERY_METHODS = {"GET", "DELETE", "HEAD"}


class CredentialError(Exception):
    """No bearer token is available for a credential identity."""

    status_code = 401

    def __init__(self, credential_id: str):
        super().__init__(f"No access token available for credential '{credential_id}'")
        self.credential_id = credential_id


TokenProvider = Callable[[str], str | None]


@dataclass
class TransportStats:
    """Counters for requests issued through a transport."""

    total_requests: int = 0
    failed_requests: int = 0
    response_times_ms: deque[float] = field(default_factory=lambda: deque(maxlen=100))

    @property
    def average_response_ms(self) -> float:
        if not self.response_times_ms:
            return 0.0
        return sum(self.response_times_ms) / len(self.response_times_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "failed_requests": self.failed_requests,
            "average_response_ms": round(self.average_response_ms, 2),
        }


class HttpTransport(Transport):
    """Transport using httpx for async requests.

    Features:
    - Persistent connection pooling
    - Bearer token per credential identity
    - Query parameters for GET, JSON bodies for writes
    """

    def __init__(
        self,
        tokens: Mapping[str, str] | TokenProvider,
        config: TransportConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize HTTP transport.

        Args:
            tokens: Mapping or callable giving the access token for a credential id
            config: Transport settings (defaults if omitted)
            client: Pre-built client, mainly for tests (``httpx.MockTransport``)
        """
        self.config = config or TransportConfig()
        if isinstance(tokens, Mapping):
            self._token_for: TokenProvider = tokens.get
        else:
            self._token_for = tokens

        self.default_headers = {
            "User-Agent": self.config.user_agent,
            "Accept": "application/json",
        }

        self._client = client
        self._owns_client = client is None
        self.stats = TransportStats()

    @property
    def name(self) -> str:
        return "http"

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(self.config.timeout_seconds),
                headers=self.default_headers,
                limits=httpx.Limits(
                    max_connections=self.config.max_connections,
                    max_keepalive_connections=self.config.max_keepalive_connections,
                ),
            )
            self._owns_client = True
        return self._client

    def _auth_headers(self, credential_id: str) -> dict[str, str]:
        token = self._token_for(credential_id)
        if not token:
            raise CredentialError(credential_id)
        return {"Authorization": f"Bearer {token}"}

    async def send(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None,
        credential_id: str,
    ) -> RawResponse:
        """Send one request and return the response, whatever its status."""
        client = await self._ensure_client()
        headers = self._auth_headers(credential_id)
        method = method.upper()

        request_kwargs: dict[str, Any] = {"headers": headers}
        if body:
            if method in QUERY_METHODS:
                request_kwargs["params"] = body
            else:
                request_kwargs["json"] = body

        self.stats.total_requests += 1
        start = time.perf_counter()
        try:
            response = await client.request(method, path, **request_kwargs)
        except httpx.TimeoutException as e:
            self.stats.failed_requests += 1
            raise TransportError(
                f"Timeout after {self.config.timeout_seconds}s: {e}",
                path=path,
                cause=e,
                timeout=True,
            ) from e
        except httpx.TransportError as e:
            self.stats.failed_requests += 1
            raise TransportError(
                f"Transport error: {e}",
                path=path,
                cause=e,
            ) from e

        elapsed_ms = (time.perf_counter() - start) * 1000
        self.stats.response_times_ms.append(elapsed_ms)
        if not response.is_success:
            self.stats.failed_requests += 1

        return RawResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content,
            method=method,
            path=path,
            elapsed_ms=elapsed_ms,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
