"""
Transport base classes and data structures.

Defines the contract between the resilience core and whatever issues the
authenticated requests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import orjson


@dataclass
class RawResponse:
    """An HTTP response as produced by a transport."""

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    # Metadata for logging/debugging
    method: str | None = None
    path: str | None = None
    elapsed_ms: float = 0.0

    def __post_init__(self) -> None:
        self.headers = {k.lower(): v for k, v in self.headers.items()}
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")

    @property
    def ok(self) -> bool:
        """Check if request was successful (2xx status)."""
        return 200 <= self.status_code < 300

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower())

    def json(self) -> Any:
        """Decode the body as JSON.

        Raises:
            orjson.JSONDecodeError: If the body is not valid JSON
        """
        return orjson.loads(self.body)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class Transport(ABC):
    """Abstract base class for authenticated transports.

    Implementations carry the bearer credential for ``credential_id`` and
    return every HTTP response, whatever its status. Only failures where no
    response was received are raised, as ``TransportError``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Transport identifier."""
        pass

    @abstractmethod
    async def send(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None,
        credential_id: str,
    ) -> RawResponse:
        """Issue one request.

        Args:
            method: HTTP method
            path: Path relative to the API root
            body: Query parameters for GET/DELETE, JSON body otherwise
            credential_id: Identity whose credential authenticates the call

        Returns:
            RawResponse for any status code

        Raises:
            TransportError: When no response was received
        """
        pass

    async def close(self) -> None:
        """Clean up transport resources."""
        pass

    async def __aenter__(self) -> "Transport":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


class TransportError(Exception):
    """No response was received (timeout, DNS failure, connection reset)."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        cause: Exception | None = None,
        timeout: bool = False,
    ):
        super().__init__(message)
        self.path = path
        self.cause = cause
        self.timeout = timeout


class HttpStatusFailure(Exception):
    """A response was received but its status is not 2xx."""

    def __init__(self, response: RawResponse):
        super().__init__(f"HTTP {response.status_code} for {response.method} {response.path}")
        self.response = response


class MalformedResponseError(Exception):
    """A 2xx response whose body could not be understood."""

    def __init__(self, message: str, response: RawResponse | None = None):
        super().__init__(message)
        self.response = response
