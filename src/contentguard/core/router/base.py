"""
Request and result types exchanged with the operation router.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class OperationRequest:
    """One call into the core from the glue layer."""

    resource: str
    operation: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    credential_id: str = "default"
    cacheable: bool = False
    idempotent: bool = False

    @property
    def pair(self) -> str:
        return f"{self.resource}:{self.operation}"


@dataclass
class OperationResult:
    """Result of an executed operation."""

    payload: Any
    attempts: int
    from_cache: bool = False
    elapsed_ms: float = 0.0

    @property
    def retries(self) -> int:
        """Retries performed (zero for cache hits)."""
        return max(0, self.attempts - 1)


@dataclass
class RouterStats:
    """Counters for a router instance."""

    requests: int = 0
    cache_hits: int = 0
    network_calls: int = 0
    rate_limit_waits: int = 0
    failures: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "requests": self.requests,
            "cache_hits": self.cache_hits,
            "network_calls": self.network_calls,
            "rate_limit_waits": self.rate_limit_waits,
            "failures": self.failures,
        }
