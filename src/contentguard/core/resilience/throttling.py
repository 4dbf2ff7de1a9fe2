"""
Rate limiting utilities.

Provides a per-credential request budget over a fixed window that resets
once it has elapsed. This trades some burst inaccuracy at window
boundaries for O(1) memory and update cost per credential.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

from contentguard.core.config.models import RateLimitConfig

from .clock import Clock, monotonic_ms

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 1000  # Remote API allows 1000 requests per hour per user
DEFAULT_WINDOW_MS = 3_600_000


@dataclass
class RateWindow:
    """Request budget state for one credential identity."""

    credential_id: str
    window_started_at: float
    request_count: int
    limit: int
    window_duration_ms: int

    def elapsed(self, now: float) -> float:
        return now - self.window_started_at


@dataclass(frozen=True)
class RateDecision:
    """Outcome of an acquire call."""

    granted: bool
    wait_ms: int = 0


class RateLimiter:
    """Per-credential rate limiter.

    Features:
    - One window per credential, created on first use
    - Per-credential limit overrides
    - Acquire calls for the same credential are linearized with a lock;
      different credentials never contend
    """

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window_ms: int = DEFAULT_WINDOW_MS,
        clock: Clock = monotonic_ms,
    ):
        """Initialize rate limiter.

        Args:
            limit: Requests allowed per window for credentials without overrides
            window_ms: Window duration in milliseconds
            clock: Millisecond clock (injectable for tests)
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")

        self.default_limit = limit
        self.default_window_ms = window_ms
        self._clock = clock
        self._overrides: dict[str, tuple[int, int]] = {}
        self._windows: dict[str, RateWindow] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._denied: dict[str, int] = defaultdict(int)

    @classmethod
    def from_config(cls, config: RateLimitConfig, clock: Clock = monotonic_ms) -> "RateLimiter":
        """Build a limiter from configuration, including overrides."""
        limiter = cls(limit=config.limit, window_ms=config.window_ms, clock=clock)
        for credential_id, override in config.per_credential.items():
            limiter.configure_credential(
                credential_id,
                limit=override.limit,
                window_ms=override.window_ms,
            )
        return limiter

    def configure_credential(self, credential_id: str, limit: int, window_ms: int) -> None:
        """Set a budget for a specific credential.

        Args:
            credential_id: Credential identity
            limit: Requests allowed per window
            window_ms: Window duration in milliseconds
        """
        self._overrides[credential_id] = (limit, window_ms)
        window = self._windows.get(credential_id)
        if window is not None:
            window.limit = limit
            window.window_duration_ms = window_ms

    def _budget(self, credential_id: str) -> tuple[int, int]:
        return self._overrides.get(credential_id, (self.default_limit, self.default_window_ms))

    def _window(self, credential_id: str, now: float) -> RateWindow:
        """Get the live window for a credential, resetting it if elapsed."""
        window = self._windows.get(credential_id)
        if window is None:
            limit, window_ms = self._budget(credential_id)
            window = RateWindow(
                credential_id=credential_id,
                window_started_at=now,
                request_count=0,
                limit=limit,
                window_duration_ms=window_ms,
            )
            self._windows[credential_id] = window
        elif window.elapsed(now) >= window.window_duration_ms:
            window.request_count = 0
            window.window_started_at = now
        return window

    async def acquire(self, credential_id: str) -> RateDecision:
        """Try to take one request slot for a credential.

        Never waits itself; a denied caller is told how long to wait
        before trying again.

        Args:
            credential_id: Credential identity

        Returns:
            RateDecision, with ``wait_ms > 0`` when denied
        """
        async with self._locks[credential_id]:
            now = self._clock()
            window = self._window(credential_id, now)

            if window.request_count < window.limit:
                window.request_count += 1
                return RateDecision(granted=True)

            wait_ms = max(1, math.ceil(window.window_duration_ms - window.elapsed(now)))
            self._denied[credential_id] += 1

        logger.warning(
            "Rate budget exhausted for credential '%s' (%d/%d); next slot in %dms",
            credential_id,
            window.request_count,
            window.limit,
            wait_ms,
        )
        return RateDecision(granted=False, wait_ms=wait_ms)

    def status(self, credential_id: str) -> dict[str, Any]:
        """Get budget status for a credential without consuming a slot."""
        now = self._clock()
        window = self._windows.get(credential_id)
        limit, window_ms = self._budget(credential_id)

        if window is None or window.elapsed(now) >= window.window_duration_ms:
            return {
                "credential_id": credential_id,
                "request_count": 0,
                "limit": limit,
                "requests_remaining": limit,
                "resets_in_ms": window_ms,
            }

        return {
            "credential_id": credential_id,
            "request_count": window.request_count,
            "limit": window.limit,
            "requests_remaining": max(0, window.limit - window.request_count),
            "resets_in_ms": max(0, math.ceil(window.window_duration_ms - window.elapsed(now))),
        }

    def reset(self, credential_id: str) -> None:
        """Forget the window for a credential."""
        self._windows.pop(credential_id, None)
        self._denied.pop(credential_id, None)

    def clear(self) -> None:
        """Forget all windows."""
        self._windows.clear()
        self._denied.clear()

    def stats(self, credential_id: str | None = None) -> dict[str, Any]:
        """Get rate limiter statistics.

        Args:
            credential_id: Specific credential or None for all

        Returns:
            Statistics dictionary
        """
        if credential_id:
            return {
                **self.status(credential_id),
                "denied": self._denied.get(credential_id, 0),
            }

        now = self._clock()
        return {
            "credentials_tracked": len(self._windows),
            "active_credentials": sum(
                1 for w in self._windows.values()
                if w.elapsed(now) < w.window_duration_ms
            ),
            "total_requests_in_windows": sum(w.request_count for w in self._windows.values()),
            "total_denied": sum(self._denied.values()),
        }
