"""
Response caching for idempotent reads.

Entries expire lazily: an entry whose ``expires_at`` has passed is treated
as a miss and dropped on lookup. Writes invalidate every entry recorded
under the resource they touched.

Every invalidation also advances a generation counter for its prefix. A
reader takes ``generation(resource)`` before going to the network and
hands it back to ``set``; if a write invalidated the resource in between,
the store is refused so the pre-write payload never lands in the cache.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import orjson

from .clock import Clock, monotonic_ms

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 300_000
DEFAULT_MAX_ENTRIES = 1024


@dataclass
class CacheEntry:
    """A stored read result."""

    key: str
    resource: str
    payload: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


@dataclass
class CacheStats:
    """Cache counters."""

    hits: int = 0
    misses: int = 0
    expirations: int = 0
    evictions: int = 0
    invalidations: int = 0
    stale_writes: int = 0


class ResponseCache:
    """TTL-keyed store of successful read results.

    ``get``, ``set`` and ``invalidate`` each hold the same lock for their
    whole duration, so no caller ever observes a half-written entry.
    """

    def __init__(
        self,
        default_ttl_ms: int = DEFAULT_TTL_MS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Clock = monotonic_ms,
    ):
        """Initialize the cache.

        Args:
            default_ttl_ms: TTL used when ``set`` is called without one
            max_entries: Entries kept before the oldest are evicted
            clock: Millisecond clock (injectable for tests)
        """
        self.default_ttl_ms = default_ttl_ms
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._generations: dict[str, int] = {}
        self._lock = threading.Lock()
        self._stats = CacheStats()

    @staticmethod
    def make_key(
        resource: str,
        operation: str,
        parameters: Mapping[str, Any],
        credential_id: str,
    ) -> str:
        """Deterministic key for a read.

        Parameters are normalized by dropping ``None`` values and sorting
        keys, so equivalent requests share an entry.
        """
        normalized = {k: v for k, v in parameters.items() if v is not None}
        material = orjson.dumps(
            {
                "resource": resource,
                "operation": operation,
                "parameters": normalized,
                "credential": credential_id,
            },
            option=orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS,
            default=str,
        )
        return hashlib.sha256(material).hexdigest()

    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored payload, or ``default`` on a miss."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return default

            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._stats.expirations += 1
                self._stats.misses += 1
                logger.debug("Cache entry expired for %s", entry.resource)
                return default

            self._stats.hits += 1
            return entry.payload

    def generation(self, resource: str) -> int:
        """Invalidation count covering ``resource``.

        Grows whenever ``invalidate`` is called with a prefix of
        ``resource``; unchanged otherwise.
        """
        with self._lock:
            return self._generation(resource)

    def _generation(self, resource: str) -> int:
        return sum(
            count for prefix, count in self._generations.items()
            if resource.startswith(prefix)
        )

    def set(
        self,
        key: str,
        payload: Any,
        ttl_ms: int | None = None,
        *,
        resource: str,
        generation: int | None = None,
    ) -> bool:
        """Store a payload, replacing any entry under the same key.

        Args:
            key: Cache key from ``make_key``
            payload: Value to store
            ttl_ms: Lifetime in milliseconds (``default_ttl_ms`` if omitted)
            resource: Resource name the entry is invalidated under
            generation: Value of ``generation(resource)`` taken before the
                payload was fetched; the store is skipped if it has moved

        Returns:
            True if the payload was stored
        """
        ttl_ms = self.default_ttl_ms if ttl_ms is None else ttl_ms
        if ttl_ms <= 0:
            raise ValueError("ttl_ms must be positive")

        with self._lock:
            if generation is not None and self._generation(resource) != generation:
                self._stats.stale_writes += 1
                logger.debug("Dropped stale read of '%s' fetched before an invalidation", resource)
                return False

            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(
                key=key,
                resource=resource,
                payload=payload,
                expires_at=self._clock() + ttl_ms,
            )
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._stats.evictions += 1
        return True

    def invalidate(self, resource_prefix: str) -> int:
        """Drop every entry whose resource starts with ``resource_prefix``.

        Returns:
            Number of entries removed
        """
        with self._lock:
            self._generations[resource_prefix] = self._generations.get(resource_prefix, 0) + 1
            doomed = [
                key for key, entry in self._entries.items()
                if entry.resource.startswith(resource_prefix)
            ]
            for key in doomed:
                del self._entries[key]
            self._stats.invalidations += len(doomed)

        if doomed:
            logger.debug("Invalidated %d cache entries under '%s'", len(doomed), resource_prefix)
        return len(doomed)

    def purge_expired(self) -> int:
        """Remove all expired entries. Returns count removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._stats.expirations += len(expired)
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self._stats.hits,
                "misses": self._stats.misses,
                "expirations": self._stats.expirations,
                "evictions": self._stats.evictions,
                "invalidations": self._stats.invalidations,
                "stale_writes": self._stats.stale_writes,
            }
