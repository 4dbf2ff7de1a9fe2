"""
Operation router.

Top-level entry point of the core: validate → cache lookup → rate-limited,
retried transport call → cache store or invalidation.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

import orjson

from contentguard.core.config.models import AppConfig, RetryPolicy
from contentguard.core.logging import get_contextual_logger
from contentguard.core.resilience.caching import ResponseCache
from contentguard.core.resilience.clock import Clock, monotonic_ms
from contentguard.core.resilience.errors import ClassifiedError, ErrorKind
from contentguard.core.resilience.patterns import FailurePattern
from contentguard.core.resilience.retries import RetryExecutor
from contentguard.core.resilience.throttling import RateLimiter
from contentguard.core.transport.base import (
    HttpStatusFailure,
    MalformedResponseError,
    RawResponse,
    Transport,
)
from contentguard.core.transport.http_transport import HttpTransport, TokenProvider

from .base import OperationRequest, OperationResult, RouterStats
from .catalog import OperationCatalog, OperationSpec, clean_blog_name

logger = logging.getLogger(__name__)

_MISS = object()

DEFAULT_BATCH_DELAY_MS = 100


def normalize_parameters(parameters: Mapping[str, Any]) -> dict[str, Any]:
    """Copy parameters with blog identifiers reduced to their short name."""
    normalized = dict(parameters)
    blog_name = normalized.get("blog_name")
    if isinstance(blog_name, str):
        normalized["blog_name"] = clean_blog_name(blog_name)
    return normalized


def extract_payload(response: RawResponse) -> Any:
    """Unwrap the remote JSON envelope of a successful response.

    Returns the ``response`` member when present, else the whole body.
    An empty body yields ``None``.

    Raises:
        MalformedResponseError: If the body is not valid JSON
    """
    if not response.body.strip():
        return None
    try:
        data = response.json()
    except orjson.JSONDecodeError as e:
        raise MalformedResponseError(
            f"Undecodable response body from {response.method} {response.path}",
            response,
        ) from e

    if isinstance(data, Mapping) and "response" in data:
        return data["response"]
    return data


class OperationRouter:
    """Executes catalogued operations against the remote API.

    Owns its rate limiter, response cache and retry executor; none of them
    are shared with other routers unless passed in explicitly.
    """

    def __init__(
        self,
        transport: Transport,
        config: AppConfig | None = None,
        *,
        catalog: OperationCatalog | None = None,
        rate_limiter: RateLimiter | None = None,
        cache: ResponseCache | None = None,
        executor: RetryExecutor | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Clock = monotonic_ms,
    ) -> None:
        """Initialize the router.

        Args:
            transport: Authenticated transport used for every network call
            config: Application config (defaults if omitted)
            catalog: Operation catalog (default remote API operations if omitted)
            rate_limiter: Limiter to use instead of one built from config
            cache: Cache to use instead of one built from config
            executor: Retry executor to use instead of a fresh one
            sleep: Coroutine function used for rate-limit waits and backoff
            clock: Millisecond clock for the limiter and cache built here
        """
        self.config = config or AppConfig()
        self.transport = transport
        self.catalog = catalog or OperationCatalog()
        self._sleep = sleep

        self.rate_limiter = rate_limiter or RateLimiter.from_config(
            self.config.rate_limit, clock=clock
        )

        if cache is not None:
            self.cache: ResponseCache | None = cache
        elif self.config.cache.enabled:
            self.cache = ResponseCache(
                default_ttl_ms=self.config.cache.default_ttl_ms,
                max_entries=self.config.cache.max_entries,
                clock=clock,
            )
        else:
            self.cache = None

        self.executor = executor or RetryExecutor(sleep=sleep)
        self._stats = RouterStats()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        tokens: Mapping[str, str] | TokenProvider,
        **kwargs: Any,
    ) -> "OperationRouter":
        """Build a router with an HTTP transport from configuration."""
        transport = HttpTransport(tokens, config=config.transport)
        return cls(transport, config, **kwargs)

    async def execute(self, request: OperationRequest) -> Any:
        """Execute an operation and return its payload.

        Raises:
            ClassifiedError: On any failure, after retries where allowed
        """
        result = await self.execute_detailed(request)
        return result.payload

    async def execute_detailed(self, request: OperationRequest) -> OperationResult:
        """Execute an operation and report attempts and cache usage."""
        started = time.perf_counter()
        self._stats.requests += 1
        log = get_contextual_logger(
            "router",
            credential=request.credential_id,
            resource=request.resource,
            operation=request.operation,
        )

        try:
            spec = self._resolve(request)
        except ClassifiedError as e:
            self._stats.failures += 1
            log.warning("Rejected request: %s", e.message, extra={"error": e})
            raise

        parameters = normalize_parameters(request.parameters)
        use_cache = (
            self.cache is not None
            and request.cacheable
            and request.idempotent
            and not spec.mutating
        )

        key = None
        if use_cache:
            key = ResponseCache.make_key(
                request.resource, request.operation, parameters, request.credential_id
            )
            cached = self.cache.get(key, _MISS)
            if cached is not _MISS:
                self._stats.cache_hits += 1
                log.debug("Cache hit")
                return OperationResult(
                    payload=cached,
                    attempts=0,
                    from_cache=True,
                    elapsed_ms=(time.perf_counter() - started) * 1000,
                )

        policy = self.config.retry.for_class(spec.kind)
        path, body = spec.render(parameters)
        # Taken before any network call; a write landing meanwhile voids the store
        generation = self.cache.generation(request.resource) if use_cache else None

        async def attempt() -> Any:
            await self._admit(request.credential_id, policy)
            self._stats.network_calls += 1
            response = await self.transport.send(
                spec.method, path, body or None, request.credential_id
            )
            if not response.ok:
                raise HttpStatusFailure(response)
            return extract_payload(response)

        try:
            outcome = await self.executor.run_detailed(attempt, policy, label=spec.pair)
        except ClassifiedError as e:
            self._stats.failures += 1
            log.warning("Operation failed: %s", e.message, extra={"error": e})
            raise

        if use_cache and key is not None:
            self.cache.set(
                key,
                outcome.payload,
                spec.ttl_ms,
                resource=request.resource,
                generation=generation,
            )
        if spec.mutating:
            self._invalidate(request, spec)

        elapsed_ms = (time.perf_counter() - started) * 1000
        log.debug("Completed in %d attempt(s), %.1fms", outcome.attempts, elapsed_ms)
        return OperationResult(
            payload=outcome.payload,
            attempts=outcome.attempts,
            from_cache=False,
            elapsed_ms=elapsed_ms,
        )

    async def execute_batch(
        self,
        requests: Iterable[OperationRequest],
        delay_ms: int = DEFAULT_BATCH_DELAY_MS,
    ) -> list[Any]:
        """Execute requests one after another and return their payloads.

        Each request goes through ``execute`` with its own retries and rate
        limiting; ``delay_ms`` is slept between consecutive requests.

        Raises:
            ClassifiedError: The first failure; later requests are not run
        """
        if delay_ms < 0:
            raise ValueError("delay_ms must not be negative")

        payloads: list[Any] = []
        for index, request in enumerate(requests):
            if index and delay_ms:
                await self._sleep(delay_ms / 1000)
            payloads.append(await self.execute(request))
        return payloads

    def failure_pattern(self) -> FailurePattern:
        """Pattern in the most recent transient failures."""
        return self.executor.failure_pattern()

    def _resolve(self, request: OperationRequest) -> OperationSpec:
        spec = self.catalog.resolve(request.resource, request.operation)
        missing = spec.missing(request.parameters)
        if missing:
            raise ClassifiedError(
                ErrorKind.VALIDATION,
                f"Missing required parameter(s) for {spec.pair}: {', '.join(missing)}",
                details={"missing": missing},
                attempts=0,
            )
        return spec

    async def _admit(self, credential_id: str, policy: RetryPolicy) -> None:
        """Take a rate budget slot, waiting for the window to roll over.

        Gives up after ``policy.max_attempts`` acquisitions with a local
        rate-limit error carrying the remaining wait as its retry-after.
        """
        decision = await self.rate_limiter.acquire(credential_id)
        acquisitions = 1

        while not decision.granted:
            if acquisitions >= policy.max_attempts:
                raise ClassifiedError(
                    ErrorKind.RATE_LIMIT,
                    f"Local rate budget exhausted for credential '{credential_id}'",
                    retry_after_seconds=decision.wait_ms / 1000,
                    details={"credential_id": credential_id, "wait_ms": decision.wait_ms},
                )
            self._stats.rate_limit_waits += 1
            await self._sleep(decision.wait_ms / 1000)
            decision = await self.rate_limiter.acquire(credential_id)
            acquisitions += 1

    def _invalidate(self, request: OperationRequest, spec: OperationSpec) -> None:
        if self.cache is None:
            return
        resources = dict.fromkeys((request.resource, *spec.invalidates))
        removed = sum(self.cache.invalidate(resource) for resource in resources)
        if removed:
            logger.debug("%s invalidated %d cached read(s)", spec.pair, removed)

    def stats(self) -> dict[str, Any]:
        """Get router statistics, including its collaborators."""
        transport_stats = getattr(self.transport, "stats", None)
        return {
            "router": self._stats.to_dict(),
            "executor": self.executor.stats.to_dict(),
            "rate_limiter": self.rate_limiter.stats(),
            "cache": self.cache.stats() if self.cache is not None else None,
            "transport": transport_stats.to_dict() if transport_stats is not None else None,
            "failure_pattern": self.failure_pattern().to_dict(),
        }

    async def aclose(self) -> None:
        """Close the transport."""
        await self.transport.close()

    async def __aenter__(self) -> "OperationRouter":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
