"""
Retry utilities with tenacity.

Runs an operation under a bounded exponential-backoff policy. Failures
are classified before the retry decision, so only rate-limit, network and
remote-fault errors are ever retried, and whatever finally escapes is a
``ClassifiedError``.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from contentguard.core.config.models import RetryPolicy

from .classifier import classify
from .errors import ClassifiedError, ErrorKind
from .patterns import FailureHistory, FailurePattern

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


def compute_backoff_ms(policy: RetryPolicy, attempt: int) -> float:
    """Backoff before the attempt following ``attempt``, without jitter.

    Non-decreasing in ``attempt`` and capped at ``policy.max_delay_ms``.
    """
    exponent = max(0, attempt - 1)
    try:
        delay = policy.base_delay_ms * policy.multiplier ** exponent
    except OverflowError:
        return float(policy.max_delay_ms)
    return float(min(policy.max_delay_ms, delay))


def apply_jitter(delay_ms: float, ratio: float, rng: random.Random) -> float:
    """Spread a delay uniformly over ``delay * [1 - ratio/2, 1 + ratio/2]``."""
    if ratio <= 0:
        return delay_ms
    return delay_ms * (1 - ratio / 2 + rng.uniform(0, ratio))


class wait_policy_backoff(wait_base):
    """Wait strategy that honours server hints before the computed backoff.

    Order of precedence:
    1. ``retry_after_seconds`` on the classified error
    2. ``policy.rate_limit_delay_ms`` for rate-limit errors without a hint
    3. jittered exponential backoff
    """

    def __init__(self, policy: RetryPolicy, rng: random.Random):
        self.policy = policy
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None

        if isinstance(error, ClassifiedError):
            if error.retry_after_seconds is not None:
                return float(error.retry_after_seconds)
            if error.kind is ErrorKind.RATE_LIMIT and self.policy.rate_limit_delay_ms:
                return self.policy.rate_limit_delay_ms / 1000.0

        delay_ms = compute_backoff_ms(self.policy, retry_state.attempt_number)
        return apply_jitter(delay_ms, self.policy.jitter_ratio, self.rng) / 1000.0


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ClassifiedError) and exc.retryable


@dataclass
class RetryOutcome(Generic[T]):
    """Successful result of a retried operation."""

    payload: T
    attempts: int

    @property
    def retries(self) -> int:
        return self.attempts - 1


@dataclass
class ExecutorStats:
    """Counters across every run of an executor."""

    runs: int = 0
    attempts: int = 0
    retries: int = 0
    failures: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "runs": self.runs,
            "attempts": self.attempts,
            "retries": self.retries,
            "failures": self.failures,
        }


class RetryExecutor:
    """Runs async operations under a RetryPolicy.

    Backoff waits are ``await sleep(...)`` calls, so other tasks keep
    running while one operation waits. Given a seeded ``rng`` and a fake
    ``sleep`` the executor is fully deterministic.
    """

    def __init__(
        self,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        """Initialize the executor.

        Args:
            sleep: Coroutine function used to suspend between attempts
            rng: Random source for jitter (seed it for reproducible delays)
        """
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.stats = ExecutorStats()
        self.history = FailureHistory()

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        label: str = "operation",
    ) -> T:
        """Execute an operation with retry logic.

        Args:
            operation: Zero-argument coroutine function, called once per attempt
            policy: Retry policy for this operation's class
            label: Name used in log messages

        Returns:
            The operation's result

        Raises:
            ClassifiedError: The terminal error, with ``attempts`` filled in
        """
        outcome = await self.run_detailed(operation, policy, label=label)
        return outcome.payload

    async def run_detailed(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        label: str = "operation",
    ) -> RetryOutcome[T]:
        """Like ``run`` but also reports how many attempts were made."""
        self.stats.runs += 1
        attempt_number = 0

        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            self.stats.retries += 1
            logger.warning(
                "%s failed on attempt %d/%d (%s); retrying in %.2fs",
                label,
                retry_state.attempt_number,
                policy.max_attempts,
                getattr(error, "kind", ErrorKind.UNKNOWN).value,
                delay,
                extra={
                    "attempt": retry_state.attempt_number,
                    "max_attempts": policy.max_attempts,
                    "error": error,
                },
            )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(policy.max_attempts),
                wait=wait_policy_backoff(policy, self._rng),
                retry=retry_if_exception(_is_retryable),
                before_sleep=before_sleep,
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    self.stats.attempts += 1
                    payload = await self._call(operation)
                    return RetryOutcome(payload=payload, attempts=attempt_number)
        except ClassifiedError as e:
            e.attempts = attempt_number
            self.stats.failures += 1
            logger.error(
                "%s failed after %d attempt(s): %s error: %s",
                label,
                attempt_number,
                e.kind.value,
                e.message,
                extra={"error": e},
            )
            raise

    async def _call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run one attempt, normalizing every failure to a ClassifiedError.

        ``asyncio.CancelledError`` is not an ``Exception`` and passes
        through untouched.
        """
        try:
            return await operation()
        except ClassifiedError as e:
            self._remember(e)
            raise
        except Exception as e:
            error = classify(e)
            self._remember(error)
            raise error from e

    def _remember(self, error: ClassifiedError) -> None:
        if error.retryable:
            self.history.record(error)

    def failure_pattern(self) -> FailurePattern:
        """Pattern in the last ten transient failures seen by this executor."""
        return self.history.pattern()
