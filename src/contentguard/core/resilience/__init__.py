"""Resilience utilities - classification, retries, throttling, caching."""

from .caching import CacheEntry, ResponseCache
from .classifier import classify, parse_retry_after
from .errors import ClassifiedError, ErrorKind, is_retryable
from .patterns import FailureHistory, FailurePattern, Severity, detect_failure_pattern
from .retries import (
    ExecutorStats,
    RetryExecutor,
    RetryOutcome,
    apply_jitter,
    compute_backoff_ms,
)
from .throttling import RateDecision, RateLimiter, RateWindow

__all__ = [
    # Errors
    "ClassifiedError",
    "ErrorKind",
    "is_retryable",
    "classify",
    "parse_retry_after",
    # Failure patterns
    "FailureHistory",
    "FailurePattern",
    "Severity",
    "detect_failure_pattern",
    # Retries
    "RetryExecutor",
    "RetryOutcome",
    "ExecutorStats",
    "compute_backoff_ms",
    "apply_jitter",
    # Throttling
    "RateLimiter",
    "RateDecision",
    "RateWindow",
    # Caching
    "ResponseCache",
    "CacheEntry",
]
