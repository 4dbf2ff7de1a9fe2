"""
Failure pattern detection.

Looks at the most recent transient failures and names the dominant
pattern, so operators can tell a slow link from a refusing host or a
broken resolver.
"""

from __future__ import annotations

from collections import Counter, deque
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import ClassifiedError

RECENT_WINDOW = 10


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class FailurePattern:
    """Named pattern with a suggested remedy."""

    pattern: str
    severity: Severity
    recommendation: str
    counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pattern": self.pattern,
            "severity": self.severity.value,
            "recommendation": self.recommendation,
            "counts": dict(self.counts),
        }


# (pattern, failure category, threshold, severity, recommendation), checked in order
RULES = (
    (
        "high_timeout_rate", "timeout", 5, Severity.HIGH,
        "Increase timeout values or check network latency. Consider reducing request frequency.",
    ),
    (
        "connection_instability", "connection", 5, Severity.HIGH,
        "Check network connectivity and firewall settings. The remote API may be experiencing issues.",
    ),
    (
        "dns_resolution_failure", "dns", 3, Severity.MEDIUM,
        "Check DNS settings and network configuration. Try using alternative DNS servers.",
    ),
)

GENERAL_THRESHOLD = 5


def failure_category(error: ClassifiedError) -> str:
    """Category recorded by the classifier, or the error kind otherwise."""
    return str(error.details.get("failure") or error.kind.value)


def detect_failure_pattern(errors: Sequence[ClassifiedError]) -> FailurePattern:
    """Classify the mix of the last ten errors.

    Timeouts, refused connections and DNS failures each have their own
    pattern once they dominate; five or more recent errors of any mix
    count as general instability.
    """
    if not errors:
        return FailurePattern("no_errors", Severity.LOW, "Network is operating normally")

    recent = list(errors)[-RECENT_WINDOW:]
    counts = Counter(failure_category(error) for error in recent)

    for pattern, category, threshold, severity, recommendation in RULES:
        if counts[category] >= threshold:
            return FailurePattern(pattern, severity, recommendation, dict(counts))

    if len(recent) >= GENERAL_THRESHOLD:
        return FailurePattern(
            "general_network_instability",
            Severity.MEDIUM,
            "Network appears unstable. Consider reducing the request rate.",
            dict(counts),
        )

    return FailurePattern(
        "sporadic_errors",
        Severity.LOW,
        "Occasional network errors are normal. Monitor for patterns.",
        dict(counts),
    )


class FailureHistory:
    """Bounded record of recent transient failures."""

    def __init__(self, size: int = RECENT_WINDOW):
        self._errors: deque[ClassifiedError] = deque(maxlen=size)

    def record(self, error: ClassifiedError) -> None:
        self._errors.append(error)

    def pattern(self) -> FailurePattern:
        return detect_failure_pattern(self._errors)

    def clear(self) -> None:
        self._errors.clear()

    def __len__(self) -> int:
        return len(self._errors)

    def __iter__(self) -> Iterator[ClassifiedError]:
        return iter(self._errors)
