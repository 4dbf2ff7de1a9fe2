"""
Pydantic configuration models for ContentGuard.

These models provide type-safe configuration with validation for:
- Retry policies (one per operation class)
- Client-side rate limiting
- Response caching
- The HTTP transport
- Logging
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# Enums
# =============================================================================


class OperationClass(str, Enum):
    """Operation classes that carry their own retry policy."""

    READ = "read"
    WRITE = "write"


# =============================================================================
# Retry Policy
# =============================================================================


class RetryPolicy(BaseModel):
    """Bounded exponential-backoff policy.

    Immutable; one instance is supplied per operation class.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(
        default=4,
        ge=1,
        le=20,
        description="Total attempts including the first one",
    )
    base_delay_ms: int = Field(
        default=1000,
        gt=0,
        description="Delay before the second attempt in milliseconds",
    )
    multiplier: float = Field(
        default=2.0,
        gt=1.0,
        le=10.0,
        description="Exponential backoff multiplier",
    )
    max_delay_ms: int = Field(
        default=30_000,
        gt=0,
        description="Upper bound for a computed backoff delay",
    )
    jitter_ratio: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Relative width of the jitter band around a delay",
    )
    rate_limit_delay_ms: int | None = Field(
        default=60_000,
        gt=0,
        description="Wait after a 429 that carries no retry-after hint",
    )

    @field_validator("max_delay_ms")
    @classmethod
    def max_delay_gte_base(cls, v: int, info: Any) -> int:
        """Ensure max delay is at least the base delay."""
        base_delay = info.data.get("base_delay_ms", 0)
        if v < base_delay:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        return v


def _default_read_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=4)


def _default_write_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=2)


class RetryConfig(BaseModel):
    """Retry policies by operation class."""

    read: RetryPolicy = Field(default_factory=_default_read_policy)
    write: RetryPolicy = Field(default_factory=_default_write_policy)

    @model_validator(mode="after")
    def writes_retry_less_than_reads(self) -> "RetryConfig":
        """A repeated write may apply twice, so writes get fewer attempts."""
        if self.write.max_attempts >= self.read.max_attempts:
            raise ValueError(
                "retry.write.max_attempts must be smaller than retry.read.max_attempts"
            )
        return self

    def for_class(self, operation_class: OperationClass) -> RetryPolicy:
        """Get the policy for an operation class."""
        if operation_class is OperationClass.WRITE:
            return self.write
        return self.read


# =============================================================================
# Rate Limit Configuration
# =============================================================================


class CredentialLimit(BaseModel):
    """Budget override for a single credential identity."""

    limit: int = Field(ge=1, description="Requests allowed per window")
    window_ms: int = Field(gt=0, description="Window duration in milliseconds")


class RateLimitConfig(BaseModel):
    """Client-side request budget per credential."""

    limit: int = Field(
        default=1000,
        ge=1,
        description="Requests allowed per window per credential",
    )
    window_ms: int = Field(
        default=3_600_000,
        gt=0,
        description="Window duration in milliseconds",
    )
    per_credential: dict[str, CredentialLimit] = Field(
        default_factory=dict,
        description="Overrides keyed by credential id",
    )


# =============================================================================
# Cache Configuration
# =============================================================================


class CacheConfig(BaseModel):
    """Response cache settings."""

    enabled: bool = Field(
        default=True,
        description="Consult and fill the cache for cacheable reads",
    )
    default_ttl_ms: int = Field(
        default=300_000,
        gt=0,
        description="TTL for cacheable operations without their own TTL",
    )
    max_entries: int = Field(
        default=1024,
        ge=1,
        description="Entries kept before the oldest are evicted",
    )


# =============================================================================
# Transport Configuration
# =============================================================================


class TransportConfig(BaseModel):
    """HTTP transport settings."""

    base_url: str = Field(
        default="https://api.tumblr.com/v2",
        description="Remote API root",
    )
    timeout_seconds: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Request timeout in seconds",
    )
    max_connections: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Connection pool size",
    )
    max_keepalive_connections: int = Field(
        default=5,
        ge=0,
        le=100,
        description="Idle connections kept alive",
    )
    user_agent: str = Field(
        default="contentguard/0.1",
        description="User-Agent header",
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    file: Path | None = Field(
        default=None,
        description="Log file path",
    )
    json_format: bool = Field(
        default=True,
        description="Use JSON format for file logs",
    )
    rich_console: bool = Field(
        default=True,
        description="Use Rich for console output",
    )


# =============================================================================
# Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """Root configuration object loaded from contentguard.yaml."""

    transport: TransportConfig = Field(default_factory=TransportConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
