"""Configuration loading and validation."""

from .models import (
    # Enums
    OperationClass,
    # Config models
    AppConfig,
    CacheConfig,
    CredentialLimit,
    LoggingConfig,
    RateLimitConfig,
    RetryConfig,
    RetryPolicy,
    TransportConfig,
)
from .loader import ConfigError, load_config, validate_config_file

__all__ = [
    # Enums
    "OperationClass",
    # Config models
    "AppConfig",
    "CacheConfig",
    "CredentialLimit",
    "LoggingConfig",
    "RateLimitConfig",
    "RetryConfig",
    "RetryPolicy",
    "TransportConfig",
    # Loaders
    "ConfigError",
    "load_config",
    "validate_config_file",
]
