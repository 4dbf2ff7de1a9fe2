"""Transports that carry authenticated requests to the remote API."""

from .base import (
    HttpStatusFailure,
    MalformedResponseError,
    RawResponse,
    Transport,
    TransportError,
)
from .http_transport import CredentialError, HttpTransport, TransportStats

__all__ = [
    # Base classes
    "Transport",
    "RawResponse",
    # Errors
    "TransportError",
    "HttpStatusFailure",
    "MalformedResponseError",
    "CredentialError",
    # HTTP transport
    "HttpTransport",
    "TransportStats",
]
