"""Operation routing - the single entry point into the resilience core."""

from .base import OperationRequest, OperationResult, RouterStats
from .catalog import (
    DEFAULT_OPERATIONS,
    OperationCatalog,
    OperationSpec,
    clean_blog_name,
)
from .router import OperationRouter, extract_payload, normalize_parameters

__all__ = [
    # Requests
    "OperationRequest",
    "OperationResult",
    "RouterStats",
    # Catalog
    "OperationCatalog",
    "OperationSpec",
    "DEFAULT_OPERATIONS",
    "clean_blog_name",
    # Router
    "OperationRouter",
    "extract_payload",
    "normalize_parameters",
]
