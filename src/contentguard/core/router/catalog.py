"""
Operation catalog.

Enumerates every (resource, operation) pair the router can execute and
how each maps onto a transport call: method, path template, operation
class, cacheability and which cached resources a successful write makes
stale.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from string import Formatter
from typing import Any
from urllib.parse import quote

from contentguard.core.config.models import OperationClass
from contentguard.core.resilience.errors import ClassifiedError, ErrorKind

from .base import OperationRequest

BLOG_SUFFIX = re.compile(r"\.tumblr\.com$", re.IGNORECASE)

# Resources whose reads go stale when a post changes
POST_FAMILY = ("post", "blog", "queue", "draft")


def clean_blog_name(blog_name: str) -> str:
    """Strip the hosted-domain suffix from a blog identifier."""
    return BLOG_SUFFIX.sub("", blog_name.strip())


@dataclass(frozen=True)
class OperationSpec:
    """How one (resource, operation) pair is executed."""

    resource: str
    operation: str
    method: str
    path: str
    kind: OperationClass = OperationClass.READ
    cacheable: bool = False
    idempotent: bool = False
    ttl_ms: int | None = None
    required: tuple[str, ...] = ()
    fixed: Mapping[str, Any] = field(default_factory=dict)
    renames: Mapping[str, str] = field(default_factory=dict)
    invalidates: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.ttl_ms is not None and self.ttl_ms <= 0:
            raise ValueError(f"{self.pair}: ttl_ms must be positive, got {self.ttl_ms}")

    @property
    def pair(self) -> str:
        return f"{self.resource}:{self.operation}"

    @property
    def mutating(self) -> bool:
        return self.kind is OperationClass.WRITE

    @property
    def path_fields(self) -> tuple[str, ...]:
        return tuple(name for _, name, _, _ in Formatter().parse(self.path) if name)

    def missing(self, parameters: Mapping[str, Any]) -> list[str]:
        """Required parameters and path fields that are absent or empty."""
        needed = dict.fromkeys((*self.required, *self.path_fields))
        return [
            name for name in needed
            if parameters.get(name) is None or parameters.get(name) == ""
        ]

    def render(self, parameters: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        """Build the request path and body for a call.

        Path fields are URL-quoted and removed from the body; remaining
        parameters are renamed to their wire names and merged with the
        fixed parameters, which take precedence.
        """
        values = dict(parameters)
        if "blog_name" in values and values["blog_name"] is not None:
            values["blog_name"] = clean_blog_name(str(values["blog_name"]))

        path_values = {
            name: quote(str(values.pop(name)), safe="")
            for name in self.path_fields
        }
        path = self.path.format(**path_values)

        body = {
            self.renames.get(name, name): value
            for name, value in values.items()
            if value is not None
        }
        body.update(self.fixed)
        return path, body


def _read(
    resource: str,
    operation: str,
    path: str,
    ttl_ms: int | None = None,
    required: tuple[str, ...] = (),
) -> OperationSpec:
    return OperationSpec(
        resource=resource,
        operation=operation,
        method="GET",
        path=path,
        kind=OperationClass.READ,
        cacheable=True,
        idempotent=True,
        ttl_ms=ttl_ms,
        required=required,
    )


def _write(
    resource: str,
    operation: str,
    method: str,
    path: str,
    required: tuple[str, ...] = (),
    fixed: Mapping[str, Any] | None = None,
    renames: Mapping[str, str] | None = None,
    invalidates: tuple[str, ...] = (),
) -> OperationSpec:
    return OperationSpec(
        resource=resource,
        operation=operation,
        method=method,
        path=path,
        kind=OperationClass.WRITE,
        cacheable=False,
        idempotent=False,
        required=required,
        fixed=dict(fixed or {}),
        renames=dict(renames or {}),
        invalidates=invalidates,
    )


BLOG = ("blog_name",)
BLOG_POST = ("blog_name", "post_id")

DEFAULT_OPERATIONS: tuple[OperationSpec, ...] = (
    # Blog
    _read("blog", "getInfo", "/blog/{blog_name}/info", ttl_ms=300_000, required=BLOG),
    _read("blog", "getPosts", "/blog/{blog_name}/posts", ttl_ms=60_000, required=BLOG),
    _read("blog", "getFollowers", "/blog/{blog_name}/followers", ttl_ms=300_000, required=BLOG),
    _read("blog", "getLikes", "/blog/{blog_name}/likes", ttl_ms=120_000, required=BLOG),
    # Posts
    _read("post", "get", "/blog/{blog_name}/posts/{post_id}", ttl_ms=60_000, required=BLOG_POST),
    _write("post", "create", "POST", "/blog/{blog_name}/posts",
           required=BLOG, invalidates=POST_FAMILY),
    _write("post", "update", "PUT", "/blog/{blog_name}/posts/{post_id}",
           required=BLOG_POST, invalidates=POST_FAMILY),
    _write("post", "delete", "POST", "/blog/{blog_name}/post/delete",
           required=BLOG_POST, renames={"post_id": "id"}, invalidates=POST_FAMILY),
    _write("post", "reblog", "POST", "/blog/{blog_name}/post/reblog",
           required=("blog_name", "post_id", "reblog_key"),
           renames={"post_id": "id"}, invalidates=POST_FAMILY),
    # User
    _read("user", "getInfo", "/user/info", ttl_ms=300_000),
    _read("user", "getDashboard", "/user/dashboard", ttl_ms=30_000),
    _read("user", "getLikes", "/user/likes", ttl_ms=60_000),
    _read("user", "getFollowing", "/user/following", ttl_ms=300_000),
    _write("user", "like", "POST", "/user/like",
           required=("post_id", "reblog_key"), renames={"post_id": "id"}, invalidates=("user",)),
    _write("user", "unlike", "POST", "/user/unlike",
           required=("post_id", "reblog_key"), renames={"post_id": "id"}, invalidates=("user",)),
    _write("user", "follow", "POST", "/user/follow", required=("url",), invalidates=("user",)),
    _write("user", "unfollow", "POST", "/user/unfollow", required=("url",), invalidates=("user",)),
    # Queue
    _read("queue", "get", "/blog/{blog_name}/posts/queue", ttl_ms=60_000, required=BLOG),
    _write("queue", "add", "POST", "/blog/{blog_name}/posts",
           required=BLOG, fixed={"state": "queue"}, invalidates=POST_FAMILY),
    _write("queue", "remove", "POST", "/blog/{blog_name}/post/delete",
           required=BLOG_POST, renames={"post_id": "id"}, invalidates=POST_FAMILY),
    # Drafts
    _read("draft", "get", "/blog/{blog_name}/posts/draft", ttl_ms=60_000, required=BLOG),
    _write("draft", "create", "POST", "/blog/{blog_name}/posts",
           required=BLOG, fixed={"state": "draft"}, invalidates=POST_FAMILY),
    _write("draft", "update", "PUT", "/blog/{blog_name}/posts/{post_id}",
           required=BLOG_POST, invalidates=POST_FAMILY),
    _write("draft", "delete", "POST", "/blog/{blog_name}/post/delete",
           required=BLOG_POST, renames={"post_id": "id"}, invalidates=POST_FAMILY),
    _write("draft", "publish", "PUT", "/blog/{blog_name}/posts/{post_id}",
           required=BLOG_POST, fixed={"state": "published"}, invalidates=POST_FAMILY),
    # Search
    _read("search", "searchByTag", "/tagged", ttl_ms=60_000, required=("tag",)),
)


class OperationCatalog:
    """Registry of executable operations keyed by (resource, operation)."""

    def __init__(self, operations: Iterable[OperationSpec] = DEFAULT_OPERATIONS):
        self._operations: dict[tuple[str, str], OperationSpec] = {}
        for spec in operations:
            self.register(spec)

    def register(self, spec: OperationSpec) -> None:
        """Add or replace an operation."""
        self._operations[(spec.resource, spec.operation)] = spec

    def get(self, resource: str, operation: str) -> OperationSpec | None:
        return self._operations.get((resource, operation))

    def resolve(self, resource: str, operation: str) -> OperationSpec:
        """Look up an operation.

        Raises:
            ClassifiedError: Validation error for an unknown pair
        """
        spec = self.get(resource, operation)
        if spec is None:
            known = self.resources()
            if resource not in known:
                message = f"Unknown resource: {resource}"
            else:
                message = f"Unknown {resource} operation: {operation}"
            raise ClassifiedError(
                ErrorKind.VALIDATION,
                message,
                details={"resource": resource, "operation": operation},
                attempts=0,
            )
        return spec

    def build_request(
        self,
        resource: str,
        operation: str,
        parameters: Mapping[str, Any] | None = None,
        credential_id: str = "default",
    ) -> OperationRequest:
        """Create a request whose cache flags come from the catalog."""
        spec = self.resolve(resource, operation)
        return OperationRequest(
            resource=resource,
            operation=operation,
            parameters=dict(parameters or {}),
            credential_id=credential_id,
            cacheable=spec.cacheable,
            idempotent=spec.idempotent,
        )

    def resources(self) -> set[str]:
        return {resource for resource, _ in self._operations}

    def operations(self, resource: str) -> list[str]:
        return sorted(op for res, op in self._operations if res == resource)

    def __contains__(self, pair: object) -> bool:
        return pair in self._operations

    def __iter__(self) -> Iterator[OperationSpec]:
        return iter(self._operations.values())

    def __len__(self) -> int:
        return len(self._operations)
