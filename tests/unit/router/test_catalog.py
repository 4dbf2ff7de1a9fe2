"""Tests for the operation catalog."""

from __future__ import annotations

import pytest

from contentguard.core.config.models import OperationClass
from contentguard.core.resilience.errors import ClassifiedError, ErrorKind
from contentguard.core.router.catalog import (
    POST_FAMILY,
    OperationCatalog,
    OperationSpec,
    clean_blog_name,
)

READS = [
    ("blog", "getInfo"),
    ("blog", "getPosts"),
    ("blog", "getFollowers"),
    ("blog", "getLikes"),
    ("post", "get"),
    ("user", "getInfo"),
    ("user", "getDashboard"),
    ("user", "getLikes"),
    ("user", "getFollowing"),
    ("queue", "get"),
    ("draft", "get"),
    ("search", "searchByTag"),
]

WRITES = [
    ("post", "create"),
    ("post", "update"),
    ("post", "delete"),
    ("post", "reblog"),
    ("user", "like"),
    ("user", "unlike"),
    ("user", "follow"),
    ("user", "unfollow"),
    ("queue", "add"),
    ("queue", "remove"),
    ("draft", "create"),
    ("draft", "update"),
    ("draft", "delete"),
    ("draft", "publish"),
]


@pytest.fixture
def catalog() -> OperationCatalog:
    return OperationCatalog()


class TestDefaultCatalog:
    """Operations shipped by default."""

    def test_size(self, catalog):
        assert len(catalog) == len(READS) + len(WRITES)
        assert catalog.resources() == {"blog", "post", "user", "queue", "draft", "search"}

    @pytest.mark.parametrize("resource,operation", READS)
    def test_reads_are_cacheable(self, catalog, resource, operation):
        spec = catalog.resolve(resource, operation)

        assert spec.kind is OperationClass.READ
        assert spec.method == "GET"
        assert spec.cacheable and spec.idempotent
        assert spec.ttl_ms and spec.ttl_ms > 0

    @pytest.mark.parametrize("resource,operation", WRITES)
    def test_writes_are_not_cacheable(self, catalog, resource, operation):
        spec = catalog.resolve(resource, operation)

        assert spec.mutating
        assert not spec.cacheable
        assert not spec.idempotent
        assert spec.invalidates

    @pytest.mark.parametrize("resource,operation", [w for w in WRITES if w[0] != "user"])
    def test_content_writes_invalidate_post_family(self, catalog, resource, operation):
        assert catalog.resolve(resource, operation).invalidates == POST_FAMILY

    def test_operations_listing(self, catalog):
        assert catalog.operations("queue") == ["add", "get", "remove"]
        assert ("search", "searchByTag") in catalog


class TestResolution:
    """Lookup failures."""

    def test_unknown_resource(self, catalog):
        with pytest.raises(ClassifiedError) as exc_info:
            catalog.resolve("photo", "get")

        error = exc_info.value
        assert error.kind is ErrorKind.VALIDATION
        assert error.http_status is None
        assert error.message == "Unknown resource: photo"
        assert error.retryable is False

    def test_unknown_operation(self, catalog):
        with pytest.raises(ClassifiedError) as exc_info:
            catalog.resolve("blog", "explode")

        assert exc_info.value.message == "Unknown blog operation: explode"

    def test_get_returns_none(self, catalog):
        assert catalog.get("blog", "explode") is None

    def test_register_custom(self):
        catalog = OperationCatalog([])
        catalog.register(OperationSpec("note", "list", "GET", "/notes"))

        assert catalog.resolve("note", "list").path == "/notes"

    def test_build_request_flags(self, catalog):
        read = catalog.build_request("blog", "getInfo", {"blog_name": "foo"}, credential_id="alice")
        write = catalog.build_request("post", "create", {"blog_name": "foo"})

        assert read.cacheable and read.idempotent
        assert read.credential_id == "alice"
        assert not write.cacheable and not write.idempotent
        assert write.credential_id == "default"


class TestRendering:
    """Path and body construction."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("foo", "foo"),
            ("foo.tumblr.com", "foo"),
            ("  Foo.TUMBLR.com ", "Foo"),
            ("foo.example.org", "foo.example.org"),
        ],
    )
    def test_clean_blog_name(self, raw, expected):
        assert clean_blog_name(raw) == expected

    def test_path_fields_removed_from_body(self, catalog):
        spec = catalog.resolve("blog", "getPosts")

        path, body = spec.render({"blog_name": "foo.tumblr.com", "limit": 20, "tag": None})

        assert path == "/blog/foo/posts"
        assert body == {"limit": 20}

    def test_path_values_are_quoted(self, catalog):
        spec = catalog.resolve("post", "get")

        path, _ = spec.render({"blog_name": "my blog", "post_id": "12/34"})

        assert path == "/blog/my%20blog/posts/12%2F34"

    def test_renames(self, catalog):
        spec = catalog.resolve("post", "delete")

        path, body = spec.render({"blog_name": "foo", "post_id": 123})

        assert path == "/blog/foo/post/delete"
        assert body == {"id": 123}

    def test_fixed_parameters_win(self, catalog):
        spec = catalog.resolve("queue", "add")

        _, body = spec.render({"blog_name": "foo", "state": "published", "type": "text"})

        assert body == {"state": "queue", "type": "text"}

    def test_missing_required(self, catalog):
        spec = catalog.resolve("post", "reblog")

        assert spec.missing({"blog_name": "foo", "post_id": ""}) == ["post_id", "reblog_key"]

    def test_path_fields_count_as_required(self):
        spec = OperationSpec("note", "get", "GET", "/notes/{note_id}", cacheable=True, idempotent=True)

        assert spec.missing({}) == ["note_id"]
        assert spec.missing({"note_id": 7}) == []


class TestSpecValidation:
    @pytest.mark.parametrize("ttl_ms", [0, -5])
    def test_rejects_non_positive_ttl(self, ttl_ms):
        with pytest.raises(ValueError, match="note:list"):
            OperationSpec("note", "list", "GET", "/notes", ttl_ms=ttl_ms)

    def test_ttl_may_be_omitted(self):
        assert OperationSpec("note", "list", "GET", "/notes").ttl_ms is None
