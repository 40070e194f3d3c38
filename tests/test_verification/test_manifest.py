"""Tests for manifest retrieval."""

import json
from unittest.mock import MagicMock

import httpx
import pytest

from provenance.core.errors import FetchError, ParseError, UnsupportedSchemeError
from provenance.storage.cache import CacheService
from provenance.verification.manifest import Manifest, ManifestFetcher


def _fetcher(handler, **kwargs) -> ManifestFetcher:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ManifestFetcher(gateway="https://gateway.example/ipfs", client=client, **kwargs)


class TestManifestModel:
    """Manifest schema validation."""

    def test_should_reject_missing_signature(self, content_hash):
        with pytest.raises(ParseError):
            Manifest.from_document({"content_hash": content_hash})

    def test_should_reject_unknown_algorithm(self, manifest):
        document = manifest.model_dump()
        document["algorithm"] = "md5"
        with pytest.raises(ParseError):
            Manifest.from_document(document)

    def test_should_reject_non_object(self):
        with pytest.raises(ParseError):
            Manifest.from_document(["not", "a", "manifest"])

    def test_should_keep_unknown_fields(self, manifest):
        document = {**manifest.model_dump(), "license": "CC-BY-4.0"}
        assert Manifest.from_document(document).model_extra["license"] == "CC-BY-4.0"


class TestManifestFetcher:
    """HTTP and IPFS retrieval."""

    def test_should_resolve_ipfs_through_gateway(self):
        fetcher = _fetcher(lambda request: httpx.Response(200))
        assert fetcher.resolve_url("ipfs://bafyabc") == "https://gateway.example/ipfs/bafyabc"
        assert (
            fetcher.resolve_url("ipfs://ipfs/bafyabc/manifest.json")
            == "https://gateway.example/ipfs/bafyabc/manifest.json"
        )

    def test_should_pass_http_urls_through(self):
        fetcher = _fetcher(lambda request: httpx.Response(200))
        assert fetcher.resolve_url("https://cdn.example/m.json") == "https://cdn.example/m.json"

    def test_should_reject_unsupported_scheme(self):
        fetcher = _fetcher(lambda request: httpx.Response(200))
        with pytest.raises(UnsupportedSchemeError):
            fetcher.fetch("ar://abc")

    def test_should_fetch_and_validate_manifest(self, manifest):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json=manifest.model_dump())

        fetched = _fetcher(handler).fetch("ipfs://bafymanifest")
        assert fetched.content_hash == manifest.content_hash
        assert seen == ["https://gateway.example/ipfs/bafymanifest"]

    def test_should_raise_fetch_error_on_http_error(self):
        fetcher = _fetcher(lambda request: httpx.Response(404))
        with pytest.raises(FetchError):
            fetcher.fetch("https://cdn.example/m.json")

    def test_should_raise_fetch_error_on_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(FetchError):
            _fetcher(handler).fetch("https://cdn.example/m.json")

    def test_should_raise_fetch_error_on_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(FetchError):
            _fetcher(handler).fetch("https://cdn.example/m.json")

    def test_should_raise_parse_error_on_invalid_json(self):
        fetcher = _fetcher(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(ParseError):
            fetcher.fetch("https://cdn.example/m.json")

    def test_should_cap_manifest_size(self, manifest):
        body = json.dumps({**manifest.model_dump(), "padding": "x" * 2048}).encode()
        fetcher = _fetcher(lambda request: httpx.Response(200, content=body), max_bytes=512)
        with pytest.raises(ParseError):
            fetcher.fetch("https://cdn.example/m.json")

    def test_should_serve_cached_manifest_without_fetching(self, manifest):
        cache = MagicMock(spec=CacheService)
        cache.get_or_set.return_value = manifest.model_dump(mode="json")

        def handler(request):
            raise AssertionError("network should not be used")

        fetched = _fetcher(handler, cache=cache).fetch_cached("ipfs://bafymanifest")
        assert fetched == manifest
        assert cache.get_or_set.call_args.args[0] == "manifest:ipfs://bafymanifest"
