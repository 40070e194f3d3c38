"""Manifest retrieval.

Fetches the signed JSON manifest from an ``ipfs://`` URI (through the
configured read gateway) or directly over HTTP(S). This is a plain I/O
adapter: it does not retry, the job pipeline does.
"""

import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from provenance.core.errors import FetchError, ParseError, UnsupportedSchemeError
from provenance.storage.cache import CacheService, manifest_key
from provenance.verification.hasher import ALGORITHM
from provenance.verification.models import CONTENT_HASH_PATTERN

logger = logging.getLogger(__name__)


class Manifest(BaseModel):
    """Creator-signed manifest document."""

    model_config = ConfigDict(extra="allow", frozen=True)

    version: str = "1.0"
    algorithm: str = ALGORITHM
    content_hash: str
    content_uri: str | None = None
    creator_did: str | None = None
    created_at: str | None = None
    signature: str
    attestations: list[Any] = Field(default_factory=list)

    @field_validator("algorithm")
    @classmethod
    def validate_algorithm(cls, value: str) -> str:
        if value.lower() != ALGORITHM:
            raise ValueError(f"unsupported hash algorithm {value!r}")
        return value

    @field_validator("content_hash")
    @classmethod
    def validate_content_hash(cls, value: str) -> str:
        if not CONTENT_HASH_PATTERN.match(value):
            raise ValueError("content_hash must be 0x followed by 64 hex characters")
        return value

    @classmethod
    def from_document(cls, document: Any) -> "Manifest":
        """Validate a decoded JSON document.

        Raises:
            ParseError: If the document does not match the manifest schema
        """
        if not isinstance(document, dict):
            raise ParseError("Manifest must be a JSON object")
        try:
            return cls.model_validate(document)
        except PydanticValidationError as e:
            raise ParseError(f"Invalid manifest: {e.errors()[0]['msg']}") from e


class ManifestFetcher:
    """Retrieves manifests over HTTP(S) or an IPFS gateway.

    The underlying ``httpx.Client`` is shared across worker threads.
    """

    def __init__(
        self,
        gateway: str = "https://ipfs.io/ipfs/",
        timeout: float = 15.0,
        max_bytes: int = 1024 * 1024,
        client: httpx.Client | None = None,
        cache: CacheService | None = None,
        cache_ttl: int = 15 * 60,
    ) -> None:
        """Initialize fetcher.

        Args:
            gateway: IPFS HTTP gateway base URL
            timeout: Per-request timeout in seconds
            max_bytes: Largest manifest body accepted
            client: Optional preconfigured HTTP client
            cache: Optional manifest cache used by ``fetch_cached``
            cache_ttl: Manifest cache TTL in seconds
        """
        self.gateway = gateway if gateway.endswith("/") else gateway + "/"
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.client = client or httpx.Client(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            headers={"Accept": "application/json"},
        )
        self.cache = cache
        self.cache_ttl = cache_ttl

    def resolve_url(self, uri: str) -> str:
        """Map a manifest URI to the HTTP URL it is fetched from.

        Raises:
            UnsupportedSchemeError: For anything but ipfs and http(s)
        """
        if uri.startswith("ipfs://"):
            path = uri[len("ipfs://") :]
            if path.startswith("ipfs/"):
                path = path[len("ipfs/") :]
            return self.gateway + path
        if uri.startswith("https://") or uri.startswith("http://"):
            return uri
        raise UnsupportedSchemeError(f"Unsupported manifest URI scheme: {uri}")

    def fetch_document(self, uri: str) -> Any:
        """Fetch and decode the JSON document at ``uri``.

        Raises:
            FetchError: On network errors, timeouts or HTTP error status
            ParseError: If the body is not JSON
        """
        url = self.resolve_url(uri)
        try:
            with self.client.stream("GET", url, timeout=self.timeout) as response:
                if response.status_code >= 400:
                    raise FetchError(f"HTTP {response.status_code} for {url}")
                body = bytearray()
                for chunk in response.iter_bytes():
                    body.extend(chunk)
                    if len(body) > self.max_bytes:
                        raise ParseError(
                            f"Manifest at {url} exceeds {self.max_bytes} bytes"
                        )
        except httpx.TimeoutException as e:
            raise FetchError(f"Timed out fetching {url}") from e
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch {url}: {e}") from e

        try:
            return json.loads(bytes(body).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ParseError(f"Manifest at {url} is not valid JSON") from e

    def fetch(self, uri: str) -> Manifest:
        """Fetch and validate a manifest."""
        manifest = Manifest.from_document(self.fetch_document(uri))
        logger.debug("Fetched manifest %s for %s", uri, manifest.content_hash)
        return manifest

    def fetch_cached(self, uri: str) -> Manifest:
        """Fetch a manifest through the manifest cache."""
        if self.cache is None:
            return self.fetch(uri)
        document = self.cache.get_or_set(
            manifest_key(uri),
            lambda: self.fetch(uri),
            ttl=self.cache_ttl,
            serialize=lambda m: m.model_dump(mode="json"),
        )
        if isinstance(document, Manifest):
            return document
        return Manifest.from_document(document)

    def close(self) -> None:
        self.client.close()
