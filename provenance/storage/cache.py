"""Redis cache for platform bindings and manifest documents.

Verdicts are never cached: a cached verdict could hide an on-chain change.
"""

import json
import logging
import re
from typing import Any, Callable, TypeVar

import redis
from redis.exceptions import RedisError

from provenance.core.metrics import CACHE_OPERATIONS

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSAFE_KEY_CHARS = re.compile(r"[^\w:.-]")


def _safe_key(key: str) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", str(key))


_KINDS = ("binding", "manifest")


def _kind(key: str) -> str:
    kind = str(key).split(":", 1)[0]
    return kind if kind in _KINDS else "other"


def _count(key: str, op: str, result: str) -> None:
    CACHE_OPERATIONS.labels(kind=_kind(key), op=op, result=result).inc()


def binding_key(platform: str, platform_id: str) -> str:
    return f"binding:{platform}:{platform_id}"


def manifest_key(manifest_uri: str) -> str:
    return f"manifest:{manifest_uri}"


class CacheService:
    """JSON values in Redis with per-key TTL.

    Every operation degrades to a miss or a no-op when Redis is missing or
    failing, or when a stored value is corrupt; callers never see cache
    errors. Operations are counted in ``provenance_cache_operations_total``.
    """

    def __init__(self, client: redis.Redis | None, prefix: str = "provenance") -> None:
        """Initialize cache.

        Args:
            client: Redis client, or None to disable caching
            prefix: Namespace prepended to every key
        """
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, redis_url: str | None, socket_timeout: int = 3) -> "CacheService":
        """Create a cache from a Redis URL; an empty URL disables caching."""
        if not redis_url:
            logger.info("REDIS_URL not configured, caching disabled")
            return cls(None)
        client = redis.Redis.from_url(
            redis_url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    def is_available(self) -> bool:
        return self.client is not None

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}" if self.prefix else key

    def get(self, key: str) -> Any | None:
        """Get a cached value, or None on miss."""
        if self.client is None:
            return None
        try:
            raw = self.client.get(self._key(key))
        except RedisError as e:
            logger.error("Error getting cache key %s: %s", _safe_key(key), e)
            _count(key, "get", "error")
            return None
        if raw is None:
            _count(key, "get", "miss")
            return None
        try:
            value = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error("Corrupt cache value for %s: %s", _safe_key(key), e)
            _count(key, "get", "error")
            return None
        _count(key, "get", "hit")
        return value

    def set(self, key: str, value: Any, ttl: int) -> bool:
        """Cache a JSON-serializable value for ``ttl`` seconds."""
        if self.client is None:
            return False
        try:
            self.client.setex(self._key(key), ttl, json.dumps(value))
        except (RedisError, TypeError) as e:
            logger.error("Error setting cache key %s: %s", _safe_key(key), e)
            _count(key, "set", "error")
            return False
        _count(key, "set", "ok")
        return True

    def delete(self, key: str) -> bool:
        if self.client is None:
            return False
        try:
            self.client.delete(self._key(key))
        except RedisError as e:
            logger.error("Error deleting cache key %s: %s", _safe_key(key), e)
            _count(key, "delete", "error")
            return False
        _count(key, "delete", "ok")
        return True

    def get_or_set(
        self,
        key: str,
        fetch: Callable[[], T],
        ttl: int,
        serialize: Callable[[T], Any] = lambda v: v,
        should_cache: Callable[[T], bool] = lambda v: True,
    ) -> T | Any:
        """Cache-aside lookup.

        Returns the cached JSON value on a hit, otherwise calls ``fetch``,
        stores ``serialize(value)`` when ``should_cache(value)`` and returns
        the fetched value. Exceptions from ``fetch`` propagate uncached.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        value = fetch()
        if should_cache(value):
            self.set(key, serialize(value), ttl)
        return value

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
