"""Redis-backed caching of aggregation results."""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from ..core.errors import CacheError

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600
DEFAULT_CHUNK_SIZE = 1000

_IGNORED_KEY_FIELDS = ('ignoreCache', 'ignore_cache')


@dataclass
class CacheResult:
    """Outcome of a cache operation.

    A miss is a result with neither value nor error.
    """

    value: Any = None
    error: Optional[CacheError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def hit(self) -> bool:
        return self.error is None and self.value is not None


def get_cache_key(name: str, input: Optional[Dict[str, Any]] = None) -> str:
    """Build the cache key for an operation and its arguments.

    The cache bypass flag is not part of the key, so bypassing reads still
    refreshes the entry other callers see.

    Args:
        name: Operation name
        input: Operation arguments

    Returns:
        ``name`` alone, or ``name?<json arguments>``
    """
    if not input:
        return name

    filtered = {key: value for key, value in input.items() if key not in _IGNORED_KEY_FIELDS}
    if not filtered:
        return name

    return f"{name}?{json.dumps(filtered, sort_keys=True, separators=(',', ':'))}"


def _chunks(items: List[Any], size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class CacheLayer:
    """Scalar and list-valued cache over a Redis client.

    Operations never raise. Failures are logged and returned in the
    CacheResult so callers can fall back to recomputing.
    """

    def __init__(self, client: aioredis.Redis, default_ttl: int = DEFAULT_TTL,
                 chunk_size: int = DEFAULT_CHUNK_SIZE):
        """Initialize cache layer.

        Args:
            client: Redis client created with ``decode_responses=True``
            default_ttl: Time to live in seconds when none is given
            chunk_size: Number of list items per read or write call
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

        self.client = client
        self.default_ttl = default_ttl
        self.chunk_size = chunk_size

    @classmethod
    def from_settings(cls, settings) -> 'CacheLayer':
        """Create a cache layer connected to the configured Redis URL."""
        client = aioredis.Redis.from_url(
            settings.cache_url,
            password=settings.cache_password,
            decode_responses=True,
        )
        return cls(client, default_ttl=settings.cache_ttl, chunk_size=settings.cache_chunk_size)

    async def close(self):
        """Close the underlying connection pool."""
        await self.client.aclose()

    async def get(self, key: str) -> CacheResult:
        """Get a scalar JSON value.

        Args:
            key: Cache key

        Returns:
            CacheResult with the decoded value, or None on a miss
        """
        try:
            raw = await self.client.get(key)
        except RedisError as e:
            return self._failure(f"Failed to get cache key {key}", e)

        if raw is None:
            logger.debug(f"Cache miss for {key}")
            return CacheResult()

        try:
            return CacheResult(value=json.loads(raw))
        except ValueError as e:
            return self._failure(f"Failed to decode cached value for {key}", e)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> CacheResult:
        """Set a scalar JSON value with a time to live.

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl: Time to live in seconds (uses default if None)
        """
        ttl = ttl or self.default_ttl

        try:
            await self.client.set(key, json.dumps(value), ex=ttl)
        except (RedisError, TypeError, ValueError) as e:
            return self._failure(f"Failed to set cache key {key}", e)

        logger.debug(f"Cached {key} for {ttl}s")
        return CacheResult(value=value)

    async def get_list(self, key: str) -> CacheResult:
        """Read a list value in chunks.

        An empty or absent list is a miss.

        Args:
            key: Cache key

        Returns:
            CacheResult with the decoded items, or None on a miss
        """
        try:
            length = await self.client.llen(key)
            if not length:
                logger.debug(f"Cache miss for {key}")
                return CacheResult()

            items = []
            for start in range(0, length, self.chunk_size):
                chunk = await self.client.lrange(key, start, start + self.chunk_size - 1)
                items.extend(json.loads(item) for item in chunk)
        except RedisError as e:
            return self._failure(f"Failed to get cache list {key}", e)
        except ValueError as e:
            return self._failure(f"Failed to decode cached list {key}", e)

        logger.debug(f"Cache hit for {key} with {len(items)} items")
        return CacheResult(value=items)

    async def set_list(self, key: str, items: List[Any], ttl: Optional[int] = None) -> CacheResult:
        """Replace a list value in one optimistic transaction.

        The key is watched, cleared, written in chunks and given a time to
        live. If another client modifies the key before the transaction
        executes, nothing is written and an error is returned.

        Args:
            key: Cache key
            items: JSON-serializable items
            ttl: Time to live in seconds (uses default if None)
        """
        ttl = ttl or self.default_ttl

        try:
            encoded = [json.dumps(item) for item in items]
        except (TypeError, ValueError) as e:
            return self._failure(f"Failed to encode cache list {key}", e)

        try:
            async with self.client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                pipe.multi()
                pipe.delete(key)
                for chunk in _chunks(encoded, self.chunk_size):
                    pipe.rpush(key, *chunk)
                pipe.expire(key, ttl)
                await pipe.execute()
        except WatchError as e:
            return self._failure(f"Cache list {key} changed during write, aborting", e)
        except RedisError as e:
            return self._failure(f"Failed to set cache list {key}", e)

        logger.info(f"Cached {len(items)} items under {key} for {ttl}s")
        return CacheResult(value=items)

    async def delete(self, key: str) -> CacheResult:
        """Delete a key. The result value is True if the key existed."""
        try:
            deleted = await self.client.delete(key)
        except RedisError as e:
            return self._failure(f"Failed to delete cache key {key}", e)

        return CacheResult(value=bool(deleted))

    async def health_check(self) -> bool:
        """Check that the store answers a ping."""
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.error(f"Cache health check failed: {e}")
            return False

    @staticmethod
    def _failure(message: str, exc: Exception) -> CacheResult:
        logger.error(f"{message}: {exc}")
        return CacheResult(error=CacheError(f"{message}: {exc}"))
