"""Tests for the Redis cache layer."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

from treasury_metrics.core.errors import CacheError, ErrorKind
from treasury_metrics.data.cache import CacheLayer, CacheResult, get_cache_key


class TestGetCacheKey:
    """Test cache key construction."""

    def test_name_only(self):
        assert get_cache_key("latest/metrics") == "latest/metrics"
        assert get_cache_key("latest/metrics", {}) == "latest/metrics"

    def test_ignore_cache_is_not_part_of_key(self):
        """Test that bypassing the cache refreshes the same entry."""
        with_flag = get_cache_key("paginated/metrics", {"startDate": "2023-01-01", "ignoreCache": True})
        without_flag = get_cache_key("paginated/metrics", {"startDate": "2023-01-01"})

        assert with_flag == without_flag == 'paginated/metrics?{"startDate":"2023-01-01"}'

    def test_key_order_does_not_matter(self):
        first = get_cache_key("op", {"b": 1, "a": 2})
        second = get_cache_key("op", {"a": 2, "b": 1})

        assert first == second

    def test_only_ignore_cache(self):
        assert get_cache_key("op", {"ignoreCache": True}) == "op"


class TestCacheResult:
    """Test CacheResult."""

    def test_states(self):
        assert CacheResult(value=[1]).hit
        assert CacheResult().ok
        assert not CacheResult().hit
        assert not CacheResult(error=CacheError("boom")).ok


class TestCacheLayer:
    """Test CacheLayer against a fake Redis server."""

    @pytest.mark.asyncio
    async def test_scalar_round_trip(self, cache_layer):
        result = await cache_layer.set("key", {"value": 1.5})
        assert result.ok

        result = await cache_layer.get("key")
        assert result.value == {"value": 1.5}

    @pytest.mark.asyncio
    async def test_scalar_ttl(self, cache_layer, redis_client):
        await cache_layer.set("key", 1, ttl=120)

        ttl = await redis_client.ttl("key")
        assert 0 < ttl <= 120

    @pytest.mark.asyncio
    async def test_miss(self, cache_layer):
        result = await cache_layer.get("missing")

        assert result.ok
        assert result.value is None

        result = await cache_layer.get_list("missing")
        assert result.ok
        assert not result.hit

    @pytest.mark.asyncio
    async def test_list_round_trip_in_chunks(self, cache_layer, redis_client):
        """Test that 2500 items survive a write and read at chunk size 1000."""
        items = [{"id": i, "date": f"2023-01-{i % 28 + 1:02d}"} for i in range(2500)]

        result = await cache_layer.set_list("records", items)
        assert result.ok

        assert await redis_client.llen("records") == 2500

        result = await cache_layer.get_list("records")
        assert result.value == items

    @pytest.mark.asyncio
    async def test_set_list_replaces_and_expires(self, cache_layer, redis_client):
        await cache_layer.set_list("records", [1, 2, 3])
        await cache_layer.set_list("records", [4], ttl=30)

        assert (await cache_layer.get_list("records")).value == [4]
        assert 0 < await redis_client.ttl("records") <= 30

    @pytest.mark.asyncio
    async def test_empty_list_is_a_miss(self, cache_layer):
        await cache_layer.set_list("records", [])

        assert not (await cache_layer.get_list("records")).hit

    @pytest.mark.asyncio
    async def test_delete(self, cache_layer):
        await cache_layer.set("key", 1)

        assert (await cache_layer.delete("key")).value is True
        assert (await cache_layer.delete("key")).value is False

    @pytest.mark.asyncio
    async def test_health_check(self, cache_layer):
        assert await cache_layer.health_check() is True

    @pytest.mark.asyncio
    async def test_concurrent_change_aborts_write(self):
        """Test that a watched key modified before execution aborts without retrying."""
        pipe = MagicMock()
        pipe.watch = AsyncMock()
        pipe.execute = AsyncMock(side_effect=WatchError("Watched variable changed."))
        pipe.__aenter__ = AsyncMock(return_value=pipe)
        pipe.__aexit__ = AsyncMock(return_value=False)

        client = MagicMock()
        client.pipeline.return_value = pipe

        layer = CacheLayer(client, chunk_size=2)
        result = await layer.set_list("records", [1, 2, 3])

        assert not result.ok
        assert result.error.kind == ErrorKind.CACHE
        assert pipe.execute.await_count == 1
        pipe.delete.assert_called_once_with("records")
        assert pipe.rpush.call_count == 2

    @pytest.mark.asyncio
    async def test_store_failure_is_reported(self):
        """Test that connection errors are returned, not raised."""
        client = MagicMock()
        client.get = AsyncMock(side_effect=RedisConnectionError("connection refused"))
        client.llen = AsyncMock(side_effect=RedisConnectionError("connection refused"))

        layer = CacheLayer(client)

        result = await layer.get("key")
        assert isinstance(result.error, CacheError)

        result = await layer.get_list("key")
        assert isinstance(result.error, CacheError)

    @pytest.mark.asyncio
    async def test_unserializable_value(self, cache_layer):
        result = await cache_layer.set("key", object())

        assert not result.ok

    def test_invalid_chunk_size(self, redis_client):
        with pytest.raises(ValueError):
            CacheLayer(redis_client, chunk_size=0)
