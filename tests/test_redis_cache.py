"""Tests for the Redis client wrapper and the Redis permission cache."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import redis.asyncio as redis

from cost_rbac.cache.permission_cache import CacheInvalidationEvent, RedisPermissionCache
from cost_rbac.cache.redis_client import RedisClient
from cost_rbac.config.settings import RedisSettings
from cost_rbac.rbac.roles import Role


def _raw_client(keys=()):
    """A stand-in for redis.asyncio.Redis with scan support."""
    client = MagicMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()

    async def scan_iter(match=None):
        for key in keys:
            yield key

    client.scan_iter = MagicMock(side_effect=scan_iter)
    return client


class TestRedisSettings:
    """Tests for RedisSettings."""

    def test_url_without_password(self):
        settings = RedisSettings(host="cache", port=6380, db=2)
        assert settings.url == "redis://cache:6380/2"

    def test_url_with_password_and_ssl(self):
        settings = RedisSettings(host="cache", password="pw", ssl=True)
        assert settings.url == "rediss://:pw@cache:6379/0"


class TestRedisClient:
    """Tests for RedisClient."""

    def test_wrapping_existing_client_is_connected(self):
        client = RedisClient(settings=RedisSettings(), client=_raw_client())
        assert client.is_connected is True

    def test_not_connected_initially(self):
        assert RedisClient(settings=RedisSettings()).is_connected is False

    @pytest.mark.asyncio
    async def test_connect_pings(self):
        raw = _raw_client()
        with patch("cost_rbac.cache.redis_client.ConnectionPool") as pool_cls, \
                patch("cost_rbac.cache.redis_client.Redis", return_value=raw):
            client = RedisClient(settings=RedisSettings(host="cache"))
            await client.connect()

        pool_cls.from_url.assert_called_once()
        assert pool_cls.from_url.call_args.args[0] == "redis://cache:6379/0"
        raw.ping.assert_awaited_once()
        assert client.is_connected

    @pytest.mark.asyncio
    async def test_connect_failure_raises(self):
        raw = _raw_client()
        raw.ping = AsyncMock(side_effect=redis.ConnectionError("refused"))
        with patch("cost_rbac.cache.redis_client.ConnectionPool"), \
                patch("cost_rbac.cache.redis_client.Redis", return_value=raw):
            client = RedisClient(settings=RedisSettings())
            with pytest.raises(redis.ConnectionError):
                await client.connect()
        assert client.is_connected is False

    @pytest.mark.asyncio
    async def test_keys_are_prefixed_and_json_encoded(self):
        raw = _raw_client()
        client = RedisClient(settings=RedisSettings(key_prefix="t:"), client=raw)

        assert await client.set("perm:u1:p1", {"permissions": ["a"]}, ttl=30) is True

        raw.set.assert_awaited_once_with("t:perm:u1:p1", json.dumps({"permissions": ["a"]}), ex=30)

    @pytest.mark.asyncio
    async def test_get_decodes_json(self):
        raw = _raw_client()
        raw.get = AsyncMock(return_value='{"permissions": ["a"]}')
        client = RedisClient(settings=RedisSettings(), client=raw)

        assert await client.get("k") == {"permissions": ["a"]}

    @pytest.mark.asyncio
    async def test_errors_are_swallowed(self):
        raw = _raw_client()
        raw.get = AsyncMock(side_effect=redis.RedisError("boom"))
        raw.set = AsyncMock(side_effect=redis.RedisError("boom"))
        raw.delete = AsyncMock(side_effect=redis.RedisError("boom"))
        client = RedisClient(settings=RedisSettings(), client=raw)

        assert await client.get("k") is None
        assert await client.set("k", 1) is False
        assert await client.delete("k") is False
        assert await client.delete_pattern("k*") == 0

    @pytest.mark.asyncio
    async def test_delete_pattern(self):
        raw = _raw_client(keys=["costrbac:perm:u1:p1", "costrbac:perm:u1:p2"])
        client = RedisClient(settings=RedisSettings(), client=raw)

        assert await client.delete_pattern("perm:u1:*") == 2
        raw.scan_iter.assert_called_once_with(match="costrbac:perm:u1:*")

    @pytest.mark.asyncio
    async def test_without_connection(self):
        client = RedisClient(settings=RedisSettings())
        assert await client.get("k") is None
        assert await client.set("k", 1) is False

    @pytest.mark.asyncio
    async def test_close(self):
        raw = _raw_client()
        client = RedisClient(settings=RedisSettings(), client=raw)
        await client.close()
        raw.aclose.assert_awaited_once()
        assert client.is_connected is False


@pytest.fixture
def redis_client():
    client = MagicMock(spec=RedisClient)
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=True)
    client.delete_pattern = AsyncMock(return_value=3)
    return client


class TestRedisPermissionCache:
    """Tests for RedisPermissionCache."""

    @pytest.mark.asyncio
    async def test_miss(self, redis_client):
        cache = RedisPermissionCache(redis_client)
        assert await cache.get("u1", "p1") is None
        redis_client.get.assert_awaited_once_with("perm:u1:p1")
        assert cache.stats().misses == 1

    @pytest.mark.asyncio
    async def test_hit(self, redis_client):
        redis_client.get = AsyncMock(return_value={"role": "supervisor", "permissions": ["a", "b"]})
        cache = RedisPermissionCache(redis_client)

        assert await cache.get("u1", "p1") == frozenset({"a", "b"})
        assert cache.stats().hits == 1

    @pytest.mark.asyncio
    async def test_malformed_value_is_a_miss(self, redis_client):
        redis_client.get = AsyncMock(return_value="garbage")
        cache = RedisPermissionCache(redis_client)
        assert await cache.get("u1", "p1") is None

    @pytest.mark.asyncio
    async def test_set_stores_role_tag(self, redis_client):
        cache = RedisPermissionCache(redis_client, ttl=120)

        await cache.set("u1", "p1", {"b", "a"}, role=Role.SUPERVISOR)

        redis_client.set.assert_awaited_once_with(
            "perm:u1:p1", {"role": "supervisor", "permissions": ["a", "b"]}, ttl=120
        )
        assert cache.stats().sets == 1

    @pytest.mark.asyncio
    async def test_failed_set_not_counted(self, redis_client):
        redis_client.set = AsyncMock(return_value=False)
        cache = RedisPermissionCache(redis_client)
        await cache.set("u1", "p1", {"a"})
        assert cache.stats().sets == 0

    @pytest.mark.asyncio
    async def test_single_entry_invalidation(self, redis_client):
        cache = RedisPermissionCache(redis_client)
        removed = await cache.invalidate(
            CacheInvalidationEvent.PROPERTY_ACCESS_REVOKED, user_id="u1", property_id="p1"
        )
        assert removed == 1
        redis_client.delete.assert_awaited_once_with("perm:u1:p1")

    @pytest.mark.parametrize("kwargs,pattern", [
        ({"user_id": "u1"}, "perm:u1:*"),
        ({"property_id": "p1"}, "perm:*:p1"),
        ({"role": Role.SUPERVISOR}, "perm:*"),
        ({}, "perm:*"),
    ])
    @pytest.mark.asyncio
    async def test_scoped_invalidation(self, redis_client, kwargs, pattern):
        cache = RedisPermissionCache(redis_client)

        removed = await cache.invalidate(CacheInvalidationEvent.USER_PERMISSIONS_CHANGED, **kwargs)

        assert removed == 3
        redis_client.delete_pattern.assert_awaited_once_with(pattern)

    @pytest.mark.asyncio
    async def test_system_event_flushes(self, redis_client):
        cache = RedisPermissionCache(redis_client)
        await cache.invalidate(CacheInvalidationEvent.SYSTEM_PERMISSIONS_UPDATED, user_id="u1")
        redis_client.delete_pattern.assert_awaited_once_with("perm:*")

    @pytest.mark.asyncio
    async def test_clear(self, redis_client):
        cache = RedisPermissionCache(redis_client)
        await cache.clear()
        redis_client.delete_pattern.assert_awaited_once_with("perm:*")

    @pytest.mark.asyncio
    async def test_set_after_invalidation_is_dropped(self, redis_client):
        cache = RedisPermissionCache(redis_client)
        generation = cache.generation()
        await cache.invalidate(
            CacheInvalidationEvent.PROPERTY_ACCESS_REVOKED, user_id="u1", property_id="p1"
        )

        assert await cache.set("u1", "p1", {"stale"}, generation=generation) is False
        redis_client.set.assert_not_awaited()
        assert await cache.set("u1", "p1", {"fresh"}, generation=cache.generation()) is True
