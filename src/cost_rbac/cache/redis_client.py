"""Redis access for the shared permission cache.

Wraps redis.asyncio with the configured key prefix and JSON values. Every
operation after connect() logs Redis failures and reports them as a miss or
a failed write, so a Redis outage never turns into an access decision.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional

import redis.asyncio as redis
from redis.asyncio import ConnectionPool, Redis

from ..config.settings import RedisSettings, get_settings

logger = logging.getLogger(__name__)


class RedisClient:
    """
    Pooled redis.asyncio connection scoped to one key prefix.

    Usage:
        client = RedisClient()
        await client.connect()
        await client.set("perm:u1:p1", {"role": "supervisor", "permissions": [...]}, ttl=300)
        entry = await client.get("perm:u1:p1")
        await client.delete_pattern("perm:u1:*")
        await client.close()

    Args:
        settings: Connection settings; the application's REDIS_ settings when omitted.
        client: A ready redis.asyncio client; skips connect().
    """

    def __init__(self, settings: Optional[RedisSettings] = None, client: Optional[Redis] = None):
        self.settings = settings or get_settings().redis
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = client
        self._connected = client is not None

    @property
    def is_connected(self) -> bool:
        return self._connected and self._client is not None

    async def connect(self) -> None:
        """
        Open the pool and ping the server.

        Raises:
            redis.RedisError: The server is unreachable. Startup decides
                whether to fall back to the in-process cache.
        """
        if self._connected:
            return

        cfg = self.settings
        self._pool = ConnectionPool.from_url(
            cfg.url,
            max_connections=cfg.max_connections,
            socket_timeout=cfg.socket_timeout,
            socket_connect_timeout=cfg.socket_connect_timeout,
            decode_responses=True,
        )
        self._client = Redis(connection_pool=self._pool)
        try:
            await self._client.ping()
        except redis.RedisError as e:
            logger.error(f"Redis unreachable at {cfg.host}:{cfg.port}: {e}")
            self._connected = False
            raise

        self._connected = True
        logger.info(f"Permission cache connected to Redis at {cfg.host}:{cfg.port}/{cfg.db}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None
        self._connected = False
        logger.info("Permission cache Redis connection closed")

    def _key(self, key: str) -> str:
        return f"{self.settings.key_prefix}{key}"

    async def get(self, key: str) -> Any:
        """Decoded value, or None when absent, unreadable or Redis fails."""
        if self._client is None:
            return None
        try:
            raw = await self._client.get(self._key(key))
        except redis.RedisError as e:
            logger.warning(f"Redis read failed for {key}, treating as miss: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store ``value`` as JSON; False when the write did not happen."""
        if self._client is None:
            return False
        try:
            await self._client.set(self._key(key), json.dumps(value, default=str), ex=ttl)
        except redis.RedisError as e:
            logger.warning(f"Redis write failed for {key}: {e}")
            return False
        return True

    async def delete(self, key: str) -> bool:
        if self._client is None:
            return False
        try:
            return await self._client.delete(self._key(key)) > 0
        except redis.RedisError as e:
            logger.warning(f"Redis delete failed for {key}: {e}")
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern, found with SCAN. Returns the count."""
        if self._client is None:
            return 0
        try:
            keys: List[str] = [key async for key in self._client.scan_iter(match=self._key(pattern))]
            for key in keys:
                await self._client.delete(key)
        except redis.RedisError as e:
            logger.warning(f"Redis pattern delete failed for {pattern}: {e}")
            return 0
        return len(keys)
