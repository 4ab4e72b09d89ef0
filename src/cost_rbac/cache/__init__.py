"""Permission caching."""

from .permission_cache import (
    CacheInvalidationEvent,
    CacheStats,
    InMemoryPermissionCache,
    PermissionCacheBackend,
    RedisPermissionCache,
)
from .redis_client import RedisClient

__all__ = [
    "CacheInvalidationEvent",
    "CacheStats",
    "InMemoryPermissionCache",
    "PermissionCacheBackend",
    "RedisPermissionCache",
    "RedisClient",
]
