"""Cache of resolved per-(user, property) permission sets.

Entries live until an invalidation event drops them; an optional TTL bounds
their lifetime further. Every invalidation also advances a generation
counter. A reader takes ``generation()`` before it resolves on a miss and
hands it back to ``set``; a set from an older generation is dropped, so a
resolution racing a revoke cannot write the revoked set back. Two backends share one async interface:

- InMemoryPermissionCache: process-local, lock-guarded, immediately
  consistent after an invalidation returns.
- RedisPermissionCache: shared between processes, best-effort coherence.

Invalidation scope follows the arguments given:

    user_id only        every property entry of that user
    property_id only    every user entry for that property
    both                the single entry
    role only           every entry resolved for a user of that role
    nothing             everything
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Tuple

from .redis_client import RedisClient

logger = logging.getLogger(__name__)


def _role_tag(role) -> Optional[str]:
    if role is None:
        return None
    return getattr(role, "value", role)


class CacheInvalidationEvent(str, Enum):
    """Why cached permission sets are being dropped."""
    USER_ROLE_CHANGED = "user_role_changed"
    USER_PERMISSIONS_CHANGED = "user_permissions_changed"
    PROPERTY_ACCESS_GRANTED = "property_access_granted"
    PROPERTY_ACCESS_REVOKED = "property_access_revoked"
    PROPERTY_CREATED = "property_created"
    PROPERTY_DELETED = "property_deleted"
    USER_CREATED = "user_created"
    USER_DELETED = "user_deleted"
    ROLE_PERMISSIONS_UPDATED = "role_permissions_updated"
    SYSTEM_PERMISSIONS_UPDATED = "system_permissions_updated"


@dataclass
class CacheStats:
    """Counters reported by a cache backend."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    invalidations: int = 0
    entries: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["hit_rate"] = round(self.hit_rate, 4)
        return data


class PermissionCacheBackend(ABC):
    """Interface shared by permission cache backends."""

    _generation = 0

    def generation(self) -> int:
        """Current invalidation generation; pass it to set()."""
        return self._generation

    def _is_stale(self, generation: Optional[int]) -> bool:
        return generation is not None and generation != self._generation

    @abstractmethod
    async def get(self, user_id: str, property_id: str) -> Optional[FrozenSet[str]]:
        """Cached permission names, or None on a miss."""
        ...

    @abstractmethod
    async def set(
        self,
        user_id: str,
        property_id: str,
        permissions: Iterable[str],
        role: Optional[str] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """
        Store a resolved set, tagged with the user's role.

        Returns False when nothing was stored, including when ``generation``
        predates the latest invalidation.
        """
        ...

    @abstractmethod
    async def invalidate(
        self,
        event: CacheInvalidationEvent,
        user_id: Optional[str] = None,
        property_id: Optional[str] = None,
        role: Optional[str] = None,
        reason: str = "",
    ) -> int:
        """Drop entries matching the scope. Returns how many were dropped."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Drop every entry."""
        ...

    @abstractmethod
    def stats(self) -> CacheStats:
        """Current counters."""
        ...


@dataclass
class _Entry:
    permissions: FrozenSet[str]
    role: Optional[str]
    stored_at: float


class InMemoryPermissionCache(PermissionCacheBackend):
    """Process-local permission cache guarded by a mutex."""

    def __init__(self, ttl: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[Tuple[str, str], _Entry] = {}
        self._lock = threading.Lock()
        self._ttl = ttl
        self._clock = clock
        self._stats = CacheStats()

    def _expired(self, entry: _Entry) -> bool:
        return self._ttl is not None and self._clock() - entry.stored_at >= self._ttl

    async def get(self, user_id: str, property_id: str) -> Optional[FrozenSet[str]]:
        key = (user_id, property_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._expired(entry):
                del self._entries[key]
                entry = None
            if entry is None:
                self._stats.misses += 1
                logger.debug(f"Permission cache MISS: {user_id}:{property_id}")
                return None
            self._stats.hits += 1
        logger.debug(f"Permission cache HIT: {user_id}:{property_id}")
        return entry.permissions

    async def set(
        self,
        user_id: str,
        property_id: str,
        permissions: Iterable[str],
        role: Optional[str] = None,
        generation: Optional[int] = None,
    ) -> bool:
        entry = _Entry(frozenset(permissions), _role_tag(role), self._clock())
        with self._lock:
            if self._is_stale(generation):
                logger.debug(f"Permission cache dropped stale set: {user_id}:{property_id}")
                return False
            self._entries[(user_id, property_id)] = entry
            self._stats.sets += 1
        return True

    async def invalidate(
        self,
        event: CacheInvalidationEvent,
        user_id: Optional[str] = None,
        property_id: Optional[str] = None,
        role: Optional[str] = None,
        reason: str = "",
    ) -> int:
        full_flush = event == CacheInvalidationEvent.SYSTEM_PERMISSIONS_UPDATED or (
            user_id is None and property_id is None and role is None
        )
        with self._lock:
            if full_flush:
                removed = len(self._entries)
                self._entries.clear()
            else:
                doomed = [
                    key for key, entry in self._entries.items()
                    if (user_id is None or key[0] == user_id)
                    and (property_id is None or key[1] == property_id)
                    and (role is None or entry.role == _role_tag(role))
                ]
                for key in doomed:
                    del self._entries[key]
                removed = len(doomed)
            self._generation += 1
            self._stats.invalidations += 1

        logger.info(
            f"Permission cache invalidated ({event.value}): removed={removed} "
            f"user={user_id} property={property_id} role={role} reason={reason}"
        )
        return removed

    async def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            self._stats.entries = len(self._entries)
            return CacheStats(**asdict(self._stats))


class RedisPermissionCache(PermissionCacheBackend):
    """Permission cache shared through Redis.

    Keys are ``perm:{user_id}:{property_id}`` holding
    ``{"role": ..., "permissions": [...]}``. A role-scoped invalidation
    flushes every ``perm:*`` key since Redis offers no index by role.
    Redis errors surface as misses and zero-count invalidations. The
    generation counter is local to this process; it guards against reads
    racing invalidations issued through the same cache instance.
    """

    KEY_PREFIX = "perm"

    def __init__(self, client: RedisClient, ttl: Optional[int] = None):
        self._client = client
        self._ttl = ttl
        self._stats = CacheStats()

    def _key(self, user_id: str, property_id: str) -> str:
        return f"{self.KEY_PREFIX}:{user_id}:{property_id}"

    async def get(self, user_id: str, property_id: str) -> Optional[FrozenSet[str]]:
        data = await self._client.get(self._key(user_id, property_id))
        if not isinstance(data, dict) or "permissions" not in data:
            self._stats.misses += 1
            logger.debug(f"Permission cache MISS: {user_id}:{property_id}")
            return None
        self._stats.hits += 1
        logger.debug(f"Permission cache HIT: {user_id}:{property_id}")
        return frozenset(data["permissions"])

    async def set(
        self,
        user_id: str,
        property_id: str,
        permissions: Iterable[str],
        role: Optional[str] = None,
        generation: Optional[int] = None,
    ) -> bool:
        if self._is_stale(generation):
            logger.debug(f"Permission cache dropped stale set: {user_id}:{property_id}")
            return False
        payload = {"role": _role_tag(role), "permissions": sorted(permissions)}
        if not await self._client.set(self._key(user_id, property_id), payload, ttl=self._ttl):
            return False
        self._stats.sets += 1
        return True

    async def invalidate(
        self,
        event: CacheInvalidationEvent,
        user_id: Optional[str] = None,
        property_id: Optional[str] = None,
        role: Optional[str] = None,
        reason: str = "",
    ) -> int:
        self._generation += 1
        if event == CacheInvalidationEvent.SYSTEM_PERMISSIONS_UPDATED or role is not None:
            removed = await self._client.delete_pattern(f"{self.KEY_PREFIX}:*")
        elif user_id is not None and property_id is not None:
            removed = int(await self._client.delete(self._key(user_id, property_id)))
        elif user_id is not None:
            removed = await self._client.delete_pattern(f"{self.KEY_PREFIX}:{user_id}:*")
        elif property_id is not None:
            removed = await self._client.delete_pattern(f"{self.KEY_PREFIX}:*:{property_id}")
        else:
            removed = await self._client.delete_pattern(f"{self.KEY_PREFIX}:*")

        self._stats.invalidations += 1
        logger.info(
            f"Permission cache invalidated ({event.value}): removed={removed} "
            f"user={user_id} property={property_id} role={role} reason={reason}"
        )
        return removed

    async def clear(self) -> None:
        self._generation += 1
        await self._client.delete_pattern(f"{self.KEY_PREFIX}:*")

    def stats(self) -> CacheStats:
        return CacheStats(**asdict(self._stats))
