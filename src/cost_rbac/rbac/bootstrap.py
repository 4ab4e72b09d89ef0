"""
Service wiring.

Builds the resolver, admin service and route guard around one store and
one cache. The application calls this once at startup and keeps the
returned RBACServices on ``app.state.rbac``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from ..audit.audit_logger import AuditLogger
from ..cache.permission_cache import (
    InMemoryPermissionCache,
    PermissionCacheBackend,
    RedisPermissionCache,
)
from ..cache.redis_client import RedisClient
from ..config.settings import RBACSettings, Settings, get_settings
from ..database.async_engine import create_engine, get_session_factory
from ..database.sql_store import SQLAlchemyRBACStore
from ..database.store import RBACStore
from .admin import RolePermissionAdmin
from .models import utc_now
from .resolver import PropertyAccessResolver
from .routes import RouteGuard

logger = logging.getLogger(__name__)


@dataclass
class RBACServices:
    """Everything the web layer needs for permission checks."""
    store: RBACStore
    cache: PermissionCacheBackend
    audit: AuditLogger
    resolver: PropertyAccessResolver
    admin: RolePermissionAdmin
    guard: RouteGuard
    engine: Optional[AsyncEngine] = None
    redis: Optional[RedisClient] = None

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.close()
        if self.engine is not None:
            await self.engine.dispose()


def create_rbac_services(
    store: RBACStore,
    cache: Optional[PermissionCacheBackend] = None,
    settings: Optional[RBACSettings] = None,
    clock: Callable[[], datetime] = utc_now,
) -> RBACServices:
    """Wire services around an existing store; defaults to an in-memory cache."""
    settings = settings or get_settings().rbac
    cache = cache or InMemoryPermissionCache(ttl=settings.cache_ttl)
    audit = AuditLogger(enabled=settings.audit_enabled)
    resolver = PropertyAccessResolver(store, cache, audit=audit, clock=clock)
    return RBACServices(
        store=store,
        cache=cache,
        audit=audit,
        resolver=resolver,
        admin=RolePermissionAdmin(store, cache, audit=audit),
        guard=RouteGuard(resolver, allow_unmapped=settings.allow_unmapped_routes),
    )


async def create_rbac_services_from_settings(settings: Optional[Settings] = None) -> RBACServices:
    """Build the SQL store and the configured cache backend from settings."""
    settings = settings or get_settings()
    rbac_settings = settings.rbac

    engine = create_engine(settings.database)
    store = SQLAlchemyRBACStore(get_session_factory(engine))

    redis_client = None
    if rbac_settings.cache_backend == "redis":
        redis_client = RedisClient(settings.redis)
        await redis_client.connect()
        cache = RedisPermissionCache(redis_client, ttl=rbac_settings.cache_ttl)
    else:
        cache = InMemoryPermissionCache(ttl=rbac_settings.cache_ttl)

    logger.info(f"RBAC services ready (cache backend: {rbac_settings.cache_backend})")
    services = create_rbac_services(store, cache, rbac_settings)
    services.engine = engine
    services.redis = redis_client
    return services
