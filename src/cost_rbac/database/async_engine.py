"""Async database engine and session factory.

SQLite (aiosqlite) by default; PostgreSQL needs asyncpg from the ``postgres``
extra. Nothing here is global: the application builds one engine at startup
and hands the session factory to the store.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from ..config.database import DatabaseSettings, get_database_settings
from .models import Base

logger = logging.getLogger(__name__)


def create_engine(settings: Optional[DatabaseSettings] = None, **engine_kwargs) -> AsyncEngine:
    """
    Engine for the RBAC store.

    SQLite gets NullPool and foreign key enforcement; other drivers get the
    configured pool. ``engine_kwargs`` win over both, which is how tests pass
    ``poolclass=StaticPool`` for a shared in-memory database.
    """
    settings = settings or get_database_settings()

    logger.info(f"Creating RBAC store engine (driver={settings.driver})")

    if settings.is_sqlite:
        pool_kwargs = {"poolclass": NullPool}
    else:
        pool_kwargs = {
            "pool_size": settings.pool_size,
            "max_overflow": settings.max_overflow,
            "pool_timeout": settings.pool_timeout,
            "pool_recycle": settings.pool_recycle,
            "pool_pre_ping": settings.pool_pre_ping,
        }
    pool_kwargs.update(engine_kwargs)

    engine = create_async_engine(
        settings.async_url,
        echo=settings.echo_sql,
        connect_args=settings.get_connect_args(),
        **pool_kwargs,
    )

    if settings.is_sqlite:
        _enable_sqlite_foreign_keys(engine)

    return engine


def _enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=True,
    )


async def init_models(engine: AsyncEngine, drop_existing: bool = False) -> None:
    """Create every RBAC table."""
    async with engine.begin() as conn:
        if drop_existing:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    logger.info("RBAC tables created")
