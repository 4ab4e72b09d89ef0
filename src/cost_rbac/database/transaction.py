"""Session scopes for the SQLAlchemy RBAC store.

One session per unit of work: the block commits when it exits cleanly and
rolls back when it raises. SQLAlchemy failures surface as PersistenceError,
so nothing above the database package handles driver exceptions.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..rbac.exceptions import PersistenceError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
    operation: str = "transaction",
) -> AsyncIterator[AsyncSession]:
    """
    Run a block in a fresh session and commit it.

    Args:
        session_factory: Source of the session.
        operation: Name used in the log line and the raised error.

    Raises:
        PersistenceError: SQLAlchemy failed inside the block or on commit.
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"RBAC store {operation} failed: {e}")
            raise PersistenceError(f"{operation} failed: {e}", operation=operation) from e
        except Exception:
            await session.rollback()
            logger.debug(f"RBAC store {operation} rolled back")
            raise
