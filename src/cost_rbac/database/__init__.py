"""Persistence for the RBAC core."""

from .store import RBACStore
from .memory_store import InMemoryRBACStore
from .sql_store import SQLAlchemyRBACStore
from .async_engine import create_engine, get_session_factory, init_models

__all__ = [
    "RBACStore",
    "InMemoryRBACStore",
    "SQLAlchemyRBACStore",
    "create_engine",
    "get_session_factory",
    "init_models",
]
