"""Configuration package."""

from .settings import Settings, RedisSettings, RBACSettings, get_settings
from .database import DatabaseSettings, get_database_settings

__all__ = [
    "Settings",
    "RedisSettings",
    "RBACSettings",
    "get_settings",
    "DatabaseSettings",
    "get_database_settings",
]
