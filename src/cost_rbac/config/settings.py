"""Configuration for the restaurant cost RBAC core.

Every value can be overridden from the environment:

- APP_*   application info
- REDIS_* Redis connection used by the distributed permission cache
- RBAC_*  permission cache backend, route guard posture, auditing
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database import DatabaseSettings, get_database_settings

logger = logging.getLogger(__name__)


class RedisSettings(BaseSettings):
    """Redis configuration for the shared permission cache."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = Field(default="localhost", description="Cache server host")
    port: int = Field(default=6379, description="Cache server port")
    db: int = Field(default=0, description="Logical database index")
    password: Optional[str] = Field(default=None, description="AUTH password, if the server requires one")
    ssl: bool = Field(default=False, description="Connect with TLS (rediss://)")

    max_connections: int = Field(default=50, description="Pool size shared by all cache calls")
    socket_timeout: int = Field(default=5, description="Seconds before a cache call gives up")
    socket_connect_timeout: int = Field(default=5, description="Seconds allowed to open a connection")

    key_prefix: str = Field(default="costrbac:", description="Prefix for all cache keys")

    @property
    def url(self) -> str:
        """Connection URL built from the fields above."""
        auth = f":{self.password}@" if self.password else ""
        protocol = "rediss" if self.ssl else "redis"
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"


class RBACSettings(BaseSettings):
    """Permission resolution and guard configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RBAC_",
        extra="ignore",
    )

    cache_backend: str = Field(
        default="memory",
        description="Permission cache backend: memory or redis",
    )
    cache_ttl: Optional[int] = Field(
        default=None,
        ge=1,
        description="Optional lifetime of a cached permission set in seconds",
    )
    allow_unmapped_routes: bool = Field(
        default=False,
        description="Allow routes that have no entry in the route table",
    )
    audit_enabled: bool = Field(default=True, description="Write audit log entries")

    @field_validator("cache_backend")
    @classmethod
    def validate_cache_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("memory", "redis"):
            raise ValueError("cache_backend must be 'memory' or 'redis'")
        return v


class Settings(BaseSettings):
    """Top-level settings; nested groups read their own env prefixes."""

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    name: str = Field(default="Restaurant Cost RBAC", description="Application name")
    version: str = Field(default="1.0.0", description="Release reported by the API")
    debug: bool = Field(default=False, description="Verbose errors and logging")
    environment: str = Field(default="development", description="development, test or production")

    @property
    def redis(self) -> RedisSettings:
        return RedisSettings()

    @property
    def rbac(self) -> RBACSettings:
        return RBACSettings()

    @property
    def database(self) -> DatabaseSettings:
        return get_database_settings()

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Settings loaded once per process; call get_settings.cache_clear() in tests that change the environment."""
    settings = Settings()
    logger.debug("Loaded settings for environment %s", settings.environment)
    return settings
