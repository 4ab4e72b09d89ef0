"""Where the RBAC tables live.

SQLite through aiosqlite by default. PostgreSQL works through asyncpg, which
the ``postgres`` extra installs.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """
    Connection settings for the RBAC store, read from DB_* variables.

    DB_URL, when set, wins over the individual connection fields:
        DB_DRIVER=postgresql+asyncpg
        DB_HOST=localhost
        DB_NAME=restaurant_costs
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    url: Optional[str] = Field(default=None, description="Full async database URL")

    driver: str = Field(
        default="sqlite+aiosqlite",
        description="SQLAlchemy async driver, e.g. postgresql+asyncpg"
    )

    host: str = Field(default="localhost", description="Server host, ignored for SQLite")
    port: int = Field(default=5432, description="Server port, ignored for SQLite")
    name: str = Field(default="restaurant_costs", description="Database name")
    user: str = Field(default="", description="Login role")
    password: str = Field(default="", description="Login password")

    sqlite_path: Path = Field(
        default=Path("data/restaurant_costs.db"),
        description="File used when the driver is SQLite and DB_URL is unset"
    )

    # Ignored by SQLite, which runs on NullPool
    pool_size: int = Field(default=10, ge=1, le=100)
    max_overflow: int = Field(default=20, ge=0, le=100)
    pool_timeout: int = Field(default=30, ge=1)
    pool_recycle: int = Field(default=1800, ge=60)
    pool_pre_ping: bool = Field(default=True)

    echo_sql: bool = Field(default=False, description="Log all SQL statements")

    @property
    def is_sqlite(self) -> bool:
        """True for both the driver and an explicit sqlite URL."""
        return "sqlite" in (self.url or self.driver).lower()

    @property
    def async_url(self) -> str:
        """URL handed to create_async_engine; creates the SQLite directory."""
        if self.url:
            return self.url

        if self.is_sqlite:
            path = self.sqlite_path.resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            return f"sqlite+aiosqlite:///{path}"

        auth = ""
        if self.user:
            auth = f"{self.user}"
            if self.password:
                auth += f":{self.password}"
            auth += "@"

        return f"{self.driver}://{auth}{self.host}:{self.port}/{self.name}"

    def get_connect_args(self) -> dict:
        """Driver connect_args; aiosqlite connections are used across threads."""
        if self.is_sqlite:
            return {"check_same_thread": False}
        return {}


@lru_cache
def get_database_settings() -> DatabaseSettings:
    """DB_* settings, read once per process."""
    return DatabaseSettings()
