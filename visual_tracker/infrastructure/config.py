"""
Settings for the cohort tracker.

Three environment-driven sections, each read by pydantic-settings:

* ``DB_*``  -> :class:`DatabaseConfig` (SQLite file or MySQL server)
* ``LOG_*`` -> :class:`LoggingConfig`
* ``APP_*`` -> :class:`TrackerConfig` (environment, feature flags, aggregation limits)

Use :func:`get_settings` for the process-wide instance. Tests call
:func:`reset_settings` after changing the environment.
"""

from __future__ import annotations

import os
from functools import cached_property, lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

MEMORY_DATABASE = ":memory:"


class DatabaseConfig(BaseSettings):
    """
    Where the tracker keeps its rows.

    SQLite is the default; a path without a suffix gets ``.db`` appended and
    its folder is created. MySQL needs host, user and database name.

    Example:
        >>> DatabaseConfig(sqlite_path="./data/cohort").get_connection_url()
        'sqlite:///data/cohort.db'
    """

    backend: Literal["sqlite", "mysql"] = Field("sqlite", description="Storage backend")
    sqlite_path: str | None = Field("./visual_tracker.db", description="SQLite file")

    mysql_host: str | None = Field("localhost", description="MySQL host")
    mysql_port: int | None = Field(3306, ge=1, le=65535, description="MySQL port")
    mysql_user: str | None = Field("root", description="MySQL user")
    mysql_password: str | None = Field("", description="MySQL password")
    mysql_database: str | None = Field("visual_tracker", description="MySQL schema")
    mysql_charset: str = Field("utf8mb4", description="MySQL character set")

    pool_pre_ping: bool = Field(True, description="Ping connections before use")
    pool_recycle: int = Field(3600, ge=60, description="Recycle MySQL connections after (s)")
    echo: bool = Field(False, description="Echo SQL statements")

    model_config = {"env_prefix": "DB_", "case_sensitive": False}

    @field_validator("sqlite_path")
    def normalise_sqlite_path(cls, value):
        if not value or value == MEMORY_DATABASE:
            return value
        path = Path(value)
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path) if path.suffix else str(path.with_suffix(".db"))

    @model_validator(mode="after")
    def check_mysql_fields(self):
        if self.backend != "mysql":
            return self
        required = ("mysql_host", "mysql_user", "mysql_database")
        missing = [name for name in required if not getattr(self, name)]
        if missing:
            raise ValueError(f"MySQL backend requires: {', '.join(missing)}")
        return self

    @property
    def is_memory(self) -> bool:
        return self.backend == "sqlite" and self.sqlite_path == MEMORY_DATABASE

    def get_connection_url(self) -> str:
        """Build the SQLAlchemy URL for the configured backend."""
        if self.backend == "sqlite":
            return f"sqlite:///{self.sqlite_path}"
        credentials = self.mysql_user or ""
        if self.mysql_password:
            credentials += f":{self.mysql_password}"
        return (
            f"mysql+pymysql://{credentials}@{self.mysql_host}:{self.mysql_port}"
            f"/{self.mysql_database}?charset={self.mysql_charset}"
        )

    def get_engine_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"echo": self.echo, "pool_pre_ping": self.pool_pre_ping}
        if self.backend == "mysql":
            options["pool_recycle"] = self.pool_recycle
        return options


class LoggingConfig(BaseSettings):
    """Log level, destination and format."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    file_path: str | None = Field("./logs/visual_tracker.log", description="Rotating log file")
    max_bytes: int = Field(10 * 1024 * 1024, ge=1024, description="Rotate after this many bytes")
    backup_count: int = Field(5, ge=1, description="Rotated files to keep")
    structured: bool = Field(True, description="Emit one JSON object per line")
    console_enabled: bool = Field(True, description="Also log to stdout")

    model_config = {"env_prefix": "LOG_", "case_sensitive": False}


class TrackerConfig(BaseSettings):
    """
    Application-level switches.

    ``max_tree_depth`` bounds how far the aggregation engine follows parent
    links before treating a node as contributing nothing.
    """

    environment: Literal["development", "testing", "production"] = "development"
    debug: bool = False
    version: str = "0.1.0"
    title: str = "Visual Tracker"
    cohort_name: str = Field("Default Cohort", description="Cohort name written into exports")

    enable_csv_import: bool = True
    enable_data_export: bool = True

    max_tree_depth: int = Field(64, ge=1, le=1000)

    model_config = {"env_prefix": "APP_", "case_sensitive": False}

    @model_validator(mode="after")
    def no_debug_in_production(self):
        if self.debug and self.environment == "production":
            raise ValueError("Debug mode cannot be enabled in production")
        return self


class Settings:
    """Lazily built view over the three sections."""

    @cached_property
    def app(self) -> TrackerConfig:
        return TrackerConfig()

    @cached_property
    def database(self) -> DatabaseConfig:
        return DatabaseConfig()

    @cached_property
    def logging(self) -> LoggingConfig:
        # Explicit LOG_LEVEL wins; otherwise derive it from the environment.
        if "LOG_LEVEL" in os.environ:
            return LoggingConfig()
        if self.is_production():
            return LoggingConfig(level="WARNING")
        return LoggingConfig(level="DEBUG" if self.app.debug else "INFO")

    def is_development(self) -> bool:
        return self.app.environment == "development"

    def is_testing(self) -> bool:
        return self.app.environment == "testing"

    def is_production(self) -> bool:
        return self.app.environment == "production"

    def get_environment_info(self) -> dict[str, Any]:
        return {
            "environment": self.app.environment,
            "version": self.app.version,
            "cohort": self.app.cohort_name,
            "database_backend": self.database.backend,
            "logging_level": self.logging.level,
            "features": {
                "csv_import": self.app.enable_csv_import,
                "data_export": self.app.enable_data_export,
            },
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def override_settings(**values: Any) -> Settings:
    """
    Set environment variables and rebuild the cached settings.

    Keys are the variable names in lower case, e.g.
    ``override_settings(app_enable_data_export=False)``.
    """
    for key, value in values.items():
        os.environ[key.upper()] = str(value)
    reset_settings()
    return get_settings()


def reset_settings() -> None:
    get_settings.cache_clear()
