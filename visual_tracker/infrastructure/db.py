"""
Engine and session factory for the tracker database.

SQLite connections get ``PRAGMA foreign_keys=ON`` so membership, progress
and property rows follow their student on delete. An in-memory SQLite
database is served from one shared connection so every session sees the
same tables.
"""

from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError, NoSuchModuleError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import DatabaseConfig, get_settings
from .exceptions import ConfigurationError
from .logging import get_logger

logger = get_logger(__name__)


def _sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_database_engine(config: DatabaseConfig | None = None) -> Engine:
    """
    Build an engine for ``config`` (the ``DB_*`` settings by default).

    Raises:
        ConfigurationError: If the URL is malformed or its driver is not installed
            (PyMySQL ships with the ``mysql`` extra).
    """
    config = config or get_settings().database
    url = config.get_connection_url()
    options = config.get_engine_options()
    if config.is_memory:
        options.update(poolclass=StaticPool, connect_args={"check_same_thread": False})

    logger.info("Opening %s database at %s", config.backend, url.rsplit("@", 1)[-1])
    try:
        engine = create_engine(url, **options)
    except (ArgumentError, NoSuchModuleError, ImportError) as e:
        raise ConfigurationError(
            f"Cannot open {config.backend} database: {e}", config_key="DB_BACKEND"
        ) from e

    if config.backend == "sqlite":
        event.listen(engine, "connect", _sqlite_foreign_keys)
    return engine


def create_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Sessions that never autoflush and keep loaded rows usable after commit."""
    return sessionmaker(
        bind=engine or create_database_engine(), autoflush=False, expire_on_commit=False
    )
