from __future__ import annotations

from collections.abc import Generator

from fastapi import Request
from sqlalchemy.orm import Session, sessionmaker

from visual_tracker.infrastructure.config import DatabaseConfig, get_settings
from visual_tracker.infrastructure.db import create_database_engine, create_session_factory
from visual_tracker.infrastructure.logging import get_logger
from visual_tracker.utils.seed import initialise_database

logger = get_logger(__name__)


def get_db_config(request: Request) -> DatabaseConfig:
    state = request.app.state
    if getattr(state, "db_config", None) is None:
        state.db_config = get_settings().database
    return state.db_config


def get_session_factory(request: Request) -> sessionmaker[Session]:
    """
    Session factory for the app's current database settings.

    The engine is built, and the tracker tables created, the first time a
    given configuration is seen. A changed configuration disposes the old
    engine.
    """
    state = request.app.state
    wanted = get_db_config(request).model_dump()
    cached = getattr(state, "database", None)
    if cached is not None and cached[0] == wanted:
        return cached[2]

    if cached is not None:
        logger.info("Database settings changed; replacing engine")
        cached[1].dispose()

    engine = create_database_engine(get_db_config(request))
    initialise_database(engine)
    factory = create_session_factory(engine)
    state.database = (wanted, engine, factory)
    return factory


def get_db_session(request: Request) -> Generator[Session, None, None]:
    with get_session_factory(request)() as session:
        yield session
