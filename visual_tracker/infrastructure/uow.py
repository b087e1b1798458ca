from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session, sessionmaker

from .logging import get_logger

logger = get_logger(__name__)


class UnitOfWork:
    """
    One transaction for scripts and batch jobs.

    Application operations only flush; whoever opens the unit of work decides
    whether the whole batch lands.

    Example:
        >>> with UnitOfWork(SessionLocal).begin() as session:
        ...     seed_defaults(session)
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    @contextmanager
    def begin(self) -> Iterator[Session]:
        with self.session_factory() as session:
            try:
                yield session
            except Exception:
                logger.warning("Unit of work failed; rolling back", exc_info=True)
                session.rollback()
                raise
            session.commit()
