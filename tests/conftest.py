import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("APP_ENVIRONMENT", "testing")
os.environ.setdefault("DB_SQLITE_PATH", ":memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from visual_tracker.infrastructure.config import reset_settings
from visual_tracker.infrastructure.models import Base
from visual_tracker.utils.seed import seed_defaults
from visual_tracker.web.dependencies import get_db_session
from visual_tracker.web.main import create_application


@pytest.fixture(autouse=True)
def fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def SessionLocal(engine):
    return sessionmaker(bind=engine, future=True, expire_on_commit=False)


@pytest.fixture
def session(SessionLocal):
    s = SessionLocal()
    yield s
    s.close()


@pytest.fixture
def seeded_session(session):
    seed_defaults(session)
    session.commit()
    return session


@pytest.fixture
def client(SessionLocal):
    app = create_application()

    def override_get_db_session():
        s = SessionLocal()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db_session] = override_get_db_session
    return TestClient(app)
