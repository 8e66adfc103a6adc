import pytest
from fastapi.testclient import TestClient

import tracker.models  # noqa: F401  (registers tables on Base.metadata)
from shared.database import Database
from tracker.config import Settings
from tracker.main import create_app
from tracker.services.users import create_user


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", log_level="WARNING", stats_retry_attempts=2)


@pytest.fixture
def db():
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.drop_all()


@pytest.fixture
def session(db):
    with db.session_ctx() as session:
        yield session


@pytest.fixture
def client(settings, db):
    app = create_app(override_settings=settings, database=db)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def user(session):
    return create_user(session, "alice", "UTC")

