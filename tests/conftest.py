"""Pytest fixtures and configuration for task manager tests."""

import pytest
from datetime import timedelta
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from taskmanager.api.app import create_app
from taskmanager.config import Settings
from taskmanager.database.database import Database
from taskmanager.database.repository import TaskRepository
from taskmanager.models.timeutil import utc_now


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a fresh file-backed SQLite database.

    A file (not :memory:) so the paginated count and fetch, which each open
    their own connection, see the same data.
    """
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'tasks.db'}",
        app_env="test",
        connect_retries=0,
        connect_retry_delay_sec=0,
    )


@pytest.fixture
def database(test_settings):
    """Connected Database handle with the schema created."""
    db = Database(test_settings)
    db.connect()
    db.init_schema()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def db_session(database):
    """Create a database session for testing."""
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def task_repository(db_session: Session):
    """Create a TaskRepository instance for testing."""
    return TaskRepository(db_session)


@pytest.fixture
def sample_task_base():
    """Base create payload for test tasks.

    Returns a dict of snake_case fields that can be overridden.
    """
    return {
        "title": "Test Task",
        "description": "Test description",
        "priority": "medium",
        "tags": ["work"],
    }


@pytest.fixture
def future_date():
    """A due date safely in the future."""
    return utc_now() + timedelta(days=3)


@pytest.fixture
def test_client(test_settings, database):
    """FastAPI test client wired to the test database."""
    app = create_app(settings=test_settings, database=database)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def production_client(tmp_path):
    """Test client for an app running with APP_ENV=production."""
    settings = Settings(
        database_url=f"sqlite:///{tmp_path / 'prod.db'}",
        app_env="production",
        connect_retries=0,
    )
    app = create_app(settings=settings)
    with TestClient(app) as client:
        yield client
