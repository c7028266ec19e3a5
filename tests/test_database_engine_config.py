import pytest

from taskmanager.config import Settings


def test_get_engine_kwargs_sqlite_has_check_same_thread():
    from taskmanager.database import database as db

    kwargs = db.get_engine_kwargs("sqlite:///./taskmanager.db", Settings())
    assert "connect_args" in kwargs
    assert kwargs["connect_args"]["check_same_thread"] is False
    # SQLite should not require pool sizing knobs.
    assert "pool_size" not in kwargs
    assert "max_overflow" not in kwargs
    assert kwargs["pool_pre_ping"] is True


def test_get_engine_kwargs_postgres_pool_bounds():
    from taskmanager.database import database as db

    settings = Settings(
        pool_min_size=2,
        pool_max_size=10,
        pool_idle_timeout_sec=30,
        pool_timeout_sec=15,
        connect_timeout_sec=7,
    )

    kwargs = db.get_engine_kwargs("postgresql+psycopg://u:p@localhost:5432/db", settings)
    assert kwargs["pool_pre_ping"] is True
    assert kwargs["pool_size"] == 2
    assert kwargs["max_overflow"] == 8
    assert kwargs["pool_recycle"] == 30
    assert kwargs["pool_timeout"] == 15
    assert kwargs["connect_args"] == {"connect_timeout": 7}


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg://u:p@db:5432/tasks")
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("DB_POOL_MIN_SIZE", "3")
    monkeypatch.setenv("DB_POOL_MAX_SIZE", "12")
    monkeypatch.setenv("DB_CONNECT_RETRIES", "2")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.database_url == "postgresql+psycopg://u:p@db:5432/tasks"
    assert settings.is_production is True
    assert settings.pool_min_size == 3
    assert settings.pool_max_size == 12
    assert settings.connect_retries == 2
    assert settings.log_level == "DEBUG"


def test_sqlite_url_detection():
    from taskmanager.database import database as db

    assert db._is_sqlite_url("sqlite:///./taskmanager.db") is True
    assert db._is_sqlite_url("postgresql+psycopg://u:p@localhost/db") is False


def test_sqlite_foreign_keys_enabled(database):
    """Tag rows rely on ON DELETE CASCADE, which SQLite only honours with the pragma on."""
    from sqlalchemy import text

    with database.engine.connect() as conn:
        assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1


def test_init_schema_creates_tables(database):
    from sqlalchemy import inspect

    tables = set(inspect(database.engine).get_table_names())
    assert {"tasks", "task_tags"} <= tables


def test_connect_retries_then_gives_up(tmp_path):
    """The startup handshake retries with a fixed delay, then fails for good."""
    from unittest.mock import MagicMock
    from sqlalchemy.exc import OperationalError
    from taskmanager.database import database as db

    settings = Settings(
        database_url=f"sqlite:///{tmp_path / 'x.db'}",
        connect_retries=3,
        connect_retry_delay_sec=5,
    )
    engine = MagicMock()
    engine.connect.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))
    sleeps = []

    database = db.Database(settings, engine=engine)
    with pytest.raises(db.DatabaseUnavailable):
        database.connect(sleep=sleeps.append)

    assert engine.connect.call_count == 4
    assert sleeps == [5, 5, 5]
    assert database.is_connected is False


def test_connect_succeeds_after_transient_failure(tmp_path):
    from unittest.mock import MagicMock
    from sqlalchemy.exc import OperationalError
    from taskmanager.database import database as db

    settings = Settings(database_url=f"sqlite:///{tmp_path / 'x.db'}", connect_retries=2, connect_retry_delay_sec=1)
    engine = MagicMock()
    engine.connect.side_effect = [OperationalError("SELECT 1", {}, Exception("not yet")), MagicMock()]
    sleeps = []

    database = db.Database(settings, engine=engine)
    database.connect(sleep=sleeps.append)

    assert database.is_connected is True
    assert engine.connect.call_count == 2
    assert sleeps == [1]


def test_health_check_never_raises(tmp_path):
    from taskmanager.database import database as db

    database = db.Database(Settings(database_url=f"sqlite:///{tmp_path / 'x.db'}"))

    health = database.health_check()

    assert health["status"] == "unhealthy"
    assert health["connected"] is False
    assert "error" in health
