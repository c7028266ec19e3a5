"""Database connection and session management for the task manager.

This module supports both:
- Local SQLite (default for dev)
- PostgreSQL (production) via `DATABASE_URL`

There is no module-level engine. A `Database` handle is built once by the
application factory, connected on startup, closed on shutdown, and handed to
request handlers through FastAPI dependencies.
"""

import logging
import time
from typing import Callable, Optional

from fastapi import Depends, Request
from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from taskmanager.config import Settings

logger = logging.getLogger(__name__)

# Base class for declarative models
Base = declarative_base()

_PROCESS_STARTED_AT = time.monotonic()


class DatabaseUnavailable(RuntimeError):
    """Raised when the startup handshake fails after all retries."""


def uptime_seconds() -> float:
    return round(time.monotonic() - _PROCESS_STARTED_AT, 3)


def _is_sqlite_url(database_url: str) -> bool:
    return "sqlite" in (database_url or "")


def _is_postgres_url(database_url: str) -> bool:
    return (database_url or "").startswith("postgresql")


def get_engine_kwargs(database_url: str, settings: Optional[Settings] = None) -> dict:
    """Return deterministic create_engine kwargs for a DB URL.

    This is separated to allow deterministic unit testing without connecting.
    """
    settings = settings or Settings.from_env()
    engine_kwargs: dict = {
        "echo": settings.debug,
        # Helps avoid handing out stale connections after idle periods.
        "pool_pre_ping": True,
    }

    if _is_sqlite_url(database_url):
        # SQLite-specific setting required for FastAPI concurrency in a single process.
        engine_kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": settings.connect_timeout_sec,
        }
        return engine_kwargs

    # Bounded pool: `pool_size` connections are kept, up to `pool_max_size` in total.
    # Callers beyond that wait up to `pool_timeout` for a free connection.
    engine_kwargs["pool_size"] = settings.pool_min_size
    engine_kwargs["max_overflow"] = max(settings.pool_max_size - settings.pool_min_size, 0)
    engine_kwargs["pool_timeout"] = settings.pool_timeout_sec
    engine_kwargs["pool_recycle"] = settings.pool_idle_timeout_sec
    if _is_postgres_url(database_url):
        engine_kwargs["connect_args"] = {"connect_timeout": settings.connect_timeout_sec}
    return engine_kwargs


def set_sqlite_pragmas(dbapi_conn, connection_record):
    """Enable foreign keys (tag rows cascade with their task) and WAL mode for concurrent reads."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def build_engine(database_url: str, settings: Optional[Settings] = None) -> Engine:
    engine = create_engine(database_url, **get_engine_kwargs(database_url, settings))
    if _is_sqlite_url(database_url):
        event.listen(engine, "connect", set_sqlite_pragmas)
    return engine


class Database:
    """Store-client handle: engine, session factory and lifecycle hooks."""

    def __init__(self, settings: Settings, engine: Optional[Engine] = None):
        self.settings = settings
        self.engine = engine or build_engine(settings.database_url, settings)
        self.SessionLocal = sessionmaker(autoflush=False, bind=self.engine)
        self.is_connected = False

    def connect(self, sleep: Callable[[float], None] = time.sleep) -> None:
        """Verify connectivity, retrying with a fixed delay.

        Raises:
            DatabaseUnavailable: once `connect_retries` retries have failed
        """
        if self.is_connected:
            logger.info("Database already connected")
            return

        attempts = self.settings.connect_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                logger.info(f"Connecting to database ({self.engine.url.render_as_string(hide_password=True)})")
                with self.engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                self.is_connected = True
                logger.info(f"Connected to database {self.engine.url.database} ({self.engine.dialect.name})")
                return
            except SQLAlchemyError as e:
                logger.error(f"Database connection error: {type(e).__name__}: {str(e)}")
                if attempt == attempts:
                    break
                logger.warning(
                    f"Retrying connection ({attempt}/{self.settings.connect_retries}) "
                    f"in {self.settings.connect_retry_delay_sec} seconds..."
                )
                sleep(self.settings.connect_retry_delay_sec)

        raise DatabaseUnavailable(f"Could not connect to database after {self.settings.connect_retries} retries")

    def close(self) -> None:
        """Dispose of the connection pool."""
        if not self.is_connected:
            return
        self.engine.dispose()
        self.is_connected = False
        logger.info("Disconnected from database")

    def init_schema(self) -> None:
        """Initialize database schema.

        - SQLite (default dev): use `create_all()`.
        - PostgreSQL: prefer Alembic migrations when `RUN_MIGRATIONS=true`.
        """
        # Register table metadata before create_all().
        from taskmanager.database import models  # noqa: F401

        if self.settings.run_migrations and not _is_sqlite_url(self.settings.database_url):
            from alembic import command
            from alembic.config import Config

            alembic_cfg = Config(self.settings.alembic_ini)
            # Ensure Alembic uses the same runtime DB URL.
            alembic_cfg.set_main_option("sqlalchemy.url", self.settings.database_url)
            alembic_cfg.attributes["configure_logger"] = False
            command.upgrade(alembic_cfg, "head")
            return

        Base.metadata.create_all(bind=self.engine)

    def ping(self) -> float:
        """Run `SELECT 1` and return the round trip in milliseconds."""
        started = time.perf_counter()
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return round((time.perf_counter() - started) * 1000, 2)

    def health_check(self) -> dict:
        """Ping the database and report basic stats. Never raises."""
        try:
            if not self.is_connected:
                raise DatabaseUnavailable("Database not connected")
            latency_ms = self.ping()
            tables = inspect(self.engine).get_table_names()
            return {
                "status": "healthy",
                "connected": True,
                "latencyMs": latency_ms,
                "database": self.engine.url.database,
                "dialect": self.engine.dialect.name,
                "tables": len(tables),
                "uptime": uptime_seconds(),
            }
        except (SQLAlchemyError, DatabaseUnavailable) as e:
            logger.warning(f"Database health check failed: {type(e).__name__}: {str(e)}")
            return {
                "status": "unhealthy",
                "connected": False,
                "error": str(e),
                "uptime": uptime_seconds(),
            }

    def get_connection_status(self) -> dict:
        url = self.engine.url
        return {
            "isConnected": self.is_connected,
            "status": "connected" if self.is_connected else "disconnected",
            "dialect": self.engine.dialect.name,
            "host": url.host,
            "port": url.port,
            "database": url.database,
            "pool": self.engine.pool.status(),
        }


def get_database(request: Request) -> Database:
    """Get the application's Database handle (dependency for FastAPI)."""
    return request.app.state.database


def get_db(database: Database = Depends(get_database)) -> Session:
    """Get database session (dependency for FastAPI)."""
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()
