"""Runtime configuration for the task manager.

Values come from the environment (optionally a local `.env` file).
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DATABASE_URL = "sqlite:///./taskmanager.db"


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class Settings:
    """Application settings."""

    database_url: str = DEFAULT_DATABASE_URL
    app_env: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    run_migrations: bool = False
    alembic_ini: str = "alembic.ini"
    host: str = "0.0.0.0"
    port: int = 8000

    # Connection pool (ignored for SQLite)
    pool_min_size: int = 2
    pool_max_size: int = 10
    pool_idle_timeout_sec: int = 30
    pool_timeout_sec: int = 30
    connect_timeout_sec: int = 10

    # Startup handshake
    connect_retries: int = 5
    connect_retry_delay_sec: float = 5.0

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            app_env=os.getenv("APP_ENV", "development"),
            debug=_env_bool("DEBUG"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            run_migrations=_env_bool("RUN_MIGRATIONS"),
            alembic_ini=os.getenv("ALEMBIC_INI", "alembic.ini"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=_env_int("PORT", 8000),
            pool_min_size=_env_int("DB_POOL_MIN_SIZE", 2),
            pool_max_size=_env_int("DB_POOL_MAX_SIZE", 10),
            pool_idle_timeout_sec=_env_int("DB_POOL_IDLE_TIMEOUT_SEC", 30),
            pool_timeout_sec=_env_int("DB_POOL_TIMEOUT_SEC", 30),
            connect_timeout_sec=_env_int("DB_CONNECT_TIMEOUT_SEC", 10),
            connect_retries=_env_int("DB_CONNECT_RETRIES", 5),
            connect_retry_delay_sec=float(os.getenv("DB_CONNECT_RETRY_DELAY_SEC", "5")),
        )
