"""Health check and statistics router."""

import logging
import os
import platform
from typing import Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from taskmanager import __version__
from taskmanager.api.dependencies import get_settings, get_task_repository, require_non_production
from taskmanager.api.task_models import CleanupRequest
from taskmanager.config import Settings
from taskmanager.database.database import Database, get_database, uptime_seconds
from taskmanager.database.errors import StoreError
from taskmanager.database.models import TaskDB
from taskmanager.database.query_utils import check_collection_health
from taskmanager.database.repository import TaskRepository
from taskmanager.models.constants import DEFAULT_CLEANUP_DAYS
from taskmanager.models.timeutil import format_timestamp, utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

APP_NAME = "Task Manager API"


def _timestamp() -> str:
    return format_timestamp(utc_now())


def _status_code(db_health: dict) -> int:
    return 200 if db_health["status"] == "healthy" else 503


@router.get("")
def health():
    """Liveness check. Does not touch the database."""
    return {
        "status": "OK",
        "message": f"{APP_NAME} is running",
        "timestamp": _timestamp(),
        "uptime": uptime_seconds(),
    }


@router.get("/detailed")
def health_detailed(
    database: Database = Depends(get_database),
    settings: Settings = Depends(get_settings),
):
    """Application, database, table and host details. 503 when the database is unhealthy."""
    db_health = database.health_check()
    table_health = check_collection_health(database.engine, TaskDB)

    payload = {
        "status": "OK" if db_health["status"] == "healthy" else "ERROR",
        "timestamp": _timestamp(),
        "uptime": uptime_seconds(),
        "application": {
            "name": APP_NAME,
            "version": __version__,
            "environment": settings.app_env,
            "pythonVersion": platform.python_version(),
        },
        "database": {**db_health, "connection": database.get_connection_status()},
        "collections": {"tasks": table_health},
        "system": {
            "platform": platform.system().lower(),
            "arch": platform.machine(),
            "implementation": platform.python_implementation(),
            "pid": os.getpid(),
        },
    }
    return JSONResponse(status_code=_status_code(db_health), content=payload)


@router.get("/database")
def health_database(database: Database = Depends(get_database)):
    db_health = database.health_check()
    payload = {
        **db_health,
        "connection": database.get_connection_status(),
        "timestamp": _timestamp(),
    }
    return JSONResponse(status_code=_status_code(db_health), content=payload)


@router.get("/stats")
def health_stats(
    database: Database = Depends(get_database),
    repository: TaskRepository = Depends(get_task_repository),
):
    """Task statistics.

    Whatever cannot be collected is left out and the report is marked
    `degraded`; this endpoint does not fail because the database does.
    """
    db_health = database.health_check()
    table_health = check_collection_health(database.engine, TaskDB)

    payload = {
        "status": "OK",
        "timestamp": _timestamp(),
        "database": {"status": db_health["status"], "connected": db_health["connected"]},
        "tasks": None,
        "priorities": {},
        "collection": table_health,
    }
    try:
        payload.update(repository.statistics())
    except StoreError as e:
        logger.warning(f"Statistics unavailable: {e.type}: {e.message}")
        payload["status"] = "degraded"
        payload["error"] = e.message
    if db_health["status"] != "healthy":
        payload["status"] = "degraded"
    return payload


@router.post("/maintenance/cleanup", dependencies=[Depends(require_non_production)])
def maintenance_cleanup(
    body: Optional[CleanupRequest] = Body(None),
    repository: TaskRepository = Depends(get_task_repository),
):
    """Permanently remove tasks soft-deleted more than `olderThan` days ago (default 30)."""
    older_than = body.older_than if body is not None else DEFAULT_CLEANUP_DAYS
    result = repository.cleanup(older_than=older_than)
    return {
        "message": "Cleanup completed successfully",
        "success": result["success"],
        "deletedCount": result["deletedCount"],
        "cutoffDate": format_timestamp(result["cutoffDate"]),
        "timestamp": _timestamp(),
    }
