"""FastAPI dependencies for the task API."""

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from taskmanager.config import Settings
from taskmanager.database.database import get_db
from taskmanager.database.repository import TaskRepository


def get_settings(request: Request) -> Settings:
    """Settings the application was built with."""
    return request.app.state.settings


def get_task_repository(db: Session = Depends(get_db)) -> TaskRepository:
    return TaskRepository(db)


def require_non_production(settings: Settings = Depends(get_settings)) -> None:
    """Reject destructive maintenance operations in production.

    Raises:
        HTTPException: 403 when APP_ENV is production
    """
    if settings.is_production:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operation not allowed in production without proper authorization",
        )
