"""Task creation factory.

Centralizes task creation so every insert path (single create, bulk create)
applies the same validation and defaults.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from taskmanager.models.constants import DEFAULT_DESCRIPTION, DEFAULT_PRIORITY
from taskmanager.models.task import Task
from taskmanager.models.task_rules import validate_task_fields
from taskmanager.models.timeutil import utc_now


def create_task_defaults() -> Dict[str, Any]:
    """Get default task values as a dictionary."""
    return {
        "description": DEFAULT_DESCRIPTION,
        "completed": False,
        "priority": DEFAULT_PRIORITY.value,
        "due_date": None,
        "tags": [],
    }


def create_task_base(fields: Dict[str, Any], now: Optional[datetime] = None) -> Task:
    """Validate a create payload and build a new Task with defaults applied.

    Args:
        fields: snake_case values (title required; description, completed,
            priority, due_date, tags optional)
        now: creation time (defaults to the current UTC time)

    Returns:
        Task object, not yet persisted

    Raises:
        ValidationFailed: if any field is invalid
    """
    now = now or utc_now()
    values = {**create_task_defaults(), **validate_task_fields(fields, now=now, partial=False)}
    completed = values["completed"]

    return Task(
        id=str(uuid.uuid4()),
        title=values["title"],
        description=values["description"],
        completed=completed,
        priority=values["priority"],
        due_date=values["due_date"],
        tags=values["tags"],
        completed_at=now if completed else None,
        is_deleted=False,
        deleted_at=None,
        created_at=now,
        updated_at=now,
    )
