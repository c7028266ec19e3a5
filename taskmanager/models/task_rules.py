"""Validation and normalization rules for task fields.

These are plain functions so every write path (create, single update, bulk
update) runs exactly the same checks. Each `normalize_*` function returns the
normalized value or raises `FieldError`; `validate_task_fields` runs them over a
payload and reports every failing field at once.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from taskmanager.database.errors import ValidationFailed
from taskmanager.models.constants import (
    DESCRIPTION_MAX_LENGTH,
    TAG_MAX_LENGTH,
    TITLE_MAX_LENGTH,
)
from taskmanager.models.task import Priority
from taskmanager.models.timeutil import to_naive_utc, utc_now

# Payload keys (snake_case) and the JSON names used in error maps.
FIELD_NAMES = {
    "title": "title",
    "description": "description",
    "completed": "completed",
    "priority": "priority",
    "due_date": "dueDate",
    "tags": "tags",
}


class FieldError(ValueError):
    """A single field failed validation."""


def normalize_title(value: Any) -> str:
    if value is None:
        raise FieldError("Task title is required")
    if not isinstance(value, str):
        raise FieldError("Task title must be a string")
    title = value.strip()
    if not title:
        raise FieldError("Task title cannot be empty or just whitespace")
    if len(title) > TITLE_MAX_LENGTH:
        raise FieldError(f"Task title cannot exceed {TITLE_MAX_LENGTH} characters")
    return title


def normalize_description(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise FieldError("Task description must be a string")
    description = value.strip()
    if len(description) > DESCRIPTION_MAX_LENGTH:
        raise FieldError(f"Task description cannot exceed {DESCRIPTION_MAX_LENGTH} characters")
    return description


def normalize_completed(value: Any) -> bool:
    if not isinstance(value, bool):
        raise FieldError("Completed must be a boolean")
    return value


def normalize_priority(value: Any) -> str:
    if isinstance(value, Priority):
        return value.value
    try:
        return Priority(value).value
    except ValueError:
        allowed = ", ".join(p.value for p in Priority)
        raise FieldError(f"Priority must be one of: {allowed}")


def normalize_due_date(value: Any, now: datetime) -> Optional[datetime]:
    """Due dates may be cleared (None) but, when set, must be strictly in the future."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise FieldError("Due date must be a valid date")
    if not isinstance(value, datetime):
        raise FieldError("Due date must be a valid date")
    try:
        due_date = to_naive_utc(value)
    except OverflowError:
        raise FieldError("Due date must be a valid date")
    if due_date <= now:
        raise FieldError("Due date must be in the future")
    return due_date


def normalize_tags(value: Any) -> List[str]:
    """Trim and lower-case tags, dropping blank entries. Order is preserved."""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise FieldError("Tags must be an array of strings")
    tags: List[str] = []
    for raw in value:
        if raw is None:
            continue
        if not isinstance(raw, str):
            raise FieldError("Tags must be strings")
        tag = raw.strip().lower()
        if not tag:
            continue
        if len(tag) > TAG_MAX_LENGTH:
            raise FieldError(f"Tag cannot exceed {TAG_MAX_LENGTH} characters")
        tags.append(tag)
    return tags


def validate_task_fields(
    fields: Dict[str, Any],
    now: Optional[datetime] = None,
    partial: bool = False,
) -> Dict[str, Any]:
    """Validate and normalize a task payload.

    Args:
        fields: snake_case field values. Unknown keys are ignored.
        now: reference time for the due-date check
        partial: True for updates (only keys present are checked), False for
            creation (title is required, defaults applied)

    Returns:
        Normalized values keyed by snake_case field name

    Raises:
        ValidationFailed: with a JSON-field-name → message map
    """
    now = now or utc_now()
    normalized: Dict[str, Any] = {}
    errors: Dict[str, str] = {}

    def _run(key: str, fn, *args) -> None:
        try:
            normalized[key] = fn(fields.get(key), *args)
        except FieldError as e:
            errors[FIELD_NAMES[key]] = str(e)

    if not partial or "title" in fields:
        _run("title", normalize_title)
    if "description" in fields:
        _run("description", normalize_description)
    if "completed" in fields and (partial or fields["completed"] is not None):
        _run("completed", normalize_completed)
    if "priority" in fields and (partial or fields["priority"] is not None):
        _run("priority", normalize_priority)
    if "due_date" in fields:
        _run("due_date", normalize_due_date, now)
    if "tags" in fields:
        _run("tags", normalize_tags)

    if errors:
        raise ValidationFailed(errors)
    return normalized
