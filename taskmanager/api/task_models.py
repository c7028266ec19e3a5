"""Request and response models for the task API.

Request fields are typed as `Any`; type and range checks live in
`taskmanager.models.task_rules`, which reports every failing field at once. These models only map the camelCase JSON names to snake_case.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from taskmanager.database.errors import StoreError, ValidationFailed
from taskmanager.models.constants import DEFAULT_CLEANUP_DAYS
from taskmanager.models.task import Task


class TaskCreateRequest(BaseModel):
    """Request model for creating a task."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: Any = None
    description: Any = None
    completed: Any = None
    priority: Any = None
    due_date: Any = Field(None, alias="dueDate")
    tags: Any = None

    def to_fields(self) -> Dict[str, Any]:
        """Snake_case values for the fields the client actually sent."""
        return self.model_dump(exclude_unset=True)


class TaskUpdateRequest(TaskCreateRequest):
    """Request model for a partial update. Only the fields sent are changed."""


class BulkTaskItem(TaskUpdateRequest):
    """One entry of a bulk update: the task id plus its changes."""

    id: Any = None


class BulkOperationName(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class BulkRequest(BaseModel):
    """Request model for POST /tasks/bulk."""

    operation: BulkOperationName
    tasks: Optional[List[Any]] = None
    filters: Optional[Dict[str, Any]] = None
    updates: Optional[Dict[str, Any]] = None


class CleanupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    older_than: Any = Field(DEFAULT_CLEANUP_DAYS, alias="olderThan")


def _as_mapping(item: Any) -> Mapping[str, Any]:
    if not isinstance(item, Mapping):
        raise ValidationFailed({"tasks": "Each task must be an object"})
    return item


def create_fields(item: Any) -> Dict[str, Any]:
    return TaskCreateRequest.model_validate(_as_mapping(item)).to_fields()


def update_fields(item: Any) -> Dict[str, Any]:
    return TaskUpdateRequest.model_validate(_as_mapping(item)).to_fields()


def bulk_update_item(item: Any) -> Dict[str, Any]:
    return BulkTaskItem.model_validate(_as_mapping(item)).to_fields()


def parse_bulk_items(items: Optional[List[Any]], parse: Callable[[Any], Any]) -> List[Any]:
    """Parse each bulk item. An item that fails is replaced by its error so the others still run."""
    parsed: List[Any] = []
    for item in items or []:
        try:
            parsed.append(parse(item))
        except StoreError as e:
            parsed.append(e)
    return parsed


def bulk_delete_id(item: Any) -> Any:
    """Bulk delete accepts bare ids or objects carrying an `id`."""
    if isinstance(item, Mapping):
        return item.get("id")
    return item


def split_list_param(value: Optional[str]) -> Any:
    """`a,b` in a query string means any of a or b."""
    if value is None or "," not in value:
        return value
    return [part.strip() for part in value.split(",") if part.strip()]


def serialize_task(task: Task, now: Optional[datetime] = None) -> Dict[str, Any]:
    return task.to_public_dict(now)


def serialize_tasks(tasks: List[Task], now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    return [task.to_public_dict(now) for task in tasks]
