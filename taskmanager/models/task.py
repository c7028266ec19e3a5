"""Task data model for the task manager."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from taskmanager.models.timeutil import format_timestamp, utc_now

_MS_PER_DAY = 1000 * 60 * 60 * 24


class Priority(str, Enum):
    """Task priority enumeration."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Task(BaseModel):
    """Canonical Task model."""

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(..., description="Unique task identifier (UUID v4)")
    title: str = Field(..., description="Task title (trimmed, 1-500 chars)")
    description: str = Field("", description="Task description (trimmed, up to 2000 chars)")
    completed: bool = Field(False, description="Whether the task is done")
    priority: Priority = Field(Priority.MEDIUM, description="Task priority")
    due_date: Optional[datetime] = Field(None, description="Due date (must be in the future when set)")
    tags: List[str] = Field(default_factory=list, description="Lower-cased tags, in insertion order")
    completed_at: Optional[datetime] = Field(None, description="When the task was completed (null if pending)")
    is_deleted: bool = Field(False, description="Soft-delete marker")
    deleted_at: Optional[datetime] = Field(None, description="Soft-delete timestamp (null if active)")
    created_at: datetime = Field(..., description="Task creation timestamp")
    updated_at: datetime = Field(..., description="Task last update timestamp")

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """True when the due date has passed and the task is still pending."""
        now = now or utc_now()
        return self.due_date is not None and self.due_date < now and not self.completed

    def time_until_due(self, now: Optional[datetime] = None) -> Optional[int]:
        """Milliseconds until the due date, floored at 0; None without a due date."""
        if self.due_date is None:
            return None
        now = now or utc_now()
        delta_ms = int((self.due_date - now).total_seconds() * 1000)
        return max(delta_ms, 0)

    def days_since_created(self, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        elapsed_ms = (now - self.created_at).total_seconds() * 1000
        return int(elapsed_ms // _MS_PER_DAY)

    def to_public_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """External representation: camelCase keys, ISO timestamps, derived fields.

        Soft-delete bookkeeping (is_deleted / deleted_at) is never exposed.
        """
        now = now or utc_now()
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
            "priority": self.priority,
            "dueDate": format_timestamp(self.due_date),
            "tags": list(self.tags),
            "completedAt": format_timestamp(self.completed_at),
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "isOverdue": self.is_overdue(now),
            "timeUntilDue": self.time_until_due(now),
            "daysSinceCreated": self.days_since_created(now),
        }
