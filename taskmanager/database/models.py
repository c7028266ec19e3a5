"""SQLAlchemy database models for the task manager."""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Sequence
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    and_,
    case,
    literal,
)
from sqlalchemy.orm import Session, relationship

from taskmanager.database.database import Base
from taskmanager.models.constants import (
    DESCRIPTION_MAX_LENGTH,
    SEARCH_WEIGHT_DESCRIPTION,
    SEARCH_WEIGHT_TAGS,
    SEARCH_WEIGHT_TITLE,
    TAG_MAX_LENGTH,
    TITLE_MAX_LENGTH,
)
from taskmanager.models.task import Priority, Task
from taskmanager.models.timeutil import utc_now


def enum_to_value(enum_obj: Any) -> str:
    """Convert enum to string value (handles both enum and string)."""
    if hasattr(enum_obj, "value"):
        return enum_obj.value
    return str(enum_obj)


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class TaskTagDB(Base):
    """One tag of a task; `position` keeps the caller's ordering."""

    __tablename__ = "task_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    tag = Column(String(TAG_MAX_LENGTH), nullable=False, index=True)


class TaskDB(Base):
    """Database model for Task."""

    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_completed_created_at", "completed", "created_at"),
        Index("ix_tasks_priority_due_date", "priority", "due_date"),
        Index("ix_tasks_is_deleted_created_at", "is_deleted", "created_at"),
    )

    # Values handled outside the tasks table by write_related().
    __related_fields__ = ("tags",)

    # Primary key
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    # Basic fields
    title = Column(String(TITLE_MAX_LENGTH), nullable=False)
    description = Column(String(DESCRIPTION_MAX_LENGTH), nullable=False, default="")
    completed = Column(Boolean, nullable=False, default=False, index=True)
    priority = Column(String, nullable=False, default=Priority.MEDIUM.value, index=True)
    due_date = Column(DateTime, nullable=True, index=True)
    completed_at = Column(DateTime, nullable=True)

    # Soft delete
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    deleted_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utc_now, index=True)
    updated_at = Column(DateTime, nullable=False, default=utc_now)

    tag_rows = relationship(
        TaskTagDB,
        order_by=TaskTagDB.position,
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    @property
    def tags(self) -> List[str]:
        return [row.tag for row in self.tag_rows]

    @tags.setter
    def tags(self, values: Iterable[str]) -> None:
        self.tag_rows = [TaskTagDB(position=i, tag=tag) for i, tag in enumerate(values)]

    @classmethod
    def completion_values(cls, completed: bool, now: datetime) -> Dict[str, Any]:
        """Column values for a write that sets `completed`.

        This is the only place the completedAt rule lives. It is a SQL
        expression over the row's current state, so the same values work for a
        single-row UPDATE and a multi-row bulk UPDATE:
        - completing a pending task stamps `now`
        - completing an already-completed task keeps its original timestamp
        - un-completing clears the timestamp
        """
        if completed:
            return {
                "completed": True,
                "completed_at": case(
                    (and_(cls.completed.is_(True), cls.completed_at.is_not(None)), cls.completed_at),
                    else_=now,
                ),
            }
        return {"completed": False, "completed_at": None}

    @classmethod
    def soft_delete_values(cls, now: datetime) -> Dict[str, Any]:
        return {"is_deleted": True, "deleted_at": now, "updated_at": now}

    @classmethod
    def restore_values(cls, now: datetime) -> Dict[str, Any]:
        return {"is_deleted": False, "deleted_at": None, "updated_at": now}

    @classmethod
    def text_score(cls, terms: Sequence[str]):
        """Weighted relevance of title/description/tags matches, as a SQL expression.

        Each term contributes its field weight for every field it appears in
        (case-insensitive substring match). A score of 0 means no match.
        """
        score = literal(0)
        for term in terms:
            pattern = _like_pattern(term)
            score = (
                score
                + case((cls.title.ilike(pattern, escape="\\"), SEARCH_WEIGHT_TITLE), else_=0)
                + case((cls.description.ilike(pattern, escape="\\"), SEARCH_WEIGHT_DESCRIPTION), else_=0)
                + case((cls.tag_rows.any(TaskTagDB.tag.ilike(pattern, escape="\\")), SEARCH_WEIGHT_TAGS), else_=0)
            )
        return score

    @classmethod
    def tag_criterion(cls, value: Any):
        """Tag filter: scalar → has that tag; sequence → has any of them."""
        if isinstance(value, (list, tuple, set)):
            return cls.tag_rows.any(TaskTagDB.tag.in_(list(value)))
        return cls.tag_rows.any(TaskTagDB.tag == value)

    @classmethod
    def write_related(cls, session: Session, ids: List[str], values: Dict[str, Any]) -> None:
        """Replace tag rows for the given tasks."""
        if "tags" not in values:
            return
        for task_db in session.query(cls).filter(cls.id.in_(ids)).all():
            task_db.tags = values["tags"]

    def to_pydantic(self) -> Task:
        """Convert database model to Pydantic model."""
        return Task(
            id=self.id,
            title=self.title,
            description=self.description or "",
            completed=bool(self.completed),
            priority=self.priority,
            due_date=self.due_date,
            tags=self.tags,
            completed_at=self.completed_at,
            is_deleted=bool(self.is_deleted),
            deleted_at=self.deleted_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_pydantic(cls, task: Task) -> "TaskDB":
        """Create database model from Pydantic model."""
        task_db = cls(
            id=task.id,
            title=task.title,
            description=task.description,
            completed=task.completed,
            priority=enum_to_value(task.priority),
            due_date=task.due_date,
            completed_at=task.completed_at,
            is_deleted=task.is_deleted,
            deleted_at=task.deleted_at,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )
        task_db.tags = task.tags
        return task_db
