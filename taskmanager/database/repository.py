"""Repository layer for database operations."""

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from taskmanager.database.errors import StoreError, ValidationFailed, handle_database_error
from taskmanager.database.models import TaskDB
from taskmanager.database.query_utils import (
    BulkOperation,
    BulkOperationKind,
    BulkWriteResult,
    DeleteMany,
    DeleteOne,
    InsertOne,
    PaginatedResult,
    UpdateMany,
    UpdateOne,
    build_filter_options,
    build_sort_options,
    cleanup_expired_records,
    delete_rows,
    ensure_valid_id,
    execute_bulk_write,
    execute_paginated_query,
    update_rows,
)
from taskmanager.models.constants import DEFAULT_CLEANUP_DAYS, DEFAULT_LIMIT, DEFAULT_PAGE, RECENT_ACTIVITY_DAYS
from taskmanager.models.task import Task
from taskmanager.models.task_factory import create_task_base
from taskmanager.models.task_rules import FieldError, normalize_priority, validate_task_fields
from taskmanager.models.timeutil import utc_now

logger = logging.getLogger(__name__)

# A prepared bulk item: either a runnable operation or the error that stopped it.
PreparedOperation = Tuple[BulkOperationKind, Union[BulkOperation, StoreError]]
# A bulk payload entry, or the error raised while parsing it.
BulkItem = Union[Mapping[str, Any], StoreError]


class TaskRepository:
    """Repository for Task database operations."""

    def __init__(self, db: Session):
        self.db = db

    def _active(self):
        return TaskDB.is_deleted.is_not(True)

    def _by_id(self, task_id: str, include_deleted: bool = False) -> List[Any]:
        criteria = [TaskDB.id == task_id]
        if not include_deleted:
            criteria.append(self._active())
        return criteria

    def _fail(self, action: str, e: Exception) -> StoreError:
        self.db.rollback()
        logger.error(f"Failed to {action}: {type(e).__name__}: {str(e)}")
        return handle_database_error(e)

    # ------------------------------------------------------------------
    # Single-task writes
    # ------------------------------------------------------------------

    def create(self, fields: Dict[str, Any], now: Optional[datetime] = None) -> Task:
        """Validate and insert a new task."""
        task = create_task_base(fields, now=now)
        try:
            task_db = TaskDB.from_pydantic(task)
            self.db.add(task_db)
            self.db.commit()
            self.db.refresh(task_db)
            logger.debug(f"Created task {task.id}: {task.title[:50]}")
            return task_db.to_pydantic()
        except Exception as e:
            raise self._fail(f"create task {task.id}", e)

    def build_update_values(self, changes: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
        """Validate a partial update and turn it into column values.

        Used by single and bulk updates alike, so a change to `completed`
        always goes through `TaskDB.completion_values`.
        """
        values = validate_task_fields(dict(changes), now=now, partial=True)
        if "completed" in values:
            values.update(TaskDB.completion_values(values.pop("completed"), now))
        values["updated_at"] = now
        return values

    def _write(self, action: str, criteria: Sequence[Any], values: Dict[str, Any]) -> int:
        try:
            outcome = update_rows(self.db, TaskDB, criteria, values, single=True)
            self.db.commit()
        except Exception as e:
            raise self._fail(action, e)
        return outcome["matched"]

    def update(self, task_id: str, changes: Mapping[str, Any], now: Optional[datetime] = None) -> Optional[Task]:
        """Apply a partial update. Returns None if the task does not exist."""
        ensure_valid_id(task_id)
        now = now or utc_now()
        values = self.build_update_values(changes, now)
        if not self._write(f"update task {task_id}", self._by_id(task_id), values):
            return None
        logger.debug(f"Updated task {task_id}: {sorted(changes)}")
        return self.get(task_id)

    def toggle_completion(self, task_id: str, now: Optional[datetime] = None) -> Optional[Task]:
        ensure_valid_id(task_id)
        now = now or utc_now()
        task = self.get(task_id)
        if task is None:
            return None
        values = {**TaskDB.completion_values(not task.completed, now), "updated_at": now}
        self._write(f"toggle task {task_id}", self._by_id(task_id), values)
        logger.debug(f"Toggled task {task_id} to completed={not task.completed}")
        return self.get(task_id)

    def soft_delete(self, task_id: str, now: Optional[datetime] = None) -> Optional[Task]:
        """Flag a task as deleted. Returns the deleted task, or None if no active task matched."""
        ensure_valid_id(task_id)
        now = now or utc_now()
        if not self._write(f"delete task {task_id}", self._by_id(task_id), TaskDB.soft_delete_values(now)):
            return None
        logger.debug(f"Soft-deleted task {task_id}")
        return self.get(task_id, include_deleted=True)

    def restore(self, task_id: str, now: Optional[datetime] = None) -> Optional[Task]:
        """Clear the deleted flag. Restoring an active task leaves it active."""
        ensure_valid_id(task_id)
        now = now or utc_now()
        criteria = self._by_id(task_id, include_deleted=True)
        if not self._write(f"restore task {task_id}", criteria, TaskDB.restore_values(now)):
            return None
        logger.debug(f"Restored task {task_id}")
        return self.get(task_id)

    def purge(self, task_id: str) -> Optional[Task]:
        """Permanently delete a task, active or soft-deleted. Returns the removed task."""
        ensure_valid_id(task_id)
        task = self.get(task_id, include_deleted=True)
        if task is None:
            return None
        try:
            delete_rows(self.db, TaskDB, self._by_id(task_id, include_deleted=True), single=True)
            self.db.commit()
        except Exception as e:
            raise self._fail(f"purge task {task_id}", e)
        logger.info(f"Permanently deleted task {task_id}")
        return task

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, task_id: str, include_deleted: bool = False) -> Optional[Task]:
        """Get task by ID."""
        ensure_valid_id(task_id)
        try:
            task_db = self.db.query(TaskDB).filter(*self._by_id(task_id, include_deleted)).first()
        except Exception as e:
            raise handle_database_error(e)
        return task_db.to_pydantic() if task_db else None

    def list_tasks(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        page: Any = DEFAULT_PAGE,
        limit: Any = DEFAULT_LIMIT,
        sort_by: Optional[str] = "createdAt",
        sort_order: Any = "desc",
        include_deleted: bool = False,
    ) -> PaginatedResult:
        """Filtered, sorted, paginated task listing."""
        criteria = build_filter_options(TaskDB, filters, include_deleted=include_deleted)
        return execute_paginated_query(
            self.db.get_bind(),
            TaskDB,
            criteria,
            page=page,
            limit=limit,
            sort=build_sort_options(sort_by, sort_order),
            serialize=lambda task_db: task_db.to_pydantic(),
        )

    def _find(self, *criteria, order_by=None) -> List[Task]:
        try:
            tasks_db = (
                self.db.query(TaskDB)
                .filter(self._active(), *criteria)
                .order_by(*(order_by or [desc(TaskDB.created_at)]))
                .all()
            )
        except Exception as e:
            raise handle_database_error(e)
        return [task_db.to_pydantic() for task_db in tasks_db]

    def find_active(self) -> List[Task]:
        return self._find()

    def find_completed(self) -> List[Task]:
        return self._find(TaskDB.completed.is_(True))

    def find_pending(self) -> List[Task]:
        return self._find(TaskDB.completed.is_(False))

    def find_by_priority(self, priority: Any) -> List[Task]:
        try:
            value = normalize_priority(priority)
        except FieldError as e:
            raise ValidationFailed({"priority": str(e)})
        return self._find(TaskDB.priority == value)

    def find_overdue(self, now: Optional[datetime] = None) -> List[Task]:
        """Pending tasks whose due date has passed, soonest due first."""
        now = now or utc_now()
        return self._find(
            TaskDB.due_date.is_not(None),
            TaskDB.due_date < now,
            TaskDB.completed.is_(False),
            order_by=[TaskDB.due_date.asc()],
        )

    def search_tasks(self, query: Optional[str]) -> List[Task]:
        """Full-text search over title, description and tags, best match first.

        The query is split on whitespace; each term is matched
        case-insensitively and contributes its field weight to the score.
        """
        terms = (query or "").split()
        if not terms:
            return []
        score = TaskDB.text_score(terms)
        return self._find(score > 0, order_by=[desc(score), desc(TaskDB.created_at)])

    # ------------------------------------------------------------------
    # Bulk writes
    # ------------------------------------------------------------------

    def _run_bulk(self, prepared: List[PreparedOperation]) -> BulkWriteResult:
        """Execute the runnable operations and merge in the ones that failed preparation.

        Error indexes always refer to positions in `prepared`.
        """
        positions = [i for i, (_, item) in enumerate(prepared) if not isinstance(item, StoreError)]
        result = execute_bulk_write(self.db, TaskDB, [prepared[i][1] for i in positions])
        for error in result.write_errors:
            error["index"] = positions[error["index"]]
        for index, (kind, item) in enumerate(prepared):
            if isinstance(item, StoreError):
                result.write_errors.append({"index": index, "op": kind.value, **item.to_dict()})
        result.write_errors.sort(key=lambda error: error["index"])
        return result

    def bulk_create(self, payloads: Sequence[BulkItem], now: Optional[datetime] = None) -> BulkWriteResult:
        """Insert many tasks; invalid payloads are reported as write errors."""
        now = now or utc_now()
        prepared: List[PreparedOperation] = []
        for fields in payloads:
            if isinstance(fields, StoreError):
                prepared.append((BulkOperationKind.INSERT_ONE, fields))
                continue
            try:
                task = create_task_base(dict(fields), now=now)
                prepared.append((BulkOperationKind.INSERT_ONE, InsertOne(TaskDB.from_pydantic(task))))
            except StoreError as e:
                prepared.append((BulkOperationKind.INSERT_ONE, e))
        result = self._run_bulk(prepared)
        logger.info(f"Bulk create: {result.inserted_count} inserted, {len(result.write_errors)} errors")
        return result

    def bulk_update(
        self,
        items: Optional[Sequence[BulkItem]] = None,
        filters: Optional[Mapping[str, Any]] = None,
        updates: Optional[Mapping[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> BulkWriteResult:
        """Update tasks by id (`items` of `{id, ...changes}`) and/or by `filters` with `updates`."""
        if not items and not filters:
            raise ValidationFailed({"tasks": "Bulk update requires tasks or filters"})
        now = now or utc_now()
        prepared: List[PreparedOperation] = []
        for item in items or []:
            if isinstance(item, StoreError):
                prepared.append((BulkOperationKind.UPDATE_ONE, item))
                continue
            changes = dict(item)
            task_id = changes.pop("id", None)
            try:
                ensure_valid_id(task_id)
                values = self.build_update_values(changes, now)
                prepared.append((BulkOperationKind.UPDATE_ONE, UpdateOne(self._by_id(task_id), values)))
            except StoreError as e:
                prepared.append((BulkOperationKind.UPDATE_ONE, e))
        if filters:
            try:
                criteria = build_filter_options(TaskDB, filters)
                values = self.build_update_values(updates or {}, now)
                prepared.append((BulkOperationKind.UPDATE_MANY, UpdateMany(criteria, values)))
            except StoreError as e:
                prepared.append((BulkOperationKind.UPDATE_MANY, e))
        result = self._run_bulk(prepared)
        logger.info(f"Bulk update: {result.modified_count} modified, {len(result.write_errors)} errors")
        return result

    def bulk_delete(
        self,
        ids: Optional[Sequence[str]] = None,
        filters: Optional[Mapping[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> BulkWriteResult:
        """Soft-delete tasks by id and/or every active task matching `filters`."""
        if not ids and not filters:
            raise ValidationFailed({"filters": "Bulk delete requires filters or tasks"})
        now = now or utc_now()
        soft_values = TaskDB.soft_delete_values(now)
        prepared: List[PreparedOperation] = []
        for task_id in ids or []:
            try:
                ensure_valid_id(task_id)
                prepared.append((BulkOperationKind.DELETE_ONE, DeleteOne(self._by_id(task_id), soft_values)))
            except StoreError as e:
                prepared.append((BulkOperationKind.DELETE_ONE, e))
        if filters:
            try:
                criteria = build_filter_options(TaskDB, filters)
                prepared.append((BulkOperationKind.DELETE_MANY, DeleteMany(criteria, soft_values)))
            except StoreError as e:
                prepared.append((BulkOperationKind.DELETE_MANY, e))
        result = self._run_bulk(prepared)
        logger.info(f"Bulk delete: {result.deleted_count} soft-deleted, {len(result.write_errors)} errors")
        return result

    # ------------------------------------------------------------------
    # Maintenance and reporting
    # ------------------------------------------------------------------

    def cleanup(self, older_than: Any = DEFAULT_CLEANUP_DAYS, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Permanently remove tasks soft-deleted more than `older_than` days ago."""
        return cleanup_expired_records(self.db, TaskDB, "deleted_at", older_than=older_than, now=now)

    def statistics(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Task counts for the stats report.

        Returns:
            {"tasks": {total, completed, pending, overdue, completionRate,
            recentlyCreated}, "priorities": {priority: count}}
        """
        now = now or utc_now()
        active = self._active()

        def _count(*criteria) -> int:
            return self.db.query(func.count(TaskDB.id)).filter(active, *criteria).scalar() or 0

        try:
            total = _count()
            completed = _count(TaskDB.completed.is_(True))
            pending = _count(TaskDB.completed.is_(False))
            overdue = _count(TaskDB.due_date < now, TaskDB.completed.is_(False))
            recent = _count(TaskDB.created_at >= now - timedelta(days=RECENT_ACTIVITY_DAYS))
            priority_rows = (
                self.db.query(TaskDB.priority, func.count(TaskDB.id))
                .filter(active)
                .group_by(TaskDB.priority)
                .order_by(TaskDB.priority)
                .all()
            )
        except Exception as e:
            raise handle_database_error(e)

        return {
            "tasks": {
                "total": total,
                "completed": completed,
                "pending": pending,
                "overdue": overdue,
                "completionRate": math.floor(completed / total * 100 + 0.5) if total > 0 else 0,
                "recentlyCreated": recent,
            },
            "priorities": {priority: count for priority, count in priority_rows},
        }
