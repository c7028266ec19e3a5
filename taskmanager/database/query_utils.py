"""Query, filter, pagination and bulk-write helpers.

Pure translation and orchestration: request parameters in, SQLAlchemy
criteria / sort / paging out. These helpers hold no state of their own and
every failure they let escape is a normalized `StoreError`.
"""

import logging
import math
import re
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from sqlalchemy import Boolean, asc, desc, false, func, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from taskmanager.database.errors import (
    InvalidIdentifier,
    StoreError,
    ValidationFailed,
    handle_database_error,
)
from taskmanager.models.constants import (
    DEFAULT_CLEANUP_DAYS,
    DEFAULT_LIMIT,
    DEFAULT_PAGE,
    MAX_LIMIT,
)
from taskmanager.models.timeutil import to_naive_utc, utc_now

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

# Filter keys that map onto a range over a single column.
_RANGE_KEYS = {
    "dueDateFrom": ("due_date", ">="),
    "dueDateTo": ("due_date", "<="),
    "createdFrom": ("created_at", ">="),
    "createdTo": ("created_at", "<="),
}

# Keys that never become criteria.
_CONTROL_KEYS = {"includeDeleted", "include_deleted"}


def camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def resolve_column(model, name: str):
    """Return the mapped column attribute for a camelCase or snake_case name, or None."""
    columns = inspect(model).columns
    for candidate in (name, camel_to_snake(name)):
        if candidate in columns:
            return getattr(model, candidate)
    return None


def is_valid_id(value: Any) -> bool:
    """Identifiers are UUID strings."""
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def ensure_valid_id(value: Any, field_name: str = "id") -> str:
    if not is_valid_id(value):
        raise InvalidIdentifier(field_name)
    return value


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaginationOptions:
    page: int
    limit: int
    skip: int


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def build_pagination_options(
    page: Any = DEFAULT_PAGE,
    limit: Any = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> PaginationOptions:
    """Clamp page to >= 1 and limit to [1, max_limit]; skip = (page - 1) * limit."""
    page_num = max(1, _as_int(page, DEFAULT_PAGE))
    limit_num = min(max_limit, max(1, _as_int(limit, DEFAULT_LIMIT)))
    return PaginationOptions(page=page_num, limit=limit_num, skip=(page_num - 1) * limit_num)


def build_pagination_metadata(options: PaginationOptions, total_count: int) -> Dict[str, Any]:
    total_pages = math.ceil(total_count / options.limit)
    has_next = options.page < total_pages
    has_prev = options.page > 1
    return {
        "currentPage": options.page,
        "totalPages": total_pages,
        "totalCount": total_count,
        "limit": options.limit,
        "hasNextPage": has_next,
        "hasPrevPage": has_prev,
        "nextPage": options.page + 1 if has_next else None,
        "prevPage": options.page - 1 if has_prev else None,
    }


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


class SortDirection(int, Enum):
    ASC = 1
    DESC = -1


@dataclass(frozen=True)
class SortSpec:
    field: str
    direction: SortDirection

    def to_clause(self, model):
        column = resolve_column(model, self.field)
        if column is None:
            logger.warning(f"Unknown sort field {self.field!r}; falling back to createdAt")
            column = resolve_column(model, "createdAt")
        return asc(column) if self.direction is SortDirection.ASC else desc(column)


def build_sort_options(sort_by: Optional[str] = "createdAt", sort_order: Any = "desc") -> SortSpec:
    """`asc`/`1` sort ascending; `desc`/`-1` and anything else sort descending."""
    order = str(sort_order).lower() if sort_order is not None else "desc"
    direction = SortDirection.ASC if order in ("asc", "1") else SortDirection.DESC
    return SortSpec(field=sort_by or "createdAt", direction=direction)


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _parse_date(key: str, value: Any) -> datetime:
    try:
        if isinstance(value, datetime):
            return to_naive_utc(value)
        return to_naive_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except (ValueError, OverflowError):
        raise ValidationFailed({key: f"{key} must be a valid date"})


def _as_bool(value: Any) -> bool:
    return value is True or value == "true"


def _match(column, value: Any):
    if isinstance(value, (list, tuple, set)):
        return column.in_(list(value))
    return column == value


def build_filter_options(
    model,
    filters: Optional[Mapping[str, Any]] = None,
    include_deleted: bool = False,
) -> List[Any]:
    """Translate request filters into a list of SQLAlchemy criteria (ANDed by the caller).

    Recognized keys: completed, priority, tags, dueDateFrom, dueDateTo,
    createdFrom, createdTo, search. Any other key is an exact match on the
    column of that name. None and "" values are skipped.

    Unless `include_deleted` is set (argument or `includeDeleted` filter), soft-
    deleted rows are excluded, replacing any caller-supplied isDeleted filter.
    """
    filters = dict(filters or {})
    include_deleted = include_deleted or _as_bool(filters.get("includeDeleted"))

    # Keyed by target column so a later key for the same column replaces an earlier one.
    criteria: Dict[str, List[Any]] = {}

    for key, value in filters.items():
        if key in _CONTROL_KEYS or _is_blank(value):
            continue

        if key == "completed":
            criteria["completed"] = [model.completed == _as_bool(value)]
        elif key == "priority":
            criteria["priority"] = [_match(model.priority, value)]
        elif key == "tags":
            criteria["tags"] = [model.tag_criterion(value)]
        elif key in _RANGE_KEYS:
            column_name, op = _RANGE_KEYS[key]
            column = getattr(model, column_name)
            bound = _parse_date(key, value)
            clause = column >= bound if op == ">=" else column <= bound
            criteria.setdefault(column_name, []).append(clause)
        elif key == "search":
            terms = str(value).split()
            if terms:
                criteria["$search"] = [model.text_score(terms) > 0]
        else:
            column = resolve_column(model, key)
            if column is None:
                # A filter on a field the model does not have matches nothing.
                criteria[key] = [false()]
                continue
            if isinstance(column.type, Boolean):
                value = _as_bool(value)
            criteria[column.key] = [_match(column, value)]

    if not include_deleted:
        criteria["is_deleted"] = [model.is_deleted.is_not(True)]

    return [clause for clauses in criteria.values() for clause in clauses]


# ---------------------------------------------------------------------------
# Paginated reads
# ---------------------------------------------------------------------------


@dataclass
class PaginatedResult:
    data: List[Any]
    pagination: Dict[str, Any]


def execute_paginated_query(
    engine: Engine,
    model,
    criteria: Sequence[Any],
    page: Any = DEFAULT_PAGE,
    limit: Any = DEFAULT_LIMIT,
    sort: Union[SortSpec, Sequence[Any], None] = None,
    serialize: Optional[Callable[[Any], Any]] = None,
) -> PaginatedResult:
    """Run the total count and the page fetch concurrently and join them.

    Each worker uses its own session from `engine`'s pool. If either query
    fails, the whole call fails with a normalized error.

    Args:
        engine: bound engine whose pool serves both queries
        model: mapped class to query
        criteria: SQLAlchemy criteria (see build_filter_options)
        page, limit: raw paging input (clamped by build_pagination_options)
        sort: SortSpec, or a sequence of ORDER BY clauses; newest first by default
        serialize: applied to each row inside the worker session
    """
    options = build_pagination_options(page, limit)
    if sort is None:
        sort = build_sort_options()
    order_by = [sort.to_clause(model)] if isinstance(sort, SortSpec) else list(sort)
    serialize = serialize or (lambda row: row)

    def _count() -> int:
        with Session(bind=engine) as session:
            return session.query(func.count(model.id)).filter(*criteria).scalar() or 0

    def _fetch() -> List[Any]:
        with Session(bind=engine) as session:
            rows = (
                session.query(model)
                .filter(*criteria)
                .order_by(*order_by)
                .offset(options.skip)
                .limit(options.limit)
                .all()
            )
            return [serialize(row) for row in rows]

    try:
        with ThreadPoolExecutor(max_workers=2) as pool:
            count_future = pool.submit(_count)
            data_future = pool.submit(_fetch)
            total_count = count_future.result()
            data = data_future.result()
    except Exception as e:
        raise handle_database_error(e)

    return PaginatedResult(data=data, pagination=build_pagination_metadata(options, total_count))


# ---------------------------------------------------------------------------
# Bulk writes
# ---------------------------------------------------------------------------


class BulkOperationKind(str, Enum):
    INSERT_ONE = "insertOne"
    UPDATE_ONE = "updateOne"
    UPDATE_MANY = "updateMany"
    DELETE_ONE = "deleteOne"
    DELETE_MANY = "deleteMany"


@dataclass
class InsertOne:
    row: Any
    kind: BulkOperationKind = field(default=BulkOperationKind.INSERT_ONE, init=False)


@dataclass
class UpdateOne:
    criteria: Sequence[Any]
    values: Dict[str, Any]
    kind: BulkOperationKind = field(default=BulkOperationKind.UPDATE_ONE, init=False)


@dataclass
class UpdateMany:
    criteria: Sequence[Any]
    values: Dict[str, Any]
    kind: BulkOperationKind = field(default=BulkOperationKind.UPDATE_MANY, init=False)


@dataclass
class DeleteOne:
    criteria: Sequence[Any]
    soft_values: Optional[Dict[str, Any]] = None
    kind: BulkOperationKind = field(default=BulkOperationKind.DELETE_ONE, init=False)


@dataclass
class DeleteMany:
    criteria: Sequence[Any]
    soft_values: Optional[Dict[str, Any]] = None
    kind: BulkOperationKind = field(default=BulkOperationKind.DELETE_MANY, init=False)


BulkOperation = Union[InsertOne, UpdateOne, UpdateMany, DeleteOne, DeleteMany]


@dataclass
class BulkWriteResult:
    inserted_count: int = 0
    modified_count: int = 0
    deleted_count: int = 0
    upserted_count: int = 0
    matched_count: int = 0
    inserted_ids: List[str] = field(default_factory=list)
    write_errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.write_errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "insertedCount": self.inserted_count,
            "modifiedCount": self.modified_count,
            "deletedCount": self.deleted_count,
            "upsertedCount": self.upserted_count,
            "matchedCount": self.matched_count,
            "insertedIds": list(self.inserted_ids),
            "writeErrors": list(self.write_errors),
        }


def _matching_ids(session: Session, model, criteria: Sequence[Any], single: bool) -> List[str]:
    query = session.query(model.id).filter(*criteria).order_by(model.id)
    if single:
        query = query.limit(1)
    return [row[0] for row in query.all()]


def update_rows(
    session: Session,
    model,
    criteria: Sequence[Any],
    values: Dict[str, Any],
    single: bool = False,
) -> Dict[str, Any]:
    """UPDATE the rows matching `criteria` with `values` (no commit).

    Keys listed in `model.__related_fields__` are handed to
    `model.write_related()` instead of the UPDATE statement.

    Returns:
        {"matched": int, "modified": int, "ids": [...]}
    """
    related_fields = getattr(model, "__related_fields__", ())
    column_values = {k: v for k, v in values.items() if k not in related_fields}
    related_values = {k: v for k, v in values.items() if k in related_fields}

    ids = _matching_ids(session, model, criteria, single)
    if not ids:
        return {"matched": 0, "modified": 0, "ids": []}

    modified = len(ids)
    if column_values:
        modified = (
            session.query(model)
            .filter(model.id.in_(ids))
            .update(column_values, synchronize_session=False)
        )
    if related_values:
        model.write_related(session, ids, related_values)
    return {"matched": len(ids), "modified": int(modified), "ids": ids}


def delete_rows(session: Session, model, criteria: Sequence[Any], single: bool = False) -> int:
    """DELETE the rows matching `criteria` (no commit); returns the count."""
    ids = _matching_ids(session, model, criteria, single)
    if not ids:
        return 0
    deleted = session.query(model).filter(model.id.in_(ids)).delete(synchronize_session=False)
    return int(deleted)


def _apply_operation(session: Session, model, operation: BulkOperation) -> Dict[str, Any]:
    """Run one operation (no commit) and return its counters."""
    kind = operation.kind
    if kind is BulkOperationKind.INSERT_ONE:
        session.add(operation.row)
        session.flush()
        return {"inserted": 1, "inserted_id": operation.row.id}
    if kind in (BulkOperationKind.UPDATE_ONE, BulkOperationKind.UPDATE_MANY):
        outcome = update_rows(
            session, model, operation.criteria, operation.values,
            single=kind is BulkOperationKind.UPDATE_ONE,
        )
        return {"matched": outcome["matched"], "modified": outcome["modified"]}
    if kind in (BulkOperationKind.DELETE_ONE, BulkOperationKind.DELETE_MANY):
        single = kind is BulkOperationKind.DELETE_ONE
        if operation.soft_values is not None:
            # Soft delete: flag the rows instead of removing them.
            outcome = update_rows(session, model, operation.criteria, operation.soft_values, single=single)
            return {"matched": outcome["matched"], "deleted": outcome["modified"]}
        return {"deleted": delete_rows(session, model, operation.criteria, single=single)}
    raise ValueError(f"Unsupported bulk operation: {kind}")


def execute_bulk_write(session: Session, model, operations: Sequence[BulkOperation]) -> BulkWriteResult:
    """Execute operations as an unordered batch.

    Each operation commits on its own; a failing operation is rolled back and
    recorded in `write_errors` and the remaining operations still run. There is
    no cross-operation atomicity.
    """
    result = BulkWriteResult()
    for index, operation in enumerate(operations):
        try:
            counters = _apply_operation(session, model, operation)
            session.commit()
        except Exception as e:
            session.rollback()
            error = handle_database_error(e)
            logger.error(f"Bulk {operation.kind.value} #{index} failed: {error.type}: {error.message}")
            result.write_errors.append({"index": index, "op": operation.kind.value, **error.to_dict()})
            continue
        result.inserted_count += counters.get("inserted", 0)
        result.matched_count += counters.get("matched", 0)
        result.modified_count += counters.get("modified", 0)
        result.deleted_count += counters.get("deleted", 0)
        if "inserted_id" in counters:
            result.inserted_ids.append(counters["inserted_id"])
    logger.debug(
        f"Bulk write: {result.inserted_count} inserted, {result.modified_count} modified, "
        f"{result.deleted_count} deleted, {len(result.write_errors)} errors"
    )
    return result


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


def cleanup_expired_records(
    session: Session,
    model,
    field_name: str = "deleted_at",
    older_than: Any = DEFAULT_CLEANUP_DAYS,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Permanently delete soft-deleted rows whose `field_name` is older than `older_than` days.

    Idempotent: with nothing past the cutoff it deletes zero rows.
    """
    days = _as_int(older_than, DEFAULT_CLEANUP_DAYS)
    cutoff = (now or utc_now()) - timedelta(days=days)
    column = resolve_column(model, field_name)
    if column is None:
        raise ValidationFailed({"field": f"Unknown field {field_name!r}"})

    try:
        deleted = delete_rows(session, model, [column < cutoff, model.is_deleted.is_(True)])
        session.commit()
    except StoreError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        raise handle_database_error(e)

    logger.info(f"Cleanup removed {deleted} records soft-deleted before {cutoff.isoformat()}")
    return {"success": True, "deletedCount": deleted, "cutoffDate": cutoff}


def check_collection_health(engine: Engine, model) -> Dict[str, Any]:
    """Row and index counts for the model's table. Never raises."""
    table_name = model.__tablename__
    try:
        with Session(bind=engine) as session:
            count = session.query(func.count(model.id)).scalar() or 0
        indexes = inspect(engine).get_indexes(table_name)
        return {
            "collection": table_name,
            "count": count,
            "indexes": len(indexes),
            "healthy": True,
        }
    except Exception as e:
        logger.warning(f"Health check for {table_name} failed: {type(e).__name__}: {str(e)}")
        return {"collection": table_name, "healthy": False, "error": handle_database_error(e).message}
