"""Store error taxonomy and normalization.

Every failure that crosses from the data layer into request handling is one of
the `StoreError` subclasses below. Driver-specific exception classes and error
codes stay on this side of the boundary.
"""

import logging
import re
from typing import Any, Dict, Optional

from sqlalchemy import exc as sa_exc

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for normalized data-layer errors."""

    type = "unknown"
    status_code = 500
    default_message = "Database operation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "message": self.message}


class ValidationFailed(StoreError):
    """One or more fields failed validation."""

    type = "validation"
    status_code = 400
    default_message = "Validation failed"

    def __init__(self, errors: Dict[str, str], message: Optional[str] = None):
        self.errors = dict(errors)
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = self.errors
        return payload


class DuplicateKey(StoreError):
    """Unique constraint violation."""

    type = "duplicate"
    status_code = 409

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"{field} already exists")

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["field"] = self.field
        return payload


class InvalidIdentifier(StoreError):
    """Malformed identifier or value that cannot be cast to the column type."""

    type = "cast"
    status_code = 400
    default_message = "Invalid ID format"

    def __init__(self, field: str = "id", message: Optional[str] = None):
        self.field = field
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["field"] = self.field
        return payload


class StoreUnavailable(StoreError):
    """Database unreachable or timed out."""

    type = "connection"
    status_code = 503
    default_message = "Database connection error"


class UnknownStoreError(StoreError):
    """Catch-all."""


# "UNIQUE constraint failed: tasks.title" (SQLite)
_SQLITE_UNIQUE = re.compile(r"UNIQUE constraint failed: [\w]+\.(\w+)")
# "Key (title)=(foo) already exists." (PostgreSQL)
_POSTGRES_UNIQUE = re.compile(r"Key \((\w+)\)=")


def _duplicate_field(error: sa_exc.IntegrityError) -> Optional[str]:
    text = str(error.orig) if error.orig is not None else str(error)
    for pattern in (_SQLITE_UNIQUE, _POSTGRES_UNIQUE):
        match = pattern.search(text)
        if match:
            return match.group(1)
    if "unique" in text.lower() or "duplicate" in text.lower():
        return "key"
    return None


def handle_database_error(error: Exception) -> StoreError:
    """Map any exception raised by the data layer to a `StoreError`."""
    if isinstance(error, StoreError):
        return error

    logger.error(f"Database error: {type(error).__name__}: {str(error)}")

    if isinstance(error, sa_exc.IntegrityError):
        field = _duplicate_field(error)
        if field:
            return DuplicateKey(field)
        return UnknownStoreError()

    if isinstance(error, sa_exc.DataError):
        return InvalidIdentifier()

    if isinstance(error, (sa_exc.OperationalError, sa_exc.InterfaceError, sa_exc.DisconnectionError, sa_exc.TimeoutError)):
        return StoreUnavailable()

    # Bind-parameter conversion failures surface as bare StatementError.
    if type(error) is sa_exc.StatementError:
        return InvalidIdentifier()

    return UnknownStoreError()
