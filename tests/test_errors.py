"""Tests for store error normalization."""

import pytest
from sqlalchemy import exc as sa_exc

from taskmanager.database.errors import (
    DuplicateKey,
    InvalidIdentifier,
    StoreUnavailable,
    UnknownStoreError,
    ValidationFailed,
    handle_database_error,
)


def _integrity(message: str) -> sa_exc.IntegrityError:
    return sa_exc.IntegrityError("INSERT INTO tasks ...", {}, Exception(message))


class TestHandleDatabaseError:
    """Driver exceptions map onto the error taxonomy."""

    def test_store_errors_pass_through(self):
        error = ValidationFailed({"title": "Task title is required"})
        assert handle_database_error(error) is error

    def test_sqlite_unique_violation(self):
        error = handle_database_error(_integrity("UNIQUE constraint failed: tasks.id"))
        assert isinstance(error, DuplicateKey)
        assert error.field == "id"
        assert error.status_code == 409
        assert error.to_dict() == {"type": "duplicate", "message": "id already exists", "field": "id"}

    def test_postgres_unique_violation(self):
        error = handle_database_error(
            _integrity('duplicate key value violates unique constraint "tasks_pkey"\nDETAIL:  Key (id)=(abc) already exists.')
        )
        assert isinstance(error, DuplicateKey)
        assert error.field == "id"

    def test_other_integrity_error_is_unknown(self):
        error = handle_database_error(_integrity("NOT NULL constraint failed: tasks.title"))
        assert isinstance(error, UnknownStoreError)
        assert error.status_code == 500

    def test_data_error_is_cast(self):
        error = handle_database_error(sa_exc.DataError("SELECT", {}, Exception("invalid input syntax for type uuid")))
        assert isinstance(error, InvalidIdentifier)
        assert error.to_dict()["type"] == "cast"

    @pytest.mark.parametrize("error", [
        sa_exc.OperationalError("SELECT 1", {}, Exception("connection refused")),
        sa_exc.InterfaceError("SELECT 1", {}, Exception("connection closed")),
        sa_exc.DisconnectionError("gone"),
        sa_exc.TimeoutError("QueuePool limit reached"),
    ])
    def test_connection_failures(self, error):
        normalized = handle_database_error(error)
        assert isinstance(normalized, StoreUnavailable)
        assert normalized.status_code == 503
        assert normalized.to_dict() == {"type": "connection", "message": "Database connection error"}

    def test_anything_else_is_unknown(self):
        error = handle_database_error(RuntimeError("boom"))
        assert isinstance(error, UnknownStoreError)
        assert error.to_dict() == {"type": "unknown", "message": "Database operation failed"}

    def test_driver_details_do_not_leak(self):
        error = handle_database_error(sa_exc.OperationalError("SELECT 1", {}, Exception("password=hunter2")))
        assert "hunter2" not in str(error.to_dict())


def test_validation_failed_payload():
    error = ValidationFailed({"title": "Task title is required", "priority": "Priority must be one of: low"})
    assert error.to_dict() == {
        "type": "validation",
        "message": "Validation failed",
        "errors": {"title": "Task title is required", "priority": "Priority must be one of: low"},
    }
