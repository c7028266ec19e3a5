"""Tests for task field validation, defaults and derived fields."""

import pytest
from datetime import datetime, timedelta, timezone

from taskmanager.database.errors import ValidationFailed
from taskmanager.models.task import Priority, Task
from taskmanager.models.task_factory import create_task_base
from taskmanager.models.task_rules import (
    FieldError,
    normalize_due_date,
    normalize_priority,
    normalize_tags,
    normalize_title,
    validate_task_fields,
)
from taskmanager.models.timeutil import format_timestamp

NOW = datetime(2026, 3, 1, 12, 0, 0)


class TestNormalizers:
    """Single-field rules."""

    def test_title_is_trimmed(self):
        assert normalize_title("  Buy milk  ") == "Buy milk"

    @pytest.mark.parametrize("value", [None, "", "   ", "\t\n"])
    def test_blank_title_rejected(self, value):
        with pytest.raises(FieldError):
            normalize_title(value)

    def test_title_length_limit(self):
        assert len(normalize_title("x" * 500)) == 500
        with pytest.raises(FieldError, match="500"):
            normalize_title("x" * 501)

    def test_priority_enum(self):
        assert normalize_priority("urgent") == "urgent"
        assert normalize_priority(Priority.LOW) == "low"
        with pytest.raises(FieldError, match="Priority must be one of"):
            normalize_priority("critical")

    def test_tags_trimmed_lowercased_and_blanks_dropped(self):
        assert normalize_tags(["  Work ", "", "   ", "HOME"]) == ["work", "home"]

    @pytest.mark.parametrize("value", [5, {"work": True}, True])
    def test_tags_must_be_a_list(self, value):
        with pytest.raises(FieldError, match="array of strings"):
            normalize_tags(value)

    def test_single_tag_string_accepted(self):
        assert normalize_tags(" Work ") == ["work"]

    def test_tag_length_limit_applies_after_trim(self):
        assert normalize_tags(["  " + "a" * 50 + "  "]) == ["a" * 50]
        with pytest.raises(FieldError, match="50"):
            normalize_tags(["a" * 51])

    def test_due_date_must_be_strictly_future(self):
        assert normalize_due_date(NOW + timedelta(seconds=1), NOW) == NOW + timedelta(seconds=1)
        with pytest.raises(FieldError, match="future"):
            normalize_due_date(NOW, NOW)
        with pytest.raises(FieldError, match="future"):
            normalize_due_date(NOW - timedelta(days=1), NOW)

    def test_due_date_parses_iso_strings_and_converts_to_utc(self):
        parsed = normalize_due_date("2026-03-02T14:00:00+02:00", NOW)
        assert parsed == datetime(2026, 3, 2, 12, 0, 0)
        assert normalize_due_date("2026-03-02T12:00:00.000Z", NOW) == datetime(2026, 3, 2, 12, 0, 0)

    def test_due_date_may_be_cleared(self):
        assert normalize_due_date(None, NOW) is None

    def test_unparseable_due_date(self):
        with pytest.raises(FieldError, match="valid date"):
            normalize_due_date("next tuesday", NOW)

    def test_due_date_out_of_range_after_utc_conversion(self):
        with pytest.raises(FieldError, match="valid date"):
            normalize_due_date("9999-12-31T23:00:00-05:00", NOW)


class TestValidateTaskFields:
    """Payload validation for create and update."""

    def test_create_requires_title(self):
        with pytest.raises(ValidationFailed) as exc_info:
            validate_task_fields({"description": "no title"}, now=NOW)
        assert exc_info.value.errors == {"title": "Task title is required"}

    def test_all_failures_reported_together(self):
        with pytest.raises(ValidationFailed) as exc_info:
            validate_task_fields(
                {
                    "title": " ",
                    "priority": "someday",
                    "due_date": NOW - timedelta(hours=1),
                    "description": "d" * 2001,
                },
                now=NOW,
            )
        assert set(exc_info.value.errors) == {"title", "priority", "dueDate", "description"}
        assert exc_info.value.type == "validation"
        assert exc_info.value.status_code == 400

    def test_partial_update_only_checks_present_fields(self):
        assert validate_task_fields({"completed": True}, now=NOW, partial=True) == {"completed": True}

    def test_partial_update_rejects_null_title(self):
        with pytest.raises(ValidationFailed) as exc_info:
            validate_task_fields({"title": None}, now=NOW, partial=True)
        assert "title" in exc_info.value.errors

    def test_completed_must_be_boolean(self):
        with pytest.raises(ValidationFailed) as exc_info:
            validate_task_fields({"completed": "yes"}, now=NOW, partial=True)
        assert exc_info.value.errors == {"completed": "Completed must be a boolean"}

    def test_unknown_keys_ignored(self):
        assert validate_task_fields({"title": "A", "is_deleted": True}, now=NOW) == {"title": "A"}


class TestCreateTaskBase:
    """Defaults applied on insert."""

    def test_defaults(self):
        task = create_task_base({"title": "  Buy milk  "}, now=NOW)

        assert task.title == "Buy milk"
        assert task.description == ""
        assert task.completed is False
        assert task.priority == "medium"
        assert task.tags == []
        assert task.due_date is None
        assert task.completed_at is None
        assert task.is_deleted is False
        assert task.created_at == NOW
        assert task.updated_at == NOW

    def test_created_completed_sets_completed_at(self):
        task = create_task_base({"title": "Done already", "completed": True}, now=NOW)
        assert task.completed is True
        assert task.completed_at == NOW

    def test_ids_are_unique(self):
        first = create_task_base({"title": "A"}, now=NOW)
        second = create_task_base({"title": "A"}, now=NOW)
        assert first.id != second.id


class TestDerivedFields:
    """isOverdue, timeUntilDue and daysSinceCreated."""

    def _task(self, **overrides) -> Task:
        fields = {
            "id": "00000000-0000-4000-8000-000000000000",
            "title": "Derived",
            "created_at": NOW,
            "updated_at": NOW,
        }
        fields.update(overrides)
        return Task(**fields)

    def test_no_due_date(self):
        task = self._task()
        assert task.is_overdue(NOW) is False
        assert task.time_until_due(NOW) is None

    def test_future_due_date(self):
        task = self._task(due_date=NOW + timedelta(hours=2))
        assert task.is_overdue(NOW) is False
        assert task.time_until_due(NOW) == 2 * 60 * 60 * 1000

    def test_becomes_overdue_as_time_passes(self):
        task = self._task(due_date=NOW + timedelta(hours=1))
        later = NOW + timedelta(hours=3)
        assert task.is_overdue(later) is True
        assert task.time_until_due(later) == 0

    def test_completed_task_is_never_overdue(self):
        task = self._task(due_date=NOW - timedelta(days=1), completed=True, completed_at=NOW)
        assert task.is_overdue(NOW) is False

    def test_days_since_created_floors(self):
        task = self._task()
        assert task.days_since_created(NOW + timedelta(hours=23)) == 0
        assert task.days_since_created(NOW + timedelta(days=2, hours=23)) == 2

    def test_public_dict_shape(self):
        task = self._task(
            due_date=NOW + timedelta(days=1),
            tags=["home"],
            is_deleted=True,
            deleted_at=NOW,
        )
        payload = task.to_public_dict(NOW)

        assert "isDeleted" not in payload and "is_deleted" not in payload
        assert "deletedAt" not in payload and "deleted_at" not in payload
        assert payload["dueDate"] == "2026-03-02T12:00:00.000Z"
        assert payload["createdAt"] == "2026-03-01T12:00:00.000Z"
        assert payload["completedAt"] is None
        assert payload["priority"] == "medium"
        assert payload["isOverdue"] is False
        assert payload["timeUntilDue"] == 24 * 60 * 60 * 1000
        assert payload["daysSinceCreated"] == 0


def test_format_timestamp_converts_aware_values_to_utc():
    aware = datetime(2026, 3, 1, 14, 30, 0, 123456, tzinfo=timezone(timedelta(hours=2)))
    assert format_timestamp(aware) == "2026-03-01T12:30:00.123Z"
    assert format_timestamp(None) is None
