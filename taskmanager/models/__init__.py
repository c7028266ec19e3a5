"""Data models for the task manager."""

from taskmanager.models.task import Task, Priority

__all__ = [
    "Task",
    "Priority",
]
