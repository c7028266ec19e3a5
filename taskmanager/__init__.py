"""Task manager: a small to-do list service."""

__version__ = "1.0.0"
