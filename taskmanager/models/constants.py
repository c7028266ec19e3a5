"""Constants for the task manager.

This module centralizes field limits and default values used throughout the application.
"""

from taskmanager.models.task import Priority


# Field limits
TITLE_MAX_LENGTH = 500
DESCRIPTION_MAX_LENGTH = 2000
TAG_MAX_LENGTH = 50

# Task defaults
DEFAULT_PRIORITY = Priority.MEDIUM
DEFAULT_DESCRIPTION = ""

# Full-text search weights
SEARCH_WEIGHT_TITLE = 10
SEARCH_WEIGHT_DESCRIPTION = 5
SEARCH_WEIGHT_TAGS = 1

# Pagination
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

# Reporting / maintenance
RECENT_ACTIVITY_DAYS = 7
DEFAULT_CLEANUP_DAYS = 30
