"""HTTP API for the task manager."""
