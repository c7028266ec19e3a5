#!/usr/bin/env python3
"""Run script for the task manager."""

import uvicorn

from taskmanager.config import Settings
from taskmanager.logging_setup import setup_logging

if __name__ == "__main__":
    settings = Settings.from_env()
    setup_logging(settings.log_level, force=True)
    uvicorn.run(
        "taskmanager.api.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=None,
    )
