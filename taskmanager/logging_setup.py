"""Logging configuration for the task manager."""

import logging
import sys

_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO", force: bool = False) -> None:
    """Configure root logging with a single stderr handler.

    If the root logger already has handlers (a test runner, an embedding
    server) they are left alone unless `force` is set, in which case they
    are replaced.
    """
    root = logging.getLogger()
    if root.handlers and not force:
        return

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT))
    root.addHandler(handler)

    # Route warnings.warn(...) into logging as 'py.warnings'
    logging.captureWarnings(True)
