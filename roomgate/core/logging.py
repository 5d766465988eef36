# roomgate/core/logging.py

from __future__ import annotations

import logging
import sys

from roomgate.core.config import settings


DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = {
    "redis": logging.WARNING,
    "websockets": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def setup_logging(level_name: str | None = None) -> None:
    """
    Configure application-wide logging.

    - Root level comes from ``level_name`` or Settings.LOG_LEVEL (default INFO)
    - Records go to stdout as ``time | level | logger | message``
    - The Redis client, websockets and Uvicorn access logs are held at WARNING
    """
    level = getattr(logging, (level_name or settings.LOG_LEVEL).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Uvicorn may have installed handlers already
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        root_logger.addHandler(handler)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, quiet_level))


def get_logger(name: str | None = None) -> logging.Logger:
    """Logger under the app's configuration, e.g. ``get_logger(__name__)``."""
    return logging.getLogger(name)
