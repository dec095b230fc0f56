"""Diagnostic logging for the janitor processes."""

from __future__ import annotations

import logging

from media_janitor.config.settings import get_settings

PACKAGE_LOGGER = "media_janitor"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Chatty third-party loggers that would drown the deletion trail at DEBUG.
QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "celery.beat")


def configure_logging(level: str | None = None) -> logging.Logger:
    """Set up the root handler and the ``media_janitor`` logger level.

    The root logger stays at INFO so library warnings surface; only the
    package logger follows ``LOG_LEVEL``.
    """

    name = (level or get_settings().log_level).upper()
    package_level = getattr(logging, name, None)
    if not isinstance(package_level, int):
        package_level = logging.INFO

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    package = logging.getLogger(PACKAGE_LOGGER)
    package.setLevel(package_level)
    return package
