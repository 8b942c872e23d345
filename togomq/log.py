"""Log level handling for the ``togomq`` package logger."""

from __future__ import annotations

import logging

PACKAGE_LOGGER = "togomq"

# Above CRITICAL so nothing from the package gets through.
LEVEL_NONE = logging.CRITICAL + 10

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "none": LEVEL_NONE,
}


def parse_log_level(level: str) -> int:
    """Map a level name to a :mod:`logging` level; unknown names mean ``info``."""
    return _LEVELS.get((level or "").strip().lower(), logging.INFO)


def configure_logging(level: str) -> None:
    """Apply *level* to the package logger.  Handlers are left to the application."""
    logging.getLogger(PACKAGE_LOGGER).setLevel(parse_log_level(level))
