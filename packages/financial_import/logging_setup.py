"""Logging for the ``financial_import`` package.

Entry points (the CLI) call :func:`configure_logging` once; it installs one
``StreamHandler`` on the ``financial_import`` logger and stops propagation to
the root logger. Library modules only ever call
``get_logger("financial_import.<module>")``: until configuration happens the
package logger carries a ``NullHandler`` so embedding applications see nothing
unless they opt in.

The level comes from the explicit argument, else ``FINANCIAL_IMPORT_LOG_LEVEL``,
else ``INFO``. Calling :func:`configure_logging` again only adjusts the level.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PACKAGE_LOGGER = "financial_import"
LOG_LEVEL_ENV = "FINANCIAL_IMPORT_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_HANDLER_NAME = "financial_import.console"


def resolve_level(level: int | str | None = None) -> int:
    """Turn an int, a level name or a numeric string into a logging level.

    Unknown names fall back to the environment, then to ``INFO``.
    """

    if isinstance(level, int):
        return level
    for candidate in (level, os.getenv(LOG_LEVEL_ENV)):
        if not candidate:
            continue
        name = candidate.strip().upper()
        if name.isdigit():
            return int(name)
        numeric = logging.getLevelNamesMapping().get(name)
        if numeric is not None:
            return numeric
    return logging.INFO


def _console_handler(logger: logging.Logger) -> logging.Handler | None:
    return next((h for h in logger.handlers if h.get_name() == _HANDLER_NAME), None)


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> logging.Logger:
    """Install the package console handler and return the package logger."""

    logger = logging.getLogger(PACKAGE_LOGGER)
    resolved = resolve_level(level)

    handler = _console_handler(logger)
    if handler is None:
        for h in list(logger.handlers):
            if isinstance(h, logging.NullHandler):
                logger.removeHandler(h)
        handler = logging.StreamHandler(stream)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False

    handler.setLevel(resolved)
    logger.setLevel(resolved)
    return logger


def get_logger(name: str) -> logging.Logger:
    pkg = logging.getLogger(PACKAGE_LOGGER)
    if not pkg.handlers:
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "resolve_level", "LOG_LEVEL_ENV"]
