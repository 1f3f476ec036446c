"""Logging helpers producing ``YYYY/MM/DD HH:MM:SS [LEVEL] message`` lines."""

from __future__ import annotations

import logging
import os
import sys
from typing import Mapping, Optional, TextIO

from ..config import DEFAULT_LOG_LEVEL, LOG_LEVEL_ENV_VAR, VALID_LOG_LEVELS
from ..errors import ConfigurationError

LOGGER_NAME = "ghphotos"
DATE_FORMAT = "%Y/%m/%d %H:%M:%S"

_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class LevelTagFormatter(logging.Formatter):
    """Render records as ``2025/09/18 11:55:11 [INFO] message``."""

    _TAGS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "ERROR",
    }

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s [%(level_tag)s] %(message)s", datefmt=DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        record.level_tag = self._TAGS.get(record.levelno, "INFO")
        return super().format(record)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return the package logger, or one of its children when *name* is given."""

    if name:
        return logging.getLogger(f"{LOGGER_NAME}.{name}")
    return logging.getLogger(LOGGER_NAME)


def configure_logging(level: str = DEFAULT_LOG_LEVEL, stream: Optional[TextIO] = None) -> logging.Logger:
    """Install a single formatted handler on the package logger.

    Calling this more than once replaces the handler installed previously so
    the CLI can reconfigure the level per command.
    """

    logger = get_logger()
    for handler in list(logger.handlers):
        if getattr(handler, "_ghphotos_handler", False):
            logger.removeHandler(handler)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(LevelTagFormatter())
    handler._ghphotos_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.setLevel(_LEVELS[level])
    return logger


def resolve_log_level(
    value: Optional[str],
    explicit: bool,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """Return the normalised log level to use.

    ``LOG_LEVEL`` from the environment only applies when the flag was not
    given explicitly. The result is trimmed, lower-cased and validated.
    """

    env = os.environ if environ is None else environ
    candidate = value if value is not None else DEFAULT_LOG_LEVEL
    if not explicit:
        env_value = env.get(LOG_LEVEL_ENV_VAR, "")
        if env_value:
            candidate = env_value
    normalised = candidate.strip().lower()
    if normalised not in VALID_LOG_LEVELS:
        raise ConfigurationError(
            f"invalid log level '{normalised}'. Valid levels: {', '.join(VALID_LOG_LEVELS)}"
        )
    return normalised


logger = get_logger()

__all__ = [
    "LevelTagFormatter",
    "configure_logging",
    "get_logger",
    "logger",
    "resolve_log_level",
]
