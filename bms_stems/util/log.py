from __future__ import annotations

import sys

from loguru import logger

# Accepted level names -> loguru levels. "verbose" and "silly" keep older
# command lines working.
LOG_LEVELS: dict[str, str] = {
    "error": "ERROR",
    "warn": "WARNING",
    "warning": "WARNING",
    "info": "INFO",
    "verbose": "DEBUG",
    "debug": "DEBUG",
    "silly": "TRACE",
    "trace": "TRACE",
}

LOG_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> [<level>{level}</level>] {message}"


def setup_logging(level: str = "info") -> int:
    """Route all log output to a single stderr sink at `level`.

    Returns the loguru handler id.
    """

    lvl = LOG_LEVELS.get(str(level).strip().lower())
    if lvl is None:
        raise ValueError(f"unknown log level: {level}")
    logger.remove()
    return logger.add(sys.stderr, level=lvl, format=LOG_FORMAT, backtrace=False, diagnose=False)
