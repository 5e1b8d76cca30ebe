"""
Numeric log levels for provider-router.

Verbosity is configured as a single number instead of Python's named
levels, which lines up with -v/-vv style CLI flags:

    1 = MINIMAL  -> logging.WARNING  (startup, shutdown, exhausted routes)
    2 = NORMAL   -> logging.INFO     (request lifecycle, routing decisions)
    3 = VERBOSE  -> logging.DEBUG    (per-attempt timing, chunk plans)
    4 = DEBUG    -> 5, "TRACE"       (cache internals, storage locks)

Usage:
    from provider_router.core.logging.levels import LogLevel, coerce_level

    coerce_level("VERBOSE")   # LogLevel.VERBOSE
    coerce_level("INFO")      # LogLevel.NORMAL
    coerce_level(30)          # LogLevel.MINIMAL (Python WARNING)
"""
from __future__ import annotations

import logging
from enum import IntEnum
from typing import Any


class LogLevel(IntEnum):
    """Verbosity levels 1-4, higher is chattier."""
    MINIMAL = 1
    NORMAL = 2
    VERBOSE = 3
    DEBUG = 4


TRACE = logging.DEBUG - 5

LEVEL_MAP = {
    LogLevel.MINIMAL: logging.WARNING,
    LogLevel.NORMAL: logging.INFO,
    LogLevel.VERBOSE: logging.DEBUG,
    LogLevel.DEBUG: TRACE,
}

LEVEL_NAMES = {level.value: level.name for level in LogLevel}

_NAME_MAP = {
    "MINIMAL": LogLevel.MINIMAL,
    "NORMAL": LogLevel.NORMAL,
    "VERBOSE": LogLevel.VERBOSE,
    "DEBUG": LogLevel.DEBUG,
    "TRACE": LogLevel.DEBUG,
    "CRITICAL": LogLevel.MINIMAL,
    "ERROR": LogLevel.MINIMAL,
    "WARNING": LogLevel.MINIMAL,
    "WARN": LogLevel.MINIMAL,
    "INFO": LogLevel.NORMAL,
}


def coerce_level(value: Any) -> LogLevel:
    """
    Convert an int, level name or numeric string to LogLevel.

    Integers 1-4 are taken as-is; larger integers are read as Python
    logging levels. Anything unparseable falls back to NORMAL.
    """
    if isinstance(value, LogLevel):
        return value

    if isinstance(value, bool):
        return LogLevel.NORMAL

    if isinstance(value, int):
        if 1 <= value <= 4:
            return LogLevel(value)
        if value >= logging.WARNING:
            return LogLevel.MINIMAL
        if value >= logging.INFO:
            return LogLevel.NORMAL
        return LogLevel.DEBUG

    if isinstance(value, str):
        text = value.strip().upper()
        if text.isdigit():
            return coerce_level(int(text))
        return _NAME_MAP.get(text, LogLevel.NORMAL)

    return LogLevel.NORMAL
