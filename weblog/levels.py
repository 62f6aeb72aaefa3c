# FILE: weblog/levels.py
from __future__ import annotations

import enum
import logging
from typing import Union

from .errors import InvalidArgumentError


class LogLevel(enum.IntEnum):
    """
    Event severities, expressed as stdlib ``logging`` numeric levels so a
    plain ``logging.Logger`` can gate and emit them directly.
    """

    VERBOSE = 5
    DEBUG = logging.DEBUG
    INFORMATION = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    FATAL = logging.CRITICAL


logging.addLevelName(LogLevel.VERBOSE, "VERBOSE")

_ALIASES = {
    "verbose": LogLevel.VERBOSE,
    "trace": LogLevel.VERBOSE,
    "debug": LogLevel.DEBUG,
    "information": LogLevel.INFORMATION,
    "info": LogLevel.INFORMATION,
    "warning": LogLevel.WARNING,
    "warn": LogLevel.WARNING,
    "error": LogLevel.ERROR,
    "fatal": LogLevel.FATAL,
    "critical": LogLevel.FATAL,
}


def parse_level(value: Union[str, int, LogLevel]) -> LogLevel:
    """Coerce a level name or number into a LogLevel."""
    if isinstance(value, LogLevel):
        return value
    if isinstance(value, bool):
        raise InvalidArgumentError(f"not a log level: {value!r}")
    if isinstance(value, int):
        try:
            return LogLevel(value)
        except ValueError:
            raise InvalidArgumentError(f"not a log level: {value!r}") from None
    if isinstance(value, str):
        lvl = _ALIASES.get(value.strip().lower())
        if lvl is not None:
            return lvl
    raise InvalidArgumentError(f"not a log level: {value!r}")
