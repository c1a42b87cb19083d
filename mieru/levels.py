"""Logging levels, ordered from most to least severe."""

from __future__ import annotations

from enum import IntEnum


class Level(IntEnum):
    """A logging level. Lower values are more severe."""

    PANIC = 0
    FATAL = 1
    ERROR = 2
    WARN = 3
    INFO = 4
    DEBUG = 5
    TRACE = 6

    def marshal_text(self) -> bytes:
        """Return the textual name of the level."""
        return _LEVEL_NAMES[self].encode()

    def __str__(self) -> str:
        name = _LEVEL_NAMES.get(self)
        return name if name is not None else "unknown"


_LEVEL_NAMES = {
    Level.TRACE: "trace",
    Level.DEBUG: "debug",
    Level.INFO: "info",
    Level.WARN: "warning",
    Level.ERROR: "error",
    Level.FATAL: "fatal",
    Level.PANIC: "panic",
}

_PARSE_TABLE = {
    "panic": Level.PANIC,
    "fatal": Level.FATAL,
    "error": Level.ERROR,
    "warn": Level.WARN,
    "warning": Level.WARN,
    "info": Level.INFO,
    "debug": Level.DEBUG,
    "trace": Level.TRACE,
}

ALL_LEVELS = [
    Level.PANIC,
    Level.FATAL,
    Level.ERROR,
    Level.WARN,
    Level.INFO,
    Level.DEBUG,
    Level.TRACE,
]


def parse_level(lvl: str | bytes) -> Level:
    """Parse a level name, case-insensitively."""
    if isinstance(lvl, bytes):
        lvl = lvl.decode()
    try:
        return _PARSE_TABLE[lvl.lower()]
    except KeyError:
        raise ValueError(f'not a valid logrus Level: "{lvl}"') from None