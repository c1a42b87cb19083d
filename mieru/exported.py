"""Module-level logging through a shared standard logger."""

from __future__ import annotations

import sys
from datetime import datetime
from typing import Any

from mieru import logger as _logger_module
from mieru.formatter import CliFormatter, Formatter
from mieru.levels import Level
from mieru.logger import Entry, Logger

# Command output goes to stdout with only the message printed.
_std = Logger(out=sys.stdout, formatter=CliFormatter())

_LEVELS_BY_NAME = {
    "FATAL": Level.FATAL,
    "ERROR": Level.ERROR,
    "WARN": Level.WARN,
    "INFO": Level.INFO,
    "DEBUG": Level.DEBUG,
    "TRACE": Level.TRACE,
}


def standard_logger() -> Logger:
    """Return the shared standard logger."""
    return _std


def set_output(out: Any) -> None:
    """Set the standard logger output."""
    _std.set_output(out)


def set_formatter(formatter: Formatter) -> None:
    """Set the standard logger formatter."""
    _std.set_formatter(formatter)


def set_report_caller(include: bool) -> None:
    """Set whether the standard logger reports the calling function."""
    _std.set_report_caller(include)


def set_level(level: str) -> None:
    """Set the standard logger level by name; unknown names are ignored."""
    found = _LEVELS_BY_NAME.get(level.upper())
    if found is not None:
        _std.set_level(found)


def get_level() -> Level:
    """Return the standard logger level."""
    return _std.get_level()


def is_level_enabled(level: Level) -> bool:
    """Whether the standard logger writes messages at ``level``."""
    return _std.is_level_enabled(level)


def with_error(err: Any) -> Entry:
    """Create an entry holding ``err`` under the configured error key."""
    return _std.with_field(_logger_module.ERROR_KEY, err)


def with_context(ctx: Any) -> Entry:
    """Create an entry carrying a context."""
    return _std.with_context(ctx)


def with_field(key: str, value: Any) -> Entry:
    """Create an entry with one field."""
    return _std.with_field(key, value)


def with_fields(fields: dict[str, Any]) -> Entry:
    """Create an entry with several fields."""
    return _std.with_fields(fields)


def with_time(t: datetime) -> Entry:
    """Create an entry whose time is overridden."""
    return _std.with_time(t)


def tracef(format: str, *args: Any) -> None:
    """Log a formatted message at trace level."""
    _std.tracef(format, *args)


def debugf(format: str, *args: Any) -> None:
    """Log a formatted message at debug level."""
    _std.debugf(format, *args)


def printf(format: str, *args: Any) -> None:
    """Log a formatted message at info level."""
    _std.printf(format, *args)


def infof(format: str, *args: Any) -> None:
    """Log a formatted message at info level."""
    _std.infof(format, *args)


def warnf(format: str, *args: Any) -> None:
    """Log a formatted message at warn level."""
    _std.warnf(format, *args)


def warningf(format: str, *args: Any) -> None:
    """Log a formatted message at warn level."""
    _std.warningf(format, *args)


def errorf(format: str, *args: Any) -> None:
    """Log a formatted message at error level."""
    _std.errorf(format, *args)


def panicf(format: str, *args: Any) -> None:
    """Log a formatted message at panic level, then raise LogPanic."""
    _std.panicf(format, *args)


def fatalf(format: str, *args: Any) -> None:
    """Log a formatted message at fatal level, then exit with status 1."""
    _std.fatalf(format, *args)


def print(*args: Any) -> None:
    """Log the operands at info level."""
    _std.print(*args)


def panic(*args: Any) -> None:
    """Log the operands at panic level, then raise LogPanic."""
    _std.panic(*args)


def fatal(*args: Any) -> None:
    """Log the operands at fatal level, then exit with status 1."""
    _std.fatal(*args)


def println(*args: Any) -> None:
    """Log the space-separated operands at info level."""
    _std.println(*args)


def panicln(*args: Any) -> None:
    """Log the space-separated operands at panic level, then raise LogPanic."""
    _std.panicln(*args)


def fatalln(*args: Any) -> None:
    """Log the space-separated operands at fatal level, then exit with status 1."""
    _std.fatalln(*args)