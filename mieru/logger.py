"""Log entries, buffer pools and the logger that writes them."""

from __future__ import annotations

import functools
import inspect
import io
import json
import math
import os
import re
import sys
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator

from mieru.formatter import CliFormatter, Formatter
from mieru.levels import Level

# Key used by with_error to store the error among the entry fields.
ERROR_KEY = "error"

# Maximum number of stack frames inspected when looking for the caller.
MAXIMUM_CALLER_DEPTH = 25

# Source files whose frames are never reported as the caller.
_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
_LOGGING_FILES = frozenset(
    os.path.normcase(os.path.join(_PACKAGE_DIR, name))
    for name in ("logger.py", "exported.py")
)


# ---- buffer pools ----


class BufferPool(ABC):
    """A source of reusable byte buffers for formatting entries."""

    @abstractmethod
    def get(self) -> io.BytesIO:
        """Return a buffer."""

    @abstractmethod
    def put(self, buf: io.BytesIO) -> None:
        """Give a buffer back for reuse."""


class DefaultBufferPool(BufferPool):
    """A thread-safe pool that recycles returned buffers."""

    def __init__(self) -> None:
        self._free: list[io.BytesIO] = []
        self._lock = threading.Lock()

    def get(self) -> io.BytesIO:
        with self._lock:
            if self._free:
                return self._free.pop()
        return io.BytesIO()

    def put(self, buf: io.BytesIO) -> None:
        with self._lock:
            self._free.append(buf)


_buffer_pool: BufferPool = DefaultBufferPool()


def set_buffer_pool(bp: BufferPool) -> None:
    """Replace the global buffer pool used by loggers without their own."""
    global _buffer_pool
    _buffer_pool = bp


# ---- Go-style value formatting ----

_VERB = re.compile(r"%([-+# 0]*)(\d+)?(?:\.(\d+))?([a-zA-Z%])")
_NUMERIC_VERBS = frozenset("dxXfFeEgG")


def _go_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "+Inf" if value > 0 else "-Inf"
        text = repr(value)
        return text[:-2] if text.endswith(".0") else text
    if isinstance(value, (bytes, bytearray)):
        return "[" + " ".join(str(b) for b in value) + "]"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_go_value(v) for v in value) + "]"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "map[" + " ".join(f"{_go_value(k)}:{_go_value(v)}" for k, v in items) + "]"
    return str(value)


def _bad_verb(verb: str, arg: Any) -> str:
    return f"%!{verb}({type(arg).__name__}={_go_value(arg)})"


def _format_verb(verb: str, arg: Any, flags: str, prec: str | None) -> str:
    if verb in "vs":
        text = _go_value(arg)
        if prec is not None and isinstance(arg, str):
            text = text[: int(prec)]
        return text
    if verb == "d":
        if isinstance(arg, int) and not isinstance(arg, bool):
            return f"+{arg}" if "+" in flags and arg >= 0 else str(arg)
        return _bad_verb(verb, arg)
    if verb == "q":
        if isinstance(arg, int) and not isinstance(arg, bool):
            return "'" + chr(arg) + "'"
        return json.dumps(_go_value(arg), ensure_ascii=False)
    if verb in "xX":
        if isinstance(arg, int) and not isinstance(arg, bool):
            text = format(arg, "x")
        elif isinstance(arg, str):
            text = arg.encode().hex()
        elif isinstance(arg, (bytes, bytearray)):
            text = bytes(arg).hex()
        else:
            return _bad_verb(verb, arg)
        return text.upper() if verb == "X" else text
    if verb == "t":
        if isinstance(arg, bool):
            return _go_value(arg)
        return _bad_verb(verb, arg)
    if verb in "fFeEgG":
        if isinstance(arg, (int, float)) and not isinstance(arg, bool):
            spec = f".{prec}{verb}" if prec is not None else verb
            text = format(float(arg), spec)
            return f"+{text}" if "+" in flags and not text.startswith("-") else text
        return _bad_verb(verb, arg)
    if verb == "c":
        if isinstance(arg, int) and not isinstance(arg, bool):
            return chr(arg)
        return _bad_verb(verb, arg)
    if verb == "T":
        return type(arg).__name__
    return _bad_verb(verb, arg)


def _pad(text: str, flags: str, width: int, verb: str) -> str:
    if len(text) >= width:
        return text
    if "-" in flags:
        return text.ljust(width)
    if "0" in flags and verb in _NUMERIC_VERBS:
        return text.zfill(width)
    return text.rjust(width)


def _sprintf(fmt: str, *args: Any) -> str:
    used = 0

    def replace(match: re.Match[str]) -> str:
        nonlocal used
        flags, width, prec, verb = match.groups()
        if verb == "%":
            return "%"
        if used >= len(args):
            return f"%!{verb}(MISSING)"
        arg = args[used]
        used += 1
        text = _format_verb(verb, arg, flags, prec)
        return _pad(text, flags, int(width) if width else 0, verb)

    out = _VERB.sub(replace, fmt)
    if used < len(args):
        extra = ", ".join(f"{type(a).__name__}={_go_value(a)}" for a in args[used:])
        out += f"%!(EXTRA {extra})"
    return out


def _sprint(*args: Any) -> str:
    """Join operands, with a space only between two non-string operands."""
    parts: list[str] = []
    for i, arg in enumerate(args):
        if i > 0 and not isinstance(arg, str) and not isinstance(args[i - 1], str):
            parts.append(" ")
        parts.append(_go_value(arg))
    return "".join(parts)


def _sprintln(*args: Any) -> str:
    """Join operands, always separated by a space."""
    return " ".join(_go_value(a) for a in args)


def _is_function(value: Any) -> bool:
    return inspect.isroutine(value) or isinstance(value, functools.partial)


# ---- caller lookup ----


@dataclass(frozen=True)
class CallerFrame:
    """Where a log call was made."""

    filename: str
    lineno: int
    function: str


def _get_caller() -> CallerFrame | None:
    frame = inspect.currentframe()
    try:
        depth = 0
        while frame is not None and depth < MAXIMUM_CALLER_DEPTH:
            filename = frame.f_code.co_filename
            if os.path.normcase(os.path.abspath(filename)) not in _LOGGING_FILES:
                module = inspect.getmodulename(filename) or "<unknown>"
                return CallerFrame(
                    filename=filename,
                    lineno=frame.f_lineno,
                    function=f"{module}.{frame.f_code.co_name}",
                )
            frame = frame.f_back
            depth += 1
        return None
    finally:
        del frame


def _write_to(out: Any, data: bytes) -> None:
    if isinstance(out, io.TextIOBase):
        out.write(data.decode("utf-8", errors="replace"))
    else:
        out.write(data)
    flush = getattr(out, "flush", None)
    if flush is not None:
        flush()


# ---- entries ----


class LogPanic(Exception):
    """Raised after an entry is logged at panic level; carries the entry."""

    def __init__(self, entry: "Entry") -> None:
        super().__init__(entry.message)
        self.entry = entry


@dataclass(eq=False)
class Entry:
    """A log entry: fields, time, context and, once logged, level and message."""

    logger: Logger | None = None
    data: dict[str, Any] = field(default_factory=dict)
    time: datetime | None = None
    level: Level = Level.PANIC
    caller: CallerFrame | None = None
    message: str = ""
    buffer: io.BytesIO | None = None
    context: Any = None
    err: str = ""

    def dup(self) -> "Entry":
        """Return a copy carrying the fields, time, context and field error."""
        return Entry(
            logger=self.logger,
            data=dict(self.data),
            time=self.time,
            context=self.context,
            err=self.err,
        )

    def to_bytes(self) -> bytes:
        """Return the entry as formatted by the logger's formatter."""
        return self.logger.formatter.format(self)

    def to_string(self) -> str:
        """Return the formatted entry as text."""
        return self.to_bytes().decode("utf-8", errors="replace")

    def with_error(self, err: Any) -> "Entry":
        """Add an error under the configured error key."""
        return self.with_field(ERROR_KEY, err)

    def with_context(self, ctx: Any) -> "Entry":
        """Return a copy with the given context."""
        return Entry(
            logger=self.logger,
            data=dict(self.data),
            time=self.time,
            err=self.err,
            context=ctx,
        )

    def with_field(self, key: str, value: Any) -> "Entry":
        """Return a copy with one more field."""
        return self.with_fields({key: value})

    def with_fields(self, fields: dict[str, Any]) -> "Entry":
        """Return a copy with more fields; functions are refused and noted."""
        data = dict(self.data)
        field_err = self.err
        for key, value in fields.items():
            if _is_function(value):
                note = f'can not add field "{key}"'
                field_err = f"{self.err}, {note}" if field_err else note
            else:
                data[key] = value
        return Entry(
            logger=self.logger,
            data=data,
            time=self.time,
            err=field_err,
            context=self.context,
        )

    def with_time(self, t: datetime) -> "Entry":
        """Return a copy with its time overridden."""
        return Entry(
            logger=self.logger,
            data=dict(self.data),
            time=t,
            err=self.err,
            context=self.context,
        )

    def has_caller(self) -> bool:
        """Whether caller information is present and should be reported."""
        return (
            self.logger is not None
            and self.logger.report_caller
            and self.caller is not None
        )

    def _log(self, level: Level, msg: str) -> None:
        entry = self.dup()
        if entry.time is None:
            entry.time = datetime.now().astimezone()
        entry.level = Level(level)
        entry.message = msg

        logger = entry.logger
        with logger._mu.held():
            report_caller = logger.report_caller
            pool = logger.buffer_pool if logger.buffer_pool is not None else _buffer_pool

        if report_caller:
            entry.caller = _get_caller()

        buf = pool.get()
        try:
            buf.seek(0)
            buf.truncate()
            entry.buffer = buf
            entry._write()
        finally:
            entry.buffer = None
            buf.seek(0)
            buf.truncate()
            pool.put(buf)

        if level <= Level.PANIC:
            raise LogPanic(entry)

    def _write(self) -> None:
        logger = self.logger
        with logger._mu.held():
            try:
                serialized = logger.formatter.format(self)
            except Exception as exc:  # a formatter may fail in any way
                print(f"Failed to obtain reader, {exc}", file=sys.stderr)
                return
            try:
                _write_to(logger.out, serialized)
            except (OSError, ValueError, TypeError) as exc:
                print(f"Failed to write to log, {exc}", file=sys.stderr)

    def logf(self, level: Level, format: str, *args: Any) -> None:
        """Log a formatted message at the given level."""
        if self.logger.is_level_enabled(level):
            self.log(level, _sprintf(format, *args))

    def tracef(self, format: str, *args: Any) -> None:
        self.logf(Level.TRACE, format, *args)

    def debugf(self, format: str, *args: Any) -> None:
        self.logf(Level.DEBUG, format, *args)

    def infof(self, format: str, *args: Any) -> None:
        self.logf(Level.INFO, format, *args)

    def printf(self, format: str, *args: Any) -> None:
        self.infof(format, *args)

    def warnf(self, format: str, *args: Any) -> None:
        self.logf(Level.WARN, format, *args)

    def warningf(self, format: str, *args: Any) -> None:
        self.warnf(format, *args)

    def errorf(self, format: str, *args: Any) -> None:
        self.logf(Level.ERROR, format, *args)

    def fatalf(self, format: str, *args: Any) -> None:
        self.logf(Level.FATAL, format, *args)
        self.logger.exit(1)

    def panicf(self, format: str, *args: Any) -> None:
        self.logf(Level.PANIC, format, *args)

    def log(self, level: Level, *args: Any) -> None:
        """Log the operands at the given level."""
        if self.logger.is_level_enabled(level):
            self._log(level, _sprint(*args))

    def print(self, *args: Any) -> None:
        self.log(Level.INFO, *args)

    def fatal(self, *args: Any) -> None:
        self.log(Level.FATAL, *args)
        self.logger.exit(1)

    def panic(self, *args: Any) -> None:
        self.log(Level.PANIC, *args)

    def logln(self, level: Level, *args: Any) -> None:
        """Log the operands, space separated, at the given level."""
        if self.logger.is_level_enabled(level):
            self.log(level, _sprintln(*args))

    def println(self, *args: Any) -> None:
        self.logln(Level.INFO, *args)

    def fatalln(self, *args: Any) -> None:
        self.logln(Level.FATAL, *args)
        self.logger.exit(1)

    def panicln(self, *args: Any) -> None:
        self.logln(Level.PANIC, *args)


# ---- logger ----


class _MutexWrap:
    """A lock that can be switched off."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.disabled = False

    @contextmanager
    def held(self) -> Iterator[None]:
        if self.disabled:
            yield
            return
        with self._lock:
            yield

    def disable(self) -> None:
        self.disabled = True


class Logger:
    """Writes formatted entries at or above its level to its output."""

    def __init__(
        self,
        out: Any = None,
        formatter: Formatter | None = None,
        level: Level = Level.INFO,
        report_caller: bool = False,
        exit_func: Callable[[int], Any] | None = sys.exit,
        buffer_pool: BufferPool | None = None,
    ) -> None:
        self.out = out if out is not None else sys.stderr
        self.formatter: Formatter = formatter if formatter is not None else CliFormatter()
        self.level = Level(level)
        self.report_caller = report_caller
        self.exit_func = exit_func
        self.buffer_pool = buffer_pool
        self._mu = _MutexWrap()

    def _new_entry(self) -> Entry:
        return Entry(logger=self)

    def with_field(self, key: str, value: Any) -> Entry:
        return self._new_entry().with_field(key, value)

    def with_fields(self, fields: dict[str, Any]) -> Entry:
        return self._new_entry().with_fields(fields)

    def with_error(self, err: Any) -> Entry:
        return self._new_entry().with_error(err)

    def with_context(self, ctx: Any) -> Entry:
        return self._new_entry().with_context(ctx)

    def with_time(self, t: datetime) -> Entry:
        return self._new_entry().with_time(t)

    def logf(self, level: Level, format: str, *args: Any) -> None:
        if self.is_level_enabled(level):
            self._new_entry().logf(level, format, *args)

    def tracef(self, format: str, *args: Any) -> None:
        self.logf(Level.TRACE, format, *args)

    def debugf(self, format: str, *args: Any) -> None:
        self.logf(Level.DEBUG, format, *args)

    def infof(self, format: str, *args: Any) -> None:
        self.logf(Level.INFO, format, *args)

    def printf(self, format: str, *args: Any) -> None:
        self._new_entry().printf(format, *args)

    def warnf(self, format: str, *args: Any) -> None:
        self.logf(Level.WARN, format, *args)

    def warningf(self, format: str, *args: Any) -> None:
        self.warnf(format, *args)

    def errorf(self, format: str, *args: Any) -> None:
        self.logf(Level.ERROR, format, *args)

    def fatalf(self, format: str, *args: Any) -> None:
        self.logf(Level.FATAL, format, *args)
        self.exit(1)

    def panicf(self, format: str, *args: Any) -> None:
        self.logf(Level.PANIC, format, *args)

    def log(self, level: Level, *args: Any) -> None:
        if self.is_level_enabled(level):
            self._new_entry().log(level, *args)

    def print(self, *args: Any) -> None:
        self._new_entry().print(*args)

    def fatal(self, *args: Any) -> None:
        self.log(Level.FATAL, *args)
        self.exit(1)

    def panic(self, *args: Any) -> None:
        self.log(Level.PANIC, *args)

    def logln(self, level: Level, *args: Any) -> None:
        if self.is_level_enabled(level):
            self._new_entry().logln(level, *args)

    def println(self, *args: Any) -> None:
        self._new_entry().println(*args)

    def fatalln(self, *args: Any) -> None:
        self.logln(Level.FATAL, *args)
        self.exit(1)

    def panicln(self, *args: Any) -> None:
        self.logln(Level.PANIC, *args)

    def exit(self, code: int) -> None:
        """Call the exit function, falling back to sys.exit."""
        if self.exit_func is None:
            self.exit_func = sys.exit
        self.exit_func(code)

    def set_no_lock(self) -> None:
        """Stop serialising writes; safe for outputs opened in append mode."""
        self._mu.disable()

    def set_level(self, level: Level) -> None:
        self.level = Level(level)

    def get_level(self) -> Level:
        return self.level

    def is_level_enabled(self, level: Level) -> bool:
        """Whether messages at ``level`` are written."""
        return self.level >= level

    def set_formatter(self, formatter: Formatter) -> None:
        with self._mu.held():
            self.formatter = formatter

    def set_output(self, output: Any) -> None:
        with self._mu.held():
            self.out = output

    def set_report_caller(self, report_caller: bool) -> None:
        with self._mu.held():
            self.report_caller = report_caller

    def set_buffer_pool(self, pool: BufferPool | None) -> None:
        with self._mu.held():
            self.buffer_pool = pool