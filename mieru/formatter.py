"""Formatters turning log entries into bytes."""

from __future__ import annotations

import io
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

FIELD_KEY_MSG = "msg"
FIELD_KEY_LEVEL = "level"
FIELD_KEY_TIME = "time"
FIELD_KEY_FUNC = "func"
FIELD_KEY_FILE = "file"


def _rfc3339(t: datetime) -> str:
    if t.tzinfo is None:
        t = t.astimezone()
    offset = t.utcoffset()
    stamp = t.strftime("%Y-%m-%dT%H:%M:%S")
    if not offset:
        return stamp + "Z"
    total = int(offset.total_seconds())
    sign = "+" if total >= 0 else "-"
    total = abs(total)
    return f"{stamp}{sign}{total // 3600:02d}:{(total % 3600) // 60:02d}"


def _format_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _target_buffer(entry: Any) -> io.BytesIO:
    buf = getattr(entry, "buffer", None)
    return buf if buf is not None else io.BytesIO()


class Formatter(ABC):
    """Turns a log entry into the bytes written to the output."""

    @abstractmethod
    def format(self, entry: Any) -> bytes:
        """Return the serialized entry."""


class CliFormatter(Formatter):
    """Prints only the message; suited to command output."""

    def format(self, entry: Any) -> bytes:
        buf = _target_buffer(entry)
        buf.write(entry.message.encode())
        buf.write(b"\n")
        return buf.getvalue()


@dataclass
class DaemonFormatter(Formatter):
    """Prints time, level, message, caller and sorted fields on one line."""

    no_timestamp: bool = False

    def format(self, entry: Any) -> bytes:
        user_data = dict(entry.data)
        has_caller = entry.has_caller()

        parts: list[str] = []
        if not self.no_timestamp:
            parts.append(_rfc3339(entry.time))
        parts.append(str(entry.level).upper())
        parts.append(entry.message)
        if has_caller:
            caller = entry.caller
            parts.append(f"{caller.filename}:{caller.lineno}")
            parts.append(caller.function)
        parts.extend(
            f"{key}={_format_value(user_data[key])}" for key in sorted(user_data)
        )

        buf = _target_buffer(entry)
        for part in parts:
            if buf.getbuffer().nbytes > 0:
                buf.write(b" ")
            buf.write(part.encode())
        buf.write(b"\n")
        return buf.getvalue()


class NilFormatter(Formatter):
    """Prints nothing; disables logging."""

    def format(self, entry: Any) -> bytes:
        return b""