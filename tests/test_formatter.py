import io
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from mieru.formatter import CliFormatter, DaemonFormatter, Formatter, NilFormatter
from mieru.levels import Level


@dataclass
class _Caller:
    filename: str
    lineno: int
    function: str


@dataclass
class _Entry:
    message: str = ""
    level: Level = Level.INFO
    data: dict = field(default_factory=dict)
    time: datetime = field(
        default_factory=lambda: datetime(2023, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    )
    caller: Any = None
    report_caller: bool = False
    buffer: Any = None

    def has_caller(self):
        return self.report_caller and self.caller is not None


def test_formatter_is_abstract():
    with pytest.raises(TypeError):
        Formatter()


def test_cli_formatter_prints_message_only():
    entry = _Entry(message="hello", level=Level.ERROR, data={"k": "v"})
    assert CliFormatter().format(entry) == b"hello\n"


def test_cli_formatter_uses_entry_buffer():
    buf = io.BytesIO()
    entry = _Entry(message="hello", buffer=buf)
    out = CliFormatter().format(entry)
    assert buf.getvalue() == out
    assert out.endswith(b"hello\n")


def test_nil_formatter_prints_nothing():
    assert NilFormatter().format(_Entry(message="anything")) == b""


def test_daemon_formatter_full_line_utc():
    entry = _Entry(message="started", level=Level.INFO)
    out = DaemonFormatter().format(entry)
    assert out == b"2023-01-02T03:04:05Z INFO started\n"


def test_daemon_formatter_time_offset():
    tz = timezone(timedelta(hours=8))
    entry = _Entry(message="m", time=datetime(2023, 1, 2, 3, 4, 5, tzinfo=tz))
    out = DaemonFormatter().format(entry).decode()
    assert out.split(" ")[0] == "2023-01-02T03:04:05+08:00"


def test_daemon_formatter_without_timestamp_sorts_fields():
    entry = _Entry(message="m", level=Level.INFO, data={"b": 1, "a": "x"})
    out = DaemonFormatter(no_timestamp=True).format(entry).decode()
    words = out.rstrip("\n").split(" ")
    assert words[:2] == ["INFO", "m"]
    assert words[2:] == ["a=x", "b=1"]


def test_daemon_formatter_level_is_upper_case():
    entry = _Entry(message="m", level=Level.WARN)
    out = DaemonFormatter(no_timestamp=True).format(entry).decode()
    assert out.split(" ")[0] == str(Level.WARN).upper()


def test_daemon_formatter_includes_caller():
    caller = _Caller(filename="/src/app.py", lineno=42, function="run")
    entry = _Entry(message="m", caller=caller, report_caller=True, data={"z": True})
    out = DaemonFormatter(no_timestamp=True).format(entry).decode()
    assert out.rstrip("\n").split(" ") == ["INFO", "m", "/src/app.py:42", "run", "z=true"]


def test_daemon_formatter_skips_caller_when_not_reported():
    caller = _Caller(filename="/src/app.py", lineno=42, function="run")
    entry = _Entry(message="m", caller=caller, report_caller=False)
    out = DaemonFormatter(no_timestamp=True).format(entry).decode()
    assert "/src/app.py" not in out
    assert out.endswith("\n")


def test_daemon_formatter_writes_into_entry_buffer():
    buf = io.BytesIO()
    entry = _Entry(message="m", buffer=buf)
    out = DaemonFormatter(no_timestamp=True).format(entry)
    assert buf.getvalue() == out
    assert out.count(b"\n") == 1