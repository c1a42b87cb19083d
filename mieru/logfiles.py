"""Client log files kept in the user's cache directory."""

from __future__ import annotations

import os
import sys
from datetime import datetime
from typing import TextIO

MAX_CLIENT_LOG_FILES = 25

_cached_client_log_dir: str | None = None


def user_cache_dir() -> str:
    """Return the per-user cache directory of this platform."""
    if sys.platform.startswith("win"):
        local = os.environ.get("LocalAppData") or os.environ.get("LOCALAPPDATA")
        if not local:
            raise OSError("%LocalAppData% is not defined")
        return local
    if sys.platform == "darwin":
        home = os.environ.get("HOME")
        if not home:
            raise OSError("$HOME is not defined")
        return os.path.join(home, "Library", "Caches")
    xdg = os.environ.get("XDG_CACHE_HOME")
    if xdg:
        if not os.path.isabs(xdg):
            raise OSError("path in $XDG_CACHE_HOME is relative")
        return xdg
    home = os.environ.get("HOME")
    if not home:
        raise OSError("neither $XDG_CACHE_HOME nor $HOME are defined")
    return os.path.join(home, ".cache")


def client_log_dir() -> str:
    """Return the client log directory, creating it if needed."""
    global _cached_client_log_dir
    if _cached_client_log_dir is None:
        _cached_client_log_dir = os.path.join(user_cache_dir(), "mieru")
    os.makedirs(_cached_client_log_dir, mode=0o755, exist_ok=True)
    return _cached_client_log_dir


def new_client_log_file() -> TextIO:
    """Open a new client log file for appending."""
    directory = client_log_dir()
    time_str = datetime.now().strftime("%Y%m%d_%H%M")
    path = os.path.join(directory, f"{time_str}_{os.getpid()}.log")
    return open(path, "a", encoding="utf-8")


def remove_old_client_log_files() -> None:
    """Delete the oldest client log files beyond the retention limit."""
    directory = client_log_dir()
    with os.scandir(directory) as entries:
        log_files = sorted(
            entry.name
            for entry in entries
            if not entry.is_dir() and entry.name.endswith(".log")
        )
    excess = len(log_files) - MAX_CLIENT_LOG_FILES
    for name in log_files[:max(excess, 0)]:
        os.remove(os.path.join(directory, name))