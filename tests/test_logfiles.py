import os
import re
import sys

import pytest

from mieru import logfiles


@pytest.fixture
def log_dir(tmp_path, monkeypatch):
    target = tmp_path / "cache" / "mieru"
    monkeypatch.setattr(logfiles, "_cached_client_log_dir", str(target))
    return target


def test_user_cache_dir_uses_xdg_on_linux(tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))
    assert logfiles.user_cache_dir() == str(tmp_path)


def test_user_cache_dir_falls_back_to_home(tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    monkeypatch.delenv("XDG_CACHE_HOME", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    assert logfiles.user_cache_dir() == os.path.join(str(tmp_path), ".cache")


def test_user_cache_dir_without_home_raises(monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    monkeypatch.delenv("XDG_CACHE_HOME", raising=False)
    monkeypatch.delenv("HOME", raising=False)
    with pytest.raises(OSError):
        logfiles.user_cache_dir()


def test_user_cache_dir_on_darwin(tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "platform", "darwin")
    monkeypatch.setenv("HOME", str(tmp_path))
    assert logfiles.user_cache_dir() == os.path.join(str(tmp_path), "Library", "Caches")


def test_client_log_dir_is_created_under_cache(tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))
    monkeypatch.setattr(logfiles, "_cached_client_log_dir", None)
    directory = logfiles.client_log_dir()
    assert directory == os.path.join(str(tmp_path), "mieru")
    assert os.path.isdir(directory)


def test_new_client_log_file_name_and_append(log_dir):
    with logfiles.new_client_log_file() as f:
        f.write("first\n")
        path = f.name
    name = os.path.basename(path)
    assert re.fullmatch(rf"\d{{8}}_\d{{4}}_{os.getpid()}\.log", name)
    assert os.path.dirname(path) == str(log_dir)
    with logfiles.new_client_log_file() as f:
        f.write("second\n")
    with open(path, encoding="utf-8") as f:
        assert f.read() == "first\nsecond\n"


def _log_files_in(directory):
    return sorted(
        name
        for name in os.listdir(directory)
        if name.endswith(".log") and os.path.isfile(os.path.join(directory, name))
    )


def test_remove_old_client_log_files_keeps_newest(log_dir):
    log_dir.mkdir(parents=True)
    total = logfiles.MAX_CLIENT_LOG_FILES + 2
    names = [f"20230101_{i:04d}_1.log" for i in range(total)]
    for name in names:
        (log_dir / name).write_text("x")
    (log_dir / "notes.txt").write_text("keep")
    (log_dir / "dir.log").mkdir()

    logfiles.remove_old_client_log_files()

    directory = logfiles.client_log_dir()
    assert _log_files_in(directory) == names[2:]
    assert os.path.exists(os.path.join(directory, "notes.txt"))
    assert os.path.isdir(os.path.join(directory, "dir.log"))


def test_remove_old_client_log_files_under_limit_keeps_all(log_dir):
    log_dir.mkdir(parents=True)
    names = [f"a{i}.log" for i in range(3)]
    for name in names:
        (log_dir / name).write_text("x")
    logfiles.remove_old_client_log_files()
    assert sorted(os.listdir(logfiles.client_log_dir())) == names