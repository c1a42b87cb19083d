import pytest

from mieru.levels import ALL_LEVELS, Level, parse_level


@pytest.mark.parametrize(
    "text, expected",
    [
        ("panic", Level.PANIC),
        ("fatal", Level.FATAL),
        ("error", Level.ERROR),
        ("warn", Level.WARN),
        ("warning", Level.WARN),
        ("info", Level.INFO),
        ("debug", Level.DEBUG),
        ("trace", Level.TRACE),
    ],
)
def test_parse_level_known_names(text, expected):
    assert parse_level(text) is expected


def test_parse_level_is_case_insensitive():
    assert parse_level("DEBUG") is Level.DEBUG
    assert parse_level("WaRn") is Level.WARN


def test_parse_level_accepts_bytes():
    assert parse_level(b"info") is Level.INFO


def test_parse_level_rejects_unknown():
    with pytest.raises(ValueError, match='not a valid logrus Level: "verbose"'):
        parse_level("verbose")


def test_warn_level_name_is_warning():
    assert str(Level.WARN) == "warning"
    assert Level.WARN.marshal_text() == b"warning"


@pytest.mark.parametrize("level", ALL_LEVELS)
def test_marshal_round_trip(level):
    assert parse_level(level.marshal_text()) is level
    assert str(level) == level.marshal_text().decode()


def test_levels_are_ordered_by_severity():
    names = ["panic", "fatal", "error", "warn", "info", "debug", "trace"]
    parsed = [parse_level(name) for name in names]
    assert parsed == sorted(parsed)
    assert parsed == ALL_LEVELS
    assert parse_level("panic") < parse_level("fatal") < parse_level("error")
    assert parse_level("warn") < parse_level("info") < parse_level("trace")


def test_invalid_numeric_level_raises():
    with pytest.raises(ValueError):
        Level(len(ALL_LEVELS))