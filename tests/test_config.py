"""Tests for remindme.config — Settings validation."""

import pytest
from pydantic import ValidationError

from remindme.config import Settings


def _settings(**overrides):
    values = {"TELEGRAM_BOT_TOKEN": "t", "LLM_API_KEY": "k"}
    values.update(overrides)
    return Settings(**values)


def test_defaults():
    s = _settings()
    assert s.LLM_PROVIDER == "openai"
    assert s.TIMEZONE == "Asia/Jerusalem"
    assert s.FIRING_INTERVAL_SECONDS == 5.0
    assert s.ALLOWED_USER_IDS == []


def test_allowed_user_ids_from_comma_string():
    assert _settings(ALLOWED_USER_IDS=" 1, 22 ,333,").ALLOWED_USER_IDS == [1, 22, 333]


def test_empty_allowed_user_ids():
    assert _settings(ALLOWED_USER_IDS="").ALLOWED_USER_IDS == []


def test_seconds_parsed_from_string():
    assert _settings(FIRING_INTERVAL_SECONDS="2.5").FIRING_INTERVAL_SECONDS == 2.5


@pytest.mark.parametrize("value", ["0", "-1"])
def test_non_positive_interval_rejected(value):
    with pytest.raises(ValidationError):
        _settings(LLM_TIMEOUT_SECONDS=value)


def test_unknown_timezone_rejected():
    with pytest.raises(ValidationError):
        _settings(TIMEZONE="Mars/Olympus_Mons")


def test_load_settings_exits_without_token(monkeypatch):
    from remindme.config import _load_settings

    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "your-token-here")
    with pytest.raises(SystemExit):
        _load_settings()


def test_load_settings_reads_environment(monkeypatch):
    from remindme.config import _load_settings

    monkeypatch.setenv("FIRING_INTERVAL_SECONDS", "1")
    monkeypatch.setenv("ALLOWED_USER_IDS", "7,8")
    s = _load_settings()
    assert s.FIRING_INTERVAL_SECONDS == 1.0
    assert s.ALLOWED_USER_IDS == [7, 8]
