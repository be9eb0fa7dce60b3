"""Shared test fixtures and configuration.

Sets up fake environment variables so remindme.config doesn't sys.exit(),
and provides common fixtures like a temp DB.
"""

import os

# Patch env vars BEFORE any remindme imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "Asia/Jerusalem")

from zoneinfo import ZoneInfo

import pytest

TZ_NAME = "Asia/Jerusalem"


@pytest.fixture
def tz():
    """The civil-calendar timezone used throughout the tests."""
    return ZoneInfo(TZ_NAME)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_reminders.db")


@pytest.fixture
def reminder_db(tmp_db_path):
    """Return a ReminderDB instance backed by a temp file."""
    from remindme.data.db import ReminderDB
    return ReminderDB(db_path=tmp_db_path, tz_name=TZ_NAME)
