"""
RemindMe — Centralized configuration.

Every Settings field is read from the environment variable of the same
name (a .env file at the project root is loaded first). Missing secrets
or unparseable values stop the process before the bot starts.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

# Must be present and not left at a "your-..." placeholder
_REQUIRED = ("TELEGRAM_BOT_TOKEN", "LLM_API_KEY")


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    TELEGRAM_BOT_TOKEN: str

    # Interpreter: openai | anthropic | gemini
    LLM_PROVIDER: str = "openai"
    LLM_MODEL: str = ""          # empty → provider default
    LLM_API_KEY: str
    LLM_TIMEOUT_SECONDS: float = 30.0

    DATABASE_PATH: str = "data/reminders.db"

    # Only these Telegram user ids get answers
    ALLOWED_USER_IDS: list[int] = []

    # Civil calendar for weekdays and times of day
    TIMEZONE: str = "Asia/Jerusalem"

    FIRING_INTERVAL_SECONDS: float = 5.0

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("LLM_TIMEOUT_SECONDS", "FIRING_INTERVAL_SECONDS", mode="before")
    @classmethod
    def parse_seconds(cls, v: str | float) -> float:
        value = float(v)
        if value <= 0:
            raise ValueError("interval must be positive")
        return value

    @field_validator("TIMEZONE")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {v!r}") from exc
        return v


def _load_settings() -> Settings:
    """Build Settings from the environment or exit with a readable error."""
    for name in _REQUIRED:
        value = os.getenv(name, "")
        if not value or value.startswith("your-"):
            print(f"ERROR: {name} is missing or not set in .env", file=sys.stderr)
            sys.exit(1)

    values = {name: os.environ[name] for name in Settings.model_fields if name in os.environ}
    try:
        return Settings(**values)
    except ValidationError as exc:
        print(f"ERROR: invalid configuration:\n{exc}", file=sys.stderr)
        sys.exit(1)


# Singleton, imported everywhere as:
#   from remindme.config import settings
settings = _load_settings()
