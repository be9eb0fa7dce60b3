"""
RemindMe — LLM Interpreter.

Brain of the Capture System: converts a free-text reminder (any language)
into one structured notification using the configured LLM provider.

Three notification kinds exist:
- absolute: one or more fully specified instants
- relative: weekdays x times of day in a week relative to now
- recurrent: weekdays x times of day, every week
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone, tzinfo
from typing import Literal
from zoneinfo import ZoneInfo

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_serializer,
    model_validator,
)

from remindme.core.llm import complete

logger = logging.getLogger(__name__)

_INSTANT_FORMATS = ("%d.%m.%Y %H:%M:%S", "%d.%m.%Y %H:%M")

_WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


class InterpretError(Exception):
    """Raised when the interpreter's answer cannot be turned into a notification."""


# ---------------------------------------------------------------------------
# Shared JSON contract — produced by the LLM, consumed by expansion
# ---------------------------------------------------------------------------


class TimeOfDay(BaseModel):
    """A wall-clock time written as "HH:MM".

    Range is not enforced here: expansion drops times that cannot be
    applied to a date.
    """

    model_config = ConfigDict(frozen=True)

    hours: int = Field(ge=0)
    minutes: int = Field(ge=0)

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, value: object) -> object:
        if isinstance(value, str):
            parts = value.strip().split(":")
            if len(parts) != 2:
                raise ValueError(f"expected HH:MM, got {value!r}")
            return {"hours": int(parts[0]), "minutes": int(parts[1])}
        return value

    @model_serializer
    def _to_string(self) -> str:
        return str(self)

    @property
    def is_valid(self) -> bool:
        return self.hours <= 23 and self.minutes <= 59

    def __str__(self) -> str:
        return f"{self.hours:02d}:{self.minutes:02d}"


def _validate_days(days: list[int]) -> list[int]:
    """Reject non-ISO weekdays and drop duplicates, keeping first-seen order."""
    seen: list[int] = []
    for day in days:
        if not 1 <= day <= 7:
            raise ValueError(f"day of week must be 1..7, got {day}")
        if day not in seen:
            seen.append(day)
    return seen


class AbsoluteNotification(BaseModel):
    """Fires once at each listed instant.

    JSON example:
    {"kind": "absolute", "text": "interview", "times": ["22.07.2022 03:37:01"]}

    Instants are read in the configured timezone (or the one passed as
    validation context under "tz") and stored as UTC.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["absolute"] = "absolute"
    text: str
    times: list[datetime]

    @field_validator("times", mode="before")
    @classmethod
    def _parse_instants(cls, value: object, info: ValidationInfo) -> object:
        if not isinstance(value, list):
            return value
        tz = _context_tz(info)
        return [_parse_instant(item, tz) if isinstance(item, str) else item for item in value]

    @field_validator("times")
    @classmethod
    def _to_utc(cls, value: list[datetime], info: ValidationInfo) -> list[datetime]:
        tz = _context_tz(info)
        instants = []
        for t in value:
            try:
                instant = (t if t.tzinfo is not None else t.replace(tzinfo=tz)).astimezone(timezone.utc)
                # must also render back in local time
                instant.astimezone(tz)
            except OverflowError as exc:
                raise ValueError(f"instant out of range: {t.isoformat()}") from exc
            instants.append(instant)
        return instants


class RelativeNotification(BaseModel):
    """Fires on the listed weekdays/times of a week chosen relative to now.

    JSON example:
    {"kind": "relative", "text": "call Alex", "week": 0, "days": [6], "times": ["12:00"]}
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["relative"] = "relative"
    text: str
    week: int = Field(default=0, ge=0)
    days: list[int]
    times: list[TimeOfDay]

    @field_validator("days")
    @classmethod
    def _check_days(cls, value: list[int]) -> list[int]:
        return _validate_days(value)


class RecurrentNotification(BaseModel):
    """Fires every week on the listed weekdays/times.

    JSON example:
    {"kind": "recurrent", "text": "gym", "days": [1, 3], "times": ["19:00"]}

    Without days it never fires.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["recurrent"] = "recurrent"
    text: str
    days: list[int] | None = None
    times: list[TimeOfDay]

    @field_validator("days")
    @classmethod
    def _check_days(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        return _validate_days(value)


StructuredNotification = AbsoluteNotification | RelativeNotification | RecurrentNotification

_KIND_MODELS: dict[str, type[BaseModel]] = {
    "absolute": AbsoluteNotification,
    "abs": AbsoluteNotification,
    "relative": RelativeNotification,
    "rel": RelativeNotification,
    "recurrent": RecurrentNotification,
    "rec": RecurrentNotification,
}


def _context_tz(info: ValidationInfo) -> tzinfo:
    if info.context and info.context.get("tz") is not None:
        return info.context["tz"]
    return resolve_timezone()


def _parse_instant(raw: str, tz: tzinfo) -> datetime:
    """Parse "DD.MM.YYYY HH:MM[:SS]" in `tz`, falling back to ISO-8601."""
    raw = raw.strip()
    for fmt in _INSTANT_FORMATS:
        try:
            return datetime.strptime(raw, fmt).replace(tzinfo=tz)
        except ValueError:
            continue
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def resolve_timezone(tz_name: str | None = None) -> tzinfo:
    """Return the civil-calendar timezone (configured one by default)."""
    if tz_name is None:
        from remindme.config import settings
        tz_name = settings.TIMEZONE
    return ZoneInfo(tz_name)


# ---------------------------------------------------------------------------
# System prompt for LLM
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You convert reminder requests into JSON notifications for a reminder bot.
Do not comment on the request. Output exactly one JSON object and nothing else.

The user message starts with the current local time, then the request.
Requests can be written in any language; keep "text" in the user's language.

There are three kinds of notification:

**absolute** — one or more exact moments, local time, format "DD.MM.YYYY HH:MM:SS":
{"kind": "absolute", "text": "string", "times": ["22.07.2022 03:37:01"]}

**relative** — weekdays of a week counted from the current one
(week 0 = this week, 1 = next week, ...). Days are ISO weekdays (Monday = 1,
Sunday = 7), times are "HH:MM" in 24-hour format:
{"kind": "relative", "text": "string", "week": 0, "days": [5], "times": ["12:00"]}

**recurrent** — repeats every week on the given weekdays and times:
{"kind": "recurrent", "text": "string", "days": [1, 3], "times": ["19:00"]}

Examples:

Current time is "21.07.2022 22:37:01, Thursday"
Remind me about the interview in five hours
Answer: {"kind": "absolute", "text": "the interview", "times": ["22.07.2022 03:37:01"]}

Current time is "21.07.2022 22:37:01, Thursday"
Remind me about the interview next friday at 12:00
Answer: {"kind": "relative", "text": "the interview", "week": 1, "days": [5], "times": ["12:00"]}

Current time is "24.01.2023 14:00:00, Tuesday"
Remind me to call Alex on Saturday afternoon
Answer: {"kind": "relative", "text": "call Alex", "week": 0, "days": [6], "times": ["12:00"]}

Current time is "25.02.2023 18:00:00, Saturday"
In two and in three hours remind me to check the stove
Answer: {"kind": "absolute", "text": "check the stove", "times": ["25.02.2023 20:00:00", "25.02.2023 21:00:00"]}

Current time is "26.01.2023 14:40:00, Thursday"
Every Monday and Wednesday at 7 pm remind me to go to the gym
Answer: {"kind": "recurrent", "text": "go to the gym", "days": [1, 3], "times": ["19:00"]}
"""


# ---------------------------------------------------------------------------
# Response cleaning
# ---------------------------------------------------------------------------


def _clean_llm_response(raw_text: str) -> str:
    """Remove markdown code block delimiters and a leading "Answer:" label."""
    cleaned_text = raw_text.strip()
    if cleaned_text.startswith("```json"):
        cleaned_text = cleaned_text.removeprefix("```json")
    elif cleaned_text.startswith("```"):
        cleaned_text = cleaned_text.removeprefix("```")
    if cleaned_text.endswith("```"):
        cleaned_text = cleaned_text.removesuffix("```")
    cleaned_text = cleaned_text.strip()
    if cleaned_text.lower().startswith("answer:"):
        cleaned_text = cleaned_text[len("answer:"):]
    return cleaned_text.strip()


# ---------------------------------------------------------------------------
# Parser functions
# ---------------------------------------------------------------------------


def build_user_message(now: datetime, text: str, tz: tzinfo) -> str:
    """Prefix the request with the current local time, e.g.

    Current time is "21.07.2022 22:37:01, Thursday"
    """
    local_now = now.astimezone(tz)
    return f'Current time is "{local_now:%d.%m.%Y %H:%M:%S}, {local_now:%A}"\n{text}\n'


def parse_notification(raw_text: str, tz: tzinfo) -> StructuredNotification:
    """Turn the LLM's raw answer into a typed notification.

    Raises InterpretError when the answer is not a valid notification.
    """
    cleaned = _clean_llm_response(raw_text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse LLM response as JSON: %s, raw: '%s'", exc, raw_text)
        raise InterpretError("The answer was not valid JSON") from exc

    if isinstance(data, list) and len(data) == 1:
        data = data[0]
    if not isinstance(data, dict):
        logger.warning("LLM returned unexpected type: %s", type(data).__name__)
        raise InterpretError("The answer was not a single notification")

    kind = str(data.get("kind", "")).lower()
    model = _KIND_MODELS.get(kind)
    if model is None:
        logger.warning("LLM returned unknown notification kind: '%s'", kind)
        raise InterpretError(f"Unknown notification kind: {kind!r}")

    payload = {k: v for k, v in data.items() if k != "kind"}
    try:
        notification = model.model_validate(payload, context={"tz": tz})
    except ValidationError as exc:
        logger.warning("LLM notification failed validation: %s", exc)
        raise InterpretError(f"Invalid {kind} notification: {exc.error_count()} error(s)") from exc

    logger.info("Parsed %s notification: %s", notification.kind, notification.text)
    return notification


async def interpret(
    now: datetime, text: str, tz_name: str | None = None,
) -> StructuredNotification:
    """Interpret a free-text reminder relative to `now`.

    Raises InterpretError when the text cannot be converted, and lets
    LLMError through when the provider itself is unavailable.
    """
    tz = resolve_timezone(tz_name)
    raw_text = await complete(
        system=_SYSTEM_PROMPT,
        user_message=build_user_message(now, text, tz),
        max_tokens=512,
    )
    logger.debug("LLM raw response: %s", raw_text)
    return parse_notification(raw_text, tz)


def describe_notification(notification: StructuredNotification, tz: tzinfo) -> str:
    """Human-readable rendering shown before the user accepts."""
    lines = [f"📌 {notification.text}"]
    if isinstance(notification, AbsoluteNotification):
        for instant in notification.times:
            lines.append(f"• {instant.astimezone(tz):%d.%m.%Y %H:%M}")
    elif isinstance(notification, RelativeNotification):
        when = "this week" if notification.week == 0 else f"in {notification.week} week(s)"
        days = ", ".join(_WEEKDAY_NAMES[d - 1] for d in notification.days)
        times = ", ".join(str(t) for t in notification.times)
        lines.append(f"• {when}: {days} at {times}")
    elif isinstance(notification, RecurrentNotification):
        times = ", ".join(str(t) for t in notification.times)
        if notification.days:
            days = ", ".join(_WEEKDAY_NAMES[d - 1] for d in notification.days)
            lines.append(f"• every {days} at {times}")
        else:
            lines.append(f"• no weekdays given ({times}), nothing will be scheduled")
    return "\n".join(lines)
