"""
RemindMe — Data Models.

Firing plans are what Time-Expansion produces from a structured notification;
firing records are the durable rows the store keeps until they are consumed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from enum import Enum


class RecordKind(str, Enum):
    ABSOLUTE = "absolute"
    RECURRENT = "recurrent"


@dataclass(frozen=True)
class AbsoluteFiring:
    """A single concrete instant, always timezone-aware UTC."""

    fires_at_utc: datetime


@dataclass(frozen=True)
class RecurrentFiring:
    """A weekly time of day in the civil calendar.

    Carries the whole weekday set; the store writes one row per weekday.
    """

    hour: int
    minute: int
    days_of_week: tuple[int, ...]   # ISO weekdays, Monday = 1


Firing = AbsoluteFiring | RecurrentFiring


@dataclass
class FiringRecord:
    """A durable delivery obligation.

    Absolute rows set fires_at_utc only; recurrent rows set
    day_of_week/hour/minute only.
    """

    id: int
    kind: RecordKind
    owner_id: int
    text: str
    fires_at_utc: datetime | None = None
    day_of_week: int | None = None   # 1..7
    hour: int | None = None          # 0..23
    minute: int | None = None        # 0..59
    is_consumed: bool = False

    def describe(self, tz: tzinfo = timezone.utc) -> str:
        """Short human-readable schedule, e.g. '#3 every Mon 09:30'."""
        if self.kind is RecordKind.ABSOLUTE and self.fires_at_utc is not None:
            return f"#{self.id} {self.fires_at_utc.astimezone(tz):%d.%m.%Y %H:%M}"
        day = _WEEKDAY_NAMES.get(self.day_of_week or 0, "?")
        return f"#{self.id} every {day} {self.hour:02d}:{self.minute:02d}"


_WEEKDAY_NAMES = {
    1: "Mon", 2: "Tue", 3: "Wed", 4: "Thu", 5: "Fri", 6: "Sat", 7: "Sun",
}
