"""Time expansion — pure business logic.

Turns a structured notification plus "now" into the firing plans the store
persists. Day/time composition happens in the civil calendar (the
configured timezone); absolute instants come out normalised to UTC.
Weekdays are ISO weekdays (Monday = 1).

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo

from remindme.core.parser import (
    AbsoluteNotification,
    RecurrentNotification,
    RelativeNotification,
    StructuredNotification,
    TimeOfDay,
)
from remindme.data.models import AbsoluteFiring, Firing, RecurrentFiring

logger = logging.getLogger(__name__)


def effective_week_offset(week: int, days: list[int], current_dow: int) -> int:
    """Week offset actually used for a relative notification.

    "This week" with a day that is today or already past rolls to next week.
    """
    if week == 0 and any(day <= current_dow for day in days):
        return 1
    return week


def _compose(day: date, slot: TimeOfDay, tz: tzinfo) -> datetime | None:
    """Local date + time of day as a UTC instant, or None if it does not exist."""
    try:
        local = datetime.combine(day, time(slot.hours, slot.minutes), tzinfo=tz)
        return local.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def _shift(day: date, **delta: int) -> date | None:
    """`day` moved by a timedelta, or None past the calendar's range."""
    try:
        return day + timedelta(**delta)
    except OverflowError:
        return None


def _expand_relative(
    notification: RelativeNotification, now: datetime, tz: tzinfo,
) -> list[Firing]:
    local_now = now.astimezone(tz)
    current_dow = local_now.isoweekday()
    week = effective_week_offset(notification.week, notification.days, current_dow)
    monday = _shift(local_now.date(), days=1 - current_dow, weeks=week)

    firings: list[Firing] = []
    dropped = 0
    for day in notification.days:
        target = _shift(monday, days=day - 1) if monday is not None else None
        for slot in notification.times:
            instant = _compose(target, slot, tz) if target is not None else None
            if instant is None:
                dropped += 1
                continue
            firings.append(AbsoluteFiring(fires_at_utc=instant))

    if dropped:
        logger.warning(
            "Dropped %d invalid day/time pair(s) from '%s' (times: %s)",
            dropped, notification.text, ", ".join(str(t) for t in notification.times),
        )
    return firings


def _expand_recurrent(notification: RecurrentNotification) -> list[Firing]:
    if not notification.days:
        logger.info("Recurrent notification '%s' has no weekdays, nothing to schedule", notification.text)
        return []

    days = tuple(sorted(set(notification.days)))
    firings: list[Firing] = []
    for slot in notification.times:
        if not slot.is_valid:
            logger.warning("Dropped invalid time %s from '%s'", slot, notification.text)
            continue
        firings.append(RecurrentFiring(hour=slot.hours, minute=slot.minutes, days_of_week=days))
    return firings


def expand(
    notification: StructuredNotification, now: datetime, tz: tzinfo,
) -> list[Firing]:
    """Compute every firing plan implied by `notification` at `now`.

    Deterministic for a given (notification, now, tz); output follows the
    notification's listing order (days outer, times inner for relative).
    Never raises for a validated notification.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    if isinstance(notification, AbsoluteNotification):
        return [AbsoluteFiring(fires_at_utc=t.astimezone(timezone.utc)) for t in notification.times]
    if isinstance(notification, RelativeNotification):
        return _expand_relative(notification, now, tz)
    if isinstance(notification, RecurrentNotification):
        return _expand_recurrent(notification)
    raise TypeError(f"Unsupported notification: {type(notification).__name__}")
