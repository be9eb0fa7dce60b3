"""
RemindMe — Firing Loop.

Every few seconds: ask the store which records are due, deliver each
record's text to its owner, then consume the records that were delivered.

Delivery is at-least-once: a record is consumed only after its delivery
succeeded, so a crash in between re-delivers it on the next cycle.

This module is provider-agnostic: it depends on the store and
NotificationPort protocols, not on specific implementations.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from remindme.ports.notification_port import NotificationPort
    from remindme.ports.store_port import ReminderStorePort

logger = logging.getLogger(__name__)


async def run_firing_cycle(
    store: ReminderStorePort,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> list[int]:
    """Deliver everything due at `now` and return the consumed ids.

    A failed delivery is logged and its record stays pending for the next
    cycle; the rest of the batch still proceeds. Store errors propagate.
    """
    now = now or datetime.now(timezone.utc)
    records = store.due_at(now)
    if not records:
        return []

    delivered: list[int] = []
    for record in records:
        try:
            await notifier.deliver(record.owner_id, record.text)
        except Exception as exc:
            logger.error(
                "Failed to deliver reminder #%d to %d: %s",
                record.id, record.owner_id, exc,
            )
            continue
        logger.info("Reminder #%d delivered to %d", record.id, record.owner_id)
        delivered.append(record.id)

    store.consume(delivered)
    return delivered


async def fire_due_reminders(
    store: ReminderStorePort,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> None:
    """One scheduled tick. Never raises, so the repeating job keeps running."""
    try:
        await run_firing_cycle(store, notifier, now)
    except Exception as exc:
        logger.error("Error in firing loop: %s", exc)
