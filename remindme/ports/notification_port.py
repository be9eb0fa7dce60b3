"""Delivery port — how the firing loop reaches a reminder's owner.

The firing loop consumes a record only after `deliver` returned, so an
implementation must raise DeliveryError (or let any error through) when
the owner did not get the text.
"""

from __future__ import annotations

from typing import Protocol


class DeliveryError(Exception):
    """Raised when a reminder could not be handed to its owner."""


class NotificationPort(Protocol):
    """Sends one due reminder to its owner's chat."""

    async def deliver(self, owner_id: int, text: str) -> None: ...
