"""Store port — abstract interface for the due-record store.

Core modules depend on this protocol, never on a specific database.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence

from remindme.data.models import Firing, FiringRecord


class StoreUnavailableError(Exception):
    """Raised when the store cannot be reached; the caller may retry."""


class ReminderStorePort(Protocol):
    """Abstract due-record store used by core modules."""

    def create(
        self, owner_id: int, text: str, firings: Sequence[Firing]
    ) -> list[int]: ...

    def due_at(self, now: datetime) -> list[FiringRecord]: ...

    def consume(self, ids: Sequence[int]) -> None: ...
