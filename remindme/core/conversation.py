"""
RemindMe — Conversation State Machine.

UI-agnostic: gates which user actions are legal against the last
interpretation in a chat and drives the store mutations they imply.
Returns structured Transition objects; never sends messages itself.

Conversation state is a process-scoped cache: it is never persisted and
every chat starts (and restarts) as Idle.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Awaitable, Callable

from remindme.core.expansion import expand
from remindme.core.parser import InterpretError, StructuredNotification, interpret
from remindme.ports.store_port import ReminderStorePort

logger = logging.getLogger(__name__)

Interpreter = Callable[[datetime, str], Awaitable[StructuredNotification]]


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Idle:
    """No pending interpretation."""


@dataclass(frozen=True)
class Parsed:
    original_text: str
    notification: StructuredNotification


@dataclass(frozen=True)
class ParsedWithError:
    original_text: str
    error: str = ""


ConversationState = Idle | Parsed | ParsedWithError


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextReceived:
    text: str


@dataclass(frozen=True)
class Accept:
    pass


@dataclass(frozen=True)
class Repeat:
    pass


@dataclass(frozen=True)
class Cancel:
    pass


@dataclass(frozen=True)
class Delete:
    ids: tuple[int, ...]


@dataclass(frozen=True)
class Unrecognized:
    """A malformed or unknown action payload; always a no-op."""

    raw: str = ""


Action = TextReceived | Accept | Repeat | Cancel | Delete | Unrecognized


# ---------------------------------------------------------------------------
# Transition result
# ---------------------------------------------------------------------------


class Outcome(Enum):
    PARSED = "parsed"
    PARSE_FAILED = "parse_failed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    DELETED = "deleted"
    IGNORED = "ignored"


@dataclass
class Transition:
    outcome: Outcome
    state: ConversationState
    feedback: str | None = None
    notification: StructuredNotification | None = None   # PARSED / ACCEPTED
    created_ids: list[int] = field(default_factory=list)  # ACCEPTED
    error: str = ""                                       # PARSE_FAILED


FEEDBACK_ACCEPTED = "Notification accepted"
FEEDBACK_REJECTED = "Impossible to accept notification with errors"
FEEDBACK_REPEATED = "Request was repeated"
FEEDBACK_REPEAT_FAILED = "Error while parsing command"
FEEDBACK_CANCELLED = "Canceled"
FEEDBACK_DELETED = "Notification deleted"


# ---------------------------------------------------------------------------
# ConversationService
# ---------------------------------------------------------------------------


class ConversationService:
    """Total transition function over (state, action).

    Interpreter infrastructure errors and store errors propagate to the
    caller; the caller's stored state is then left as it was.
    """

    def __init__(
        self,
        store: ReminderStorePort,
        tz: tzinfo,
        interpreter: Interpreter | None = None,
    ) -> None:
        self._store = store
        self._tz = tz
        self._interpret = interpreter or self._default_interpreter

    async def _default_interpreter(self, now: datetime, text: str) -> StructuredNotification:
        return await interpret(now, text, tz_name=getattr(self._tz, "key", None))

    async def handle(
        self,
        state: ConversationState,
        action: Action,
        owner_id: int,
        now: datetime | None = None,
    ) -> Transition:
        """Compute the transition for `action` taken in `state`."""
        now = now or datetime.now(timezone.utc)

        if isinstance(action, TextReceived):
            return await self._interpret_text(action.text, now, feedback_ok=None, feedback_err=None)

        if isinstance(action, Cancel):
            return Transition(Outcome.CANCELLED, Idle(), feedback=FEEDBACK_CANCELLED)

        if isinstance(action, Delete):
            self._store.consume(list(action.ids))
            logger.info("Owner %d deleted firing records %s", owner_id, list(action.ids))
            return Transition(Outcome.DELETED, state, feedback=FEEDBACK_DELETED)

        if isinstance(action, Accept):
            if isinstance(state, Parsed):
                return self._accept(state, owner_id, now)
            if isinstance(state, ParsedWithError):
                return Transition(Outcome.REJECTED, state, feedback=FEEDBACK_REJECTED)
            return Transition(Outcome.IGNORED, state)

        if isinstance(action, Repeat):
            if isinstance(state, (Parsed, ParsedWithError)):
                return await self._interpret_text(
                    state.original_text, now,
                    feedback_ok=FEEDBACK_REPEATED,
                    feedback_err=FEEDBACK_REPEAT_FAILED,
                )
            return Transition(Outcome.IGNORED, state)

        return Transition(Outcome.IGNORED, state)

    async def _interpret_text(
        self,
        text: str,
        now: datetime,
        feedback_ok: str | None,
        feedback_err: str | None,
    ) -> Transition:
        try:
            notification = await self._interpret(now, text)
        except InterpretError as exc:
            logger.info("Could not interpret '%s': %s", text[:80], exc)
            return Transition(
                Outcome.PARSE_FAILED,
                ParsedWithError(original_text=text, error=str(exc)),
                feedback=feedback_err,
                error=str(exc),
            )
        return Transition(
            Outcome.PARSED,
            Parsed(original_text=text, notification=notification),
            feedback=feedback_ok,
            notification=notification,
        )

    def _accept(self, state: Parsed, owner_id: int, now: datetime) -> Transition:
        notification = state.notification
        firings = expand(notification, now, self._tz)
        ids = self._store.create(owner_id, notification.text, firings) if firings else []
        logger.info("Accepted '%s' for owner %d: %d record(s)", notification.text, owner_id, len(ids))
        return Transition(
            Outcome.ACCEPTED,
            Idle(),
            feedback=FEEDBACK_ACCEPTED,
            notification=notification,
            created_ids=ids,
        )


# ---------------------------------------------------------------------------
# Per-chat state map
# ---------------------------------------------------------------------------


class ConversationStore:
    """Process-scoped map chat_id -> ConversationState.

    `apply` serialises read-modify-write per chat with an asyncio.Lock;
    different chats never wait on each other.
    """

    def __init__(self) -> None:
        self._states: dict[int, ConversationState] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    def get(self, chat_id: int) -> ConversationState:
        return self._states.get(chat_id, Idle())

    def _lock_for(self, chat_id: int) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = self._locks[chat_id] = asyncio.Lock()
        return lock

    async def apply(
        self,
        chat_id: int,
        step: Callable[[ConversationState], Awaitable[Transition]],
    ) -> Transition:
        """Run `step` on the chat's current state and commit its new state.

        If `step` raises, nothing is committed.
        """
        async with self._lock_for(chat_id):
            transition = await step(self.get(chat_id))
            self._states[chat_id] = transition.state
        return transition

