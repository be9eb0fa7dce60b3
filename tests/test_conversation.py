"""Tests for remindme.core.conversation — per-chat state machine."""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from remindme.core.conversation import (
    FEEDBACK_ACCEPTED,
    FEEDBACK_CANCELLED,
    FEEDBACK_DELETED,
    FEEDBACK_REJECTED,
    FEEDBACK_REPEAT_FAILED,
    FEEDBACK_REPEATED,
    Accept,
    Cancel,
    ConversationService,
    ConversationStore,
    Delete,
    Idle,
    Outcome,
    Parsed,
    ParsedWithError,
    Repeat,
    TextReceived,
    Transition,
    Unrecognized,
)
from remindme.core.llm import LLMError
from remindme.core.parser import InterpretError, RecurrentNotification, RelativeNotification
from remindme.data.models import RecurrentFiring

OWNER = 12345

FRIDAY_NOON = RelativeNotification(text="interview", week=0, days=[5], times=["12:00"])
NO_DAYS = RecurrentNotification(text="gym", days=None, times=["19:00"])


@pytest.fixture
def store():
    mock = MagicMock()
    mock.create.return_value = [11]
    return mock


@pytest.fixture
def interpreter():
    return AsyncMock(return_value=FRIDAY_NOON)


@pytest.fixture
def service(store, tz, interpreter):
    return ConversationService(store=store, tz=tz, interpreter=interpreter)


@pytest.fixture
def now(tz):
    return datetime(2022, 7, 21, 22, 37, 1, tzinfo=tz)  # Thursday


PARSED = Parsed(original_text="interview on friday at noon", notification=FRIDAY_NOON)
PARSED_WITH_ERROR = ParsedWithError(original_text="gibberish", error="bad")


# ---------------------------------------------------------------------------
# TextReceived
# ---------------------------------------------------------------------------


class TestTextReceived:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", [Idle(), PARSED, PARSED_WITH_ERROR])
    async def test_success_enters_parsed_from_any_state(self, service, interpreter, state, now):
        t = await service.handle(state, TextReceived("interview friday noon"), OWNER, now)
        assert t.outcome is Outcome.PARSED
        assert t.state == Parsed(original_text="interview friday noon", notification=FRIDAY_NOON)
        assert t.notification == FRIDAY_NOON
        assert t.feedback is None
        interpreter.assert_awaited_once_with(now, "interview friday noon")

    @pytest.mark.asyncio
    async def test_interpret_error_enters_parsed_with_error(self, service, interpreter, now):
        interpreter.side_effect = InterpretError("not json")
        t = await service.handle(Idle(), TextReceived("blah"), OWNER, now)
        assert t.outcome is Outcome.PARSE_FAILED
        assert t.state == ParsedWithError(original_text="blah", error="not json")
        assert t.error == "not json"
        assert t.feedback is None

    @pytest.mark.asyncio
    async def test_provider_outage_propagates(self, service, interpreter, now):
        interpreter.side_effect = LLMError("timeout")
        with pytest.raises(LLMError):
            await service.handle(Idle(), TextReceived("blah"), OWNER, now)


# ---------------------------------------------------------------------------
# Accept
# ---------------------------------------------------------------------------


class TestAccept:
    @pytest.mark.asyncio
    async def test_accept_parsed_persists_and_returns_to_idle(self, service, store, tz, now):
        t = await service.handle(PARSED, Accept(), OWNER, now)
        assert t.outcome is Outcome.ACCEPTED
        assert t.state == Idle()
        assert t.feedback == FEEDBACK_ACCEPTED
        assert t.created_ids == [11]

        owner_id, text, firings = store.create.call_args.args
        assert (owner_id, text) == (OWNER, "interview")
        assert len(firings) == 1
        assert firings[0].fires_at_utc.astimezone(tz) == datetime(2022, 7, 22, 12, 0, tzinfo=tz)

    @pytest.mark.asyncio
    async def test_accept_recurrent_passes_weekday_set(self, service, store, now):
        state = Parsed("gym", RecurrentNotification(text="gym", days=[1, 3], times=["19:00"]))
        await service.handle(state, Accept(), OWNER, now)
        _, _, firings = store.create.call_args.args
        assert firings == [RecurrentFiring(hour=19, minute=0, days_of_week=(1, 3))]

    @pytest.mark.asyncio
    async def test_accept_without_firings_skips_store(self, service, store, now):
        t = await service.handle(Parsed("gym", NO_DAYS), Accept(), OWNER, now)
        assert t.outcome is Outcome.ACCEPTED
        assert t.state == Idle()
        assert t.created_ids == []
        store.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_accept_week_beyond_calendar_schedules_nothing(self, service, store, now):
        far = RelativeNotification(text="x", week=600000, days=[5], times=["12:00"])
        t = await service.handle(Parsed("far away", far), Accept(), OWNER, now)
        assert t.outcome is Outcome.ACCEPTED
        assert t.state == Idle()
        assert t.created_ids == []
        store.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_accept_with_error_is_rejected(self, service, store, now):
        t = await service.handle(PARSED_WITH_ERROR, Accept(), OWNER, now)
        assert t.outcome is Outcome.REJECTED
        assert t.state == PARSED_WITH_ERROR
        assert t.feedback == FEEDBACK_REJECTED
        store.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_accept_when_idle_is_ignored(self, service, store, now):
        t = await service.handle(Idle(), Accept(), OWNER, now)
        assert t.outcome is Outcome.IGNORED
        assert t.state == Idle()
        assert t.feedback is None
        store.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, service, store, now):
        from remindme.ports.store_port import StoreUnavailableError
        store.create.side_effect = StoreUnavailableError("disk full")
        with pytest.raises(StoreUnavailableError):
            await service.handle(PARSED, Accept(), OWNER, now)


# ---------------------------------------------------------------------------
# Repeat / Cancel / Delete / Unrecognized
# ---------------------------------------------------------------------------


class TestRepeat:
    @pytest.mark.asyncio
    async def test_repeat_reinterprets_original_text(self, service, interpreter, now):
        t = await service.handle(PARSED_WITH_ERROR, Repeat(), OWNER, now)
        interpreter.assert_awaited_once_with(now, "gibberish")
        assert t.outcome is Outcome.PARSED
        assert t.state == Parsed(original_text="gibberish", notification=FRIDAY_NOON)
        assert t.feedback == FEEDBACK_REPEATED

    @pytest.mark.asyncio
    async def test_repeat_failure_reports_error(self, service, interpreter, now):
        interpreter.side_effect = InterpretError("still bad")
        t = await service.handle(PARSED, Repeat(), OWNER, now)
        assert t.outcome is Outcome.PARSE_FAILED
        assert t.state == ParsedWithError(original_text=PARSED.original_text, error="still bad")
        assert t.feedback == FEEDBACK_REPEAT_FAILED

    @pytest.mark.asyncio
    async def test_repeat_when_idle_is_ignored(self, service, interpreter, now):
        t = await service.handle(Idle(), Repeat(), OWNER, now)
        assert t.outcome is Outcome.IGNORED
        interpreter.assert_not_awaited()


class TestCancel:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", [Idle(), PARSED, PARSED_WITH_ERROR])
    async def test_cancel_always_returns_to_idle(self, service, store, state, now):
        t = await service.handle(state, Cancel(), OWNER, now)
        assert t.outcome is Outcome.CANCELLED
        assert t.state == Idle()
        assert t.feedback == FEEDBACK_CANCELLED
        store.create.assert_not_called()
        store.consume.assert_not_called()


class TestDelete:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", [Idle(), PARSED, PARSED_WITH_ERROR])
    async def test_delete_consumes_and_keeps_state(self, service, store, state, now):
        t = await service.handle(state, Delete((4, 5, 6)), OWNER, now)
        store.consume.assert_called_once_with([4, 5, 6])
        assert t.outcome is Outcome.DELETED
        assert t.state == state
        assert t.feedback == FEEDBACK_DELETED


class TestUnrecognized:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", [Idle(), PARSED, PARSED_WITH_ERROR])
    async def test_unknown_action_is_noop(self, service, store, interpreter, state, now):
        t = await service.handle(state, Unrecognized("garbage"), OWNER, now)
        assert t.outcome is Outcome.IGNORED
        assert t.state == state
        assert t.feedback is None
        store.create.assert_not_called()
        store.consume.assert_not_called()
        interpreter.assert_not_awaited()


# ---------------------------------------------------------------------------
# ConversationStore
# ---------------------------------------------------------------------------


class TestConversationStore:
    def test_unknown_chat_is_idle(self):
        assert ConversationStore().get(1) == Idle()

    @pytest.mark.asyncio
    async def test_apply_commits_new_state(self):
        conversations = ConversationStore()

        async def step(state):
            return Transition(Outcome.PARSED, PARSED)

        await conversations.apply(1, step)
        assert conversations.get(1) == PARSED
        assert conversations.get(2) == Idle()

    @pytest.mark.asyncio
    async def test_failed_step_leaves_state_unchanged(self):
        conversations = ConversationStore()

        async def parse(state):
            return Transition(Outcome.PARSED, PARSED)

        async def boom(state):
            raise LLMError("down")

        await conversations.apply(1, parse)
        with pytest.raises(LLMError):
            await conversations.apply(1, boom)
        assert conversations.get(1) == PARSED

    @pytest.mark.asyncio
    async def test_same_chat_steps_are_serialised(self):
        conversations = ConversationStore()
        seen: list[object] = []

        async def step(state):
            seen.append(state)
            await asyncio.sleep(0)
            if isinstance(state, Idle):
                return Transition(Outcome.PARSED, PARSED)
            return Transition(Outcome.ACCEPTED, Idle())

        await asyncio.gather(conversations.apply(1, step), conversations.apply(1, step))
        assert seen == [Idle(), PARSED]
        assert conversations.get(1) == Idle()
