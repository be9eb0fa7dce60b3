"""
RemindMe — Telegram Bot.

Telegram is the only user interface. Free text becomes a proposed
reminder with Accept / Repeat / Cancel buttons; accepted reminders get a
"Cancel" button that deletes the created records again. A repeating job
delivers due reminders.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine, Iterable
from zoneinfo import ZoneInfo

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from remindme.config import settings
from remindme.core.conversation import (
    Accept,
    Action,
    Cancel,
    ConversationService,
    ConversationStore,
    Delete,
    Outcome,
    Repeat,
    TextReceived,
    Transition,
    Unrecognized,
)
from remindme.core.llm import LLMError
from remindme.core.parser import describe_notification
from remindme.ports.store_port import StoreUnavailableError

if TYPE_CHECKING:
    from datetime import tzinfo

    from remindme.data.db import ReminderDB
    from remindme.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores updates from unauthorized users.

    Does NOT send any response to strangers: the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Callback data codec
# ---------------------------------------------------------------------------

CALLBACK_ACCEPT = "accept"
CALLBACK_REPEAT = "repeat"
CALLBACK_CANCEL = "cancel"
_DELETE_PREFIX = "delete:"

# Telegram rejects callback_data longer than this
MAX_CALLBACK_BYTES = 64

# Upper bound on ids one delete button may carry
MAX_DELETE_IDS = 256

CALLBACK_FAILED_TEXT = "Something went wrong. Please try again."


def encode_ids(ids: Iterable[int]) -> str:
    """Comma-separated ids with consecutive runs written as "a-b".

    [4, 5, 6, 9] -> "4-6,9"
    """
    ordered = sorted(set(ids))
    parts: list[str] = []
    i = 0
    while i < len(ordered):
        start = end = ordered[i]
        while i + 1 < len(ordered) and ordered[i + 1] == end + 1:
            i += 1
            end = ordered[i]
        parts.append(str(start) if start == end else f"{start}-{end}")
        i += 1
    return ",".join(parts)


def decode_ids(raw: str) -> tuple[int, ...]:
    """Inverse of encode_ids.

    Raises ValueError on malformed input or more than MAX_DELETE_IDS ids.
    """
    ids: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if "-" in part:
            lo, hi = (int(p) for p in part.split("-", 1))
            if lo < 0 or hi < lo:
                raise ValueError(f"bad id range: {part!r}")
            if len(ids) + hi - lo + 1 > MAX_DELETE_IDS:
                raise ValueError(f"too many ids: {raw!r}")
            ids.extend(range(lo, hi + 1))
        else:
            value = int(part)
            if value < 0:
                raise ValueError(f"bad id: {part!r}")
            if len(ids) >= MAX_DELETE_IDS:
                raise ValueError(f"too many ids: {raw!r}")
            ids.append(value)
    return tuple(ids)


def encode_delete(ids: Iterable[int]) -> str | None:
    """callback_data for deleting `ids`, or None if it would not fit."""
    unique = set(ids)
    if len(unique) > MAX_DELETE_IDS:
        return None
    data = _DELETE_PREFIX + encode_ids(unique)
    if len(data.encode("utf-8")) > MAX_CALLBACK_BYTES:
        return None
    return data


def parse_callback_data(data: str | None) -> Action:
    """Map raw callback_data to an action; anything malformed is Unrecognized."""
    if not data:
        return Unrecognized()
    if data == CALLBACK_ACCEPT:
        return Accept()
    if data == CALLBACK_REPEAT:
        return Repeat()
    if data == CALLBACK_CANCEL:
        return Cancel()
    if data.startswith(_DELETE_PREFIX):
        try:
            ids = decode_ids(data.removeprefix(_DELETE_PREFIX))
        except ValueError:
            logger.warning("Malformed delete callback: %r", data)
            return Unrecognized(raw=data)
        return Delete(ids=ids)
    return Unrecognized(raw=data)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _prompt_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("Accept", callback_data=CALLBACK_ACCEPT)],
        [InlineKeyboardButton("Repeat", callback_data=CALLBACK_REPEAT)],
        [InlineKeyboardButton("Cancel", callback_data=CALLBACK_CANCEL)],
    ])


def _undo_keyboard(ids: list[int]) -> InlineKeyboardMarkup | None:
    if not ids:
        return None
    data = encode_delete(ids)
    if data is None:
        logger.warning("Too many ids for an undo button (%d), omitting it", len(ids))
        return None
    return InlineKeyboardMarkup([[InlineKeyboardButton("Cancel", callback_data=data)]])


def render_transition(transition: Transition, tz: tzinfo) -> str:
    """Text shown in the prompt message for a transition."""
    if transition.outcome is Outcome.PARSE_FAILED:
        return f"Error: {transition.error}\n\nPress Repeat to try again or Cancel."
    if transition.notification is None:
        return transition.feedback or ""
    text = f"Response:\n{describe_notification(transition.notification, tz)}"
    if transition.outcome is Outcome.ACCEPTED:
        count = len(transition.created_ids)
        text += f"\n\nScheduled {count} reminder(s)." if count else "\n\nNothing to schedule."
    return text


# ---------------------------------------------------------------------------
# Intake: text → interpretation prompt
# ---------------------------------------------------------------------------


@authorized_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Interpret a reminder and offer Accept / Repeat / Cancel."""
    service: ConversationService = context.bot_data["service"]
    conversations: ConversationStore = context.bot_data["conversations"]
    tz: tzinfo = context.bot_data["tz"]

    chat_id = update.effective_chat.id
    action = TextReceived(update.message.text)

    try:
        transition = await conversations.apply(
            chat_id, lambda state: service.handle(state, action, owner_id=chat_id),
        )
    except LLMError as exc:
        logger.error("Interpreter unavailable for chat %d: %s", chat_id, exc)
        await update.message.reply_text(
            "Sorry, I can't reach the interpreter right now. Please try again later."
        )
        return

    await update.message.reply_text(
        render_transition(transition, tz), reply_markup=_prompt_keyboard(),
    )


# ---------------------------------------------------------------------------
# Intake: inline keyboard taps
# ---------------------------------------------------------------------------


async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Route an inline button tap through the conversation state machine."""
    query = update.callback_query

    # Verify the user is authorized
    user = query.from_user
    if user is None or user.id not in settings.ALLOWED_USER_IDS:
        await query.answer()
        return

    service: ConversationService = context.bot_data["service"]
    conversations: ConversationStore = context.bot_data["conversations"]
    tz: tzinfo = context.bot_data["tz"]

    chat_id = update.effective_chat.id if update.effective_chat else user.id
    action = parse_callback_data(query.data)

    # Always answered; unexpected errors still reach _on_error afterwards
    feedback: str | None = CALLBACK_FAILED_TEXT
    try:
        transition = await conversations.apply(
            chat_id, lambda state: service.handle(state, action, owner_id=chat_id),
        )
        try:
            await _present_transition(query, transition, tz)
        except TelegramError as exc:
            logger.warning("Could not update prompt message in chat %d: %s", chat_id, exc)
        feedback = transition.feedback
    except (LLMError, StoreUnavailableError) as exc:
        logger.error("Callback %r failed for chat %d: %s", query.data, chat_id, exc)
    finally:
        await query.answer(feedback)


async def _present_transition(query: Any, transition: Transition, tz: tzinfo) -> None:
    """Update the prompt message the tapped button belongs to."""
    if query.message is None:
        return

    if transition.outcome is Outcome.ACCEPTED:
        await query.edit_message_text(
            render_transition(transition, tz),
            reply_markup=_undo_keyboard(transition.created_ids),
        )
    elif transition.outcome in (Outcome.PARSED, Outcome.PARSE_FAILED):
        await query.edit_message_text(
            render_transition(transition, tz), reply_markup=_prompt_keyboard(),
        )
    elif transition.outcome in (Outcome.CANCELLED, Outcome.DELETED):
        await query.message.delete()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(
        "Hi! Tell me what to remind you about and when, e.g.\n"
        "'Remind me to call mom tomorrow at 18:00' or\n"
        "'Every Monday at 9:00 remind me to plan the week'.\n\n"
        "Send /help for more."
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(
        "Write a reminder in your own words. I'll show what I understood:\n"
        "• Accept: save it\n"
        "• Repeat: ask the interpreter again\n"
        "• Cancel: drop it\n\n"
        "/list: show your pending reminders"
    )


@authorized_only
async def cmd_list(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """List the caller's pending firing records."""
    store: ReminderDB = context.bot_data["store"]
    tz: tzinfo = context.bot_data["tz"]

    try:
        records = store.list_pending(update.effective_chat.id)
    except StoreUnavailableError as exc:
        logger.error("list_pending failed: %s", exc)
        await update.message.reply_text("Couldn't load your reminders. Please try again.")
        return

    if not records:
        await update.message.reply_text("You have no pending reminders.")
        return

    lines = [f"{r.describe(tz)}: {r.text}" for r in records]
    await update.message.reply_text("Pending reminders:\n" + "\n".join(lines))


async def _on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Log any exception a handler let through; polling keeps going."""
    logger.error("Unhandled error while processing update: %s", context.error, exc_info=context.error)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    store: ReminderDB | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        store: Due-record store. Defaults to ReminderDB at DATABASE_PATH.
        notifier: Delivery port. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
    """
    # Each update runs as its own task so a slow interpreter call in one
    # chat never blocks another; same-chat work is serialised by
    # ConversationStore.
    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .concurrent_updates(True)
        .build()
    )

    if store is None:
        from remindme.data.db import ReminderDB
        store = ReminderDB()

    if notifier is None:
        from remindme.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    tz = ZoneInfo(settings.TIMEZONE)
    app.bot_data["store"] = store
    app.bot_data["notifier"] = notifier
    app.bot_data["tz"] = tz
    app.bot_data["service"] = ConversationService(store, tz)
    app.bot_data["conversations"] = ConversationStore()

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("list", cmd_list))
    app.add_handler(CallbackQueryHandler(handle_callback))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    app.add_error_handler(_on_error)

    _setup_firing_loop(app, store, notifier)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_firing_loop(
    app: Application,
    store: ReminderDB,
    notifier: NotificationPort,
) -> None:
    """Register the repeating job that delivers due reminders."""
    from remindme.core.scheduler import fire_due_reminders

    async def _firing_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await fire_due_reminders(store, notifier)

    app.job_queue.run_repeating(
        _firing_job_callback,
        interval=settings.FIRING_INTERVAL_SECONDS,
        first=settings.FIRING_INTERVAL_SECONDS,
        name="firing_loop",
    )

    logger.info("Firing loop scheduled every %gs", settings.FIRING_INTERVAL_SECONDS)


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logger.info("Starting RemindMe bot...")
    app = build_app()
    app.run_polling(allowed_updates=[Update.MESSAGE, Update.CALLBACK_QUERY])


if __name__ == "__main__":
    main()
