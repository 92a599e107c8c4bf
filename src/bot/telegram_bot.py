"""
Xiyin Bot: Telegram Bot.

Telegram is the chat transport. Every inbound update is unwrapped into an
InboundEvent and handed to the state machine; the job queue fires the four
weekly-cycle triggers through the scheduler.

Admins (ADMIN_USER_IDS) may run any trigger on demand with /run.
"""

from __future__ import annotations

import logging
from datetime import time as dt_time
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from src.config import settings
from src.core.scheduler import WeeklyScheduler
from src.core.state_machine import (
    EventType,
    InboundEvent,
    StateMachine,
    TriggerKind,
    encode_postback,
)

if TYPE_CHECKING:
    from src.ports.messaging_port import MessagingPort
    from src.ports.store_port import ProgressStore
    from src.ports.summarizer_port import SummarizerPort

logger = logging.getLogger(__name__)

RETRY_LATER_TEXT = "系統有點忙，請稍後再試一次 🙏"

# python-telegram-bot counts days from Sunday = 0.
MONDAY = (1,)
TUESDAY_TO_SATURDAY = (2, 3, 4, 5, 6)
SUNDAY = (0,)


# ---------------------------------------------------------------------------
# Security: admin-only decorator
# ---------------------------------------------------------------------------


def admin_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores admin commands from everyone else.

    Regular users only ever see the weekly cycle, so the bot does not
    acknowledge that admin commands exist.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ADMIN_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Admin command attempted by user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Inbound events
# ---------------------------------------------------------------------------


def event_from_update(update: Update) -> InboundEvent | None:
    """Unwrap a Telegram update. Returns None for updates the bot ignores."""
    user = update.effective_user
    chat = update.effective_chat
    if user is None or chat is None:
        return None

    query = update.callback_query
    if query is not None:
        return InboundEvent(
            type=EventType.POSTBACK,
            user_id=str(user.id),
            reply_token=str(chat.id),
            postback_data=query.data or "",
        )

    message = update.effective_message
    if message is None:
        return None
    return InboundEvent(
        type=EventType.MESSAGE,
        user_id=str(user.id),
        reply_token=str(chat.id),
        message_type="text" if message.text else "other",
        text=message.text or "",
    )


async def _dispatch(
    event: InboundEvent, update: Update, context: ContextTypes.DEFAULT_TYPE,
) -> None:
    """Run one event through the state machine; failures get a retry hint."""
    machine: StateMachine = context.bot_data["machine"]
    try:
        await machine.handle_event(event)
    except Exception as exc:
        logger.error("Event %s from %s failed: %s", event.type.value, event.user_id, exc)
        try:
            await context.bot.send_message(chat_id=update.effective_chat.id, text=RETRY_LATER_TEXT)
        except Exception as send_exc:
            logger.error("Could not notify %s about the failure: %s", event.user_id, send_exc)


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle any non-command message, text or not."""
    event = event_from_update(update)
    if event is not None:
        await _dispatch(event, update, context)


async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle inline keyboard presses as postbacks."""
    query = update.callback_query
    await query.answer()
    event = event_from_update(update)
    if event is not None:
        await _dispatch(event, update, context)


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start: treated like any first message."""
    await handle_message(update, context)


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help: same as pressing the how-to-play button."""
    event = event_from_update(update)
    if event is None:
        return
    event.type = EventType.POSTBACK
    event.postback_data = encode_postback("how_to_play")
    await _dispatch(event, update, context)


# ---------------------------------------------------------------------------
# Admin commands
# ---------------------------------------------------------------------------


@admin_only
async def cmd_run(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /run <trigger>: run a scheduled trigger now."""
    names = ", ".join(k.value for k in TriggerKind)
    if not context.args:
        await update.message.reply_text(f"Usage: /run <trigger>\nTriggers: {names}")
        return

    try:
        kind = TriggerKind(context.args[0].strip().lower())
    except ValueError:
        await update.message.reply_text(f"Unknown trigger {context.args[0]!r}. Triggers: {names}")
        return

    scheduler: WeeklyScheduler = context.bot_data["scheduler"]
    logger.info("Trigger %s run on demand by %s", kind.value, update.effective_user.id)
    summary = await scheduler.run_trigger(kind)
    await update.message.reply_text(summary.format())


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    store: ProgressStore | None = None,
    messenger: MessagingPort | None = None,
    summarizer: SummarizerPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        store: Progress store. Defaults to the STORE_BACKEND adapter.
        messenger: Messaging port implementation. Defaults to TelegramMessenger
                   (created from the bot instance after app is built).
        summarizer: LLM summarizer. Defaults to the configured provider, or
                    none when LLM_API_KEY is empty.
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    # Wire default adapters if not provided
    if store is None:
        from src.adapters.store_factory import create_store
        store = create_store()

    if messenger is None:
        from src.adapters.telegram_messenger import TelegramMessenger
        messenger = TelegramMessenger(app.bot)

    if summarizer is None:
        from src.core.llm import create_summarizer
        summarizer = create_summarizer()

    machine = StateMachine(store, messenger, summarizer=summarizer)
    scheduler = WeeklyScheduler(machine)

    # Store collaborators in bot_data for handler access
    app.bot_data["machine"] = machine
    app.bot_data["scheduler"] = scheduler

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("run", cmd_run))

    # Button presses
    app.add_handler(CallbackQueryHandler(handle_callback))

    # Everything else the user sends: text, stickers, photos, voice...
    app.add_handler(MessageHandler(~filters.COMMAND & ~filters.StatusUpdate.ALL, handle_message))

    _setup_weekly_cycle(app, scheduler)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_weekly_cycle(app: Application, scheduler: WeeklyScheduler) -> None:
    """Register the four weekly-cycle triggers on the job queue."""
    tz = ZoneInfo(settings.TIMEZONE)

    def _job(kind: TriggerKind):
        async def _callback(context: ContextTypes.DEFAULT_TYPE) -> None:
            summary = await scheduler.run_trigger(kind)
            if summary.error:
                logger.error("Scheduled %s did not run: %s", kind.value, summary.error)
        return _callback

    def _at(hour: int) -> dt_time:
        return dt_time(hour=hour, minute=0, tzinfo=tz)

    app.job_queue.run_daily(
        _job(TriggerKind.THEME_PROMPT),
        time=_at(settings.THEME_PROMPT_HOUR),
        days=MONDAY,
        name=TriggerKind.THEME_PROMPT.value,
    )
    app.job_queue.run_daily(
        _job(TriggerKind.DAILY_QUESTION),
        time=_at(settings.DAILY_QUESTION_HOUR),
        days=TUESDAY_TO_SATURDAY,
        name=TriggerKind.DAILY_QUESTION.value,
    )
    app.job_queue.run_daily(
        _job(TriggerKind.WEEKLY_REVIEW),
        time=_at(settings.WEEKLY_REVIEW_HOUR),
        days=SUNDAY,
        name=TriggerKind.WEEKLY_REVIEW.value,
    )
    app.job_queue.run_monthly(
        _job(TriggerKind.MONTHLY_SUMMARY),
        when=_at(settings.MONTHLY_SUMMARY_HOUR),
        day=-1,
        name=TriggerKind.MONTHLY_SUMMARY.value,
    )

    logger.info(
        "Weekly cycle scheduled (%s): theme Mon %02d:00, questions Tue-Sat %02d:00, "
        "review Sun %02d:00, monthly summary last day %02d:00",
        settings.TIMEZONE,
        settings.THEME_PROMPT_HOUR,
        settings.DAILY_QUESTION_HOUR,
        settings.WEEKLY_REVIEW_HOUR,
        settings.MONTHLY_SUMMARY_HOUR,
    )


def main() -> None:
    """Entry point: build the app and start polling."""
    logger.info("Starting Xiyin bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
