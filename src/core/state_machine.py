"""
Xiyin Bot: User state machine.

Decides, for one user at a time, what to send and which state follows:
- inbound events (text messages and button postbacks) arrive from the chat
  transport and are answered with a reply;
- scheduled triggers (weekly theme prompt, daily question, end-of-week
  review, monthly summary) are pushed as direct messages.

Every decision reads the user fresh from the store. Store calls block, so
they run in a worker thread. There is no per-user locking: two overlapping
events for one user are last-write-wins.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, quote, urlencode

from src.core import content
from src.core.calendar_utils import (
    DAY_TOKENS,
    FIRST_QUESTION_DAY,
    SystemClock,
    day_bounds,
    day_token,
    in_answer_window,
    is_week_start,
    month_bounds,
    month_key,
    same_local_day,
    week_string,
)
from src.core.insights import (
    build_monthly_prompt,
    build_weekly_prompt,
    format_transcript,
    group_by_week,
    summarize,
)
from src.core.resolver import MessageResolver
from src.data.models import (
    AnswerRecord,
    Button,
    InsightRecord,
    OutboundMessage,
    Question,
    Theme,
    UserRecord,
    UserStatus,
)
from src.ports.store_port import AnswerQuery

if TYPE_CHECKING:
    from src.core.calendar_utils import Clock
    from src.ports.messaging_port import MessagingPort
    from src.ports.store_port import ProgressStore
    from src.ports.summarizer_port import SummarizerPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Events, triggers and results
# ---------------------------------------------------------------------------


class EventType(str, Enum):
    MESSAGE = "message"
    POSTBACK = "postback"


@dataclass
class InboundEvent:
    """A chat event, already unwrapped from the transport's envelope."""

    type: EventType
    user_id: str
    reply_token: str
    message_type: str = "text"
    text: str = ""
    postback_data: str = ""


class TriggerKind(str, Enum):
    THEME_PROMPT = "theme_prompt"
    DAILY_QUESTION = "daily_question"
    WEEKLY_REVIEW = "weekly_review"
    MONTHLY_SUMMARY = "monthly_summary"


class Outcome(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class DispatchResult:
    """What a scheduled trigger did for one user, and why."""

    user_id: str
    outcome: Outcome
    reason: str = ""


def _sent(user: UserRecord, reason: str) -> DispatchResult:
    return DispatchResult(user.user_id, Outcome.SENT, reason)


def _skipped(user: UserRecord, reason: str) -> DispatchResult:
    return DispatchResult(user.user_id, Outcome.SKIPPED, reason)


# ---------------------------------------------------------------------------
# Postback payloads
# ---------------------------------------------------------------------------


def parse_postback(data: str) -> dict[str, str]:
    """Decode an ampersand-joined key=value payload (values URL-decoded)."""
    return dict(parse_qsl(data or "", keep_blank_values=True))


def encode_postback(action: str, **params: str) -> str:
    return urlencode({"action": action, **params}, quote_via=quote)


def theme_buttons() -> list[Button]:
    return [
        Button(theme.display_name, encode_postback("select_theme", theme=theme.value))
        for theme in Theme
    ]


def start_now_button() -> Button:
    return Button(content.START_NOW_LABEL, encode_postback("start_now"))


def show_record_button() -> Button:
    return Button(content.SHOW_RECORD_LABEL, encode_postback("show_record"))


def is_monthly_summary_eligible(answers: list[AnswerRecord]) -> bool:
    """A month is worth summarizing once its answers span two or more weeks."""
    return len({a.week for a in answers if not a.skipped}) >= 2


def _theme_replacements(theme: Theme | None) -> dict[str, str]:
    name = theme.display_name if theme else content.UNKNOWN_THEME_NAME
    return {content.THEME_TOKEN: name}


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class StateMachine:
    """Transition rules for the weekly question/answer cycle.

    Args:
        store: Progress store (single source of truth for user state).
        messenger: Chat transport used for replies and pushes.
        resolver: Template/question lookups. Built over `store` if omitted.
        clock: Time source. Defaults to wall-clock time in TIMEZONE.
        summarizer: Optional LLM collaborator for insights.
    """

    def __init__(
        self,
        store: ProgressStore,
        messenger: MessagingPort,
        resolver: MessageResolver | None = None,
        clock: Clock | None = None,
        summarizer: SummarizerPort | None = None,
    ) -> None:
        self.store = store
        self.messenger = messenger
        self.resolver = resolver or MessageResolver(store)
        self.clock = clock or SystemClock()
        self.summarizer = summarizer

    # -- persistence helpers ------------------------------------------------

    async def _save(self, user: UserRecord, now: datetime, status: UserStatus | None = None) -> None:
        if status is not None:
            user.status = status
        user.last_active = now
        await asyncio.to_thread(self.store.upsert_user, user)

    async def _load_or_create(self, user_id: str, now: datetime) -> UserRecord:
        user = await asyncio.to_thread(self.store.get_user, user_id)
        if user is None:
            user = UserRecord(user_id=user_id, status=UserStatus.NEW, created_at=now)
            await asyncio.to_thread(self.store.upsert_user, user)
            logger.info("New user %s", user_id)
        return user

    async def _answers_between(self, user: UserRecord, start: datetime, end: datetime) -> list[AnswerRecord]:
        query = AnswerQuery(user_id=user.user_id, start=start, end=end)
        return await asyncio.to_thread(self.store.query_answers, query)

    # -- inbound events -----------------------------------------------------

    async def handle_event(self, event: InboundEvent) -> UserRecord:
        """Apply one inbound event and reply to it. Returns the updated user."""
        now = self.clock.now()
        user = await self._load_or_create(event.user_id, now)
        logger.info(
            "Event %s from %s in state %s", event.type.value, user.user_id, user.status.value,
        )

        if event.type == EventType.POSTBACK:
            await self._on_postback(user, event, now)
        else:
            await self._on_message(user, event, now)
        return user

    async def _reply(self, event: InboundEvent, message: OutboundMessage) -> None:
        await self.messenger.send_reply(event.reply_token, message)

    async def _on_message(self, user: UserRecord, event: InboundEvent, now: datetime) -> None:
        status = user.status

        if status in (UserStatus.NEW, UserStatus.IDLE, UserStatus.WAITING_MONDAY):
            await self._welcome(user, event, now)
            return

        if event.message_type != "text":
            await self._reply(event, await self.resolver.message(content.UNSUPPORTED_INPUT))
            return

        if status == UserStatus.WAITING_THEME:
            await self._reply(
                event,
                await self.resolver.message(content.USE_BUTTON, default_buttons=theme_buttons()),
            )
        elif status == UserStatus.WAITING_ANSWER:
            await self._record_answer(user, event, now)
        elif status == UserStatus.SATURDAY_SHOWED_RECORD:
            await self._save(user, now, UserStatus.ACTIVE)
            await self._reply(event, await self.resolver.message(content.RECORD_CLOSING))
        else:
            await self._reply(event, await self.resolver.message(content.ACTIVE_ACK))

    async def _welcome(self, user: UserRecord, event: InboundEvent, now: datetime) -> None:
        if is_week_start(now.date()):
            message = await self.resolver.message(content.WELCOME_MONDAY, default_buttons=theme_buttons())
            next_status = UserStatus.WAITING_THEME
        else:
            message = await self.resolver.message(content.WELCOME_OTHER_DAY)
            next_status = UserStatus.WAITING_MONDAY

        await self._save(user, now, next_status)
        await self._reply(event, message)

    async def _record_answer(self, user: UserRecord, event: InboundEvent, now: datetime) -> None:
        question = None
        if user.last_question_id:
            question = await asyncio.to_thread(self.store.get_question_by_id, user.last_question_id)
            if question is None:
                logger.warning("Question %s no longer in store", user.last_question_id)

        answer = AnswerRecord(
            answer_id=f"A{int(now.timestamp() * 1000)}",
            user_id=user.user_id,
            week=user.current_week,
            theme=user.current_theme.value if user.current_theme else "",
            day=day_token(now.date()),
            question_id=user.last_question_id or "",
            question_text=question.text if question else "",
            answer_text=event.text,
            timestamp=now,
            skipped=False,
        )
        await asyncio.to_thread(self.store.append_answer, answer)

        user.no_response_week = 0
        user.last_question_id = None
        await self._save(user, now, UserStatus.ACTIVE)
        logger.info("Answer %s saved for %s (%s %s)", answer.answer_id, user.user_id, answer.week, answer.day)

        await self._reply(event, await self.resolver.message(content.HEARD))

    async def _on_postback(self, user: UserRecord, event: InboundEvent, now: datetime) -> None:
        params = parse_postback(event.postback_data)
        action = params.get("action", "")
        handlers = {
            "select_theme": self._select_theme,
            "start_week": self._start_week,
            "start_now": self._start_now,
            "how_to_play": self._how_to_play,
            "later": self._later,
            "show_record": self._show_record,
        }
        handler = handlers.get(action)
        if handler is None:
            logger.warning("Unknown postback action %r from %s", action, user.user_id)
            await self._reply(event, await self.resolver.message(content.UNSUPPORTED_INPUT))
            return
        await handler(user, event, params, now)

    async def _select_theme(
        self, user: UserRecord, event: InboundEvent, params: dict[str, str], now: datetime,
    ) -> None:
        theme = Theme.parse(params.get("theme"))
        this_week = week_string(now.date())

        if theme is None:
            logger.warning("Invalid theme %r from %s", params.get("theme"), user.user_id)
            await self._reply(
                event,
                await self.resolver.message(content.USE_BUTTON, default_buttons=theme_buttons()),
            )
            return

        # Outside waiting_theme a selection still counts while no theme is
        # set for this week (e.g. a button from an older message).
        if user.status != UserStatus.WAITING_THEME and user.current_week == this_week:
            await self._reply(event, await self.resolver.message(content.THEME_LOCKED))
            return

        user.current_theme = theme
        user.current_week = this_week
        user.last_question_id = None
        await self._save(user, now, UserStatus.ACTIVE)
        logger.info("User %s chose %s for %s", user.user_id, theme.value, this_week)

        offer_start = in_answer_window(now.date())
        message = await self.resolver.message(
            content.confirm_id(theme.value),
            fallback=content.GENERIC_CONFIRM,
            replacements=_theme_replacements(theme),
            default_buttons=[start_now_button()],
            with_buttons=offer_start,
        )
        await self._reply(event, message)

    async def _start_week(
        self, user: UserRecord, event: InboundEvent, params: dict[str, str], now: datetime,
    ) -> None:
        await self._save(user, now, UserStatus.WAITING_THEME)
        await self._reply(
            event,
            await self.resolver.message(content.START_READY, default_buttons=theme_buttons()),
        )

    async def _start_now(
        self, user: UserRecord, event: InboundEvent, params: dict[str, str], now: datetime,
    ) -> None:
        today = now.date()

        if user.status == UserStatus.WAITING_ANSWER and user.last_question_id:
            pending = await asyncio.to_thread(self.store.get_question_by_id, user.last_question_id)
            if pending is not None:
                text = await self._compose_question(user, pending, now)
                await self._reply(event, OutboundMessage(text))
                return

        if user.status != UserStatus.ACTIVE or user.current_theme is None or not in_answer_window(today):
            await self._reply(event, await self.resolver.message(content.START_NOW_LATER))
            return

        start, end = day_bounds(now)
        if await self._answers_between(user, start, end):
            await self._reply(event, await self.resolver.message(content.START_NOW_LATER))
            return

        question = await self.resolver.get_question(user.current_theme.value, day_token(today))
        if question is None:
            logger.warning(
                "No question for %s/%s, start_now deferred for %s",
                user.current_theme.value, day_token(today), user.user_id,
            )
            await self._reply(event, await self.resolver.message(content.START_NOW_LATER))
            return

        text = await self._compose_question(user, question, now)
        user.last_question_id = question.question_id
        await self._save(user, now, UserStatus.WAITING_ANSWER)
        await self._reply(event, OutboundMessage(text))

    async def _how_to_play(
        self, user: UserRecord, event: InboundEvent, params: dict[str, str], now: datetime,
    ) -> None:
        await self._reply(event, await self.resolver.message(content.HOW_TO_PLAY))

    async def _later(
        self, user: UserRecord, event: InboundEvent, params: dict[str, str], now: datetime,
    ) -> None:
        await self._save(user, now, UserStatus.WAITING_MONDAY)
        await self._reply(event, await self.resolver.message(content.LATER))

    async def _show_record(
        self, user: UserRecord, event: InboundEvent, params: dict[str, str], now: datetime,
    ) -> None:
        answers: list[AnswerRecord] = []
        if user.status in (UserStatus.ACTIVE, UserStatus.WAITING_ANSWER) and user.current_week:
            query = AnswerQuery(user_id=user.user_id, week=user.current_week)
            answers = await asyncio.to_thread(self.store.query_answers, query)

        if not answers:
            await self._reply(event, await self.resolver.message(content.NO_RECORD))
            return

        header = await self.resolver.text(content.RECORD_HEADER, replacements=_theme_replacements(user.current_theme))
        parts = [header, format_transcript(answers)]

        if self.summarizer is not None:
            result = await summarize(self.summarizer, build_weekly_prompt(answers))
            if result.ok:
                parts.append(result.text)
                await asyncio.to_thread(self.store.save_insight, InsightRecord(
                    insight_id=f"I{int(now.timestamp() * 1000)}",
                    user_id=user.user_id,
                    kind="weekly",
                    period=user.current_week,
                    content=result.text,
                    created_at=now,
                ))

        user.last_question_id = None
        await self._save(user, now, UserStatus.SATURDAY_SHOWED_RECORD)
        await self._reply(event, OutboundMessage("\n\n".join(parts)))

    # -- scheduled triggers -------------------------------------------------

    async def handle_trigger(self, kind: TriggerKind, user: UserRecord) -> DispatchResult:
        """Apply one scheduled trigger to one user.

        Message sends happen before the state is saved, so a failed send
        leaves the user eligible for a re-run.
        """
        handlers = {
            TriggerKind.THEME_PROMPT: self.send_theme_prompt,
            TriggerKind.DAILY_QUESTION: self.send_daily_question,
            TriggerKind.WEEKLY_REVIEW: self.send_weekly_review,
            TriggerKind.MONTHLY_SUMMARY: self.send_monthly_summary,
        }
        return await handlers[TriggerKind(kind)](user)

    async def send_theme_prompt(self, user: UserRecord) -> DispatchResult:
        now = self.clock.now()
        this_week = week_string(now.date())

        eligible = user.status in (UserStatus.WAITING_MONDAY, UserStatus.SATURDAY_SHOWED_RECORD) or (
            user.status == UserStatus.ACTIVE and user.current_week != this_week
        )
        if not eligible:
            return _skipped(user, f"status {user.status.value}")

        message = await self.resolver.message(content.MONDAY_WEEK1, default_buttons=theme_buttons())
        await self.messenger.send_direct(user.user_id, message)
        await self._save(user, now, UserStatus.WAITING_THEME)
        return _sent(user, "theme prompt")

    async def send_daily_question(self, user: UserRecord) -> DispatchResult:
        now = self.clock.now()
        today = now.date()

        start, end = day_bounds(now)
        if await self._answers_between(user, start, end):
            return _skipped(user, "already answered today")

        if user.status not in (UserStatus.ACTIVE, UserStatus.WAITING_ANSWER):
            return _skipped(user, f"status {user.status.value}")
        if user.current_theme is None:
            return _skipped(user, "no theme")

        # Same-day guard only; a question left unanswered yesterday is resent.
        if user.status == UserStatus.WAITING_ANSWER and same_local_day(user.last_active, now):
            return _skipped(user, "already sent today")

        day = day_token(today)
        question = await self.resolver.get_question(user.current_theme.value, day)
        if question is None:
            logger.warning("No question for %s/%s, not sent to %s", user.current_theme.value, day, user.user_id)
            return _skipped(user, f"no question for {user.current_theme.value}/{day}")

        text = await self._compose_question(user, question, now)
        await self.messenger.send_direct(user.user_id, OutboundMessage(text))

        user.last_question_id = question.question_id
        await self._save(user, now, UserStatus.WAITING_ANSWER)
        return _sent(user, f"question {question.question_id}")

    async def _compose_question(self, user: UserRecord, question: Question, now: datetime) -> str:
        parts = []

        if await self._missed_yesterday(user, now):
            parts.append(await self.resolver.text(content.SKIPPED_YESTERDAY))

        parts.append(await self.resolver.text(
            content.DAILY_QUESTION,
            replacements={
                **_theme_replacements(user.current_theme),
                content.QUESTION_TOKEN: question.text,
            },
        ))
        return "\n\n".join(parts)

    async def _missed_yesterday(self, user: UserRecord, now: datetime) -> bool:
        """True past the week's first question day when yesterday has no answer."""
        if DAY_TOKENS.index(day_token(now.date())) <= DAY_TOKENS.index(FIRST_QUESTION_DAY):
            return False
        start, end = day_bounds(now - timedelta(days=1))
        return not await self._answers_between(user, start, end)

    async def send_weekly_review(self, user: UserRecord) -> DispatchResult:
        now = self.clock.now()

        if user.status not in (UserStatus.ACTIVE, UserStatus.WAITING_ANSWER) or user.current_theme is None:
            return _skipped(user, f"status {user.status.value}")

        query = AnswerQuery(user_id=user.user_id, week=user.current_week)
        answers = await asyncio.to_thread(self.store.query_answers, query)
        count = len(answers)
        replacements = _theme_replacements(user.current_theme)

        if count == 0:
            message = await self.resolver.message(
                content.SUNDAY_NO_RESPONSE, replacements=replacements, with_buttons=False,
            )
        else:
            message = await self.resolver.message(
                content.SUNDAY_START, replacements=replacements, default_buttons=[show_record_button()],
            )
        await self.messenger.send_direct(user.user_id, message)

        user.no_response_week = user.no_response_week + 1 if count == 0 else 0
        # A question still pending at review time is dropped for the week;
        # back in active, the user is eligible for Monday's theme prompt.
        user.last_question_id = None
        await self._save(user, now, UserStatus.ACTIVE)

        if count == 0:
            return _sent(user, f"no response ({user.no_response_week} weeks)")
        return _sent(user, f"review of {count} answers")

    async def send_monthly_summary(self, user: UserRecord) -> DispatchResult:
        now = self.clock.now()
        start, end = month_bounds(now)
        period = month_key(now.date())

        answers = await self._answers_between(user, start, end)
        if not is_monthly_summary_eligible(answers):
            return _skipped(user, "fewer than 2 weeks of answers")

        existing = await asyncio.to_thread(self.store.get_insight, user.user_id, "monthly", period)
        if existing is not None:
            return _skipped(user, f"already summarized {period}")

        if self.summarizer is None:
            return _skipped(user, "summarizer unavailable")

        result = await summarize(self.summarizer, build_monthly_prompt(group_by_week(answers)))
        if not result.ok:
            return _skipped(user, "summary unavailable")

        header = await self.resolver.text(content.MONTHLY_HEADER)
        await self.messenger.send_direct(user.user_id, OutboundMessage(f"{header}\n\n{result.text}"))

        await asyncio.to_thread(self.store.save_insight, InsightRecord(
            insight_id=f"I{int(now.timestamp() * 1000)}",
            user_id=user.user_id,
            kind="monthly",
            period=period,
            content=result.text,
            created_at=now,
        ))
        return _sent(user, f"monthly summary {period}")
