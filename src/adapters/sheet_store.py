"""
Xiyin Bot: Google Sheets progress store.

The spreadsheet layout is shared with the content editors, so column names
stay exactly as they appear in the sheet:

  Users      userId, status, currentTheme, currentWeek, lastActive,
             lastQuestionId, noResponseWeek, CreatedAt
  Answers    AnswerID, userId, week, theme, day, questionId, question,
             answer, skipped, timestamp
  Messages   MessageID, Message, Buttons(JSON), Active
  Questions  QuestionID, Theme, Day, Question, Active
  Insights   InsightID, userId, kind, period, content, timestamp

Every lookup reads the whole worksheet; filtering happens here. Cells are
read back as text, never numericised, so an answer like "007" survives the
round trip. Writes use the sheet's header row, so editors may reorder or
append columns.
"""

from __future__ import annotations

import logging

import gspread
import gspread.utils as gsu
from gspread.exceptions import APIError, WorksheetNotFound

from src.data.models import (
    AnswerRecord,
    InsightRecord,
    Question,
    Template,
    Theme,
    UserRecord,
    UserStatus,
)
from src.data.retry import retry_load, store_errors
from src.data.rows import (
    blank_to_none,
    format_timestamp,
    parse_buttons,
    parse_timestamp,
    to_bool,
    to_int,
)
from src.ports.store_port import AnswerQuery

logger = logging.getLogger(__name__)

USERS_SHEET = "Users"
ANSWERS_SHEET = "Answers"
MESSAGES_SHEET = "Messages"
QUESTIONS_SHEET = "Questions"
INSIGHTS_SHEET = "Insights"

HEADERS = {
    USERS_SHEET: [
        "userId", "status", "currentTheme", "currentWeek", "lastActive",
        "lastQuestionId", "noResponseWeek", "CreatedAt",
    ],
    ANSWERS_SHEET: [
        "AnswerID", "userId", "week", "theme", "day", "questionId",
        "question", "answer", "skipped", "timestamp",
    ],
    MESSAGES_SHEET: ["MessageID", "Message", "Buttons(JSON)", "Active"],
    QUESTIONS_SHEET: ["QuestionID", "Theme", "Day", "Question", "Active"],
    INSIGHTS_SHEET: ["InsightID", "userId", "kind", "period", "content", "timestamp"],
}

# Network hiccups surface as OSError subclasses from requests.
_TRANSIENT = (APIError, OSError)


def _cell(value: object) -> str:
    return "" if value is None else str(value).strip()


class SheetProgressStore:
    """gspread-backed implementation of ProgressStore.

    Args:
        spreadsheet: An opened gspread Spreadsheet. Opened from settings
            when omitted.
    """

    def __init__(self, spreadsheet: gspread.Spreadsheet | None = None) -> None:
        if spreadsheet is None:
            from src.integrations.google_auth import open_spreadsheet
            spreadsheet = open_spreadsheet()
        self._spreadsheet = spreadsheet
        self._worksheets: dict[str, gspread.Worksheet] = {}

    # -- worksheet access -----------------------------------------------------

    def _ws(self, title: str) -> gspread.Worksheet:
        """Return a worksheet, creating it with its header row if missing."""
        if title not in self._worksheets:
            try:
                ws = self._spreadsheet.worksheet(title)
            except WorksheetNotFound:
                headers = HEADERS[title]
                logger.info("Worksheet %s missing, creating it", title)
                ws = self._spreadsheet.add_worksheet(title=title, rows=1000, cols=len(headers))
                ws.append_row(headers, value_input_option="RAW")
            self._worksheets[title] = ws
        return self._worksheets[title]

    def _records(self, title: str) -> list[dict]:
        return self._ws(title).get_all_records(default_blank="", numericise_ignore=["all"])

    def _headers(self, title: str) -> list[str]:
        return self._ws(title).row_values(1) or HEADERS[title]

    def _append(self, title: str, values: dict[str, object]) -> None:
        headers = self._headers(title)
        self._ws(title).append_row(
            [_cell(values.get(h)) for h in headers], value_input_option="RAW",
        )

    # -- row mapping ----------------------------------------------------------

    @staticmethod
    def _row_to_user(row: dict) -> UserRecord:
        return UserRecord(
            user_id=_cell(row.get("userId")),
            status=UserStatus.parse(_cell(row.get("status"))),
            current_theme=Theme.parse(_cell(row.get("currentTheme"))),
            current_week=_cell(row.get("currentWeek")),
            last_active=parse_timestamp(row.get("lastActive")),
            last_question_id=blank_to_none(row.get("lastQuestionId")),
            no_response_week=to_int(row.get("noResponseWeek")),
            created_at=parse_timestamp(row.get("CreatedAt")),
        )

    @staticmethod
    def _user_to_row(user: UserRecord) -> dict[str, object]:
        return {
            "userId": user.user_id,
            "status": user.status.value,
            "currentTheme": user.current_theme.value if user.current_theme else "",
            "currentWeek": user.current_week,
            "lastActive": format_timestamp(user.last_active),
            "lastQuestionId": user.last_question_id or "",
            "noResponseWeek": user.no_response_week,
            "CreatedAt": format_timestamp(user.created_at),
        }

    @staticmethod
    def _row_to_answer(row: dict) -> AnswerRecord:
        return AnswerRecord(
            answer_id=_cell(row.get("AnswerID")),
            user_id=_cell(row.get("userId")),
            week=_cell(row.get("week")),
            theme=_cell(row.get("theme")),
            day=_cell(row.get("day")),
            question_id=_cell(row.get("questionId")),
            question_text=_cell(row.get("question")),
            answer_text=_cell(row.get("answer")),
            skipped=to_bool(row.get("skipped")),
            timestamp=parse_timestamp(row.get("timestamp")),
        )

    @staticmethod
    def _row_to_question(row: dict) -> Question:
        return Question(
            question_id=_cell(row.get("QuestionID")),
            theme=_cell(row.get("Theme")).upper(),
            day=_cell(row.get("Day")).upper(),
            text=_cell(row.get("Question")),
            active=to_bool(row.get("Active")),
        )

    @staticmethod
    def _row_to_insight(row: dict) -> InsightRecord:
        return InsightRecord(
            insight_id=_cell(row.get("InsightID")),
            user_id=_cell(row.get("userId")),
            kind=_cell(row.get("kind")),
            period=_cell(row.get("period")),
            content=_cell(row.get("content")),
            created_at=parse_timestamp(row.get("timestamp")),
        )

    # -- users ----------------------------------------------------------------

    @retry_load(*_TRANSIENT)
    def get_user(self, user_id: str) -> UserRecord | None:
        for row in self._records(USERS_SHEET):
            if _cell(row.get("userId")) == user_id:
                return self._row_to_user(row)
        return None

    @retry_load(*_TRANSIENT)
    def list_users(self) -> list[UserRecord]:
        return [
            self._row_to_user(row)
            for row in self._records(USERS_SHEET)
            if _cell(row.get("userId"))
        ]

    @store_errors(*_TRANSIENT)
    def upsert_user(self, user: UserRecord) -> None:
        """Overwrite the user's row in place, or append a new one."""
        ws = self._ws(USERS_SHEET)
        headers = self._headers(USERS_SHEET)
        values = self._user_to_row(user)

        rows = ws.get_all_records(default_blank="", numericise_ignore=["all"])
        for i, row in enumerate(rows, start=2):
            if _cell(row.get("userId")) == user.user_id:
                # Columns the store doesn't own keep whatever the sheet holds.
                merged = [
                    _cell(values[h]) if h in values else _cell(row.get(h))
                    for h in headers
                ]
                end = gsu.rowcol_to_a1(i, len(headers))
                ws.update(values=[merged], range_name=f"A{i}:{end}", value_input_option="RAW")
                return

        self._append(USERS_SHEET, values)
        logger.debug("User row appended for %s", user.user_id)

    # -- answers --------------------------------------------------------------

    @store_errors(*_TRANSIENT)
    def append_answer(self, answer: AnswerRecord) -> None:
        self._append(ANSWERS_SHEET, {
            "AnswerID": answer.answer_id,
            "userId": answer.user_id,
            "week": answer.week,
            "theme": answer.theme,
            "day": answer.day,
            "questionId": answer.question_id,
            "question": answer.question_text,
            "answer": answer.answer_text,
            "skipped": "TRUE" if answer.skipped else "FALSE",
            "timestamp": format_timestamp(answer.timestamp),
        })

    @retry_load(*_TRANSIENT)
    def query_answers(self, query: AnswerQuery) -> list[AnswerRecord]:
        answers = [
            self._row_to_answer(row)
            for row in self._records(ANSWERS_SHEET)
            if _cell(row.get("userId")) == query.user_id
        ]
        # Rows with an unreadable timestamp were already logged by parse_timestamp.
        matched = [a for a in answers if a.timestamp is not None and query.matches(a)]
        return sorted(matched, key=lambda a: a.timestamp)

    # -- content --------------------------------------------------------------

    @retry_load(*_TRANSIENT)
    def get_message_template(self, message_id: str) -> Template | None:
        for row in self._records(MESSAGES_SHEET):
            if _cell(row.get("MessageID")) == message_id and to_bool(row.get("Active")):
                return Template(
                    message_id=message_id,
                    text=str(row.get("Message", "")),
                    buttons=parse_buttons(row.get("Buttons(JSON)")),
                )
        return None

    @retry_load(*_TRANSIENT)
    def list_questions(self, theme: str, day: str) -> list[Question]:
        questions = [self._row_to_question(row) for row in self._records(QUESTIONS_SHEET)]
        return [
            q for q in questions
            if q.active and q.theme == theme and q.day == day and q.text
        ]

    @retry_load(*_TRANSIENT)
    def get_question_by_id(self, question_id: str) -> Question | None:
        for row in self._records(QUESTIONS_SHEET):
            if _cell(row.get("QuestionID")) == question_id:
                return self._row_to_question(row)
        return None

    # -- insights -------------------------------------------------------------

    @store_errors(*_TRANSIENT)
    def save_insight(self, insight: InsightRecord) -> None:
        self._append(INSIGHTS_SHEET, {
            "InsightID": insight.insight_id,
            "userId": insight.user_id,
            "kind": insight.kind,
            "period": insight.period,
            "content": insight.content,
            "timestamp": format_timestamp(insight.created_at),
        })

    @retry_load(*_TRANSIENT)
    def get_insight(self, user_id: str, kind: str, period: str) -> InsightRecord | None:
        found = None
        for row in self._records(INSIGHTS_SHEET):
            if (
                _cell(row.get("userId")) == user_id
                and _cell(row.get("kind")) == kind
                and _cell(row.get("period")) == period
            ):
                found = self._row_to_insight(row)
        return found
