"""
Xiyin Bot: SQLite progress store.

Local backend for the ProgressStore port: users, answers, content
(templates and questions) and insights in one SQLite file. Content tables are
seeded with add_message_template / add_question; in production the content
usually lives in the spreadsheet backend instead.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from src.data.models import (
    AnswerRecord,
    Button,
    InsightRecord,
    Question,
    Template,
    Theme,
    UserRecord,
    UserStatus,
)
from src.data.retry import retry_load, store_errors
from src.data.rows import dump_buttons, format_timestamp, parse_buttons, parse_timestamp
from src.ports.store_port import AnswerQuery

logger = logging.getLogger(__name__)


class SQLiteProgressStore:
    """SQLite-backed implementation of ProgressStore."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    user_id           TEXT PRIMARY KEY,
                    status            TEXT    NOT NULL DEFAULT 'new',
                    current_theme     TEXT,
                    current_week      TEXT    NOT NULL DEFAULT '',
                    last_active       TEXT,
                    last_question_id  TEXT,
                    no_response_week  INTEGER NOT NULL DEFAULT 0,
                    created_at        TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS answers (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    answer_id      TEXT    NOT NULL,
                    user_id        TEXT    NOT NULL,
                    week           TEXT    NOT NULL,
                    theme          TEXT    NOT NULL,
                    day            TEXT    NOT NULL,
                    question_id    TEXT    NOT NULL DEFAULT '',
                    question_text  TEXT    NOT NULL DEFAULT '',
                    answer_text    TEXT    NOT NULL,
                    skipped        INTEGER NOT NULL DEFAULT 0,
                    timestamp      TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_answers_user_week ON answers (user_id, week)"
            )
            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    message_id  TEXT PRIMARY KEY,
                    text        TEXT    NOT NULL,
                    buttons     TEXT    NOT NULL DEFAULT '',
                    active      INTEGER NOT NULL DEFAULT 1
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS questions (
                    question_id  TEXT PRIMARY KEY,
                    theme        TEXT    NOT NULL,
                    day          TEXT    NOT NULL,
                    text         TEXT    NOT NULL,
                    active       INTEGER NOT NULL DEFAULT 1
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS insights (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    insight_id  TEXT NOT NULL,
                    user_id     TEXT NOT NULL,
                    kind        TEXT NOT NULL,
                    period      TEXT NOT NULL,
                    content     TEXT NOT NULL,
                    created_at  TEXT NOT NULL
                )
            """)
        logger.debug("Progress tables initialized at %s", self._db_path)

    # -- row mapping ----------------------------------------------------------

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> UserRecord:
        return UserRecord(
            user_id=row["user_id"],
            status=UserStatus.parse(row["status"]),
            current_theme=Theme.parse(row["current_theme"]),
            current_week=row["current_week"] or "",
            last_active=parse_timestamp(row["last_active"]),
            last_question_id=row["last_question_id"] or None,
            no_response_week=row["no_response_week"] or 0,
            created_at=parse_timestamp(row["created_at"]),
        )

    @staticmethod
    def _row_to_answer(row: sqlite3.Row) -> AnswerRecord:
        return AnswerRecord(
            answer_id=row["answer_id"],
            user_id=row["user_id"],
            week=row["week"],
            theme=row["theme"],
            day=row["day"],
            question_id=row["question_id"],
            question_text=row["question_text"],
            answer_text=row["answer_text"],
            skipped=bool(row["skipped"]),
            timestamp=parse_timestamp(row["timestamp"]),
        )

    @staticmethod
    def _row_to_question(row: sqlite3.Row) -> Question:
        return Question(
            question_id=row["question_id"],
            theme=row["theme"],
            day=row["day"],
            text=row["text"],
            active=bool(row["active"]),
        )

    @staticmethod
    def _row_to_insight(row: sqlite3.Row) -> InsightRecord:
        return InsightRecord(
            insight_id=row["insight_id"],
            user_id=row["user_id"],
            kind=row["kind"],
            period=row["period"],
            content=row["content"],
            created_at=parse_timestamp(row["created_at"]),
        )

    # -- users ----------------------------------------------------------------

    @retry_load(sqlite3.OperationalError)
    def get_user(self, user_id: str) -> UserRecord | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    @retry_load(sqlite3.OperationalError)
    def list_users(self) -> list[UserRecord]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at, user_id").fetchall()
        return [self._row_to_user(r) for r in rows]

    @store_errors(sqlite3.Error)
    def upsert_user(self, user: UserRecord) -> None:
        """Insert or overwrite the whole row (last write wins)."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users
                    (user_id, status, current_theme, current_week, last_active,
                     last_question_id, no_response_week, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    status = excluded.status,
                    current_theme = excluded.current_theme,
                    current_week = excluded.current_week,
                    last_active = excluded.last_active,
                    last_question_id = excluded.last_question_id,
                    no_response_week = excluded.no_response_week
                """,
                (
                    user.user_id,
                    user.status.value,
                    user.current_theme.value if user.current_theme else None,
                    user.current_week,
                    format_timestamp(user.last_active) or None,
                    user.last_question_id,
                    user.no_response_week,
                    format_timestamp(user.created_at) or None,
                ),
            )

    # -- answers --------------------------------------------------------------

    @store_errors(sqlite3.Error)
    def append_answer(self, answer: AnswerRecord) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO answers
                    (answer_id, user_id, week, theme, day, question_id,
                     question_text, answer_text, skipped, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    answer.answer_id, answer.user_id, answer.week, answer.theme,
                    answer.day, answer.question_id, answer.question_text,
                    answer.answer_text, int(answer.skipped),
                    format_timestamp(answer.timestamp),
                ),
            )
        logger.debug("Answer %s appended for %s", answer.answer_id, answer.user_id)

    @retry_load(sqlite3.OperationalError)
    def query_answers(self, query: AnswerQuery) -> list[AnswerRecord]:
        conditions = ["user_id = ?"]
        params: list = [query.user_id]
        if query.week is not None:
            conditions.append("week = ?")
            params.append(query.week)
        if not query.include_skipped:
            conditions.append("skipped = 0")
        if query.start is not None:
            conditions.append("timestamp >= ?")
            params.append(format_timestamp(query.start))
        if query.end is not None:
            conditions.append("timestamp < ?")
            params.append(format_timestamp(query.end))

        sql = "SELECT * FROM answers WHERE " + " AND ".join(conditions) + " ORDER BY timestamp, id"
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_answer(r) for r in rows]

    # -- content --------------------------------------------------------------

    @retry_load(sqlite3.OperationalError)
    def get_message_template(self, message_id: str) -> Template | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM messages WHERE message_id = ? AND active = 1", (message_id,),
            ).fetchone()
        if row is None:
            return None
        return Template(
            message_id=row["message_id"],
            text=row["text"],
            buttons=parse_buttons(row["buttons"]),
        )

    @retry_load(sqlite3.OperationalError)
    def list_questions(self, theme: str, day: str) -> list[Question]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM questions WHERE theme = ? AND day = ? AND active = 1 "
                "ORDER BY question_id",
                (theme, day),
            ).fetchall()
        return [self._row_to_question(r) for r in rows]

    @retry_load(sqlite3.OperationalError)
    def get_question_by_id(self, question_id: str) -> Question | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM questions WHERE question_id = ?", (question_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_question(row)

    @store_errors(sqlite3.Error)
    def add_message_template(
        self,
        message_id: str,
        text: str,
        buttons: list[Button] | None = None,
        active: bool = True,
    ) -> Template:
        """Insert or replace a template."""
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO messages (message_id, text, buttons, active) VALUES (?, ?, ?, ?)",
                (message_id, text, dump_buttons(buttons or []), int(active)),
            )
        logger.info("Template %s saved", message_id)
        return Template(message_id=message_id, text=text, buttons=list(buttons or []))

    @store_errors(sqlite3.Error)
    def add_question(
        self,
        question_id: str,
        theme: str,
        day: str,
        text: str,
        active: bool = True,
    ) -> Question:
        """Insert or replace a question."""
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO questions (question_id, theme, day, text, active) "
                "VALUES (?, ?, ?, ?, ?)",
                (question_id, theme, day, text, int(active)),
            )
        return Question(question_id=question_id, theme=theme, day=day, text=text, active=active)

    # -- insights -------------------------------------------------------------

    @store_errors(sqlite3.Error)
    def save_insight(self, insight: InsightRecord) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO insights (insight_id, user_id, kind, period, content, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    insight.insight_id, insight.user_id, insight.kind, insight.period,
                    insight.content, format_timestamp(insight.created_at),
                ),
            )
        logger.info("Insight %s (%s %s) saved for %s", insight.insight_id, insight.kind, insight.period, insight.user_id)

    @retry_load(sqlite3.OperationalError)
    def get_insight(self, user_id: str, kind: str, period: str) -> InsightRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM insights WHERE user_id = ? AND kind = ? AND period = ? "
                "ORDER BY created_at DESC, id DESC",
                (user_id, kind, period),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_insight(row)
