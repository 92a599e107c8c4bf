"""Store port: abstract interface for persisted user progress.

Core modules depend on this protocol, never on a specific backend. The store
is the single source of truth between invocations; writes are
last-write-wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from src.data.models import AnswerRecord, InsightRecord, Question, Template, UserRecord


class StoreError(Exception):
    """Raised when any store backend operation fails."""


@dataclass
class AnswerQuery:
    """Filter for answer lookups. Unset fields match everything.

    start/end bound the answer timestamp as [start, end).
    """

    user_id: str
    week: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    include_skipped: bool = False

    def matches(self, answer: AnswerRecord) -> bool:
        if answer.user_id != self.user_id:
            return False
        if self.week is not None and answer.week != self.week:
            return False
        if not self.include_skipped and answer.skipped:
            return False
        if (self.start is not None or self.end is not None) and answer.timestamp is None:
            return False
        if self.start is not None and answer.timestamp < self.start:
            return False
        if self.end is not None and answer.timestamp >= self.end:
            return False
        return True


class ProgressStore(Protocol):
    """Abstract store interface used by core modules."""

    def get_user(self, user_id: str) -> UserRecord | None: ...

    def list_users(self) -> list[UserRecord]: ...

    def upsert_user(self, user: UserRecord) -> None: ...

    def append_answer(self, answer: AnswerRecord) -> None: ...

    def query_answers(self, query: AnswerQuery) -> list[AnswerRecord]: ...

    def get_message_template(self, message_id: str) -> Template | None: ...

    def list_questions(self, theme: str, day: str) -> list[Question]: ...

    def get_question_by_id(self, question_id: str) -> Question | None: ...

    def save_insight(self, insight: InsightRecord) -> None: ...

    def get_insight(self, user_id: str, kind: str, period: str) -> InsightRecord | None: ...
