"""
Xiyin Bot: Data Models.

A user moves through a weekly cycle: pick a theme on Monday, answer one
question a day, review the week on Sunday. These records are everything the
core needs to decide the next step; the store owns their persistence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class UserStatus(str, Enum):
    """Where a user stands in the weekly cycle."""

    NEW = "new"
    IDLE = "idle"
    WAITING_MONDAY = "waiting_monday"
    WAITING_THEME = "waiting_theme"
    WAITING_ANSWER = "waiting_answer"
    ACTIVE = "active"
    SATURDAY_SHOWED_RECORD = "saturday_showed_record"

    @classmethod
    def parse(cls, value: str | None) -> UserStatus:
        """Map a stored value to a status; blank or unknown rows count as new."""
        if not value:
            return cls.NEW
        try:
            return cls(str(value).strip())
        except ValueError:
            return cls.NEW


class Theme(str, Enum):
    """The weekly focus a user chooses; it selects the question pool."""

    SELF = "SELF"
    CREATION = "CREATION"
    FAMILY = "FAMILY"

    @property
    def display_name(self) -> str:
        return _THEME_NAMES[self]

    @classmethod
    def parse(cls, value: str | None) -> Theme | None:
        if not value:
            return None
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


_THEME_NAMES = {
    Theme.SELF: "自己",
    Theme.CREATION: "創作",
    Theme.FAMILY: "家庭",
}


@dataclass
class UserRecord:
    """Per-user progress through the weekly cycle.

    current_week is only meaningful while current_theme is set.
    """

    user_id: str
    status: UserStatus = UserStatus.NEW
    current_theme: Theme | None = None
    current_week: str = ""            # e.g. "2024-W01"
    last_active: datetime | None = None
    last_question_id: str | None = None
    no_response_week: int = 0
    created_at: datetime | None = None


@dataclass
class AnswerRecord:
    """One reply to a daily question. Immutable once appended."""

    answer_id: str
    user_id: str
    week: str
    theme: str
    day: str                          # "MON" .. "SUN"
    question_id: str
    question_text: str                # snapshot of the question as asked
    answer_text: str
    timestamp: datetime
    skipped: bool = False


@dataclass
class Button:
    """A postback button: label shown to the user, data sent back on tap."""

    label: str
    data: str


@dataclass
class Template:
    """A content-owned message with placeholder tokens and optional buttons."""

    message_id: str
    text: str
    buttons: list[Button] = field(default_factory=list)


@dataclass
class Question:
    """A thematic question for one day of the week."""

    question_id: str
    theme: str
    day: str
    text: str
    active: bool = True


@dataclass
class InsightRecord:
    """A summarized narrative generated from a user's answers."""

    insight_id: str
    user_id: str
    kind: str                         # "weekly" | "monthly"
    period: str                       # ISO week or "YYYY-MM"
    content: str
    created_at: datetime


@dataclass
class OutboundMessage:
    """Content handed to the messaging port: plain text or text with buttons."""

    text: str
    buttons: list[Button] = field(default_factory=list)
