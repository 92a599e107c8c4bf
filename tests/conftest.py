"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures: a temp SQLite store, a fixed clock and a
messenger that records what it sends.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "")
os.environ.setdefault("LLM_PROVIDER", "gemini")
os.environ.setdefault("ADMIN_USER_IDS", "12345")
os.environ.setdefault("STORE_BACKEND", "sqlite")
os.environ.setdefault("STORE_RETRY_ATTEMPTS", "2")
os.environ.setdefault("TIMEZONE", "Asia/Taipei")

import random
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

TZ = ZoneInfo("Asia/Taipei")

# 2024-01-08 is a Monday; the week is 2024-W02.
MONDAY = datetime(2024, 1, 8, 9, 0, tzinfo=TZ)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now


class RecordingMessenger:
    """MessagingPort that keeps every message; can fail for chosen users."""

    def __init__(self) -> None:
        self.direct: list[tuple[str, object]] = []
        self.replies: list[tuple[str, object]] = []
        self.fail_for: set[str] = set()

    async def send_direct(self, user_id, content) -> None:
        if user_id in self.fail_for:
            raise RuntimeError(f"push to {user_id} failed")
        self.direct.append((user_id, content))

    async def send_reply(self, reply_token, content) -> None:
        self.replies.append((reply_token, content))

    @property
    def last_reply(self):
        return self.replies[-1][1]

    @property
    def last_direct(self):
        return self.direct[-1][1]


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_xiyin.db")


@pytest.fixture
def store(tmp_db_path):
    """Return a SQLiteProgressStore backed by a temp file."""
    from src.data.db import SQLiteProgressStore
    return SQLiteProgressStore(db_path=tmp_db_path)


@pytest.fixture
def clock():
    return FixedClock(MONDAY)


@pytest.fixture
def messenger():
    return RecordingMessenger()


@pytest.fixture
def machine(store, messenger, clock):
    """StateMachine over the temp store, with a seeded RNG and no summarizer."""
    from src.core.resolver import MessageResolver
    from src.core.state_machine import StateMachine
    resolver = MessageResolver(store, rng=random.Random(0))
    return StateMachine(store, messenger, resolver=resolver, clock=clock)
