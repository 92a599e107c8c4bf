"""Tests for src.data.db: SQLiteProgressStore."""

import sqlite3
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from src.data.db import SQLiteProgressStore
from src.data.models import AnswerRecord, Button, InsightRecord, Theme, UserRecord, UserStatus
from src.ports.store_port import AnswerQuery, StoreError

TZ = ZoneInfo("Asia/Taipei")
T0 = datetime(2024, 1, 9, 9, 0, tzinfo=TZ)


def _answer(answer_id, when, user_id="U1", week="2024-W02", skipped=False):
    return AnswerRecord(
        answer_id=answer_id,
        user_id=user_id,
        week=week,
        theme="SELF",
        day="TUE",
        question_id="Q1",
        question_text="問題",
        answer_text="答案",
        timestamp=when,
        skipped=skipped,
    )


class TestUsers:
    def test_missing_user_is_none(self, store):
        assert store.get_user("nobody") is None

    def test_upsert_then_get_round_trips_every_field(self, store):
        user = UserRecord(
            user_id="U1",
            status=UserStatus.WAITING_ANSWER,
            current_theme=Theme.CREATION,
            current_week="2024-W02",
            last_active=T0,
            last_question_id="Q_CREATION_TUE_2",
            no_response_week=2,
            created_at=T0 - timedelta(days=30),
        )
        store.upsert_user(user)
        assert store.get_user("U1") == user

    def test_upsert_overwrites_but_keeps_created_at(self, store):
        store.upsert_user(UserRecord(user_id="U1", created_at=T0))
        store.upsert_user(UserRecord(user_id="U1", status=UserStatus.ACTIVE, created_at=None))

        user = store.get_user("U1")
        assert user.status == UserStatus.ACTIVE
        assert user.created_at == T0

    def test_list_users(self, store):
        store.upsert_user(UserRecord(user_id="U2"))
        store.upsert_user(UserRecord(user_id="U1"))
        assert [u.user_id for u in store.list_users()] == ["U1", "U2"]

    def test_unknown_status_in_row_reads_as_new(self, store, tmp_db_path):
        with sqlite3.connect(tmp_db_path) as conn:
            conn.execute("INSERT INTO users (user_id, status) VALUES ('U9', 'legacy')")
        assert store.get_user("U9").status == UserStatus.NEW


class TestAnswers:
    def test_query_by_week_excludes_skipped(self, store):
        store.append_answer(_answer("A1", T0))
        store.append_answer(_answer("A2", T0 + timedelta(days=1), skipped=True))
        store.append_answer(_answer("A3", T0 - timedelta(days=7), week="2024-W01"))

        answers = store.query_answers(AnswerQuery(user_id="U1", week="2024-W02"))
        assert [a.answer_id for a in answers] == ["A1"]

    def test_include_skipped(self, store):
        store.append_answer(_answer("A1", T0, skipped=True))
        answers = store.query_answers(AnswerQuery(user_id="U1", include_skipped=True))
        assert answers[0].skipped is True

    def test_time_range_is_half_open(self, store):
        start = datetime(2024, 1, 9, tzinfo=TZ)
        end = start + timedelta(days=1)
        store.append_answer(_answer("A_start", start))
        store.append_answer(_answer("A_mid", T0))
        store.append_answer(_answer("A_end", end))

        answers = store.query_answers(AnswerQuery(user_id="U1", start=start, end=end))
        assert [a.answer_id for a in answers] == ["A_start", "A_mid"]

    def test_other_users_are_invisible(self, store):
        store.append_answer(_answer("A1", T0, user_id="U2"))
        assert store.query_answers(AnswerQuery(user_id="U1")) == []

    def test_answers_come_back_in_time_order(self, store):
        store.append_answer(_answer("A2", T0 + timedelta(hours=1)))
        store.append_answer(_answer("A1", T0))
        answers = store.query_answers(AnswerQuery(user_id="U1"))
        assert [a.answer_id for a in answers] == ["A1", "A2"]
        assert answers[0].timestamp == T0

    def test_same_millisecond_ids_do_not_collide(self, store):
        store.append_answer(_answer("A1", T0, user_id="U1"))
        store.append_answer(_answer("A1", T0, user_id="U2"))
        assert len(store.query_answers(AnswerQuery(user_id="U2"))) == 1


class TestContent:
    def test_template_round_trip(self, store):
        buttons = [Button("看看", "action=show_record")]
        store.add_message_template("SUNDAY_START", "這週…", buttons)
        template = store.get_message_template("SUNDAY_START")
        assert template.text == "這週…"
        assert template.buttons == buttons

    def test_inactive_template_is_invisible(self, store):
        store.add_message_template("HEARD", "收到", active=False)
        assert store.get_message_template("HEARD") is None

    def test_list_questions_filters_theme_day_and_active(self, store):
        store.add_question("Q1", "SELF", "TUE", "one")
        store.add_question("Q2", "SELF", "TUE", "two", active=False)
        store.add_question("Q3", "SELF", "WED", "three")
        store.add_question("Q4", "FAMILY", "TUE", "four")
        assert [q.question_id for q in store.list_questions("SELF", "TUE")] == ["Q1"]

    def test_question_by_id_ignores_active_flag(self, store):
        store.add_question("Q2", "SELF", "TUE", "two", active=False)
        question = store.get_question_by_id("Q2")
        assert question.text == "two"
        assert question.active is False
        assert store.get_question_by_id("nope") is None


class TestInsights:
    def test_save_and_get(self, store):
        store.save_insight(InsightRecord("I1", "U1", "monthly", "2024-01", "回顧", T0))
        insight = store.get_insight("U1", "monthly", "2024-01")
        assert insight.content == "回顧"
        assert insight.created_at == T0
        assert store.get_insight("U1", "monthly", "2024-02") is None
        assert store.get_insight("U1", "weekly", "2024-01") is None

    def test_latest_wins(self, store):
        store.save_insight(InsightRecord("I1", "U1", "weekly", "2024-W02", "old", T0))
        store.save_insight(InsightRecord("I2", "U1", "weekly", "2024-W02", "new", T0 + timedelta(hours=1)))
        assert store.get_insight("U1", "weekly", "2024-W02").content == "new"


class TestErrors:
    def test_write_failure_raises_store_error(self, store, tmp_db_path):
        with sqlite3.connect(tmp_db_path) as conn:
            conn.execute("DROP TABLE answers")
        with pytest.raises(StoreError):
            store.append_answer(_answer("A1", T0))

    def test_load_failure_raises_store_error_after_retries(self, store, tmp_db_path, monkeypatch):
        monkeypatch.setattr("time.sleep", lambda _: None)
        with sqlite3.connect(tmp_db_path) as conn:
            conn.execute("DROP TABLE users")
        with pytest.raises(StoreError):
            store.get_user("U1")


def test_default_path_comes_from_settings(tmp_path, monkeypatch):
    from src.config import settings
    path = tmp_path / "nested" / "xiyin.db"
    monkeypatch.setattr(settings, "DATABASE_PATH", str(path))
    SQLiteProgressStore()
    assert path.exists()
