"""Tests for src.adapters.sheet_store: SheetProgressStore over fake worksheets.

The fake worksheet mimics the handful of gspread calls the store makes, so
row layout and header handling are tested without network access.
"""

import asyncio
import contextlib
import re
import time
from datetime import datetime, timedelta
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import gspread.utils as gsu
import pytest
from gspread.exceptions import WorksheetNotFound

from src.adapters.sheet_store import HEADERS, SheetProgressStore
from src.core.scheduler import WeeklyScheduler
from src.core.state_machine import StateMachine
from src.data.models import AnswerRecord, Button, InsightRecord, Theme, UserRecord, UserStatus
from src.ports.store_port import AnswerQuery, StoreError

TZ = ZoneInfo("Asia/Taipei")
T0 = datetime(2024, 1, 9, 9, 0, tzinfo=TZ)


class FakeWorksheet:
    def __init__(self, title, rows):
        self.title = title
        self.rows = [list(r) for r in rows]

    def row_values(self, n):
        return list(self.rows[n - 1]) if len(self.rows) >= n else []

    def get_all_records(self, default_blank="", numericise_ignore=None):
        if not self.rows:
            return []
        header = self.rows[0]
        records = []
        for row in self.rows[1:]:
            padded = list(row) + [default_blank] * (len(header) - len(row))
            if numericise_ignore != ["all"]:
                # gspread turns numeric-looking text into numbers by default
                padded = [
                    gsu.numericise(v, default_blank=default_blank) if isinstance(v, str) else v
                    for v in padded
                ]
            records.append({h: (v if v != "" else default_blank) for h, v in zip(header, padded)})
        return records

    def append_row(self, values, value_input_option="RAW"):
        self.rows.append(list(values))

    def update(self, values, range_name, value_input_option="RAW"):
        row = int(re.match(r"A(\d+):", range_name).group(1))
        self.rows[row - 1] = list(values[0])


def _spreadsheet(sheets):
    spreadsheet = MagicMock()

    def worksheet(title):
        if title not in sheets:
            raise WorksheetNotFound(title)
        return sheets[title]

    def add_worksheet(title, rows, cols):
        sheets[title] = FakeWorksheet(title, [])
        return sheets[title]

    spreadsheet.worksheet.side_effect = worksheet
    spreadsheet.add_worksheet.side_effect = add_worksheet
    return spreadsheet


def _answer(answer_id, when, week="2024-W02", skipped=False):
    return AnswerRecord(
        answer_id=answer_id, user_id="U1", week=week, theme="SELF", day="TUE",
        question_id="Q1", question_text="今天你為自己做了什麼？", answer_text="散步",
        timestamp=when, skipped=skipped,
    )


@pytest.fixture
def sheets():
    return {
        "Users": FakeWorksheet("Users", [HEADERS["Users"]]),
        "Answers": FakeWorksheet("Answers", [HEADERS["Answers"]]),
        "Messages": FakeWorksheet("Messages", [
            HEADERS["Messages"],
            ["WELCOME_MONDAY", "週一快樂！", '[{"label": "自己", "data": "action=select_theme&theme=SELF"}]', "TRUE"],
            ["HEARD", "聽到了", "", "FALSE"],
            ["LATER", "好的", "not json", "TRUE"],
        ]),
        "Questions": FakeWorksheet("Questions", [
            HEADERS["Questions"],
            ["Q1", "SELF", "TUE", "今天你為自己做了什麼？", "TRUE"],
            ["Q2", "self", "tue", "小寫也算", "TRUE"],
            ["Q3", "SELF", "TUE", "停用的問題", "FALSE"],
            ["Q4", "FAMILY", "TUE", "今天和誰吃飯？", "TRUE"],
        ]),
    }


@pytest.fixture
def sheet_store(sheets):
    return SheetProgressStore(_spreadsheet(sheets))


class TestUsers:
    def test_append_then_update_in_place(self, sheet_store, sheets):
        user = UserRecord(user_id="U1", created_at=T0)
        sheet_store.upsert_user(user)
        user.status = UserStatus.WAITING_THEME
        user.last_active = T0
        sheet_store.upsert_user(user)

        rows = sheets["Users"].rows
        assert len(rows) == 2
        assert rows[1][0] == "U1"
        assert rows[1][1] == "waiting_theme"
        assert sheet_store.get_user("U1") == user

    def test_round_trip(self, sheet_store):
        user = UserRecord(
            user_id="U1", status=UserStatus.ACTIVE, current_theme=Theme.FAMILY,
            current_week="2024-W02", last_active=T0, last_question_id="Q4",
            no_response_week=1, created_at=T0,
        )
        sheet_store.upsert_user(user)
        assert sheet_store.get_user("U1") == user

    def test_numeric_ids_from_sheet(self, sheet_store, sheets):
        # a cell handed back as a number still matches the string id
        sheets["Users"].rows.append([12345, "active", "SELF", "2024-W02", "", "", 0, ""])
        user = sheet_store.get_user("12345")
        assert user.status == UserStatus.ACTIVE
        assert user.last_question_id is None

    def test_extra_columns_are_preserved(self, sheet_store, sheets):
        sheets["Users"].rows[0].append("note")
        sheets["Users"].rows.append(["U1", "active", "", "", "", "", "0", "", "VIP"])
        sheet_store.upsert_user(UserRecord(user_id="U1", status=UserStatus.IDLE))
        assert sheets["Users"].rows[1][-1] == "VIP"
        assert sheets["Users"].rows[1][1] == "idle"

    def test_editor_columns_keep_leading_zeros(self, sheet_store, sheets):
        sheets["Users"].rows[0].append("phone")
        sheets["Users"].rows.append(["U1", "active", "", "", "", "", "0", "", "0912345678"])
        sheet_store.upsert_user(UserRecord(user_id="U1", status=UserStatus.IDLE))
        assert sheets["Users"].rows[1][-1] == "0912345678"

    def test_list_users_skips_blank_rows(self, sheet_store, sheets):
        sheets["Users"].rows.append(["U1", "active", "", "", "", "", "", ""])
        sheets["Users"].rows.append(["", "", "", "", "", "", "", ""])
        assert [u.user_id for u in sheet_store.list_users()] == ["U1"]


class TestAnswers:
    def test_append_uses_sheet_columns(self, sheet_store, sheets):
        sheet_store.append_answer(_answer("A1", T0))
        row = dict(zip(HEADERS["Answers"], sheets["Answers"].rows[1]))
        assert row["AnswerID"] == "A1"
        assert row["question"] == "今天你為自己做了什麼？"
        assert row["answer"] == "散步"
        assert row["skipped"] == "FALSE"
        assert row["timestamp"] == "2024-01-09T01:00:00+00:00"

    def test_query_filters_and_sorts(self, sheet_store):
        sheet_store.append_answer(_answer("A2", T0 + timedelta(hours=2)))
        sheet_store.append_answer(_answer("A1", T0))
        sheet_store.append_answer(_answer("A3", T0, skipped=True))
        sheet_store.append_answer(_answer("A4", T0 - timedelta(days=7), week="2024-W01"))

        answers = sheet_store.query_answers(AnswerQuery(user_id="U1", week="2024-W02"))
        assert [a.answer_id for a in answers] == ["A1", "A2"]

    def test_numeric_looking_answers_round_trip_as_text(self, sheet_store):
        for i, text in enumerate(["007", "1e3", "42"]):
            answer = _answer(f"A{i}", T0 + timedelta(minutes=i))
            answer.answer_text = text
            sheet_store.append_answer(answer)

        answers = sheet_store.query_answers(AnswerQuery(user_id="U1"))
        assert [a.answer_text for a in answers] == ["007", "1e3", "42"]

    def test_unreadable_timestamp_rows_are_dropped(self, sheet_store, sheets):
        sheets["Answers"].rows.append(["A9", "U1", "2024-W02", "SELF", "TUE", "Q1", "q", "a", "FALSE", "yesterday"])
        assert sheet_store.query_answers(AnswerQuery(user_id="U1")) == []


class TestContent:
    def test_active_template_with_buttons(self, sheet_store):
        template = sheet_store.get_message_template("WELCOME_MONDAY")
        assert template.text == "週一快樂！"
        assert template.buttons == [Button("自己", "action=select_theme&theme=SELF")]

    def test_inactive_template_is_invisible(self, sheet_store):
        assert sheet_store.get_message_template("HEARD") is None

    def test_bad_buttons_json_still_returns_text(self, sheet_store):
        template = sheet_store.get_message_template("LATER")
        assert template.text == "好的"
        assert template.buttons == []

    def test_list_questions(self, sheet_store):
        ids = [q.question_id for q in sheet_store.list_questions("SELF", "TUE")]
        assert ids == ["Q1", "Q2"]

    def test_question_by_id(self, sheet_store):
        assert sheet_store.get_question_by_id("Q3").active is False
        assert sheet_store.get_question_by_id("Q99") is None


class TestInsights:
    def test_missing_worksheet_is_created(self, sheet_store, sheets):
        sheet_store.save_insight(InsightRecord("I1", "U1", "monthly", "2024-01", "回顧", T0))

        assert sheets["Insights"].rows[0] == HEADERS["Insights"]
        insight = sheet_store.get_insight("U1", "monthly", "2024-01")
        assert insight.content == "回顧"
        assert insight.created_at == T0

    def test_absent_insight(self, sheet_store):
        assert sheet_store.get_insight("U1", "monthly", "2024-01") is None


class TestErrors:
    def test_transient_load_failure_is_retried(self, sheets, monkeypatch):
        monkeypatch.setattr("time.sleep", lambda _: None)
        flaky = MagicMock(wraps=sheets["Users"])
        flaky.get_all_records.side_effect = [ConnectionError("reset"), []]
        sheets["Users"] = flaky
        store = SheetProgressStore(_spreadsheet(sheets))

        assert store.list_users() == []
        assert flaky.get_all_records.call_count == 2

    def test_persistent_load_failure_raises_store_error(self, sheets, monkeypatch):
        monkeypatch.setattr("time.sleep", lambda _: None)
        broken = MagicMock()
        broken.get_all_records.side_effect = ConnectionError("down")
        sheets["Users"] = broken
        store = SheetProgressStore(_spreadsheet(sheets))

        with pytest.raises(StoreError):
            store.get_user("U1")

    def test_write_failure_is_not_retried(self, sheets):
        broken = MagicMock()
        broken.row_values.return_value = HEADERS["Answers"]
        broken.append_row.side_effect = ConnectionError("down")
        sheets["Answers"] = broken
        store = SheetProgressStore(_spreadsheet(sheets))

        with pytest.raises(StoreError):
            store.append_answer(_answer("A1", T0))
        assert broken.append_row.call_count == 1


class TestEventLoop:
    @pytest.mark.asyncio
    async def test_retrying_load_does_not_stall_other_coroutines(self, sheets):
        flaky = MagicMock(wraps=sheets["Users"])
        flaky.get_all_records.side_effect = [OSError("reset"), []]
        sheets["Users"] = flaky
        store = SheetProgressStore(_spreadsheet(sheets))
        scheduler = WeeklyScheduler(StateMachine(store, MagicMock()))

        gaps = []

        async def ticker():
            last = time.monotonic()
            while True:
                await asyncio.sleep(0.01)
                now = time.monotonic()
                gaps.append(now - last)
                last = now

        task = asyncio.create_task(ticker())
        summary = await scheduler.run_trigger("theme_prompt")
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

        assert flaky.get_all_records.call_count == 2
        assert summary.error is None
        assert summary.total == 0
        # the backoff between attempts is at least half a second
        assert len(gaps) > 10
        assert max(gaps) < 0.25
