"""
Xiyin Bot: Insight generator.

Turns a user's answers into a transcript, and optionally into a short
narrative written by the summarizer collaborator. Summarizer failures never
reach the caller: they degrade to a fixed apology text.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from src.data.models import AnswerRecord, Theme

if TYPE_CHECKING:
    from src.ports.summarizer_port import SummarizerPort

logger = logging.getLogger(__name__)

PERSONA_PROMPT = (
    "你是「隙音」，一位溫柔、不評價的傾聽者。"
    "使用者在一段時間裡回答了一些關於自己生活的問題。"
    "請用繁體中文，以第二人稱寫一段溫暖的回顧："
    "指出你注意到的主題、變化與反覆出現的想法，"
    "不給建議、不下診斷，也不要逐條複述答案。"
    "控制在 250 字以內。"
)

APOLOGY_FALLBACK = "抱歉，這次沒辦法幫你整理回顧，之後再試試看。"

_DAY_NAMES = {
    "MON": "週一",
    "TUE": "週二",
    "WED": "週三",
    "THU": "週四",
    "FRI": "週五",
    "SAT": "週六",
    "SUN": "週日",
}


@dataclass
class InsightResult:
    """Summarizer output; ok is False when text is the apology fallback."""

    text: str
    ok: bool


def _theme_name(value: str) -> str:
    theme = Theme.parse(value)
    return theme.display_name if theme else value


def format_transcript(answers: list[AnswerRecord]) -> str:
    """One block per answer, in the order the answers were given."""
    blocks = []
    for a in sorted(answers, key=lambda a: a.timestamp):
        day = _DAY_NAMES.get(a.day, a.day)
        question = a.question_text or "（問題）"
        blocks.append(f"{day}｜{question}\n→ {a.answer_text}")
    return "\n\n".join(blocks)


def group_by_week(answers: list[AnswerRecord]) -> OrderedDict[str, list[AnswerRecord]]:
    """Group answers by ISO week, weeks in chronological order."""
    grouped: OrderedDict[str, list[AnswerRecord]] = OrderedDict()
    for a in sorted(answers, key=lambda a: (a.week, a.timestamp)):
        grouped.setdefault(a.week, []).append(a)
    return grouped


def build_weekly_prompt(answers: list[AnswerRecord]) -> str:
    theme = _theme_name(answers[0].theme) if answers else ""
    return (
        f"這是使用者本週關於「{theme}」的回答：\n\n"
        f"{format_transcript(answers)}\n\n"
        "請寫一段簡短的本週回顧（100 字以內）。"
    )


def build_monthly_prompt(answers_by_week: dict[str, list[AnswerRecord]]) -> str:
    sections = []
    for week, answers in answers_by_week.items():
        theme = _theme_name(answers[0].theme) if answers else ""
        sections.append(f"【{week}｜主題：{theme}】\n{format_transcript(answers)}")
    return (
        "這是使用者這個月每週的回答：\n\n"
        + "\n\n".join(sections)
        + "\n\n請寫一段這個月的回顧。"
    )


async def summarize(
    summarizer: SummarizerPort | None,
    prompt: str,
    persona: str = PERSONA_PROMPT,
    timeout: float | None = None,
) -> InsightResult:
    """Call the summarizer; any failure, timeout or absence yields the apology."""
    if summarizer is None:
        return InsightResult(APOLOGY_FALLBACK, ok=False)

    if timeout is None:
        from src.config import settings
        timeout = settings.SUMMARIZER_TIMEOUT_SECONDS

    try:
        text = await asyncio.wait_for(summarizer.summarize(prompt, persona), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Summarizer timed out after %.0fs", timeout)
        return InsightResult(APOLOGY_FALLBACK, ok=False)
    except Exception as exc:
        logger.warning("Summarizer failed: %s", exc)
        return InsightResult(APOLOGY_FALLBACK, ok=False)

    if not text or not text.strip():
        logger.warning("Summarizer returned empty text")
        return InsightResult(APOLOGY_FALLBACK, ok=False)
    return InsightResult(text.strip(), ok=True)
