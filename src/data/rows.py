"""
Xiyin Bot: Row value conversions shared by the store backends.

Spreadsheets hand back strings ("TRUE", "", "3"), SQLite hands back ints and
NULLs; both collapse to the same Python values here.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from src.data.models import Button

logger = logging.getLogger(__name__)


def to_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().upper() in ("TRUE", "1", "YES")


def to_int(value: object, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def blank_to_none(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def format_timestamp(dt: datetime | None) -> str:
    """Persist timestamps as UTC ISO-8601 so they sort as strings."""
    if dt is None:
        return ""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


def parse_timestamp(value: object) -> datetime | None:
    text = blank_to_none(value)
    if text is None:
        return None
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable timestamp %r", text)
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_buttons(raw: object) -> list[Button]:
    """Decode a JSON list of {"label", "data"} objects; bad JSON yields []."""
    text = blank_to_none(raw)
    if text is None:
        return []
    try:
        items = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Invalid buttons JSON %r: %s", text, exc)
        return []
    buttons = []
    for item in items if isinstance(items, list) else []:
        if isinstance(item, dict) and item.get("label") and item.get("data"):
            buttons.append(Button(label=str(item["label"]), data=str(item["data"])))
    return buttons


def dump_buttons(buttons: list[Button]) -> str:
    if not buttons:
        return ""
    return json.dumps(
        [{"label": b.label, "data": b.data} for b in buttons], ensure_ascii=False,
    )
