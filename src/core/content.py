"""
Xiyin Bot: Message catalogue.

Content owners maintain templates in the store under these IDs. When one is
missing or inactive, the built-in fallback text below is sent instead, so a
user never gets silence.
"""

from __future__ import annotations

# Placeholder tokens understood by templates
THEME_TOKEN = "【主題】"
QUESTION_TOKEN = "【從問題庫隨機抽取】"

# Template IDs
WELCOME_MONDAY = "WELCOME_MONDAY"
WELCOME_OTHER_DAY = "WELCOME_OTHER_DAY"
USE_BUTTON = "USE_BUTTON"
THEME_LOCKED = "THEME_LOCKED"
START_READY = "START_READY"
START_NOW_LATER = "START_NOW_LATER"
HOW_TO_PLAY = "HOW_TO_PLAY"
LATER = "LATER"
HEARD = "HEARD"
ACTIVE_ACK = "ACTIVE_ACK"
RECORD_CLOSING = "RECORD_CLOSING"
NO_RECORD = "NO_RECORD"
RECORD_HEADER = "RECORD_HEADER"
UNSUPPORTED_INPUT = "UNSUPPORTED_INPUT"
DAILY_QUESTION = "DAILY_QUESTION"
SKIPPED_YESTERDAY = "SKIPPED_YESTERDAY"
MONDAY_WEEK1 = "MONDAY_WEEK1"
SUNDAY_NO_RESPONSE = "SUNDAY_NO_RESPONSE"
SUNDAY_START = "SUNDAY_START"
MONTHLY_HEADER = "MONTHLY_HEADER"


def confirm_id(theme_value: str) -> str:
    return f"CONFIRM_{theme_value}"


FALLBACKS: dict[str, str] = {
    WELCOME_MONDAY: "你好！歡迎來到「隙音」。\n\n今天是週一，選一個這週想探索的主題吧。",
    WELCOME_OTHER_DAY: "你好！歡迎來到「隙音」。\n\n每週一我們會一起選一個主題，到時候見 🌱",
    USE_BUTTON: "請點選上方按鈕選擇你想探索的主題 😊",
    THEME_LOCKED: "這週的主題已經選好了，下週一再換新的主題吧。",
    START_READY: "收到。接下來會問你，這週想關注什麼主題。",
    START_NOW_LATER: "今天沒有問題要問你，明天早上見 ☀️",
    HOW_TO_PLAY: (
        "每週流程：\n"
        "週一：選一個主題\n"
        "週二到週六：每天早上收到一個問題，想到什麼就回什麼\n"
        "週日：回顧這一週的紀錄"
    ),
    LATER: "好的。當你準備好，隨時可以回來。",
    HEARD: "聽到了。",
    ACTIVE_ACK: "我會在每週一開始新的循環。期待與你對話 🌱",
    RECORD_CLOSING: "謝謝你這週的分享。下週一見 🌱",
    NO_RECORD: "這週還沒有紀錄喔。",
    RECORD_HEADER: "這週關於「【主題】」的紀錄：",
    UNSUPPORTED_INPUT: "目前只看得懂文字訊息，請用文字回覆 🙏",
    DAILY_QUESTION: "關於【主題】：\n\n【從問題庫隨機抽取】",
    SKIPPED_YESTERDAY: "昨天的問題你跳過了，沒關係。",
    MONDAY_WEEK1: "新的一週開始了。這週，你想關注什麼？",
    SUNDAY_NO_RESPONSE: "這週好像比較忙，沒關係。下週一我們再一起開始。",
    SUNDAY_START: "這週關於「【主題】」，你留下了一些聲音。要一起看看嗎？",
    MONTHLY_HEADER: "這個月的回顧：",
}

GENERIC_CONFIRM = "收到。\n\n這週，我們一起關注「【主題】」。"
UNKNOWN_THEME_NAME = "這個主題"

# Button labels
START_NOW_LABEL = "現在開始"
SHOW_RECORD_LABEL = "看看這週的紀錄"
