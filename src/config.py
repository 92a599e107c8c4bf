"""
Xiyin Bot: Centralized configuration.

Loads all settings from .env and validates required keys.
Every other module reads its settings from here.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # LLM summarizer: gemini, anthropic or openai. Empty key disables it.
    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str = ""
    SUMMARIZER_TIMEOUT_SECONDS: float = 60.0

    # Store backend: "sheets" | "sqlite"
    STORE_BACKEND: str = "sheets"
    STORE_RETRY_ATTEMPTS: int = 3

    # Google Sheets (only needed when STORE_BACKEND=sheets)
    SPREADSHEET_ID: str = ""
    GOOGLE_SERVICE_ACCOUNT_FILE: str = "service_account.json"

    # SQLite (only needed when STORE_BACKEND=sqlite)
    DATABASE_PATH: str = "data/xiyin.db"

    # Admins may run triggers on demand with /run
    ADMIN_USER_IDS: list[int] = []

    # Weekly cycle schedule, local to TIMEZONE
    TIMEZONE: str = "Asia/Taipei"
    THEME_PROMPT_HOUR: int = 9
    DAILY_QUESTION_HOUR: int = 9
    WEEKLY_REVIEW_HOUR: int = 20
    MONTHLY_SUMMARY_HOUR: int = 21

    @field_validator("ADMIN_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator(
        "THEME_PROMPT_HOUR",
        "DAILY_QUESTION_HOUR",
        "WEEKLY_REVIEW_HOUR",
        "MONTHLY_SUMMARY_HOUR",
        mode="before",
    )
    @classmethod
    def parse_hour(cls, v: str | int) -> int:
        hour = int(v)
        if not 0 <= hour <= 23:
            raise ValueError(f"hour out of range: {hour}")
        return hour

    @field_validator("STORE_BACKEND", mode="before")
    @classmethod
    def parse_backend(cls, v: str) -> str:
        return (v or "sheets").strip().lower()


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    llm_api_key = os.getenv("LLM_API_KEY", "")
    if llm_api_key.startswith("your-"):
        llm_api_key = ""

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "gemini"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        SUMMARIZER_TIMEOUT_SECONDS=os.getenv("SUMMARIZER_TIMEOUT_SECONDS", "60"),
        STORE_BACKEND=os.getenv("STORE_BACKEND", "sheets"),
        STORE_RETRY_ATTEMPTS=os.getenv("STORE_RETRY_ATTEMPTS", "3"),
        SPREADSHEET_ID=os.getenv("SPREADSHEET_ID", ""),
        GOOGLE_SERVICE_ACCOUNT_FILE=os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE", "service_account.json"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/xiyin.db"),
        ADMIN_USER_IDS=os.getenv("ADMIN_USER_IDS", ""),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Taipei"),
        THEME_PROMPT_HOUR=os.getenv("THEME_PROMPT_HOUR", "9"),
        DAILY_QUESTION_HOUR=os.getenv("DAILY_QUESTION_HOUR", "9"),
        WEEKLY_REVIEW_HOUR=os.getenv("WEEKLY_REVIEW_HOUR", "20"),
        MONTHLY_SUMMARY_HOUR=os.getenv("MONTHLY_SUMMARY_HOUR", "21"),
    )


# Singleton, imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
