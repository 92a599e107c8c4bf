"""Summarizer port: natural-language summarization collaborator."""

from __future__ import annotations

from typing import Protocol


class SummarizerPort(Protocol):
    async def summarize(self, prompt: str, system_prompt: str) -> str: ...
