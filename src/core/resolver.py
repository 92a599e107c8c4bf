"""
Xiyin Bot: Message and question resolver.

Looks up content-owned templates and thematic questions in the store.
Absence is never an error: callers get the built-in fallback text and a
warning lands in the log.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, Iterable

from src.core.content import FALLBACKS
from src.data.models import Button, OutboundMessage, Question, Template

if TYPE_CHECKING:
    from src.ports.store_port import ProgressStore

logger = logging.getLogger(__name__)


def render(text: str, replacements: dict[str, str] | None = None) -> str:
    """Plain token replacement; unknown tokens are left as-is."""
    for token, value in (replacements or {}).items():
        text = text.replace(token, value)
    return text


class MessageResolver:
    """Template and question lookups with deterministic fallbacks.

    Templates are cached for the lifetime of the resolver (the scheduler
    clears the cache at the start of every run). Questions are always read
    fresh so that content edits apply to the next draw. Store reads run in a
    worker thread.
    """

    def __init__(self, store: ProgressStore, rng: random.Random | None = None) -> None:
        self._store = store
        self._rng = rng or random.Random()
        self._templates: dict[str, Template | None] = {}

    def clear_cache(self) -> None:
        self._templates.clear()

    async def get_message(self, message_id: str) -> Template | None:
        if message_id not in self._templates:
            self._templates[message_id] = await asyncio.to_thread(
                self._store.get_message_template, message_id,
            )
        return self._templates[message_id]

    async def get_question(self, theme: str, day: str) -> Question | None:
        """Pick uniformly at random among active questions for (theme, day)."""
        pool = await asyncio.to_thread(self._store.list_questions, theme, day)
        candidates = [q for q in pool if q.active]
        if not candidates:
            return None
        return self._rng.choice(candidates)

    async def message(
        self,
        message_id: str,
        fallback: str | None = None,
        replacements: dict[str, str] | None = None,
        default_buttons: Iterable[Button] = (),
        with_buttons: bool = True,
    ) -> OutboundMessage:
        """Build an outbound message from a template, or from fallback text.

        Template buttons win over default_buttons; with_buttons=False drops
        both.
        """
        template = await self.get_message(message_id)
        if template is not None:
            text = template.text
            buttons = list(template.buttons) or list(default_buttons)
        else:
            logger.warning("Template %s not found, using fallback text", message_id)
            text = fallback if fallback is not None else FALLBACKS.get(message_id, "")
            buttons = list(default_buttons)

        return OutboundMessage(
            text=render(text, replacements),
            buttons=buttons if with_buttons else [],
        )

    async def text(
        self,
        message_id: str,
        fallback: str | None = None,
        replacements: dict[str, str] | None = None,
    ) -> str:
        message = await self.message(message_id, fallback, replacements, with_buttons=False)
        return message.text
