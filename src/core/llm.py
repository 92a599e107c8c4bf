"""
Xiyin Bot: LLM provider abstraction.

`complete()` routes a prompt to the configured provider (LLM_PROVIDER):
gemini (default), anthropic or openai. `create_summarizer()` wraps it as the
summarizer collaborator, or returns None when no API key is configured.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

# provider(api_key, model, system, user_message, max_tokens) -> text
_ProviderFn = Callable[[str, str, str, str, int], Awaitable[str]]


async def _complete_gemini(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(model_name=model, system_instruction=system)
    response = await gm.generate_content_async(
        user_message,
        generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
    )
    return response.text


async def _complete_anthropic(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    return response.content[0].text


async def _complete_openai(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.choices[0].message.content


_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "gemini":    (_complete_gemini,    "gemini-2.0-flash"),
    "anthropic": (_complete_anthropic, "claude-haiku-4-5-20251001"),
    "openai":    (_complete_openai,    "gpt-4o-mini"),
}


def _select_provider() -> tuple[_ProviderFn, str, str]:
    """Read settings and return (provider_fn, model, api_key)."""
    from src.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    fn, default_model = _PROVIDERS[provider_name]
    model = settings.LLM_MODEL or default_model
    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return fn, model, settings.LLM_API_KEY


# Lazy singleton, populated on first call to complete()
_provider_fn: _ProviderFn | None = None
_model: str = ""
_api_key: str = ""


async def complete(system: str, user_message: str, max_tokens: int = 1024) -> str:
    """Send a prompt to the configured LLM provider and return the response text.

    Raises on API errors; callers should handle exceptions.
    """
    global _provider_fn, _model, _api_key

    if _provider_fn is None:
        _provider_fn, _model, _api_key = _select_provider()

    return await _provider_fn(_api_key, _model, system, user_message, max_tokens)


class LLMSummarizer:
    """Summarizer collaborator backed by `complete()`."""

    def __init__(self, max_tokens: int = 1024) -> None:
        self._max_tokens = max_tokens

    async def summarize(self, prompt: str, system_prompt: str) -> str:
        text = await complete(system_prompt, prompt, max_tokens=self._max_tokens)
        return (text or "").strip()


def create_summarizer() -> LLMSummarizer | None:
    """Return a summarizer, or None when LLM_API_KEY is not configured."""
    from src.config import settings

    if not settings.LLM_API_KEY:
        logger.info("LLM_API_KEY not set, insights disabled")
        return None
    return LLMSummarizer()
