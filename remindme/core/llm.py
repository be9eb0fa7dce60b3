"""
RemindMe — LLM Provider Abstraction.

Single public function `complete()` that routes to the configured provider.
Provider is selected at first use via the LLM_PROVIDER env var.
Supports: openai (default), anthropic, gemini.

Every call is bounded by LLM_TIMEOUT_SECONDS; provider failures and
timeouts surface as LLMError so callers can tell an unreachable provider
apart from an answer that could not be understood.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

# Type alias for provider implementations
_ProviderFn = Callable[[str, str, str, str, int], Awaitable[str]]


class LLMError(Exception):
    """Raised when the LLM provider cannot be reached or times out."""


# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


async def _complete_openai(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        temperature=0,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    if not response.choices:
        raise LLMError("no completion given")
    return response.choices[0].message.content or ""


async def _complete_anthropic(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        temperature=0,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    if not response.content:
        raise LLMError("no completion given")
    return response.content[0].text


async def _complete_gemini(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(
        model_name=model,
        system_instruction=system,
    )
    response = await gm.generate_content_async(
        user_message,
        generation_config=genai.types.GenerationConfig(
            max_output_tokens=max_tokens, temperature=0,
        ),
    )
    return response.text


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "openai":    (_complete_openai,    "gpt-4o-mini"),
    "anthropic": (_complete_anthropic, "claude-haiku-4-5-20251001"),
    "gemini":    (_complete_gemini,    "gemini-2.0-flash"),
}


def _select_provider() -> tuple[_ProviderFn, str, str, float]:
    """Read settings and return (provider_fn, model, api_key, timeout)."""
    from remindme.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    fn, default_model = _PROVIDERS[provider_name]
    model = settings.LLM_MODEL or default_model

    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return fn, model, settings.LLM_API_KEY, settings.LLM_TIMEOUT_SECONDS


# Lazy singleton — populated on first call to complete()
_provider_fn: _ProviderFn | None = None
_model: str = ""
_api_key: str = ""
_timeout: float = 30.0


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(system: str, user_message: str, max_tokens: int = 256) -> str:
    """Send a prompt to the configured LLM provider and return the response text.

    Raises LLMError on provider errors and timeouts.
    """
    global _provider_fn, _model, _api_key, _timeout

    if _provider_fn is None:
        _provider_fn, _model, _api_key, _timeout = _select_provider()

    try:
        return await asyncio.wait_for(
            _provider_fn(_api_key, _model, system, user_message, max_tokens),
            timeout=_timeout,
        )
    except LLMError:
        raise
    except asyncio.TimeoutError as exc:
        raise LLMError(f"LLM call timed out after {_timeout:g}s") from exc
    except Exception as exc:
        raise LLMError(f"LLM call failed: {exc}") from exc
