"""LiteLLM provider — one async completion call, plain text out."""

from __future__ import annotations

import os
from typing import Any

import litellm
from loguru import logger

from koruclub.core.config.schema import LLMConfig

# Suppress litellm noise
litellm.suppress_debug_info = True


class LLMUnavailableError(Exception):
    """The model could not be reached or returned nothing usable."""


def setup_provider(config: LLMConfig) -> None:
    """Export the API key for the model's provider. Call once at startup."""
    if not config.api_key:
        return
    provider = config.model.split("/", 1)[0].upper()
    os.environ.setdefault(f"{provider}_API_KEY", config.api_key)


async def complete(
    prompt: str,
    config: LLMConfig,
    system: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 512,
) -> str:
    """Call LiteLLM and return the response text (stripped).

    Raises
    ------
    LLMUnavailableError
        On any transport/provider error or an empty response.
    """
    messages: list[dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    kwargs: dict[str, Any] = {
        "model": config.model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "timeout": config.timeout_s,
    }
    if config.api_base:
        kwargs["api_base"] = config.api_base

    try:
        response = await litellm.acompletion(**kwargs)
    except Exception as e:
        logger.error(f"LLM error: {e}")
        raise LLMUnavailableError(str(e)) from e

    content = (response.choices[0].message.content or "").strip()
    if not content:
        raise LLMUnavailableError("Empty LLM response")
    return content
