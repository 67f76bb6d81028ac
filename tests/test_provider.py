"""Tests for the LiteLLM completion wrapper."""

import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from koruclub.core.config.schema import LLMConfig
from koruclub.core.providers.litellm import LLMUnavailableError, complete, setup_provider


def _response(content):
    msg = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=msg)])


@pytest.mark.asyncio
async def test_complete_returns_stripped_text():
    cfg = LLMConfig(model="ollama/qwen2:0.5b", api_base="http://localhost:11434")
    with patch("litellm.acompletion", new_callable=AsyncMock) as mock:
        mock.return_value = _response("  hello  \n")
        assert await complete("hi", cfg, system="be brief", max_tokens=10) == "hello"

    kwargs = mock.call_args.kwargs
    assert kwargs["model"] == "ollama/qwen2:0.5b"
    assert kwargs["api_base"] == "http://localhost:11434"
    assert kwargs["max_tokens"] == 10
    assert kwargs["timeout"] == 60.0
    assert [m["role"] for m in kwargs["messages"]] == ["system", "user"]


@pytest.mark.asyncio
async def test_complete_omits_missing_api_base():
    cfg = LLMConfig(model="openai/gpt-4o-mini", api_base=None)
    with patch("litellm.acompletion", new_callable=AsyncMock) as mock:
        mock.return_value = _response("ok")
        await complete("hi", cfg)
    assert "api_base" not in mock.call_args.kwargs
    assert len(mock.call_args.kwargs["messages"]) == 1


@pytest.mark.asyncio
async def test_complete_wraps_provider_errors():
    with patch("litellm.acompletion", new_callable=AsyncMock) as mock:
        mock.side_effect = ConnectionError("connection refused")
        with pytest.raises(LLMUnavailableError, match="connection refused"):
            await complete("hi", LLMConfig())


@pytest.mark.asyncio
async def test_complete_rejects_empty_response():
    with patch("litellm.acompletion", new_callable=AsyncMock) as mock:
        mock.return_value = _response(None)
        with pytest.raises(LLMUnavailableError):
            await complete("hi", LLMConfig())


def test_setup_provider_exports_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    setup_provider(LLMConfig(model="openai/gpt-4o-mini", api_key="sk-test"))
    assert os.environ["OPENAI_API_KEY"] == "sk-test"


def test_setup_provider_keeps_existing_key(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    setup_provider(LLMConfig(model="openai/gpt-4o-mini", api_key="sk-yaml"))
    assert os.environ["OPENAI_API_KEY"] == "sk-env"


def test_setup_provider_without_key_is_noop(monkeypatch):
    monkeypatch.delenv("OLLAMA_API_KEY", raising=False)
    setup_provider(LLMConfig())
    assert "OLLAMA_API_KEY" not in os.environ
