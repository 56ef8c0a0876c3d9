"""Tests for LLMClient provider abstraction."""

import logging
import pytest
from unittest.mock import MagicMock

from paperlm.common.errors import TransientProviderError
from paperlm.common.llm_client import LLMClient


class TestLLMClientInit:
    def test_missing_anthropic_key_logs_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="paperlm.common.llm_client"):
            client = LLMClient(provider="anthropic")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_missing_openai_key_logs_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="paperlm.common.llm_client"):
            client = LLMClient(provider="openai")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_missing_google_key_logs_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="paperlm.common.llm_client"):
            client = LLMClient(provider="google")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_auto_provider_raises(self):
        with pytest.raises(ValueError, match="auto"):
            LLMClient(provider="auto")

    def test_unsupported_provider_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="paperlm.common.llm_client"):
            client = LLMClient(provider="unsupported_xyz")
        assert not client.is_available
        assert "Unsupported" in caplog.text


def _openai_client(text="hello"):
    client = LLMClient(provider="openai", model="gpt-4o-mini")
    fake = MagicMock()
    fake.chat.completions.create.return_value.choices = [MagicMock(message=MagicMock(content=f"  {text}  "))]
    client._client = fake
    return client, fake


class TestLLMClientGenerate:
    def test_generate_raises_when_unavailable(self):
        client = LLMClient(provider="anthropic")
        with pytest.raises(TransientProviderError, match="not available"):
            client.generate("test")

    def test_openai_generate_passes_temperature(self):
        client, fake = _openai_client()
        out = client.generate("question", system="be brief", max_tokens=50, temperature=0.1)

        assert out == "hello"
        kwargs = fake.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0.1
        assert kwargs["max_tokens"] == 50
        assert kwargs["messages"][0] == {"role": "system", "content": "be brief"}

    def test_anthropic_omits_empty_system(self):
        client = LLMClient(provider="anthropic", model="claude")
        fake = MagicMock()
        fake.messages.create.return_value.content = [MagicMock(text="ok")]
        client._client = fake

        assert client.generate("q") == "ok"
        assert "system" not in fake.messages.create.call_args.kwargs


class TestLLMClientAgenerate:
    @pytest.mark.asyncio
    async def test_agenerate_returns_text(self):
        client, _ = _openai_client("async answer")
        assert await client.agenerate("q") == "async answer"

    @pytest.mark.asyncio
    async def test_agenerate_wraps_provider_errors(self):
        client, fake = _openai_client()
        fake.chat.completions.create.side_effect = RuntimeError("boom")
        with pytest.raises(TransientProviderError, match="boom"):
            await client.agenerate("q")

    @pytest.mark.asyncio
    async def test_agenerate_unavailable(self):
        client = LLMClient(provider="openai")
        with pytest.raises(TransientProviderError):
            await client.agenerate("q")
