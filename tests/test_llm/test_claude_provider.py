"""Tests for the Claude provider with a mocked SDK client."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from history_insights.exceptions import (
    InputTooLongError,
    ProviderRequestError,
    ProviderUnavailableError,
    QuotaExceededError,
)
from history_insights.llm.base import ProviderStatus
from history_insights.llm.claude import ClaudeProvider

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def mock_client(text='{"ok": true}', tokens=42):
    client = MagicMock()
    client.messages.create = AsyncMock(
        return_value=SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])
    )
    client.messages.count_tokens = AsyncMock(return_value=SimpleNamespace(input_tokens=tokens))
    client.close = AsyncMock()
    return client


def status_error(cls, status, message):
    return cls(message, response=httpx.Response(status, request=REQUEST), body=None)


def test_default_model(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key-123")
    provider = ClaudeProvider()
    assert provider.model == "claude-haiku-4-5-20251001"
    assert provider.api_key == "test-key-123"


def test_client_property_is_cached(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    provider = ClaudeProvider()
    assert provider.client is provider.client
    assert provider.client is provider._client


@pytest.mark.asyncio
async def test_missing_key_needs_configuration(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    provider = ClaudeProvider(client=mock_client())
    assert await provider.get_status() == ProviderStatus.NEEDS_CONFIGURATION
    with pytest.raises(ProviderUnavailableError, match="API key is required"):
        await provider.initialize()


@pytest.mark.asyncio
async def test_prompt_sends_system_and_schema():
    client = mock_client()
    provider = ClaudeProvider(api_key="k", client=client)
    await provider.initialize("system text")
    result = await provider.prompt("analyze", response_schema={"type": "object"})

    assert result == '{"ok": true}'
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["system"] == "system text"
    assert kwargs["max_tokens"] == 8192
    content = kwargs["messages"][0]["content"]
    assert content.startswith("analyze")
    assert "Respond with valid JSON only" in content


@pytest.mark.asyncio
async def test_measure_input_usage_uses_count_tokens():
    client = mock_client(tokens=1234)
    provider = ClaudeProvider(api_key="k", client=client)
    await provider.initialize("sys")
    assert await provider.measure_input_usage("some text") == 1234
    kwargs = client.messages.count_tokens.call_args.kwargs
    assert kwargs["system"] == "sys"
    assert kwargs["messages"] == [{"role": "user", "content": "some text"}]


@pytest.mark.asyncio
async def test_non_text_response_is_request_error():
    client = mock_client()
    client.messages.create.return_value = SimpleNamespace(content=[SimpleNamespace(type="tool_use")])
    provider = ClaudeProvider(api_key="k", client=client)
    with pytest.raises(ProviderRequestError, match="Unexpected response format"):
        await provider.prompt("hi")


@pytest.mark.asyncio
@pytest.mark.parametrize("exc,expected", [
    (status_error(anthropic.RateLimitError, 429, "rate limited"), QuotaExceededError),
    (status_error(anthropic.BadRequestError, 400, "prompt is too long: 250000 tokens"), InputTooLongError),
    (status_error(anthropic.AuthenticationError, 401, "invalid x-api-key"), ProviderUnavailableError),
    (status_error(anthropic.InternalServerError, 500, "overloaded"), ProviderRequestError),
    (anthropic.APIConnectionError(request=REQUEST), ProviderUnavailableError),
    (anthropic.APITimeoutError(request=REQUEST), ProviderRequestError),
])
async def test_sdk_errors_are_translated(exc, expected):
    client = mock_client()
    client.messages.create.side_effect = exc
    provider = ClaudeProvider(api_key="k", client=client)
    with pytest.raises(expected):
        await provider.prompt("hi")


@pytest.mark.asyncio
async def test_rate_limit_then_recovery_status():
    client = mock_client()
    client.messages.create.side_effect = status_error(anthropic.RateLimitError, 429, "slow")
    provider = ClaudeProvider(api_key="k", client=client)
    with pytest.raises(QuotaExceededError):
        await provider.prompt("hi")

    client.messages.count_tokens.side_effect = status_error(anthropic.RateLimitError, 429, "slow")
    assert await provider.get_status() == ProviderStatus.RATE_LIMITED
    client.messages.count_tokens.side_effect = None
    assert await provider.get_status() == ProviderStatus.AVAILABLE


@pytest.mark.asyncio
async def test_status_available_when_counting_works():
    provider = ClaudeProvider(api_key="k", client=mock_client())
    assert await provider.get_status() == ProviderStatus.AVAILABLE


@pytest.mark.asyncio
async def test_aclose_closes_client():
    client = mock_client()
    provider = ClaudeProvider(api_key="k", client=client)
    await provider.aclose()
    client.close.assert_awaited_once()
