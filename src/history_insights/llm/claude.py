"""Anthropic Claude backend using the official async SDK."""

from __future__ import annotations

import logging
import os
from typing import Any

from history_insights.exceptions import (
    ProviderError,
    ProviderRequestError,
    ProviderUnavailableError,
    QuotaExceededError,
)
from history_insights.llm.base import (
    BaseProvider,
    ProviderCapabilities,
    ProviderStatus,
    ProviderType,
    error_for_status,
    with_schema_instruction,
)
from history_insights.llm.cancellation import CancellationToken, guard

logger = logging.getLogger(__name__)

DEFAULT_CLAUDE_MODEL = os.environ.get("DEFAULT_LLM_MODEL", "claude-haiku-4-5-20251001")
CLAUDE_MAX_TOKENS = 8192

CLAUDE_CAPABILITIES = ProviderCapabilities(
    max_input_tokens=200000,
    optimal_chunk_tokens=50000,
    supports_token_measurement=True,
)


class ClaudeProvider(BaseProvider):
    """Claude via ``AsyncAnthropic``, with native token counting."""

    provider_type = ProviderType.CLAUDE
    display_name = "Claude"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float = 120.0,
        client: Any = None,
    ):
        super().__init__()
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        self.model = model or DEFAULT_CLAUDE_MODEL
        self.timeout = timeout
        self._client = client
        self._initialized = False

    @property
    def client(self):
        """The underlying AsyncAnthropic client, created on first use."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError:
                raise ImportError(
                    "anthropic is required for ClaudeProvider. "
                    "Install with: pip install history-insights[claude]"
                )
            self._client = AsyncAnthropic(api_key=self.api_key, timeout=self.timeout)
        return self._client

    @property
    def requires_configuration(self) -> bool:
        return not self.api_key

    def get_capabilities(self) -> ProviderCapabilities:
        return CLAUDE_CAPABILITIES

    def render_prompt(self, text: str, response_schema: dict | None = None) -> str:
        return with_schema_instruction(text, response_schema)

    async def _call(self, coro_fn, *args: Any, **kwargs: Any) -> Any:
        """Invoke an SDK coroutine and translate its exceptions."""
        from anthropic import APIConnectionError, APIError, APIStatusError, APITimeoutError

        try:
            result = await coro_fn(*args, **kwargs)
        except APIStatusError as e:
            raise error_for_status(self.display_name, e.status_code, e.message) from e
        except APITimeoutError as e:
            raise ProviderRequestError(f"Claude request timed out: {e}") from e
        except APIConnectionError as e:
            raise ProviderUnavailableError(f"Could not reach Claude: {e}") from e
        except APIError as e:
            raise ProviderRequestError(f"Claude API error: {e}") from e
        return result

    async def _count_tokens(self, text: str, system: str | None) -> int:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": text}],
        }
        if system:
            kwargs["system"] = system
        result = await self._call(self.client.messages.count_tokens, **kwargs)
        return result.input_tokens

    async def initialize(self, system_prompt: str | None = None) -> None:
        self.system_prompt = system_prompt
        if self._initialized:
            return
        if self.requires_configuration:
            raise ProviderUnavailableError("Claude API key is required")
        await self._count_tokens("test", None)
        self._initialized = True
        logger.info("Claude provider initialized")

    async def get_status(self) -> ProviderStatus:
        if self.requires_configuration:
            return ProviderStatus.NEEDS_CONFIGURATION
        try:
            await self._count_tokens("test", None)
        except QuotaExceededError:
            return ProviderStatus.RATE_LIMITED
        except ProviderUnavailableError:
            return ProviderStatus.UNAVAILABLE
        except ProviderError as e:
            logger.warning(f"Claude status check failed: {e}")
            return ProviderStatus.ERROR
        return ProviderStatus.AVAILABLE

    async def prompt(
        self,
        text: str,
        response_schema: dict | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        if not self._initialized:
            await self.initialize(self.system_prompt)
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": CLAUDE_MAX_TOKENS,
            "messages": [
                {"role": "user", "content": self.render_prompt(text, response_schema)}
            ],
        }
        if self.system_prompt:
            kwargs["system"] = self.system_prompt
        logger.debug(f"Claude: sending prompt ({len(text)} chars)")
        message = await guard(cancel_token, self._call(self.client.messages.create, **kwargs))
        parts = [block.text for block in message.content if getattr(block, "type", "") == "text"]
        if not parts:
            raise ProviderRequestError("Unexpected response format from Claude")
        return "".join(parts)

    async def measure_input_usage(self, text: str) -> int:
        return await self._count_tokens(text, self.system_prompt)

    async def aclose(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
