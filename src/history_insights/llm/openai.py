"""OpenAI-compatible Chat Completions backend."""

from __future__ import annotations

import os

import httpx

from history_insights.llm.base import (
    ProviderCapabilities,
    ProviderType,
    with_schema_instruction,
)
from history_insights.llm.http import DEFAULT_TIMEOUT, HTTPProvider

DEFAULT_OPENAI_URL = "https://api.openai.com/v1"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
OPENAI_MAX_OUTPUT_TOKENS = 16384

OPENAI_CAPABILITIES = ProviderCapabilities(
    max_input_tokens=128000,
    optimal_chunk_tokens=50000,
    supports_token_measurement=False,
)


class OpenAIProvider(HTTPProvider):
    """Chat Completions over httpx; works with any OpenAI-compatible base URL."""

    provider_type = ProviderType.OPENAI
    display_name = "OpenAI"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url or DEFAULT_OPENAI_URL, timeout=timeout, transport=transport)
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY", "")
        self.model = model or DEFAULT_OPENAI_MODEL

    @property
    def requires_configuration(self) -> bool:
        return not self.api_key

    def get_capabilities(self) -> ProviderCapabilities:
        return OPENAI_CAPABILITIES

    def render_prompt(self, text: str, response_schema: dict | None = None) -> str:
        return with_schema_instruction(text, response_schema)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _probe(self) -> None:
        await self._request("GET", "/models")

    def _build_prompt_request(self, text: str, response_schema: dict | None) -> tuple[str, dict]:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": self.render_prompt(text, response_schema)})
        payload: dict = {
            "model": self.model,
            "messages": messages,
            "max_tokens": OPENAI_MAX_OUTPUT_TOKENS,
            "temperature": 0.7,
        }
        if response_schema:
            payload["response_format"] = {"type": "json_object"}
        return "/chat/completions", payload

    def _extract_text(self, data: dict) -> str:
        choices = data.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""
