"""Google Gemini backend over the Generative Language REST API."""

from __future__ import annotations

import os

import httpx

from history_insights.llm.base import (
    ProviderCapabilities,
    ProviderType,
    with_schema_instruction,
)
from history_insights.llm.http import DEFAULT_TIMEOUT, HTTPProvider

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
GEMINI_MAX_OUTPUT_TOKENS = 8192

GEMINI_CAPABILITIES = ProviderCapabilities(
    max_input_tokens=1048576,
    optimal_chunk_tokens=100000,
    supports_token_measurement=False,
)


class GeminiProvider(HTTPProvider):
    provider_type = ProviderType.GEMINI
    display_name = "Gemini"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(GEMINI_URL, timeout=timeout, transport=transport)
        self.api_key = api_key or os.environ.get("GEMINI_API_KEY", "")
        self.model = model or DEFAULT_GEMINI_MODEL

    @property
    def requires_configuration(self) -> bool:
        return not self.api_key

    def get_capabilities(self) -> ProviderCapabilities:
        return GEMINI_CAPABILITIES

    def render_prompt(self, text: str, response_schema: dict | None = None) -> str:
        return with_schema_instruction(text, response_schema)

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

    async def _probe(self) -> None:
        await self._request("GET", f"/models/{self.model}")

    def _build_prompt_request(self, text: str, response_schema: dict | None) -> tuple[str, dict]:
        generation_config: dict = {
            "maxOutputTokens": GEMINI_MAX_OUTPUT_TOKENS,
            "temperature": 0.7,
        }
        if response_schema:
            generation_config["responseMimeType"] = "application/json"
        payload: dict = {
            "contents": [
                {"role": "user", "parts": [{"text": self.render_prompt(text, response_schema)}]}
            ],
            "generationConfig": generation_config,
        }
        if self.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": self.system_prompt}]}
        return f"/models/{self.model}:generateContent", payload

    def _extract_text(self, data: dict) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts)
