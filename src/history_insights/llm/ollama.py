"""On-device language model served by a local Ollama daemon."""

from __future__ import annotations

import logging
import os

import httpx

from history_insights.exceptions import ProviderError, ProviderUnavailableError
from history_insights.llm.base import ProviderCapabilities, ProviderStatus, ProviderType
from history_insights.llm.http import DEFAULT_TIMEOUT, HTTPProvider

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = os.environ.get("OLLAMA_HOST", "http://localhost:11434")
DEFAULT_OLLAMA_MODEL = os.environ.get("OLLAMA_MODEL", "llama3.2")

OLLAMA_CAPABILITIES = ProviderCapabilities(
    max_input_tokens=8192,
    optimal_chunk_tokens=6000,
    supports_token_measurement=False,
)

# Pulling a model can take many minutes.
PULL_TIMEOUT = 3600.0


class OllamaProvider(HTTPProvider):
    """Local model: no credentials, but the model must be pulled before use."""

    provider_type = ProviderType.OLLAMA
    display_name = "Ollama"

    def __init__(
        self,
        base_url: str = DEFAULT_OLLAMA_URL,
        model: str = DEFAULT_OLLAMA_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url, timeout=timeout, transport=transport)
        self.model = model
        self._downloading = False

    def get_capabilities(self) -> ProviderCapabilities:
        return OLLAMA_CAPABILITIES

    async def _installed_models(self) -> list[str]:
        response = await self._request("GET", "/api/tags")
        return [m.get("name", "") for m in response.json().get("models", [])]

    def _has_model(self, names: list[str]) -> bool:
        wanted = self.model if ":" in self.model else f"{self.model}:latest"
        return self.model in names or wanted in names

    async def _probe(self) -> None:
        if self._downloading:
            raise ProviderUnavailableError(f"Model {self.model} is still downloading")
        if not self._has_model(await self._installed_models()):
            raise ProviderUnavailableError(
                f"Model {self.model} is not downloaded. Call download_model() first."
            )

    async def get_status(self) -> ProviderStatus:
        if self._downloading:
            return ProviderStatus.DOWNLOADING
        try:
            names = await self._installed_models()
        except ProviderUnavailableError:
            return ProviderStatus.UNAVAILABLE
        except ProviderError as e:
            logger.warning(f"Ollama status check failed: {e}")
            return ProviderStatus.ERROR
        if not self._has_model(names):
            return ProviderStatus.DOWNLOADABLE
        return ProviderStatus.AVAILABLE

    async def download_model(self) -> None:
        """Pull the configured model. Only ever triggered explicitly by the user."""
        if self._downloading:
            return
        self._downloading = True
        logger.info(f"Downloading Ollama model {self.model}")
        timeout = self.timeout
        self.timeout = PULL_TIMEOUT
        try:
            response = await self._request(
                "POST", "/api/pull", json={"model": self.model, "stream": False}
            )
            status = response.json().get("status", "")
            if status != "success":
                raise ProviderUnavailableError(f"Model download did not finish: {status or 'unknown'}")
        finally:
            self.timeout = timeout
            self._downloading = False
        logger.info(f"Ollama model {self.model} downloaded")

    def _build_prompt_request(self, text: str, response_schema: dict | None) -> tuple[str, dict]:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": text})
        payload: dict = {"model": self.model, "messages": messages, "stream": False}
        if response_schema:
            payload["format"] = response_schema
        return "/api/chat", payload

    def _extract_text(self, data: dict) -> str:
        return (data.get("message") or {}).get("content", "")
