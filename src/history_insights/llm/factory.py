"""Build and cache provider instances from a ``ProviderConfig``."""

from __future__ import annotations

import logging
from dataclasses import asdict

from history_insights.llm.base import BaseProvider, ProviderType
from history_insights.llm.claude import ClaudeProvider
from history_insights.llm.config import ProviderConfig
from history_insights.llm.gemini import GeminiProvider
from history_insights.llm.ollama import DEFAULT_OLLAMA_MODEL, DEFAULT_OLLAMA_URL, OllamaProvider
from history_insights.llm.openai import OpenAIProvider

logger = logging.getLogger(__name__)


def create_provider(config: ProviderConfig) -> BaseProvider:
    """Instantiate the provider selected by ``config.provider``."""
    if config.provider == ProviderType.OLLAMA:
        return OllamaProvider(
            base_url=config.ollama_base_url or DEFAULT_OLLAMA_URL,
            model=config.ollama_model or DEFAULT_OLLAMA_MODEL,
            timeout=config.request_timeout,
        )
    if config.provider == ProviderType.CLAUDE:
        return ClaudeProvider(
            api_key=config.anthropic_api_key,
            model=config.claude_model,
            timeout=config.request_timeout,
        )
    if config.provider == ProviderType.OPENAI:
        return OpenAIProvider(
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            model=config.openai_model,
            timeout=config.request_timeout,
        )
    if config.provider == ProviderType.GEMINI:
        return GeminiProvider(
            api_key=config.gemini_api_key,
            model=config.gemini_model,
            timeout=config.request_timeout,
        )
    raise ValueError(f"Unknown provider type: {config.provider}")


class ProviderFactory:
    """Keeps one provider per type, rebuilt when its configuration changes."""

    def __init__(self) -> None:
        self._cache: dict[ProviderType, tuple[dict, BaseProvider]] = {}

    def get(self, config: ProviderConfig | None = None) -> BaseProvider:
        config = config or ProviderConfig.from_env()
        key = asdict(config)
        cached = self._cache.get(config.provider)
        if cached is not None and cached[0] == key:
            return cached[1]
        if cached is not None:
            logger.info(f"Configuration for {config.provider.value} changed, rebuilding provider")
        provider = create_provider(config)
        self._cache[config.provider] = (key, provider)
        return provider

    def reset(self) -> None:
        self._cache.clear()
