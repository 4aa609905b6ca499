"""Provider selection and credentials."""

from __future__ import annotations

import os
from dataclasses import dataclass

from history_insights.llm.base import ProviderType

DEFAULT_PROVIDER = "ollama"


@dataclass
class ProviderConfig:
    """Which backend to use and how to reach it.

    Unset fields fall back to the backend's own defaults. Use ``from_env()``
    to read everything from environment variables.
    """

    provider: ProviderType = ProviderType.OLLAMA
    anthropic_api_key: str | None = None
    claude_model: str | None = None
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    openai_model: str | None = None
    gemini_api_key: str | None = None
    gemini_model: str | None = None
    ollama_base_url: str | None = None
    ollama_model: str | None = None
    request_timeout: float = 120.0

    def __post_init__(self):
        self.provider = ProviderType(self.provider)

    @classmethod
    def from_env(cls) -> ProviderConfig:
        return cls(
            provider=ProviderType(os.environ.get("HISTORY_INSIGHTS_PROVIDER", DEFAULT_PROVIDER).lower()),
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY"),
            claude_model=os.environ.get("DEFAULT_LLM_MODEL"),
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            openai_base_url=os.environ.get("OPENAI_BASE_URL"),
            openai_model=os.environ.get("OPENAI_MODEL"),
            gemini_api_key=os.environ.get("GEMINI_API_KEY"),
            gemini_model=os.environ.get("GEMINI_MODEL"),
            ollama_base_url=os.environ.get("OLLAMA_HOST"),
            ollama_model=os.environ.get("OLLAMA_MODEL"),
        )
