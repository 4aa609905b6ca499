"""Language-model providers, retry, cancellation and response repair."""

from history_insights.llm.base import (
    BaseProvider,
    ProviderCapabilities,
    ProviderStatus,
    ProviderType,
    estimate_tokens,
)
from history_insights.llm.cancellation import CancellationToken
from history_insights.llm.claude import ClaudeProvider
from history_insights.llm.config import ProviderConfig
from history_insights.llm.factory import ProviderFactory, create_provider
from history_insights.llm.gemini import GeminiProvider
from history_insights.llm.ollama import OllamaProvider
from history_insights.llm.openai import OpenAIProvider
from history_insights.llm.repair import parse_json_response
from history_insights.llm.retry import RetryExecutor
from history_insights.llm.tokens import TokenEstimator

__all__ = [
    "BaseProvider",
    "CancellationToken",
    "ClaudeProvider",
    "GeminiProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "ProviderCapabilities",
    "ProviderConfig",
    "ProviderFactory",
    "ProviderStatus",
    "ProviderType",
    "RetryExecutor",
    "TokenEstimator",
    "create_provider",
    "estimate_tokens",
    "parse_json_response",
]
