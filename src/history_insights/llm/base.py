"""Provider contract shared by every language-model backend."""

from __future__ import annotations

import json
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from history_insights.exceptions import (
    InputTooLongError,
    ProviderError,
    ProviderRequestError,
    ProviderUnavailableError,
    QuotaExceededError,
)
from history_insights.llm.cancellation import CancellationToken

CHARS_PER_TOKEN = 3.5

_TOO_LONG_MARKERS = (
    "too long",
    "too large",
    "context length",
    "context_length",
    "maximum context",
    "exceeds the maximum",
    "input token count",
)


class ProviderType(str, Enum):
    OLLAMA = "ollama"
    CLAUDE = "claude"
    OPENAI = "openai"
    GEMINI = "gemini"


class ProviderStatus(str, Enum):
    AVAILABLE = "available"
    NEEDS_CONFIGURATION = "needs-configuration"
    RATE_LIMITED = "rate-limited"
    UNAVAILABLE = "unavailable"
    ERROR = "error"
    DOWNLOADABLE = "downloadable"
    DOWNLOADING = "downloading"


@dataclass(frozen=True)
class ProviderCapabilities:
    max_input_tokens: int
    optimal_chunk_tokens: int
    supports_token_measurement: bool


class BaseProvider(ABC):
    """Abstract interface for a language-model backend.

    Implementations translate every backend-specific failure into the
    ``ProviderError`` family before it leaves the provider.
    """

    provider_type: ProviderType
    display_name: str = ""

    def __init__(self) -> None:
        self.system_prompt: str | None = None

    @abstractmethod
    async def initialize(self, system_prompt: str | None = None) -> None:
        """Prepare the backend for prompting with ``system_prompt``.

        Raises:
            ProviderUnavailableError: the backend is not configured or not ready.
        """
        ...

    @abstractmethod
    async def prompt(
        self,
        text: str,
        response_schema: dict | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        """Send one prompt and return the raw response text."""
        ...

    @abstractmethod
    async def get_status(self) -> ProviderStatus:
        ...

    @abstractmethod
    def get_capabilities(self) -> ProviderCapabilities:
        ...

    def render_prompt(self, text: str, response_schema: dict | None = None) -> str:
        """The user message sent for ``text``."""
        return text

    async def measure_input_usage(self, text: str) -> int:
        """Token count for ``text``; backends with a counting API override this."""
        return estimate_tokens((self.system_prompt or "") + text)

    @property
    def requires_configuration(self) -> bool:
        return False

    async def aclose(self) -> None:
        """Release network resources held by the provider."""


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def with_schema_instruction(text: str, response_schema: dict | None) -> str:
    """Append a JSON-only instruction for backends without native schema support."""
    if not response_schema:
        return text
    return (
        f"{text}\n\nIMPORTANT: Respond with valid JSON only, matching this schema: "
        f"{json.dumps(response_schema, separators=(',', ':'))}"
    )


def error_for_status(provider_name: str, status_code: int, message: Any) -> ProviderError:
    """Map an HTTP status from any backend onto the provider error taxonomy."""
    detail = str(message)
    lowered = detail.lower()
    if status_code == 429:
        return QuotaExceededError(f"{provider_name} rate limit exceeded: {detail}")
    if status_code == 413 or (status_code == 400 and any(m in lowered for m in _TOO_LONG_MARKERS)):
        return InputTooLongError(f"{provider_name} input too long: {detail}")
    if status_code in (401, 403):
        return ProviderUnavailableError(
            f"{provider_name} rejected the credentials ({status_code}). Check the API key."
        )
    return ProviderRequestError(f"{provider_name} API error ({status_code}): {detail}")
