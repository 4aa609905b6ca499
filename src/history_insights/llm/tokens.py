"""Token budget estimation for rendered prompts."""

from __future__ import annotations

import logging

from history_insights.exceptions import ProviderError
from history_insights.llm.base import BaseProvider, estimate_tokens

logger = logging.getLogger(__name__)


class TokenEstimator:
    """Estimate prompt size, preferring the provider's own counter when it has one.

    Without a measuring provider the estimate is ``ceil(len(text) / 3.5)``,
    which is deterministic for a given string.
    """

    def __init__(self, provider: BaseProvider | None = None):
        self.provider = provider
        self._measure = bool(provider and provider.get_capabilities().supports_token_measurement)

    async def estimate(self, text: str) -> int:
        if self._measure and self.provider is not None:
            try:
                return await self.provider.measure_input_usage(text)
            except ProviderError as e:
                logger.warning("Token measurement failed, falling back to estimate: %s", e)
        return estimate_tokens(text)
