"""Split an oversized chunk into prefixes that fit the token budget."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from history_insights.analysis.prompts import build_analysis_prompt
from history_insights.history.models import HistoryItem
from history_insights.llm.tokens import TokenEstimator
from history_insights.memory.models import ProfileMemory

logger = logging.getLogger(__name__)


class ChunkSubdivider:
    """Binary-search the largest item prefix whose rendered prompt fits.

    The budget is ``token_limit - safety_margin`` and is measured on the
    real analysis prompt, memory context included, so a larger profile
    leaves room for fewer items. ``render`` turns that prompt into the text
    the provider actually sends, such as one with the response schema
    appended.
    """

    def __init__(
        self,
        estimator: TokenEstimator,
        token_limit: int,
        safety_margin: int = 500,
        render: Callable[[str], str] | None = None,
    ):
        self.estimator = estimator
        self.token_limit = token_limit
        self.safety_margin = safety_margin
        self.render = render

    @property
    def budget(self) -> int:
        return self.token_limit - self.safety_margin

    async def prompt_tokens(self, items: Sequence[HistoryItem], memory: ProfileMemory | None) -> int:
        text = build_analysis_prompt(items, memory)
        if self.render is not None:
            text = self.render(text)
        return await self.estimator.estimate(text)

    async def fits(self, items: Sequence[HistoryItem], memory: ProfileMemory | None) -> bool:
        return await self.prompt_tokens(items, memory) <= self.budget

    async def largest_fitting_prefix(
        self, items: Sequence[HistoryItem], memory: ProfileMemory | None
    ) -> int:
        """Largest n in [1, len(items)] whose prompt fits; 0 if not even one item does."""
        best = 0
        low, high = 1, len(items)
        while low <= high:
            mid = (low + high) // 2
            tokens = await self.prompt_tokens(items[:mid], memory)
            if tokens <= self.budget:
                best = mid
                low = mid + 1
            else:
                high = mid - 1
        logger.debug(f"Largest fitting prefix: {best}/{len(items)} items (budget {self.budget} tokens)")
        return best

    async def next_slice_size(
        self, items: Sequence[HistoryItem], memory: ProfileMemory | None
    ) -> int:
        """Size of the next slice to analyse; at least 1 so the walk always advances."""
        size = await self.largest_fitting_prefix(items, memory)
        if size == 0:
            logger.warning(
                f"A single history item exceeds the {self.budget} token budget, sending it alone"
            )
            return 1
        return size

    async def plan(self, items: Sequence[HistoryItem], memory: ProfileMemory | None) -> list[int]:
        """Slice sizes for walking ``items`` with ``memory`` held fixed."""
        sizes: list[int] = []
        start = 0
        while start < len(items):
            size = await self.next_slice_size(items[start:], memory)
            sizes.append(size)
            start += size
        return sizes
