"""Classified exponential backoff around provider calls."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from history_insights.exceptions import (
    InputTooLongError,
    QuotaExceededError,
    RetriesExhaustedError,
)
from history_insights.llm.cancellation import CancellationToken, guard, sleep

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 2000


class RetryExecutor:
    """Run a provider call, backing off on quota errors.

    Error classes:
        ``QuotaExceededError``: retryable, sleeps ``base_delay_ms * 2**attempt``.
        ``InputTooLongError``: re-raised at once, a retry cannot shrink the input.
        ``AnalysisCancelledError``: raised when the token fires before a call,
            during a call, or during a backoff sleep.
        Anything else propagates unchanged.

    ``max_retries`` is the total number of attempts; the last retryable
    failure is wrapped in ``RetriesExhaustedError``.

    Args:
        on_retry: Called with a human-readable message and the delay in
            seconds before each backoff sleep.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        on_retry: Callable[[str, float], None] | None = None,
    ):
        self.max_retries = max(1, max_retries)
        self.base_delay_ms = base_delay_ms
        self.on_retry = on_retry

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        cancel_token: CancellationToken | None = None,
    ) -> T:
        last_error: QuotaExceededError | None = None
        for attempt in range(self.max_retries):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                return await guard(cancel_token, fn())
            except InputTooLongError:
                raise
            except QuotaExceededError as e:
                last_error = e
                if attempt == self.max_retries - 1:
                    break
                wait = self.base_delay_ms * 2 ** attempt / 1000
                message = f"Quota exceeded, retrying in {wait:g}s (attempt {attempt + 1})"
                logger.warning(message)
                if self.on_retry:
                    self.on_retry(message, wait)
                await sleep(cancel_token, wait)

        raise RetriesExhaustedError(
            f"Failed after {self.max_retries} attempts: {last_error}",
            attempts=self.max_retries,
        ) from last_error
