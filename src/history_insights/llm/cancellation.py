"""Cooperative cancellation threaded through every suspension point of a run."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from history_insights.exceptions import AnalysisCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """A cancel flag plus listeners, shared by one run.

    ``cancel()`` must be called from the event loop thread; from another
    thread use ``loop.call_soon_threadsafe(token.cancel)``.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = ""
        self._listeners: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "Analysis cancelled") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Cancellation listener failed")

    def add_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register a callback fired once on cancel. Returns an unsubscribe function."""
        if self.cancelled:
            listener()
            return lambda: None
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise AnalysisCancelledError(self._reason or "Analysis cancelled")

    async def sleep(self, seconds: float) -> None:
        """Sleep that wakes up early and raises if the token is cancelled."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise AnalysisCancelledError(self._reason or "Analysis cancelled during wait")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` but abandon it as soon as the token is cancelled."""
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug("Abandoned call finished with %s after cancellation", type(e).__name__)
        raise AnalysisCancelledError(self._reason or "Analysis cancelled")


async def guard(token: CancellationToken | None, awaitable: Awaitable[T]) -> T:
    """``token.guard`` that tolerates a missing token."""
    if token is None:
        return await awaitable
    return await token.guard(awaitable)


async def sleep(token: CancellationToken | None, seconds: float) -> None:
    if token is None:
        await asyncio.sleep(seconds)
        return
    await token.sleep(seconds)
