"""Session detection: group history items into time-bounded chunks.

The provider proposes sessions as index pairs over the sorted timestamps.
When it cannot (unavailable, unparseable answer, nothing valid) the items
are bucketed into local half days instead. Items left outside every
accepted session get half-day chunks of their own, so each dated item ends
up in exactly one chunk.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from history_insights.analysis.prompts import build_chunking_prompt, chunk_system_prompt
from history_insights.analysis.schemas import CHUNK_SCHEMA, parse_chunking_response
from history_insights.analysis.settings import AnalysisSettings
from history_insights.exceptions import AnalysisCancelledError, ResponseParseError
from history_insights.history.models import Chunk, HistoryItem, TimeRange
from history_insights.llm.base import BaseProvider
from history_insights.llm.cancellation import CancellationToken
from history_insights.llm.retry import RetryExecutor

logger = logging.getLogger(__name__)


@dataclass
class ChunkingResult:
    time_ranges: list[TimeRange]
    is_fallback: bool = False
    raw_response: str | None = None
    error: str | None = None


def half_day_ranges(timestamps: Sequence[float]) -> list[TimeRange]:
    """Local 00:00-11:59:59.999 and 12:00-23:59:59.999 buckets holding any timestamp."""
    buckets: dict[tuple, TimeRange] = {}
    for ts in sorted(timestamps):
        moment = datetime.fromtimestamp(ts / 1000)
        afternoon = moment.hour >= 12
        key = (moment.date(), afternoon)
        if key in buckets:
            continue
        first_hour = 12 if afternoon else 0
        start = moment.replace(hour=first_hour, minute=0, second=0, microsecond=0)
        end = moment.replace(hour=first_hour + 11, minute=59, second=59, microsecond=999000)
        label = "Afternoon/Evening (12pm-12am)" if afternoon else "Morning (12am-12pm)"
        buckets[key] = TimeRange(
            start_time=round(start.timestamp() * 1000),
            end_time=round(end.timestamp() * 1000),
            description=f"{moment:%Y-%m-%d} {label}",
            is_fallback=True,
        )
    return sorted(buckets.values(), key=lambda r: r.start_time)


def _combine(a: TimeRange, b: TimeRange) -> TimeRange:
    return TimeRange(
        start_time=min(a.start_time, b.start_time),
        end_time=max(a.end_time, b.end_time),
        description=f"{a.description} + {b.description}",
        is_fallback=a.is_fallback and b.is_fallback,
    )


def merge_time_ranges(ranges: Sequence[TimeRange], adjacency_ms: int = 0) -> list[TimeRange]:
    """Sort ranges and merge any that overlap or lie within ``adjacency_ms`` of each other."""
    merged: list[TimeRange] = []
    for current in sorted(ranges, key=lambda r: r.start_time):
        if merged and merged[-1].end_time >= current.start_time - adjacency_ms:
            merged[-1] = _combine(merged[-1], current)
        else:
            merged.append(current)
    return merged


def stitch_batches(batches: Sequence[Sequence[TimeRange]], adjacency_ms: int = 0) -> list[TimeRange]:
    """Merge every batch's ranges in one pass sorted by start time.

    Overlapping ranges always merge. Ranges from different batches also
    merge when they lie within ``adjacency_ms`` of each other, which joins a
    session cut in two by the batch boundary.
    """
    tagged = sorted(
        ((r, batch) for batch, ranges in enumerate(batches) for r in ranges),
        key=lambda pair: pair[0].start_time,
    )
    merged: list[TimeRange] = []
    sources: list[set[int]] = []
    for current, batch in tagged:
        if merged:
            window = 0 if batch in sources[-1] else adjacency_ms
            if merged[-1].end_time >= current.start_time - window:
                merged[-1] = _combine(merged[-1], current)
                sources[-1].add(batch)
                continue
        merged.append(current)
        sources.append({batch})
    return merged


def _assign(items: Sequence[HistoryItem], ranges: Sequence[TimeRange]):
    """Place each item in the first range containing it; return buckets and leftovers."""
    buckets: list[list[HistoryItem]] = [[] for _ in ranges]
    uncovered: list[HistoryItem] = []
    for item in items:
        slot = next((n for n, r in enumerate(ranges) if r.contains(item.last_visit_time)), None)
        if slot is None:
            uncovered.append(item)
        else:
            buckets[slot].append(item)
    return buckets, uncovered


def build_chunks(items: Sequence[HistoryItem], ranges: Sequence[TimeRange]) -> list[Chunk]:
    """Map items onto ranges, covering every dated item exactly once."""
    dated = sorted(
        (i for i in items if i.last_visit_time is not None),
        key=lambda i: i.last_visit_time,
    )
    if not dated:
        return []

    buckets, uncovered = _assign(dated, ranges)
    chunks = [
        Chunk(
            start_time=r.start_time,
            end_time=r.end_time,
            items=bucket,
            is_fallback=r.is_fallback,
            description=r.description,
        )
        for r, bucket in zip(ranges, buckets)
        if bucket
    ]

    if uncovered:
        logger.info(f"Found {len(uncovered)} uncovered items, creating fallback chunks")
        fallback = half_day_ranges([i.last_visit_time for i in uncovered])
        extra, _ = _assign(uncovered, fallback)
        chunks.extend(
            Chunk(
                start_time=r.start_time,
                end_time=r.end_time,
                items=bucket,
                is_fallback=True,
                description=r.description,
            )
            for r, bucket in zip(fallback, extra)
            if bucket
        )

    for index, chunk in enumerate(chunks):
        chunk.index = index
        chunk.total_chunks = len(chunks)
    return chunks


class SessionDetector:
    """AI-assisted session boundaries with a deterministic half-day fallback.

    Chunking never fails a run: any error other than cancellation resolves
    to the fallback and is reported on the ``ChunkingResult``.
    """

    def __init__(
        self,
        provider: BaseProvider | None,
        retry: RetryExecutor | None = None,
        settings: AnalysisSettings | None = None,
        system_prompt: str | None = None,
    ):
        self.provider = provider
        self.settings = settings or AnalysisSettings()
        self.retry = retry or RetryExecutor(
            self.settings.max_retries, self.settings.retry_base_delay_ms
        )
        self.system_prompt = system_prompt or chunk_system_prompt(self.settings.session_gap_minutes)

    async def identify(
        self,
        items: Sequence[HistoryItem],
        cancel_token: CancellationToken | None = None,
    ) -> ChunkingResult:
        """Find session time ranges for ``items``, sorted by start time."""
        timestamps = sorted(i.last_visit_time for i in items if i.last_visit_time is not None)
        if not timestamps:
            return ChunkingResult(time_ranges=[])

        batch_size = max(1, self.settings.chunk_batch_size)
        batches: list[list[TimeRange]] = []
        raw_responses: list[str] = []
        errors: list[str] = []
        fell_back = False
        for start in range(0, len(timestamps), batch_size):
            batch = await self._detect_batch(timestamps[start:start + batch_size], cancel_token)
            fell_back = fell_back or batch.is_fallback
            if batch.raw_response is not None:
                raw_responses.append(batch.raw_response)
            if batch.error:
                errors.append(batch.error)
            batches.append(batch.time_ranges)

        return ChunkingResult(
            time_ranges=stitch_batches(batches, self.settings.merge_adjacency_ms),
            is_fallback=fell_back,
            raw_response="\n".join(raw_responses) if raw_responses else None,
            error=errors[-1] if errors else None,
        )

    async def detect(
        self,
        items: Sequence[HistoryItem],
        cancel_token: CancellationToken | None = None,
    ) -> tuple[list[Chunk], ChunkingResult]:
        result = await self.identify(items, cancel_token)
        return build_chunks(items, result.time_ranges), result

    def _fallback(self, timestamps: Sequence[float], error: str, raw: str | None = None) -> ChunkingResult:
        logger.info(f"Using half-day fallback for {len(timestamps)} timestamps: {error}")
        return ChunkingResult(
            time_ranges=half_day_ranges(timestamps),
            is_fallback=True,
            raw_response=raw,
            error=error,
        )

    async def _detect_batch(
        self,
        timestamps: Sequence[float],
        cancel_token: CancellationToken | None,
    ) -> ChunkingResult:
        if self.provider is None:
            return self._fallback(timestamps, "No language model provider available")

        prompt = build_chunking_prompt(timestamps)
        try:
            await self.provider.initialize(self.system_prompt)
            response = await self.retry.execute(
                lambda: self.provider.prompt(prompt, CHUNK_SCHEMA, cancel_token),
                cancel_token,
            )
        except AnalysisCancelledError:
            raise
        except Exception as e:
            return self._fallback(timestamps, str(e) or type(e).__name__)

        try:
            parsed = parse_chunking_response(response)
        except ResponseParseError as e:
            return self._fallback(timestamps, f"Failed to parse JSON: {e}", raw=response)

        count = len(timestamps)
        ranges = [
            TimeRange(
                start_time=math.floor(timestamps[b.start_index]),
                end_time=math.ceil(timestamps[b.end_index]),
                description=b.description,
            )
            for b in parsed.chunks
            if 0 <= b.start_index <= b.end_index < count
        ]
        if not ranges:
            return self._fallback(timestamps, "AI returned no valid chunks", raw=response)

        logger.debug(f"Provider identified {len(ranges)} sessions in {count} timestamps")
        return ChunkingResult(time_ranges=merge_time_ranges(ranges), raw_response=response)
