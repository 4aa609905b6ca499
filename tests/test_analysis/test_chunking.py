"""Tests for session detection and chunk building."""

import json
import random
import re

import pytest

from conftest import FakeProvider, item, ms
from history_insights.analysis.chunking import (
    SessionDetector,
    build_chunks,
    half_day_ranges,
    merge_time_ranges,
    stitch_batches,
)
from history_insights.analysis.settings import AnalysisSettings
from history_insights.exceptions import AnalysisCancelledError
from history_insights.history.models import TimeRange
from history_insights.llm.cancellation import CancellationToken

SETTINGS = AnalysisSettings(retry_base_delay_ms=0, inter_chunk_delay_ms=0)


def sessions(*pairs):
    return json.dumps({
        "chunks": [
            {"startIndex": s, "endIndex": e, "description": f"Session {s}-{e}"} for s, e in pairs
        ]
    })


def whole_batch(text):
    count = int(re.search(r"Group these (\d+) timestamps", text).group(1))
    return sessions((0, count - 1))


def day_items(*times, day=(2024, 3, 12)):
    return [item(n, ms(*day, h, m)) for n, (h, m) in enumerate(times)]


# Fallback

@pytest.mark.asyncio
async def test_unavailable_provider_falls_back_to_half_days():
    items = day_items((9, 0), (10, 0), (14, 0), (15, 0))
    detector = SessionDetector(FakeProvider(chunking=None), settings=SETTINGS)
    chunks, result = await detector.detect(items)

    assert result.is_fallback
    assert len(chunks) == 2
    morning, afternoon = chunks
    assert [i.id for i in morning.items] == ["0", "1"]
    assert [i.id for i in afternoon.items] == ["2", "3"]
    assert morning.start_time == round(ms(2024, 3, 12, 0, 0))
    assert morning.end_time == round(ms(2024, 3, 12, 11, 59, 59, 999000))
    assert afternoon.start_time == round(ms(2024, 3, 12, 12, 0))
    assert afternoon.end_time == round(ms(2024, 3, 12, 23, 59, 59, 999000))
    assert all(c.is_fallback for c in chunks)
    assert morning.description == "2024-03-12 Morning (12am-12pm)"
    assert (morning.index, morning.total_chunks) == (0, 2)


@pytest.mark.asyncio
async def test_no_provider_falls_back():
    detector = SessionDetector(None, settings=SETTINGS)
    chunks, result = await detector.detect(day_items((9, 0), (21, 0)))
    assert len(chunks) == 2
    assert result.error == "No language model provider available"


@pytest.mark.asyncio
async def test_empty_input_yields_no_chunks():
    provider = FakeProvider(chunking=sessions((0, 0)))
    chunks, result = await SessionDetector(provider, settings=SETTINGS).detect([])
    assert chunks == []
    assert result.time_ranges == []
    assert provider.calls == []


@pytest.mark.asyncio
async def test_items_without_timestamps_are_ignored():
    items = day_items((9, 0)) + [item(99, None)]
    chunks, _ = await SessionDetector(None, settings=SETTINGS).detect(items)
    assert [i.id for c in chunks for i in c.items] == ["0"]


@pytest.mark.asyncio
async def test_unparseable_answer_falls_back_with_raw_response():
    provider = FakeProvider(chunking="I could not find any sessions, sorry.")
    chunks, result = await SessionDetector(provider, settings=SETTINGS).detect(day_items((9, 0)))
    assert result.is_fallback
    assert result.error.startswith("Failed to parse JSON")
    assert result.raw_response == "I could not find any sessions, sorry."
    assert len(chunks) == 1


@pytest.mark.asyncio
async def test_invalid_indices_are_discarded():
    provider = FakeProvider(chunking=sessions((3, 1), (0, 9), (-1, 0)))
    _, result = await SessionDetector(provider, settings=SETTINGS).detect(day_items((9, 0), (9, 5)))
    assert result.is_fallback
    assert result.error == "AI returned no valid chunks"


# Provider sessions

@pytest.mark.asyncio
async def test_provider_sessions_with_uncovered_items():
    items = day_items((9, 0), (9, 10), (9, 20), (13, 0), (13, 5), (20, 0))
    provider = FakeProvider(chunking=sessions((0, 2), (3, 4)))
    detector = SessionDetector(provider, settings=SETTINGS, system_prompt="custom chunk prompt")
    chunks, result = await detector.detect(items)

    assert not result.is_fallback
    assert provider.system_prompts == ["custom chunk prompt"]
    assert [len(c.items) for c in chunks] == [3, 2, 1]
    assert [c.is_fallback for c in chunks] == [False, False, True]
    assert chunks[0].description == "Session 0-2"
    assert chunks[2].description == "2024-03-12 Afternoon/Evening (12pm-12am)"
    assert [c.index for c in chunks] == [0, 1, 2]
    assert all(c.total_chunks == 3 for c in chunks)


@pytest.mark.asyncio
async def test_prompt_lists_indexed_times():
    provider = FakeProvider(chunking=sessions((0, 1)))
    await SessionDetector(provider, settings=SETTINGS).detect(day_items((15, 30), (9, 5)))
    _, text = provider.calls[0]
    assert "Group these 2 timestamps" in text
    assert "[0] 2024-03-12 9:05" in text
    assert "[1] 2024-03-12 15:30" in text


@pytest.mark.asyncio
async def test_overlapping_sessions_are_merged():
    provider = FakeProvider(chunking=sessions((0, 2), (1, 3)))
    chunks, _ = await SessionDetector(provider, settings=SETTINGS).detect(
        day_items((9, 0), (9, 10), (9, 20), (9, 30))
    )
    assert len(chunks) == 1
    assert chunks[0].description == "Session 0-2 + Session 1-3"


# Batching

@pytest.mark.asyncio
async def test_batches_join_when_adjacent():
    settings = AnalysisSettings(chunk_batch_size=3, retry_base_delay_ms=0)
    items = [item(n, ms(2024, 3, 12, 9, m, s)) for n, (m, s) in enumerate(
        [(0, 0), (10, 0), (20, 0), (20, 30), (40, 0), (50, 0)]
    )]
    provider = FakeProvider(chunking=whole_batch)
    chunks, result = await SessionDetector(provider, settings=settings).detect(items)

    assert provider.count("chunking") == 2
    assert len(chunks) == 1
    assert len(chunks[0].items) == 6
    assert result.raw_response.count("chunks") == 2


@pytest.mark.asyncio
async def test_batches_stay_apart_with_gap():
    settings = AnalysisSettings(chunk_batch_size=2, retry_base_delay_ms=0)
    items = day_items((9, 0), (9, 10), (15, 0), (15, 10))
    provider = FakeProvider(chunking=whole_batch)
    chunks, _ = await SessionDetector(provider, settings=settings).detect(items)
    assert [len(c.items) for c in chunks] == [2, 2]


@pytest.mark.asyncio
async def test_fallback_batch_and_ai_batch_mix():
    settings = AnalysisSettings(chunk_batch_size=2, retry_base_delay_ms=0)
    items = day_items((9, 0), (9, 10), (15, 0), (15, 10))
    provider = FakeProvider(chunking=["garbage", sessions((0, 1))])
    chunks, result = await SessionDetector(provider, settings=settings).detect(items)
    assert result.is_fallback
    assert result.error.startswith("Failed to parse JSON")
    assert [c.is_fallback for c in chunks] == [True, False]


@pytest.mark.asyncio
async def test_fallback_batch_after_ai_batch_stays_ordered():
    settings = AnalysisSettings(chunk_batch_size=2, retry_base_delay_ms=0)
    items = day_items((9, 0), (9, 10), (9, 20), (9, 30))
    provider = FakeProvider(chunking=[sessions((0, 0), (1, 1)), "garbage"])
    chunks, result = await SessionDetector(provider, settings=settings).detect(items)

    assert result.is_fallback
    starts = [c.start_time for c in chunks]
    assert starts == sorted(starts)
    assert len(chunks) == 1
    assert chunks[0].start_time == round(ms(2024, 3, 12, 0, 0))
    assert [i.id for i in chunks[0].items] == ["0", "1", "2", "3"]


@pytest.mark.asyncio
async def test_cancellation_propagates():
    token = CancellationToken()
    token.cancel()
    provider = FakeProvider(chunking=sessions((0, 0)))
    with pytest.raises(AnalysisCancelledError):
        await SessionDetector(provider, settings=SETTINGS).detect(day_items((9, 0)), token)


# Coverage and ordering

def assert_ascending_and_disjoint(spans):
    for (_, end), (start, _) in zip(spans, spans[1:]):
        assert end < start


@pytest.mark.asyncio
@pytest.mark.parametrize("batch_size", [80, 30])
@pytest.mark.parametrize("seed", range(5))
async def test_every_item_lands_in_exactly_one_chunk(seed, batch_size):
    rng = random.Random(seed)
    base = ms(2024, 3, 10, 0, 0)
    items = [item(n, base + rng.uniform(0, 4 * 86_400_000)) for n in range(rng.randint(1, 120))]
    count = min(len(items), batch_size)
    pairs = [(rng.randint(0, count - 1), rng.randint(0, count - 1)) for _ in range(4)]
    provider = FakeProvider(chunking=lambda text: sessions(*pairs))
    settings = AnalysisSettings(chunk_batch_size=batch_size, retry_base_delay_ms=0)

    chunks, result = await SessionDetector(provider, settings=settings).detect(items)

    seen = [i.id for c in chunks for i in c.items]
    assert sorted(seen) == sorted(i.id for i in items)
    assert len(seen) == len(set(seen))
    for chunk in chunks:
        assert all(chunk.start_time <= i.last_visit_time < chunk.end_time + 1 for i in chunk.items)

    spans = [(r.start_time, r.end_time) for r in result.time_ranges]
    assert_ascending_and_disjoint(spans)
    # Chunks for detected ranges come first, fallback chunks for uncovered items after.
    ranged = [(c.start_time, c.end_time) for c in chunks if (c.start_time, c.end_time) in spans]
    assert ranged == [(c.start_time, c.end_time) for c in chunks[:len(ranged)]]
    assert_ascending_and_disjoint(ranged)


def test_half_day_ranges_are_sorted_and_disjoint():
    stamps = [ms(2024, 3, 12, 23, 59), ms(2024, 3, 13, 0, 1), ms(2024, 3, 12, 8, 0), ms(2024, 3, 12, 8, 30)]
    ranges = half_day_ranges(stamps)
    assert len(ranges) == 3
    for a, b in zip(ranges, ranges[1:]):
        assert a.end_time < b.start_time


def test_merge_time_ranges():
    ranges = [
        TimeRange(5000, 6000, "c"),
        TimeRange(0, 1000, "a"),
        TimeRange(900, 2000, "b"),
    ]
    merged = merge_time_ranges(ranges)
    assert merged == [TimeRange(0, 2000, "a + b"), TimeRange(5000, 6000, "c")]
    assert len(merge_time_ranges(ranges, adjacency_ms=3000)) == 1


def test_stitch_batches_applies_adjacency_across_batches_only():
    first = [TimeRange(0, 1000, "a"), TimeRange(1500, 2000, "b")]
    second = [TimeRange(2500, 3000, "c")]
    assert stitch_batches([first], adjacency_ms=1000) == first
    assert stitch_batches([first, second], adjacency_ms=1000) == [
        TimeRange(0, 1000, "a"),
        TimeRange(1500, 3000, "b + c"),
    ]


def test_stitch_batches_sorts_across_batches():
    late = [TimeRange(5000, 6000, "late")]
    early = [TimeRange(0, 5500, "early"), TimeRange(8000, 9000, "next")]
    assert stitch_batches([late, early]) == [
        TimeRange(0, 6000, "early + late"),
        TimeRange(8000, 9000, "next"),
    ]


def test_build_chunks_appends_fallback_for_uncovered():
    items = day_items((9, 0), (18, 0))
    ranges = [TimeRange(round(ms(2024, 3, 12, 17, 0)), round(ms(2024, 3, 12, 19, 0)), "Evening")]
    chunks = build_chunks(items, ranges)
    assert [c.description for c in chunks] == ["Evening", "2024-03-12 Morning (12am-12pm)"]
    assert chunks[1].is_fallback
