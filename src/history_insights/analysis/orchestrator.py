"""The analysis pipeline: stats, sessions, per-chunk analysis, merge and persist."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from history_insights.analysis.chunking import SessionDetector
from history_insights.analysis.models import AnalysisResult, ChunkInfo, Diagnostics
from history_insights.analysis.progress import (
    AnalysisRun,
    Phase,
    ProgressEvent,
    RunStatus,
    Trigger,
)
from history_insights.analysis.prompts import (
    ANALYSIS_SYSTEM_PROMPT,
    MERGE_SYSTEM_PROMPT,
    build_analysis_prompt,
    build_merge_prompt,
)
from history_insights.analysis.schemas import (
    ANALYSIS_SCHEMA,
    AnalysisResponse,
    parse_analysis_response,
)
from history_insights.analysis.settings import AnalysisSettings, CustomPrompts
from history_insights.analysis.subdivider import ChunkSubdivider
from history_insights.exceptions import (
    AnalysisCancelledError,
    AnalysisInProgressError,
    InputTooLongError,
    PersistenceError,
    ProviderError,
    ProviderUnavailableError,
    ResponseParseError,
)
from history_insights.history.models import Chunk, HistoryItem, HistoryStats
from history_insights.history.stats import calculate_stats
from history_insights.llm.base import BaseProvider
from history_insights.llm.retry import RetryExecutor
from history_insights.llm.tokens import TokenEstimator
from history_insights.memory.merge import advance, merge_profile
from history_insights.memory.models import ProfileMemory
from history_insights.memory.store import ProfileMemoryStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


def _day(timestamp_ms: float) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d")


@dataclass
class _RunContext:
    run: AnalysisRun
    prompts: CustomPrompts
    retry: RetryExecutor
    diagnostics: Diagnostics
    on_progress: ProgressCallback | None
    subdivider: ChunkSubdivider | None = None
    chunk_info: ChunkInfo | None = None
    memory: ProfileMemory = field(default_factory=ProfileMemory.empty)
    merged_count: int = 0

    @property
    def token(self):
        return self.run.cancel_token

    def emit(self, phase: Phase, description: str = "", **fields) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(ProgressEvent(phase=phase, run_id=self.run.id, description=description, **fields))
        except Exception:
            logger.warning("Progress callback failed", exc_info=True)


class Analyzer:
    """Runs one analysis at a time over a batch of history items.

    Args:
        provider: Language model backend. Without one, sessions fall back to
            half-day buckets and no chunk is analysed.
        store: Where the profile is loaded from and saved after every chunk.
        heartbeat: Optional "still working" callable invoked before each
            chunk; its failures are ignored.
    """

    def __init__(
        self,
        provider: BaseProvider | None = None,
        store: ProfileMemoryStore | None = None,
        settings: AnalysisSettings | None = None,
        prompts: CustomPrompts | None = None,
        heartbeat: Callable[[], object] | None = None,
    ):
        self.provider = provider
        self.store = store or ProfileMemoryStore()
        self.settings = settings or AnalysisSettings()
        self.prompts = prompts or CustomPrompts()
        self.heartbeat = heartbeat
        self._run: AnalysisRun | None = None

    @property
    def current_run(self) -> AnalysisRun | None:
        return self._run

    def cancel(self, run_id: str | None = None, reason: str = "Analysis cancelled") -> bool:
        """Cancel the active run. Returns False when ``run_id`` is not the active run."""
        run = self._run
        if run is None or (run_id is not None and run.id != run_id):
            return False
        logger.info(f"Cancelling analysis run {run.id}")
        run.cancel_token.cancel(reason)
        return True

    async def run(
        self,
        items: Sequence[HistoryItem],
        on_progress: ProgressCallback | None = None,
        trigger: Trigger = Trigger.MANUAL,
        prompts: CustomPrompts | None = None,
    ) -> AnalysisResult:
        """Analyse ``items`` and merge the findings into the stored profile.

        Raises:
            AnalysisInProgressError: another run is active.
        """
        if self._run is not None:
            raise AnalysisInProgressError(f"Analysis {self._run.id} is already running")
        run = AnalysisRun(trigger=Trigger(trigger))
        self._run = run
        try:
            return await self._execute(run, list(items), on_progress, prompts or self.prompts)
        finally:
            self._run = None

    async def run_incremental(
        self,
        items: Sequence[HistoryItem],
        on_progress: ProgressCallback | None = None,
        trigger: Trigger = Trigger.SCHEDULED,
    ) -> AnalysisResult:
        """Analyse only items newer than the last one already merged."""
        if self._run is not None:
            raise AnalysisInProgressError(f"Analysis {self._run.id} is already running")
        since = self.store.load_or_create().last_history_timestamp
        fresh = [i for i in items if i.last_visit_time is not None and i.last_visit_time > since]
        logger.info(f"Incremental analysis: {len(fresh)} of {len(items)} items are new")
        return await self.run(fresh, on_progress=on_progress, trigger=trigger)

    async def _execute(
        self,
        run: AnalysisRun,
        items: list[HistoryItem],
        on_progress: ProgressCallback | None,
        prompts: CustomPrompts,
    ) -> AnalysisResult:
        ctx = _RunContext(
            run=run,
            prompts=prompts,
            diagnostics=Diagnostics(),
            on_progress=on_progress,
            retry=RetryExecutor(self.settings.max_retries, self.settings.retry_base_delay_ms),
        )
        ctx.retry.on_retry = lambda message, delay: ctx.emit(
            Phase.RETRYING, message, retry_delay=delay,
            current_chunk=run.current_chunk or None, total_chunks=run.total_chunks or None,
        )

        stats = calculate_stats(items)
        ctx.memory = self.store.load_or_create()
        try:
            ctx.token.raise_if_cancelled()
            run.status = RunStatus.CALCULATING
            ctx.emit(Phase.CALCULATING, f"Processing {len(items)} history items")
            if not items:
                logger.info("No history items to analyze, skipping run")
                run.status = RunStatus.COMPLETE
                ctx.emit(Phase.COMPLETE, "Nothing new to analyze")
                return self._result(run, stats, ctx.memory, ctx.diagnostics, skipped=True)

            run.status = RunStatus.CHUNKING
            ctx.emit(Phase.CHUNKING, f"Analyzing {len(items)} items for time patterns")
            chunks = await self._detect_sessions(items, ctx)

            run.status = RunStatus.ANALYZING
            run.total_chunks = len(chunks)
            await self._analyze_chunks(chunks, ctx)

            if ctx.merged_count:
                ctx.memory = ctx.memory.model_copy(update={"last_analyzed_date": datetime.now(timezone.utc)})
                self._save(ctx.memory, ctx.diagnostics)
            else:
                logger.info("No chunk was merged, profile left as stored")
            run.status = RunStatus.COMPLETE
            ctx.emit(Phase.COMPLETE, f"Analyzed {len(chunks)} sessions")
            logger.info(
                f"Analysis complete: {stats.total_urls} items, {len(chunks)} chunks, "
                f"{len(ctx.memory.patterns)} patterns"
            )
        except AnalysisCancelledError as e:
            logger.info(f"Analysis {run.id} cancelled: {e}")
            run.status = RunStatus.CANCELLED
        except Exception as e:
            logger.error(f"Analysis {run.id} failed: {e}", exc_info=True)
            run.status = RunStatus.ERROR
            ctx.emit(Phase.ERROR, str(e))
            raise
        return self._result(run, stats, ctx.memory, ctx.diagnostics)

    async def _detect_sessions(self, items: list[HistoryItem], ctx: _RunContext) -> list[Chunk]:
        detector = SessionDetector(
            self.provider,
            retry=ctx.retry,
            settings=self.settings,
            system_prompt=ctx.prompts.chunk_prompt,
        )
        chunks, chunking = await detector.detect(items, ctx.token)
        ctx.diagnostics.chunking_raw_response = chunking.raw_response
        ctx.diagnostics.chunking_error = chunking.error
        ctx.diagnostics.chunks = [
            ChunkInfo(
                start_time=c.start_time,
                end_time=c.end_time,
                item_count=len(c.items),
                description=c.description or f"Session {c.index + 1}",
                is_fallback=c.is_fallback,
            )
            for c in chunks
        ]
        ctx.emit(Phase.CHUNKING, f"Identified {len(chunks)} browsing sessions")
        return chunks

    async def _analyze_chunks(self, chunks: list[Chunk], ctx: _RunContext) -> None:
        total = len(chunks)
        for n, chunk in enumerate(chunks):
            ctx.token.raise_if_cancelled()
            ctx.run.current_chunk = n + 1
            ctx.chunk_info = ctx.diagnostics.chunks[n]
            self._beat()
            ctx.emit(
                Phase.ANALYZING,
                f"{len(chunk.items)} items from {_day(chunk.start_time)} - {_day(chunk.end_time)}",
                current_chunk=n + 1,
                total_chunks=total,
            )
            try:
                await self._analyze_chunk(chunk, ctx.memory, ctx)
            except AnalysisCancelledError:
                raise
            except ProviderUnavailableError as e:
                logger.error(f"Provider unavailable, stopping chunk analysis: {e}")
                ctx.chunk_info.error = str(e)
                break
            except Exception as e:
                logger.error(f"Failed to analyze chunk {n + 1}/{total}: {e}", exc_info=True)
                ctx.chunk_info.error = str(e) or type(e).__name__

            if n < total - 1:
                await ctx.token.sleep(self.settings.inter_chunk_delay_ms / 1000)

    async def _analyze_chunk(self, chunk: Chunk, memory: ProfileMemory, ctx: _RunContext) -> ProfileMemory:
        provider = self._require_provider()
        if ctx.subdivider is None:
            ctx.subdivider = ChunkSubdivider(
                TokenEstimator(provider),
                provider.get_capabilities().optimal_chunk_tokens,
                self.settings.token_safety_margin,
                render=lambda text: provider.render_prompt(text, ANALYSIS_SCHEMA),
            )

        items = chunk.items
        if len(items) > 1 and not await ctx.subdivider.fits(items, memory):
            logger.info(f"Chunk with {len(items)} items exceeds the token budget, subdividing")
            return await self._analyze_subdivided(items, memory, ctx)
        try:
            return await self._analyze_items(items, memory, ctx)
        except InputTooLongError:
            if len(items) <= 1:
                raise
            logger.info(f"Provider rejected {len(items)} items as too long, subdividing")
            return await self._analyze_subdivided(items, memory, ctx)

    async def _analyze_subdivided(
        self, items: list[HistoryItem], memory: ProfileMemory, ctx: _RunContext
    ) -> ProfileMemory:
        remaining = list(items)
        part_number = 0
        while remaining:
            ctx.token.raise_if_cancelled()
            # Memory changes after every slice, so the budget is re-measured each time.
            size = await ctx.subdivider.next_slice_size(remaining, memory)
            part, remaining = remaining[:size], remaining[size:]
            part_number += 1
            ctx.emit(
                Phase.ANALYZING,
                f"Chunk {ctx.run.current_chunk}/{ctx.run.total_chunks}: "
                f"Processing {len(part)} items (sub-chunk {part_number})",
                current_chunk=ctx.run.current_chunk,
                total_chunks=ctx.run.total_chunks,
            )
            memory = await self._analyze_items(part, memory, ctx)
            if ctx.chunk_info is not None:
                ctx.chunk_info.sub_chunks = part_number
        return memory

    async def _analyze_items(
        self, items: list[HistoryItem], memory: ProfileMemory, ctx: _RunContext
    ) -> ProfileMemory:
        """Analyse one (sub-)chunk, merge it and persist. Returns the new memory."""
        provider = self._require_provider()
        prompt = build_analysis_prompt(items, memory)
        await provider.initialize(ctx.prompts.system_prompt or ANALYSIS_SYSTEM_PROMPT)
        response = await ctx.retry.execute(
            lambda: provider.prompt(prompt, ANALYSIS_SCHEMA, ctx.token), ctx.token
        )
        try:
            result = parse_analysis_response(response)
        except ResponseParseError as e:
            logger.warning(f"Unparseable analysis for {len(items)} items, profile unchanged: {e}")
            if ctx.chunk_info is not None:
                ctx.chunk_info.error = f"Unparseable response: {e}"
            return memory

        merged = advance(await self._merge(memory, result, ctx), items)
        ctx.memory = merged
        ctx.merged_count += 1
        self._save(merged, ctx.diagnostics)
        return merged

    async def _merge(self, memory: ProfileMemory, result: AnalysisResponse, ctx: _RunContext) -> ProfileMemory:
        store_patterns = self.settings.store_workflow_patterns
        if self.settings.ai_merge and memory.has_analyzed_data:
            try:
                consolidated = await self._ai_merge(memory, result, ctx)
            except (ProviderError, ResponseParseError) as e:
                logger.info(f"AI merge failed, merging deterministically: {e}")
            else:
                return merge_profile(
                    memory,
                    consolidated.user_profile,
                    consolidated.patterns,
                    store_patterns=store_patterns,
                    consolidated_patterns=True,
                )
        return merge_profile(memory, result.user_profile, result.patterns, store_patterns=store_patterns)

    async def _ai_merge(self, memory: ProfileMemory, result: AnalysisResponse, ctx: _RunContext) -> AnalysisResponse:
        provider = self._require_provider()
        prompt = build_merge_prompt(memory, result.user_profile, result.patterns)
        await provider.initialize(ctx.prompts.merge_prompt or MERGE_SYSTEM_PROMPT)
        response = await ctx.retry.execute(
            lambda: provider.prompt(prompt, ANALYSIS_SCHEMA, ctx.token), ctx.token
        )
        return parse_analysis_response(response)

    def _require_provider(self) -> BaseProvider:
        if self.provider is None:
            raise ProviderUnavailableError(
                "No language model provider configured. Set HISTORY_INSIGHTS_PROVIDER "
                "and the matching credentials."
            )
        return self.provider

    def _save(self, memory: ProfileMemory, diagnostics: Diagnostics) -> None:
        try:
            self.store.save(memory)
        except PersistenceError as e:
            logger.error(f"Failed to persist profile memory, continuing in memory: {e}")
            diagnostics.persistence_error = str(e)

    def _beat(self) -> None:
        if self.heartbeat is None:
            return
        try:
            self.heartbeat()
        except Exception as e:
            logger.debug(f"Heartbeat failed: {e}")

    def _result(
        self,
        run: AnalysisRun,
        stats: HistoryStats,
        memory: ProfileMemory,
        diagnostics: Diagnostics,
        skipped: bool = False,
    ) -> AnalysisResult:
        return AnalysisResult(
            run_id=run.id,
            status=run.status,
            total_urls=stats.total_urls,
            date_range=stats.date_range,
            top_domains=stats.top_domains,
            patterns=list(memory.patterns),
            user_profile=memory.user_profile,
            diagnostics=diagnostics,
            skipped=skipped,
        )
