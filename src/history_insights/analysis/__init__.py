"""Session detection, chunk subdivision and the analysis orchestrator."""

from history_insights.analysis.chunking import (
    ChunkingResult,
    SessionDetector,
    build_chunks,
    half_day_ranges,
    merge_time_ranges,
    stitch_batches,
)
from history_insights.analysis.models import AnalysisResult, ChunkInfo, Diagnostics
from history_insights.analysis.orchestrator import Analyzer
from history_insights.analysis.progress import (
    AnalysisRun,
    Phase,
    ProgressEvent,
    RunStatus,
    Trigger,
)
from history_insights.analysis.settings import AnalysisSettings, CustomPrompts
from history_insights.analysis.subdivider import ChunkSubdivider

__all__ = [
    "AnalysisResult",
    "AnalysisRun",
    "AnalysisSettings",
    "Analyzer",
    "ChunkInfo",
    "ChunkSubdivider",
    "ChunkingResult",
    "CustomPrompts",
    "Diagnostics",
    "Phase",
    "ProgressEvent",
    "RunStatus",
    "SessionDetector",
    "Trigger",
    "build_chunks",
    "half_day_ranges",
    "merge_time_ranges",
    "stitch_batches",
]
