"""Tunable policy constants for an analysis run."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class AnalysisSettings:
    session_gap_minutes: int = 30
    chunk_batch_size: int = 80
    merge_adjacency_ms: int = 60_000
    max_retries: int = 3
    retry_base_delay_ms: int = 2000
    inter_chunk_delay_ms: int = 100
    token_safety_margin: int = 500
    ai_merge: bool = True
    store_workflow_patterns: bool = True


@dataclass
class CustomPrompts:
    """User overrides for the built-in system prompts. ``None`` keeps the default."""

    system_prompt: str | None = None
    chunk_prompt: str | None = None
    merge_prompt: str | None = None
