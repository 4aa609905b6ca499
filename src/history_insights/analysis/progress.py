"""Run state and progress events reported while an analysis is running."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum

from history_insights.llm.cancellation import CancellationToken


class Phase(str, Enum):
    CALCULATING = "calculating"
    CHUNKING = "chunking"
    ANALYZING = "analyzing"
    RETRYING = "retrying"
    COMPLETE = "complete"
    ERROR = "error"


class RunStatus(str, Enum):
    IDLE = "idle"
    CALCULATING = "calculating"
    CHUNKING = "chunking"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


class Trigger(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


@dataclass
class ProgressEvent:
    phase: Phase
    run_id: str
    current_chunk: int | None = None
    total_chunks: int | None = None
    description: str = ""
    retry_delay: float | None = None


@dataclass
class AnalysisRun:
    """The one live run. Owned by the ``Analyzer`` and never persisted."""

    trigger: Trigger = Trigger.MANUAL
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: RunStatus = RunStatus.IDLE
    current_chunk: int = 0
    total_chunks: int = 0
    cancel_token: CancellationToken = field(default_factory=CancellationToken, repr=False)
