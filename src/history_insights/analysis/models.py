"""Result types returned by an analysis run."""

from __future__ import annotations

from dataclasses import dataclass, field

from history_insights.analysis.progress import RunStatus
from history_insights.history.models import DateRange, DomainCount
from history_insights.memory.models import UserProfile, WorkflowPattern


@dataclass
class ChunkInfo:
    start_time: int
    end_time: int
    item_count: int
    description: str
    is_fallback: bool = False
    sub_chunks: int = 1
    error: str | None = None

    def to_dict(self) -> dict:
        data = {
            "startTime": self.start_time,
            "endTime": self.end_time,
            "itemCount": self.item_count,
            "description": self.description,
            "isFallback": self.is_fallback,
            "subChunks": self.sub_chunks,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class Diagnostics:
    chunks: list[ChunkInfo] = field(default_factory=list)
    chunking_raw_response: str | None = None
    chunking_error: str | None = None
    persistence_error: str | None = None

    def to_dict(self) -> dict:
        data: dict = {"chunks": [c.to_dict() for c in self.chunks]}
        if self.chunking_raw_response is not None:
            data["chunkingRawResponse"] = self.chunking_raw_response
        if self.chunking_error:
            data["chunkingError"] = self.chunking_error
        if self.persistence_error:
            data["persistenceError"] = self.persistence_error
        return data


@dataclass
class AnalysisResult:
    """Statistics plus the latest persisted profile, even after partial failures."""

    run_id: str
    status: RunStatus
    total_urls: int
    date_range: DateRange
    top_domains: list[DomainCount]
    patterns: list[WorkflowPattern]
    user_profile: UserProfile
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    skipped: bool = False

    def to_dict(self) -> dict:
        return {
            "runId": self.run_id,
            "status": self.status.value,
            "skipped": self.skipped,
            "totalUrls": self.total_urls,
            "dateRange": {"start": self.date_range.start, "end": self.date_range.end},
            "topDomains": [{"domain": d.domain, "count": d.count} for d in self.top_domains],
            "patterns": [p.model_dump(mode="json", by_alias=True) for p in self.patterns],
            "userProfile": self.user_profile.model_dump(mode="json", by_alias=True),
            "diagnostics": self.diagnostics.to_dict(),
        }
