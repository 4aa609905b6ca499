"""Data models for the history module."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class HistoryItem:
    """One browser history entry. Never mutated by the pipeline."""

    id: str
    url: str | None = None
    title: str | None = None
    last_visit_time: float | None = None  # epoch milliseconds
    visit_count: int | None = None

    @classmethod
    def from_dict(cls, raw: dict) -> HistoryItem:
        """Build an item from a snake_case or camelCase mapping."""
        last_visit = raw.get("last_visit_time", raw.get("lastVisitTime"))
        visits = raw.get("visit_count", raw.get("visitCount"))
        return cls(
            id=str(raw.get("id") or ""),
            url=raw.get("url") or None,
            title=raw.get("title") or None,
            last_visit_time=float(last_visit) if last_visit is not None else None,
            visit_count=int(visits) if visits is not None else None,
        )


@dataclass(frozen=True)
class TimeRange:
    """A session boundary in epoch milliseconds, end inclusive of its last millisecond."""

    start_time: int
    end_time: int
    description: str = ""
    is_fallback: bool = False

    def contains(self, timestamp: float) -> bool:
        # Browser timestamps carry fractional milliseconds.
        return self.start_time <= timestamp < self.end_time + 1


@dataclass
class Chunk:
    """A contiguous, time-sorted group of items believed to form one session."""

    start_time: int
    end_time: int
    items: list[HistoryItem] = field(default_factory=list)
    index: int = 0
    total_chunks: int = 0
    is_fallback: bool = False
    description: str = ""


@dataclass
class DateRange:
    start: int | None = None
    end: int | None = None


@dataclass
class DomainCount:
    domain: str
    count: int


@dataclass
class HistoryStats:
    """Provider-independent statistics over one batch of items."""

    total_urls: int
    top_domains: list[DomainCount] = field(default_factory=list)
    date_range: DateRange = field(default_factory=DateRange)
