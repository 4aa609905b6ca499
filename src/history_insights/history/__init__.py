"""Browser history input: item models, statistics and local database reader."""

from history_insights.history.models import (
    Chunk,
    DateRange,
    DomainCount,
    HistoryItem,
    HistoryStats,
    TimeRange,
)
from history_insights.history.reader import BrowserHistoryReader
from history_insights.history.stats import calculate_stats, extract_domain

__all__ = [
    "BrowserHistoryReader",
    "Chunk",
    "DateRange",
    "DomainCount",
    "HistoryItem",
    "HistoryStats",
    "TimeRange",
    "calculate_stats",
    "extract_domain",
]
