"""Basic statistics over a batch of history items."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from urllib.parse import urlparse

from history_insights.history.models import DateRange, DomainCount, HistoryItem, HistoryStats

TOP_DOMAIN_LIMIT = 10


def calculate_stats(items: Sequence[HistoryItem], top_n: int = TOP_DOMAIN_LIMIT) -> HistoryStats:
    """Count items, rank domains by frequency and find the covered date range."""
    if not items:
        return HistoryStats(total_urls=0)

    domains: Counter[str] = Counter()
    for item in items:
        domain = extract_domain(item.url)
        if domain:
            domains[domain] += 1

    timestamps = [item.last_visit_time for item in items if item.last_visit_time is not None]
    date_range = DateRange()
    if timestamps:
        date_range = DateRange(start=int(min(timestamps)), end=int(max(timestamps)))

    return HistoryStats(
        total_urls=len(items),
        top_domains=[DomainCount(domain=d, count=c) for d, c in domains.most_common(top_n)],
        date_range=date_range,
    )


def extract_domain(url: str | None) -> str:
    if not url:
        return ""
    try:
        return urlparse(url).hostname or ""
    except ValueError:
        return ""
