"""Tests for history data models."""

from history_insights.history.models import HistoryItem, TimeRange


def test_from_dict_camel_case():
    item = HistoryItem.from_dict({
        "id": 12, "url": "https://a.com", "title": "A",
        "lastVisitTime": 1700000000123.5, "visitCount": "3",
    })
    assert item.id == "12"
    assert item.last_visit_time == 1700000000123.5
    assert item.visit_count == 3


def test_from_dict_missing_fields():
    item = HistoryItem.from_dict({"id": "x", "url": ""})
    assert item.url is None
    assert item.last_visit_time is None
    assert item.visit_count is None


def test_time_range_contains_fractional_end():
    r = TimeRange(start_time=1000, end_time=2000)
    assert r.contains(1000)
    assert r.contains(2000.6)
    assert not r.contains(999.9)
    assert not r.contains(2001)
