"""Tests for browser history reader."""

import sqlite3
from unittest.mock import patch

import pytest

from history_insights.exceptions import BrowserHistoryReadError
from history_insights.history.reader import (
    APPLE_EPOCH_OFFSET,
    CHROME_EPOCH_OFFSET,
    BrowserHistoryReader,
)


def test_safari_ts_to_ms():
    # 2024-01-01 00:00:00 UTC in Safari seconds
    assert BrowserHistoryReader._safari_ts_to_ms(725760000.0) == 1704067200000


def test_safari_ts_to_ms_none():
    assert BrowserHistoryReader._safari_ts_to_ms(None) is None


def test_chrome_ts_to_ms():
    chrome_ts = (1704067200 + CHROME_EPOCH_OFFSET) * 1_000_000
    assert BrowserHistoryReader._chrome_ts_to_ms(chrome_ts) == 1704067200000


def test_chrome_ts_to_ms_zero():
    assert BrowserHistoryReader._chrome_ts_to_ms(0) is None
    assert BrowserHistoryReader._chrome_ts_to_ms(None) is None


@patch.object(BrowserHistoryReader, "_fetch_safari", return_value=[])
@patch.object(BrowserHistoryReader, "_fetch_chrome", return_value=[])
def test_fetch_items_empty(mock_chrome, mock_safari):
    reader = BrowserHistoryReader()
    # No items from either source, no errors = empty list
    assert reader.fetch_items() == []


@patch.object(BrowserHistoryReader, "_fetch_safari", side_effect=BrowserHistoryReadError("no access"))
@patch.object(BrowserHistoryReader, "_fetch_chrome", return_value=[])
def test_fetch_items_raises_when_only_errors(mock_chrome, mock_safari):
    reader = BrowserHistoryReader()
    with pytest.raises(BrowserHistoryReadError):
        reader.fetch_items()
    assert reader.last_errors == {"safari": "no access"}


def make_chrome_profile(base, profile, visits):
    folder = base / profile
    folder.mkdir(parents=True)
    conn = sqlite3.connect(folder / "History")
    conn.execute("CREATE TABLE urls (id INTEGER PRIMARY KEY, url TEXT, title TEXT, visit_count INTEGER)")
    conn.execute("CREATE TABLE visits (id INTEGER PRIMARY KEY, url INTEGER, visit_time INTEGER)")
    for n, (url, title, epoch_s) in enumerate(visits, start=1):
        conn.execute("INSERT INTO urls VALUES (?, ?, ?, 1)", (n, url, title))
        conn.execute(
            "INSERT INTO visits VALUES (?, ?, ?)",
            (n, n, int((epoch_s + CHROME_EPOCH_OFFSET) * 1_000_000)),
        )
    conn.commit()
    conn.close()


def make_safari_db(path, visits):
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE history_items (id INTEGER PRIMARY KEY, url TEXT, visit_count INTEGER)")
    conn.execute(
        "CREATE TABLE history_visits (id INTEGER PRIMARY KEY, history_item INTEGER, visit_time REAL, title TEXT)"
    )
    for n, (url, title, epoch_s) in enumerate(visits, start=1):
        conn.execute("INSERT INTO history_items VALUES (?, ?, 2)", (n, url))
        conn.execute(
            "INSERT INTO history_visits VALUES (?, ?, ?, ?)",
            (n, n, epoch_s - APPLE_EPOCH_OFFSET, title),
        )
    conn.commit()
    conn.close()


def test_fetch_from_both_browsers(tmp_path):
    chrome_base = tmp_path / "chrome"
    make_chrome_profile(chrome_base, "Default", [
        ("https://github.com", "GitHub", 1_700_000_100),
        ("https://old.example.com", "Old", 1_600_000_000),
    ])
    safari_path = tmp_path / "History.db"
    make_safari_db(safari_path, [("https://apple.com", "Apple", 1_700_000_200)])

    reader = BrowserHistoryReader(safari_path=safari_path, chrome_base_paths=[chrome_base])
    items = reader.fetch_items(since_ms=1_650_000_000_000)

    assert [i.url for i in items] == ["https://apple.com", "https://github.com"]
    assert items[0].id == "safari:Default:1"
    assert items[1].id == "chrome:Default:1"
    assert items[1].last_visit_time == 1_700_000_100_000
    assert reader.last_errors == {}


def test_missing_sources_return_nothing(tmp_path):
    reader = BrowserHistoryReader(safari_path=tmp_path / "absent.db", chrome_base_paths=[tmp_path / "none"])
    assert reader.fetch_items(since_ms=0) == []
