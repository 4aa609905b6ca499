"""Read-only access to local Safari and Chrome history databases."""

from __future__ import annotations

import logging
import shutil
import sqlite3
import tempfile
import time
from pathlib import Path

from history_insights.exceptions import BrowserHistoryReadError
from history_insights.history.models import HistoryItem

logger = logging.getLogger(__name__)

SAFARI_HISTORY_PATH = Path.home() / "Library" / "Safari" / "History.db"
CHROME_BASE_PATHS = [
    Path.home() / "Library" / "Application Support" / "Google" / "Chrome",
    Path.home() / ".config" / "google-chrome",
]

# Seconds from 1970-01-01 to 2001-01-01 (Safari/WebKit epoch).
APPLE_EPOCH_OFFSET = 978307200
# Seconds from 1601-01-01 to 1970-01-01 (Chrome epoch).
CHROME_EPOCH_OFFSET = 11644473600

DEFAULT_LOOKBACK_MS = 30 * 24 * 60 * 60 * 1000


class BrowserHistoryReader:
    """Turn local browser history databases into ``HistoryItem`` batches.

    Args:
        safari_path: Override for Safari's History.db.
        chrome_base_paths: Directories that hold Chrome profile folders.
    """

    def __init__(
        self,
        safari_path: Path | None = None,
        chrome_base_paths: list[Path] | None = None,
    ) -> None:
        self.safari_path = safari_path or SAFARI_HISTORY_PATH
        self.chrome_base_paths = chrome_base_paths if chrome_base_paths is not None else CHROME_BASE_PATHS
        self.last_errors: dict[str, str] = {}

    def fetch_items(
        self,
        since_ms: float | None = None,
        limit: int = 5000,
        include_safari: bool = True,
        include_chrome: bool = True,
    ) -> list[HistoryItem]:
        """Fetch visits newer than ``since_ms`` (default: the last 30 days).

        The ``limit`` is applied per enabled source. Results are ordered
        most recent first.
        """
        if since_ms is None:
            since_ms = time.time() * 1000 - DEFAULT_LOOKBACK_MS
        per_source_limit = max(1, limit)
        items: list[HistoryItem] = []
        errors: list[BrowserHistoryReadError] = []
        self.last_errors = {}

        if include_safari:
            try:
                items.extend(self._fetch_safari(since_ms, per_source_limit))
            except BrowserHistoryReadError as e:
                errors.append(e)
                self.last_errors["safari"] = str(e)
                logger.warning("Safari history fetch failed: %s", e)
        if include_chrome:
            try:
                items.extend(self._fetch_chrome(since_ms, per_source_limit))
            except BrowserHistoryReadError as e:
                errors.append(e)
                self.last_errors["chrome"] = str(e)
                logger.warning("Chrome history fetch failed: %s", e)

        if not items and errors:
            raise errors[0]

        items.sort(key=lambda i: i.last_visit_time or 0, reverse=True)
        return items

    def _fetch_safari(self, since_ms: float, limit: int) -> list[HistoryItem]:
        if not self.safari_path.exists():
            logger.info("Safari history DB not found at %s", self.safari_path)
            return []

        safari_since = since_ms / 1000 - APPLE_EPOCH_OFFSET
        try:
            conn = sqlite3.connect(f"file:{self.safari_path}?mode=ro", uri=True)
            conn.row_factory = sqlite3.Row
        except sqlite3.Error as e:
            raise BrowserHistoryReadError(
                "Cannot open Safari History.db. "
                "Enable Full Disk Access for your terminal if needed."
            ) from e

        try:
            rows = conn.execute(
                """
                SELECT
                    hv.id AS visit_id,
                    hv.visit_time AS visit_time,
                    COALESCE(hi.url, '') AS url,
                    COALESCE(hv.title, '') AS title,
                    COALESCE(hi.visit_count, 1) AS visit_count
                FROM history_visits hv
                JOIN history_items hi ON hi.id = hv.history_item
                WHERE hv.visit_time > ?
                ORDER BY hv.visit_time DESC
                LIMIT ?
                """,
                (safari_since, limit),
            ).fetchall()
        except sqlite3.Error as e:
            raise BrowserHistoryReadError(f"Failed querying Safari history: {e}") from e
        finally:
            conn.close()

        items = []
        for row in rows:
            visited = self._safari_ts_to_ms(row["visit_time"])
            if visited is None:
                continue
            items.append(HistoryItem(
                id=f"safari:Default:{row['visit_id']}",
                url=row["url"] or None,
                title=row["title"] or None,
                last_visit_time=visited,
                visit_count=int(row["visit_count"] or 1),
            ))
        return items

    def _fetch_chrome(self, since_ms: float, limit: int) -> list[HistoryItem]:
        history_paths = self._chrome_history_paths()
        if not history_paths:
            logger.info("No Chrome history DBs found under %s", self.chrome_base_paths)
            return []

        chrome_since = int((since_ms / 1000 + CHROME_EPOCH_OFFSET) * 1_000_000)
        per_profile_limit = max(50, limit // max(1, len(history_paths)))
        items: list[HistoryItem] = []

        for history_path in history_paths:
            profile = history_path.parent.name
            db_copy = self._copy_locked_db(history_path)
            if not db_copy:
                continue
            conn: sqlite3.Connection | None = None
            try:
                conn = sqlite3.connect(str(db_copy))
                conn.row_factory = sqlite3.Row
                rows = conn.execute(
                    """
                    SELECT
                        v.id AS visit_id,
                        v.visit_time AS visit_time,
                        COALESCE(u.url, '') AS url,
                        COALESCE(u.title, '') AS title,
                        COALESCE(u.visit_count, 1) AS visit_count
                    FROM visits v
                    JOIN urls u ON u.id = v.url
                    WHERE v.visit_time > ?
                    ORDER BY v.visit_time DESC
                    LIMIT ?
                    """,
                    (chrome_since, per_profile_limit),
                ).fetchall()
            except sqlite3.Error as e:
                logger.warning("Failed querying Chrome history (%s): %s", profile, e)
                rows = []
            finally:
                if conn is not None:
                    conn.close()
                db_copy.unlink(missing_ok=True)

            for row in rows:
                visited = self._chrome_ts_to_ms(row["visit_time"])
                if visited is None:
                    continue
                items.append(HistoryItem(
                    id=f"chrome:{profile}:{row['visit_id']}",
                    url=row["url"] or None,
                    title=row["title"] or None,
                    last_visit_time=visited,
                    visit_count=int(row["visit_count"] or 1),
                ))

        items.sort(key=lambda i: i.last_visit_time or 0, reverse=True)
        return items[:limit]

    def _chrome_history_paths(self) -> list[Path]:
        paths = []
        for base in self.chrome_base_paths:
            if not base.exists():
                continue
            for child in base.iterdir():
                history = child / "History"
                if child.is_dir() and child.name != "System Profile" and history.exists():
                    paths.append(history)
        paths.sort()
        return paths

    @staticmethod
    def _copy_locked_db(path: Path) -> Path | None:
        """Chrome keeps History locked while running; query a temporary copy."""
        try:
            with tempfile.NamedTemporaryFile(prefix="chrome-history-", suffix=".db", delete=False) as tmp:
                tmp_path = Path(tmp.name)
            shutil.copy2(path, tmp_path)
            return tmp_path
        except OSError as e:
            logger.warning("Failed to copy Chrome history DB %s: %s", path, e)
            return None

    @staticmethod
    def _safari_ts_to_ms(ts: float | int | None) -> float | None:
        if ts is None:
            return None
        try:
            return (float(ts) + APPLE_EPOCH_OFFSET) * 1000
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _chrome_ts_to_ms(ts: int | None) -> float | None:
        if not ts:
            return None
        try:
            return (int(ts) / 1_000_000 - CHROME_EPOCH_OFFSET) * 1000
        except (TypeError, ValueError):
            return None
