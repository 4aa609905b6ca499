"""Key-value storage backends for persisted state."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from history_insights.exceptions import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path(os.environ.get("HISTORY_INSIGHTS_HOME", Path.home() / ".history_insights"))


class BaseStorage(ABC):
    """Abstract whole-value storage of JSON-serialisable data by key."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the stored value, or ``None`` when the key is absent."""
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key. Deleting a missing key is not an error."""
        ...


class InMemoryStorage(BaseStorage):
    """Process-local storage; values are copied through JSON like on disk."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Value for {key!r} is not JSON-serialisable: {e}") from e

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage(BaseStorage):
    """One JSON file per key inside ``directory``, replaced atomically on write."""

    def __init__(self, directory: Path | str | None = None):
        self.directory = Path(directory) if directory else DEFAULT_HOME

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Failed to read {path}: {e}") from e

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        try:
            payload = json.dumps(value, indent=2)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Value for {key!r} is not JSON-serialisable: {e}") from e
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Failed to write {path}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Failed to delete {self._path(key)}: {e}") from e
