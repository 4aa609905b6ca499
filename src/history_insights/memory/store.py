"""Load and save the single versioned profile record."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from history_insights.exceptions import PersistenceError
from history_insights.memory.models import MEMORY_VERSION, ProfileMemory
from history_insights.memory.storage import BaseStorage, JsonFileStorage

logger = logging.getLogger(__name__)

MEMORY_KEY = "history_analysis_memory"


class ProfileMemoryStore:
    """Whole-record persistence for ``ProfileMemory``.

    A stored record from another schema version, or one that no longer
    validates, is treated as absent rather than migrated.
    """

    def __init__(self, storage: BaseStorage | None = None, key: str = MEMORY_KEY):
        self.storage = storage or JsonFileStorage()
        self.key = key

    def load(self) -> ProfileMemory | None:
        try:
            raw = self.storage.get(self.key)
        except PersistenceError as e:
            logger.error(f"Failed to load profile memory: {e}")
            return None
        if raw is None:
            logger.debug("No stored profile memory")
            return None
        if not isinstance(raw, dict):
            logger.warning("Stored profile memory is not an object, discarding")
            return None

        version = raw.get("version")
        if version != MEMORY_VERSION:
            logger.info(f"Profile memory version mismatch ({version} != {MEMORY_VERSION}), starting fresh")
            return None

        try:
            memory = ProfileMemory.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Stored profile memory is corrupted, discarding: {e}")
            return None
        logger.debug(
            f"Loaded profile memory: {memory.total_items_analyzed} items analyzed, "
            f"{len(memory.patterns)} patterns"
        )
        return memory

    def load_or_create(self) -> ProfileMemory:
        return self.load() or ProfileMemory.empty()

    def save(self, memory: ProfileMemory) -> None:
        """Persist the whole record.

        Raises:
            PersistenceError: if the storage backend fails.
        """
        self.storage.set(self.key, memory.to_dict())
        logger.debug(
            f"Saved profile memory: {memory.total_items_analyzed} items analyzed, "
            f"{len(memory.patterns)} patterns"
        )

    def clear_patterns(self) -> None:
        memory = self.load()
        if memory is None:
            return
        self.save(memory.model_copy(update={"patterns": []}))
        logger.info("Workflow patterns cleared")

    def clear(self) -> None:
        self.storage.delete(self.key)
        logger.info("Profile memory cleared")
