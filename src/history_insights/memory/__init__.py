"""Persisted user profile, workflow patterns and their merge policy."""

from history_insights.memory.merge import (
    advance,
    consolidate_patterns,
    merge_dynamic_context,
    merge_profile,
    merge_stable_traits,
)
from history_insights.memory.models import (
    MEMORY_VERSION,
    DynamicContext,
    PersonalPreference,
    ProfileMemory,
    StableTraits,
    UserProfile,
    WorkflowPattern,
)
from history_insights.memory.storage import BaseStorage, InMemoryStorage, JsonFileStorage
from history_insights.memory.store import MEMORY_KEY, ProfileMemoryStore

__all__ = [
    "MEMORY_KEY",
    "MEMORY_VERSION",
    "BaseStorage",
    "DynamicContext",
    "InMemoryStorage",
    "JsonFileStorage",
    "PersonalPreference",
    "ProfileMemory",
    "ProfileMemoryStore",
    "StableTraits",
    "UserProfile",
    "WorkflowPattern",
    "advance",
    "consolidate_patterns",
    "merge_dynamic_context",
    "merge_profile",
    "merge_stable_traits",
]
