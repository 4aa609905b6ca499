"""Two-tier merge of a new observation into the stored profile.

Stable traits (identities, preferences) change only on corroboration or
refinement. Dynamic context and the summary follow the latest evidence.
Workflow patterns are consolidated by name similarity instead of appended.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from difflib import SequenceMatcher

from history_insights.history.models import HistoryItem
from history_insights.memory.models import (
    MAX_CORE_IDENTITIES,
    MAX_PATTERN_URLS,
    MAX_PATTERNS,
    MAX_PENDING_TRAITS,
    MAX_PERSONAL_PREFERENCES,
    DynamicContext,
    PendingTraits,
    PersonalPreference,
    ProfileMemory,
    StableTraits,
    UserProfile,
    WorkflowPattern,
)

logger = logging.getLogger(__name__)

PATTERN_SIMILARITY_THRESHOLD = 0.8
MAX_MERGED_DESCRIPTION = 200

_POTENTIAL_RANK = {"low": 0, "medium": 1, "high": 2}


def _norm(text: str) -> str:
    return " ".join(text.casefold().split())


def _refines(old: str, new: str) -> bool:
    """True when ``new`` is a more specific version of ``old``."""
    return _norm(old) in _norm(new) and _norm(old) != _norm(new)


def merge_profile(
    memory: ProfileMemory,
    profile: UserProfile,
    patterns: list[WorkflowPattern],
    store_patterns: bool = True,
    consolidated_patterns: bool = False,
) -> ProfileMemory:
    """Return a new ``ProfileMemory`` with ``profile`` and ``patterns`` merged in.

    Args:
        consolidated_patterns: ``patterns`` already contains the existing
            patterns (an AI-merged list) and replaces them outright.
        store_patterns: when False, no patterns are kept at all.
    """
    stable, pending = merge_stable_traits(
        memory.stable_traits, memory.pending_traits, profile.stable_traits
    )
    if not store_patterns:
        merged_patterns: list[WorkflowPattern] = []
    elif consolidated_patterns:
        merged_patterns = [p.model_copy(deep=True) for p in patterns][:MAX_PATTERNS]
    else:
        merged_patterns = consolidate_patterns(memory.patterns, patterns)

    return memory.model_copy(
        update={
            "stable_traits": stable,
            "pending_traits": pending,
            "dynamic_context": merge_dynamic_context(memory.dynamic_context, profile.dynamic_context),
            "summary": profile.summary or memory.summary,
            "patterns": merged_patterns,
        },
        deep=True,
    )


def merge_dynamic_context(existing: DynamicContext, new: DynamicContext) -> DynamicContext:
    """Newest non-empty lists win; an empty observation keeps what we had."""
    return DynamicContext(
        current_tasks=list(new.current_tasks or existing.current_tasks),
        current_interests=list(new.current_interests or existing.current_interests),
    )


def merge_stable_traits(
    existing: StableTraits,
    pending: PendingTraits,
    new: StableTraits,
) -> tuple[StableTraits, PendingTraits]:
    identities, pending_ids = _merge_identities(
        existing.core_identities, pending.core_identities, new.core_identities
    )
    preferences, pending_prefs = _merge_preferences(
        existing.personal_preferences, pending.personal_preferences, new.personal_preferences
    )
    return (
        StableTraits(core_identities=identities, personal_preferences=preferences),
        PendingTraits(core_identities=pending_ids, personal_preferences=pending_prefs),
    )


def _merge_identities(
    existing: list[str], pending: list[str], new: list[str]
) -> tuple[list[str], list[str]]:
    if not existing:
        # Nothing established yet, the first observation seeds the list.
        return list(dict.fromkeys(new))[:MAX_CORE_IDENTITIES], list(pending)

    identities = list(existing)
    waiting = list(pending)
    for candidate in new:
        key = _norm(candidate)
        if any(_norm(i) == key or key in _norm(i) for i in identities):
            continue
        refined = next((n for n, i in enumerate(identities) if _refines(i, candidate)), None)
        if refined is not None:
            logger.debug(f"Identity refined: {identities[refined]!r} -> {candidate!r}")
            identities[refined] = candidate
            continue
        seen = next((w for w in waiting if _norm(w) == key), None)
        if seen is not None and len(identities) < MAX_CORE_IDENTITIES:
            waiting.remove(seen)
            identities.append(candidate)
            logger.debug(f"Identity corroborated: {candidate!r}")
        elif seen is None:
            waiting.append(candidate)
    return identities, waiting[-MAX_PENDING_TRAITS:]


def _merge_preferences(
    existing: list[PersonalPreference],
    pending: list[PersonalPreference],
    new: list[PersonalPreference],
) -> tuple[list[PersonalPreference], list[PersonalPreference]]:
    if not existing:
        by_category: dict[str, PersonalPreference] = {}
        for pref in new:
            by_category.setdefault(_norm(pref.category), pref)
        return list(by_category.values())[:MAX_PERSONAL_PREFERENCES], list(pending)

    preferences = [p.model_copy() for p in existing]
    waiting = [p.model_copy() for p in pending]
    for candidate in new:
        category = _norm(candidate.category)
        slot = next((n for n, p in enumerate(preferences) if _norm(p.category) == category), None)
        if slot is not None:
            current = preferences[slot].preference
            if _norm(current) == _norm(candidate.preference) or _norm(candidate.preference) in _norm(current):
                continue
            if _refines(current, candidate.preference):
                preferences[slot] = candidate
                continue

        seen = next(
            (
                w for w in waiting
                if _norm(w.category) == category and _norm(w.preference) == _norm(candidate.preference)
            ),
            None,
        )
        if seen is None:
            waiting.append(candidate)
            continue
        if slot is not None:
            waiting.remove(seen)
            preferences[slot] = candidate
            logger.debug(f"Preference changed on corroboration: {candidate.category}")
        elif len(preferences) < MAX_PERSONAL_PREFERENCES:
            waiting.remove(seen)
            preferences.append(candidate)
    return preferences, waiting[-MAX_PENDING_TRAITS:]


def _similar(a: str, b: str) -> bool:
    x, y = _norm(a), _norm(b)
    return x == y or SequenceMatcher(None, x, y).ratio() >= PATTERN_SIMILARITY_THRESHOLD


def _combine(old: WorkflowPattern, new: WorkflowPattern) -> WorkflowPattern:
    description = old.description
    if new.description and _norm(new.description) not in _norm(old.description):
        joined = f"{old.description}; {new.description}" if old.description else new.description
        description = joined if len(joined) <= MAX_MERGED_DESCRIPTION else new.description

    urls = list(dict.fromkeys(old.urls + new.urls))[:MAX_PATTERN_URLS]
    potential = max(
        old.automation_potential, new.automation_potential, key=lambda p: _POTENTIAL_RANK[p]
    )
    return old.model_copy(
        update={
            "description": description,
            "frequency": old.frequency + new.frequency,
            "urls": urls,
            "time_pattern": new.time_pattern or old.time_pattern,
            "suggestion": new.suggestion or old.suggestion,
            "automation_potential": potential,
        }
    )


def consolidate_patterns(
    existing: list[WorkflowPattern], new: list[WorkflowPattern]
) -> list[WorkflowPattern]:
    """Fold ``new`` into ``existing``; similar names combine, the rest append."""
    merged = [p.model_copy(deep=True) for p in existing]
    for pattern in new:
        match = next((n for n, p in enumerate(merged) if _similar(p.pattern, pattern.pattern)), None)
        if match is None:
            merged.append(pattern.model_copy(deep=True))
        else:
            merged[match] = _combine(merged[match], pattern)

    if len(merged) > MAX_PATTERNS:
        merged = sorted(merged, key=lambda p: p.frequency, reverse=True)[:MAX_PATTERNS]
    return merged


def advance(memory: ProfileMemory, items: Iterable[HistoryItem]) -> ProfileMemory:
    """Record that ``items`` have been merged into ``memory``."""
    items = list(items)
    timestamps = [i.last_visit_time for i in items if i.last_visit_time]
    newest = max(timestamps, default=0)
    return memory.model_copy(
        update={
            "last_history_timestamp": max(memory.last_history_timestamp, newest),
            "total_items_analyzed": memory.total_items_analyzed + len(items),
            "last_analyzed_date": datetime.now(timezone.utc),
        }
    )
