"""Tests for the two-tier profile merge."""

from history_insights.history.models import HistoryItem
from history_insights.memory.merge import (
    advance,
    consolidate_patterns,
    merge_dynamic_context,
    merge_profile,
    merge_stable_traits,
)
from history_insights.memory.models import (
    MAX_CURRENT_TASKS,
    MAX_PATTERNS,
    DynamicContext,
    PendingTraits,
    PersonalPreference,
    ProfileMemory,
    StableTraits,
    UserProfile,
    WorkflowPattern,
)


def profile(identities=(), prefs=(), tasks=(), interests=(), summary=""):
    return UserProfile(
        stable_traits=StableTraits(
            core_identities=list(identities),
            personal_preferences=[{"category": c, "preference": p} for c, p in prefs],
        ),
        dynamic_context=DynamicContext(current_tasks=list(tasks), current_interests=list(interests)),
        summary=summary,
    )


def pattern(name, frequency=1, **kwargs):
    return WorkflowPattern(pattern=name, frequency=frequency, **kwargs)


# Dynamic context

def test_dynamic_context_merge_is_idempotent():
    existing = DynamicContext(current_tasks=["old task"], current_interests=["chess"])
    new = DynamicContext(current_tasks=["ship release"], current_interests=["rust", "chess"])
    once = merge_dynamic_context(existing, new)
    twice = merge_dynamic_context(once, new)
    assert once == twice
    assert once.current_tasks == ["ship release"]


def test_dynamic_context_keeps_old_when_new_is_empty():
    existing = DynamicContext(current_tasks=["a"], current_interests=["b"])
    merged = merge_dynamic_context(existing, DynamicContext())
    assert merged.current_tasks == ["a"]
    assert merged.current_interests == ["b"]


def test_caps_hold_after_many_merges():
    memory = ProfileMemory.empty()
    for round_ in range(10):
        new = profile(
            identities=[f"role {round_}-{i}" for i in range(8)],
            tasks=[f"task {round_}-{i}" for i in range(20)],
        )
        patterns = [pattern(f"workflow {round_}-{i} " + "x" * i * 5, frequency=i) for i in range(6)]
        memory = merge_profile(memory, new, patterns)
        assert len(memory.stable_traits.core_identities) <= 5
        assert len(memory.dynamic_context.current_tasks) <= MAX_CURRENT_TASKS
        assert len(memory.patterns) <= MAX_PATTERNS
        assert len(memory.pending_traits.core_identities) <= 10


# Stable traits

def test_first_observation_seeds_identities():
    stable, pending = merge_stable_traits(
        StableTraits(), PendingTraits(), StableTraits(core_identities=["Software engineer"])
    )
    assert stable.core_identities == ["Software engineer"]
    assert pending.core_identities == []


def test_unrelated_identity_needs_corroboration():
    existing = StableTraits(core_identities=["Software engineer"])
    new = StableTraits(core_identities=["Gardener"])

    stable, pending = merge_stable_traits(existing, PendingTraits(), new)
    assert stable.core_identities == ["Software engineer"]
    assert pending.core_identities == ["Gardener"]

    stable, pending = merge_stable_traits(stable, pending, new)
    assert stable.core_identities == ["Software engineer", "Gardener"]
    assert pending.core_identities == []


def test_identity_is_refined_in_place():
    existing = StableTraits(core_identities=["Software engineer"])
    new = StableTraits(core_identities=["Senior software engineer at a fintech"])
    stable, _ = merge_stable_traits(existing, PendingTraits(), new)
    assert stable.core_identities == ["Senior software engineer at a fintech"]


def test_less_specific_identity_is_ignored():
    existing = StableTraits(core_identities=["Senior software engineer"])
    new = StableTraits(core_identities=["software engineer"])
    stable, pending = merge_stable_traits(existing, PendingTraits(), new)
    assert stable.core_identities == ["Senior software engineer"]
    assert pending.core_identities == []


def test_preference_change_needs_second_sighting():
    existing = StableTraits(personal_preferences=[{"category": "editor", "preference": "vim"}])
    new = StableTraits(personal_preferences=[{"category": "Editor", "preference": "emacs"}])

    stable, pending = merge_stable_traits(existing, PendingTraits(), new)
    assert stable.personal_preferences[0].preference == "vim"
    assert [p.preference for p in pending.personal_preferences] == ["emacs"]

    stable, pending = merge_stable_traits(stable, pending, new)
    assert stable.personal_preferences[0].preference == "emacs"
    assert pending.personal_preferences == []


def test_preference_refinement_replaces():
    existing = StableTraits(personal_preferences=[{"category": "music", "preference": "jazz"}])
    new = StableTraits(personal_preferences=[{"category": "music", "preference": "late-night jazz radio"}])
    stable, _ = merge_stable_traits(existing, PendingTraits(), new)
    assert stable.personal_preferences == [
        PersonalPreference(category="music", preference="late-night jazz radio")
    ]


# Patterns

def test_similar_patterns_are_combined():
    existing = [pattern(
        "Morning news check", frequency=3, description="Reads headlines",
        urls=["https://news.example.com"], automation_potential="low",
    )]
    new = [pattern(
        "Morning news checks", frequency=2, description="Skims tech news",
        urls=["https://news.example.com", "https://hn.example.com"], automation_potential="high",
    )]
    merged = consolidate_patterns(existing, new)

    assert len(merged) == 1
    combined = merged[0]
    assert combined.pattern == "Morning news check"
    assert combined.frequency == 5
    assert combined.description == "Reads headlines; Skims tech news"
    assert combined.urls == ["https://news.example.com", "https://hn.example.com"]
    assert combined.automation_potential == "high"


def test_long_merged_description_keeps_newest():
    existing = [pattern("Deploy", description="a" * 150)]
    new = [pattern("Deploy", description="b" * 100)]
    assert consolidate_patterns(existing, new)[0].description == "b" * 100


def test_distinct_patterns_append():
    merged = consolidate_patterns([pattern("Code review")], [pattern("Grocery shopping")])
    assert [p.pattern for p in merged] == ["Code review", "Grocery shopping"]


def test_overflow_keeps_most_frequent():
    existing = [pattern(f"workflow number {i:02d} alpha" + "z" * i, frequency=i) for i in range(15)]
    new = [pattern("completely different thing", frequency=100)]
    merged = consolidate_patterns(existing, new)
    assert len(merged) == MAX_PATTERNS
    assert merged[0].pattern == "completely different thing"
    assert all(p.frequency > 0 for p in merged)


def test_store_patterns_off_drops_patterns():
    memory = ProfileMemory(patterns=[pattern("Existing")])
    merged = merge_profile(memory, profile(), [pattern("New")], store_patterns=False)
    assert merged.patterns == []


def test_consolidated_patterns_replace():
    memory = ProfileMemory(patterns=[pattern("Old")])
    merged = merge_profile(memory, profile(), [pattern("Merged")], consolidated_patterns=True)
    assert [p.pattern for p in merged.patterns] == ["Merged"]


def test_summary_follows_latest_evidence():
    memory = ProfileMemory(summary="old summary")
    assert merge_profile(memory, profile(summary="new summary"), []).summary == "new summary"
    assert merge_profile(memory, profile(), []).summary == "old summary"


def test_merge_does_not_mutate_input():
    memory = ProfileMemory(dynamic_context=DynamicContext(current_tasks=["a"]))
    merge_profile(memory, profile(tasks=["b"]), [])
    assert memory.dynamic_context.current_tasks == ["a"]


def test_advance_bookkeeping():
    memory = ProfileMemory(last_history_timestamp=5000, total_items_analyzed=2)
    items = [
        HistoryItem(id="1", url="https://a.com", title="", last_visit_time=3000),
        HistoryItem(id="2", url="https://b.com", title="", last_visit_time=9000),
    ]
    advanced = advance(memory, items)
    assert advanced.last_history_timestamp == 9000
    assert advanced.total_items_analyzed == 4
    assert advanced.last_analyzed_date is not None
    assert advanced.has_analyzed_data
