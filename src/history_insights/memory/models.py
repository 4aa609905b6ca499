"""Persisted profile models.

Every capped list is clipped on validation, so neither a provider response
nor a hand-edited file can grow persisted state past its limits.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MEMORY_VERSION = "2.0.0"

MAX_CORE_IDENTITIES = 5
MAX_PERSONAL_PREFERENCES = 8
MAX_CURRENT_TASKS = 10
MAX_CURRENT_INTERESTS = 8
MAX_PATTERNS = 15
MAX_PATTERN_URLS = 5
MAX_SUMMARY_CHARS = 500
MAX_PENDING_TRAITS = 10

AutomationPotential = Literal["high", "medium", "low"]


def _clip_strings(values: list[str], limit: int, width: int) -> list[str]:
    cleaned = [v.strip()[:width] for v in values if isinstance(v, str) and v.strip()]
    return cleaned[:limit]


class CamelModel(BaseModel):
    """Python field names, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WorkflowPattern(CamelModel):
    pattern: str = Field(min_length=1, description="Short name for the recurring workflow")
    description: str = Field("", description="1-2 sentences on the goal and the steps")
    frequency: int = Field(1, description="How often the workflow occurs")
    urls: list[str] = Field(default_factory=list, description="Example URLs from the workflow")
    time_pattern: str | None = Field(None, description="When it usually happens, e.g. 'weekday mornings'")
    suggestion: str = Field("", description="Concrete way to streamline or automate it")
    automation_potential: AutomationPotential = "medium"

    @field_validator("pattern", "description", "suggestion", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        if v is None:
            return ""
        return v.strip()[:200] if isinstance(v, str) else v

    @field_validator("frequency", mode="before")
    @classmethod
    def _coerce_frequency(cls, v: Any) -> int:
        try:
            return max(0, int(float(v)))
        except (TypeError, ValueError):
            return 1

    @field_validator("urls", mode="before")
    @classmethod
    def _clip_urls(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        return _clip_strings(v, MAX_PATTERN_URLS, 300)

    @field_validator("automation_potential", mode="before")
    @classmethod
    def _coerce_potential(cls, v: Any) -> str:
        value = str(v or "").strip().lower()
        return value if value in ("high", "medium", "low") else "medium"


class PersonalPreference(CamelModel):
    category: str = Field(min_length=1, max_length=40)
    preference: str = Field(min_length=1, max_length=80)

    @field_validator("category", mode="before")
    @classmethod
    def _trim_category(cls, v: Any) -> Any:
        return v.strip()[:40] if isinstance(v, str) else v

    @field_validator("preference", mode="before")
    @classmethod
    def _trim_preference(cls, v: Any) -> Any:
        return v.strip()[:80] if isinstance(v, str) else v


def _valid_preferences(v: Any, limit: int) -> list:
    if not isinstance(v, list):
        return []
    kept = []
    for entry in v:
        if isinstance(entry, PersonalPreference):
            kept.append(entry)
            continue
        try:
            kept.append(PersonalPreference.model_validate(entry))
        except ValueError:
            continue
    return kept[:limit]


class StableTraits(CamelModel):
    core_identities: list[str] = Field(
        default_factory=list, description="Roles and identities backed by repeated evidence"
    )
    personal_preferences: list[PersonalPreference] = Field(
        default_factory=list, description="Enduring preferences, each with a category"
    )

    @field_validator("core_identities", mode="before")
    @classmethod
    def _clip_identities(cls, v: Any) -> list[str]:
        return _clip_strings(v, MAX_CORE_IDENTITIES, 80) if isinstance(v, list) else []

    @field_validator("personal_preferences", mode="before")
    @classmethod
    def _clip_preferences(cls, v: Any) -> list:
        return _valid_preferences(v, MAX_PERSONAL_PREFERENCES)


class DynamicContext(CamelModel):
    current_tasks: list[str] = Field(
        default_factory=list, description="Active short-to-medium term goals"
    )
    current_interests: list[str] = Field(
        default_factory=list, description="Topics of recent, sustained interest"
    )

    @field_validator("current_tasks", mode="before")
    @classmethod
    def _clip_tasks(cls, v: Any) -> list[str]:
        return _clip_strings(v, MAX_CURRENT_TASKS, 80) if isinstance(v, list) else []

    @field_validator("current_interests", mode="before")
    @classmethod
    def _clip_interests(cls, v: Any) -> list[str]:
        return _clip_strings(v, MAX_CURRENT_INTERESTS, 60) if isinstance(v, list) else []


class UserProfile(CamelModel):
    stable_traits: StableTraits = Field(default_factory=StableTraits)
    dynamic_context: DynamicContext = Field(default_factory=DynamicContext)
    summary: str = Field("", description="1-2 sentence narrative of who the user is right now")

    @field_validator("summary", mode="before")
    @classmethod
    def _clip_summary(cls, v: Any) -> str:
        return v.strip()[:MAX_SUMMARY_CHARS] if isinstance(v, str) else ""


class PendingTraits(CamelModel):
    """Stable-trait candidates seen once, waiting for a second sighting."""

    core_identities: list[str] = Field(default_factory=list)
    personal_preferences: list[PersonalPreference] = Field(default_factory=list)

    @field_validator("core_identities", mode="before")
    @classmethod
    def _clip_identities(cls, v: Any) -> list[str]:
        return _clip_strings(v, MAX_PENDING_TRAITS, 80) if isinstance(v, list) else []

    @field_validator("personal_preferences", mode="before")
    @classmethod
    def _clip_preferences(cls, v: Any) -> list:
        return _valid_preferences(v, MAX_PENDING_TRAITS)


class ProfileMemory(CamelModel):
    """The single persisted profile record."""

    stable_traits: StableTraits = Field(default_factory=StableTraits)
    dynamic_context: DynamicContext = Field(default_factory=DynamicContext)
    summary: str = ""
    patterns: list[WorkflowPattern] = Field(default_factory=list)
    pending_traits: PendingTraits = Field(default_factory=PendingTraits)
    last_analyzed_date: datetime | None = None
    last_history_timestamp: float = 0
    total_items_analyzed: int = 0
    version: str = MEMORY_VERSION

    @field_validator("summary", mode="before")
    @classmethod
    def _clip_summary(cls, v: Any) -> str:
        return v.strip()[:MAX_SUMMARY_CHARS] if isinstance(v, str) else ""

    @field_validator("patterns", mode="after")
    @classmethod
    def _clip_patterns(cls, v: list[WorkflowPattern]) -> list[WorkflowPattern]:
        return v[:MAX_PATTERNS]

    @classmethod
    def empty(cls) -> ProfileMemory:
        return cls()

    @property
    def user_profile(self) -> UserProfile:
        return UserProfile(
            stable_traits=self.stable_traits,
            dynamic_context=self.dynamic_context,
            summary=self.summary,
        )

    @property
    def has_analyzed_data(self) -> bool:
        return self.total_items_analyzed > 0

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
