"""Prompt text and the compact item encoding sent to the provider."""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from datetime import datetime
from urllib.parse import parse_qsl, urlsplit

from history_insights.history.models import HistoryItem
from history_insights.memory.models import ProfileMemory, UserProfile, WorkflowPattern

_CHUNK_SYSTEM_TEMPLATE = """You find natural browsing sessions in a list of timestamps.

Rules:
- A gap of more than {gap_minutes} minutes starts a new session
- A session may cross midnight if activity is continuous
- Return at least one session
- Give every session a short descriptive label

Answer with startIndex and endIndex, the numbers shown in brackets, never raw times.
For a session running from [5] to [12], return startIndex 5 and endIndex 12.

Return only JSON matching the schema, with no markdown and no commentary."""


def chunk_system_prompt(gap_minutes: int = 30) -> str:
    return _CHUNK_SYSTEM_TEMPLATE.format(gap_minutes=gap_minutes)


ANALYSIS_SYSTEM_PROMPT = """You study browsing history and build a specific, evidence-based profile of the person behind it.

Fill these fields:
- coreIdentities (max 5): roles and professional identity, e.g. "Frontend Engineer", "Language Learner"
- personalPreferences (max 8): {category, preference} pairs, e.g. {category: "UI", preference: "always dark theme"}
- currentTasks (max 10): concrete goals in progress, e.g. "migrate blog to a static site generator"
- currentInterests (max 8): topics of recent, sustained attention, e.g. "mechanical keyboards"
- summary: one vivid sentence tying identity, focus and interests together

Also list recurring workflow patterns: repeated sequences of sites, their timing,
how often they happen, example URLs as evidence, and how each could be automated.

Be specific rather than generic and ground every claim in the data.

Return only JSON matching the schema, with no markdown and no commentary."""

MERGE_SYSTEM_PROMPT = """You merge a new browsing analysis into an existing user profile.

Stable fields resist change:
- coreIdentities: change only on strong new evidence; a role may become more specific ("UX Designer" -> "Senior UX Designer"); keep identities distinct
- personalPreferences: consolidate similar entries within a category; deep preferences rarely flip

Current fields follow recent evidence:
- currentTasks: drop finished tasks, sharpen ones that progressed
- currentInterests: prefer specific, recent interests over broad old ones
- summary: rewrite to reflect the person right now

Workflow patterns: combine similar patterns into one entry and add their frequencies.

Limits: coreIdentities 5, personalPreferences 8, currentTasks 10, currentInterests 8, patterns 15.

Return only JSON matching the schema, with no markdown and no commentary."""

HIDDEN_VALUE = "<hidden>"

TRACKING_PARAMS = frozenset({
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
    "gclid", "gbraid", "wbraid", "gad_source",
    "fbclid", "fb_action_ids", "fb_action_types",
    "msclkid", "yclid",
    "ei", "sei", "ved", "uact", "sca_esv", "gs_lp", "gs_lcrp", "sclient",
    "iflsig", "aqs", "sourceid", "ie", "oe",
    "sid", "sessionid", "vid", "cid", "client_id",
    "s_kwcid", "ef_id",
    "ref", "referer", "referrer", "source",
})
_TRACKING_PREFIX = re.compile(r"^(utm_|ga_|fb_|__)", re.IGNORECASE)
_HOST_RE = re.compile(r"^https?://([^/]+)")


def hide_tracking_params(params: dict[str, str]) -> dict[str, str]:
    """Mask the values of analytics parameters, keep everything else intact."""
    return {
        key: HIDDEN_VALUE if key.lower() in TRACKING_PARAMS or _TRACKING_PREFIX.match(key) else value
        for key, value in params.items()
    }


def compact_item(item: HistoryItem) -> dict:
    domain, path, params = "", "", {}
    if item.url:
        try:
            parts = urlsplit(item.url)
            domain = parts.hostname or ""
            path = parts.path
            params = hide_tracking_params(dict(parse_qsl(parts.query, keep_blank_values=True)))
        except ValueError:
            match = _HOST_RE.match(item.url)
            domain = match.group(1) if match else ""

    data: dict = {"d": domain, "p": path}
    if params:
        data["q"] = params
    data["t"] = item.title or ""
    data["ts"] = int(item.last_visit_time or 0)
    data["v"] = item.visit_count or 0
    return data


def _format_date(timestamp_ms: float | None) -> str:
    if not timestamp_ms:
        return "unknown"
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d")


def build_chunking_prompt(timestamps: Sequence[float]) -> str:
    lines = []
    for index, ts in enumerate(timestamps):
        d = datetime.fromtimestamp(ts / 1000)
        lines.append(f"[{index}] {d:%Y-%m-%d} {d.hour}:{d.minute:02d}")
    return (
        f"Group these {len(timestamps)} timestamps into browsing sessions.\n\n"
        "Indexed timestamps:\n" + "\n".join(lines)
    )


def _memory_context(memory: ProfileMemory) -> dict:
    return {
        "userProfile": memory.user_profile.model_dump(mode="json", by_alias=True),
        "patterns": [{"pattern": p.pattern, "frequency": p.frequency} for p in memory.patterns],
    }


def build_analysis_prompt(items: Sequence[HistoryItem], memory: ProfileMemory | None = None) -> str:
    """Render the analysis prompt for ``items``.

    When ``memory`` holds analysed data it is included as context, so its
    size counts against the token budget of every chunk.
    """
    first = items[0].last_visit_time if items else None
    last = items[-1].last_visit_time if items else None
    data = json.dumps([compact_item(i) for i in items], separators=(",", ":"), ensure_ascii=False)

    prompt = (
        "Analyze this browsing history data and create a detailed user profile:\n\n"
        f"DATA CHUNK ({len(items)} items):\n"
        f"Time: {_format_date(first)} to {_format_date(last)}\n\n"
        "Data (d=domain, p=path, q=query params, t=title, ts=timestamp, v=visits):\n"
        f"{data}\n\n"
    )
    if memory is not None and memory.has_analyzed_data:
        context = json.dumps(_memory_context(memory), separators=(",", ":"), ensure_ascii=False)
        prompt += f"EXISTING PROFILE (for context):\n{context}\n\n"
    prompt += (
        "Analyze this data to create a comprehensive user profile and identify workflow "
        "patterns. Be specific and use evidence from the browsing data."
    )
    return prompt


def build_merge_prompt(
    memory: ProfileMemory,
    profile: UserProfile,
    patterns: Sequence[WorkflowPattern],
) -> str:
    existing = {
        "userProfile": memory.user_profile.model_dump(mode="json", by_alias=True),
        "patterns": [p.model_dump(mode="json", by_alias=True) for p in memory.patterns],
    }
    new = {
        "userProfile": profile.model_dump(mode="json", by_alias=True),
        "patterns": [p.model_dump(mode="json", by_alias=True) for p in patterns],
    }
    return (
        "Merge the new analysis results with existing memory:\n\n"
        f"EXISTING MEMORY:\n{json.dumps(existing, ensure_ascii=False)}\n\n"
        f"NEW ANALYSIS RESULTS:\n{json.dumps(new, ensure_ascii=False)}\n\n"
        "Merge these results following the merge rules into one evolved, coherent profile."
    )
