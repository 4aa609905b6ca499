"""Recover JSON payloads from model responses wrapped in formatting noise.

Repair runs in stages and stops at the first one that parses:

1. strip markdown code fences, or cut the outermost ``{...}`` out of prose;
2. parse strictly;
3. insert missing commas between fields and drop trailing commas;
4. for truncated output, cut back to the last complete element and close
   every bracket that is still open.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from history_insights.exceptions import ResponseParseError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")
_CLOSERS = {"{": "}", "[": "]"}
_MAX_TRUNCATION_CUTS = 50


def parse_json_response(response: str) -> Any:
    """Parse ``response`` into a JSON value, repairing it if needed.

    Raises:
        ResponseParseError: when no repair stage yields valid JSON.
    """
    if not response or not response.strip():
        raise ResponseParseError("Empty response", raw_response=response or "")

    text = extract_json_text(response)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.debug("Strict JSON parse failed (attempting repair): %s", e)

    repaired = fix_commas(text)
    try:
        result = json.loads(repaired)
        logger.info("JSON repair succeeded (commas fixed)")
        return result
    except json.JSONDecodeError:
        pass

    salvaged = close_truncated(repaired)
    if salvaged is not None:
        logger.info("JSON repair succeeded (truncated response closed)")
        return salvaged

    preview = response[:200]
    raise ResponseParseError(f"Response is not repairable JSON: {preview!r}", raw_response=response)


def extract_json_text(response: str) -> str:
    """Return the JSON-looking part of a response."""
    match = _FENCE_RE.search(response)
    if match:
        return match.group(1).strip()

    stripped = response.strip()
    if stripped.startswith("```"):
        # Opening fence with no closing fence: the response was cut off.
        stripped = re.sub(r"^```(?:json|JSON)?\s*", "", stripped)

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start != -1 and end > start:
        return stripped[start:end + 1]
    if start != -1:
        return stripped[start:]
    return stripped


def fix_commas(text: str) -> str:
    repaired = re.sub(r'"\s*\n\s*"', '",\n"', text)
    repaired = re.sub(r'(\d|true|false|null)\s*\n\s*"', r'\1,\n"', repaired)
    repaired = re.sub(r'([}\]])\s*\n\s*"', r'\1,\n"', repaired)
    repaired = re.sub(r"}\s*\n\s*{", "},\n{", repaired)
    return re.sub(r",\s*([}\]])", r"\1", repaired)


def close_truncated(text: str) -> Any | None:
    """Close a response that stops mid-structure; ``None`` if it cannot be saved."""
    scan = _scan(text)
    if scan is None:
        return None
    open_stack, in_string, cut_points = scan

    candidates: list[str] = []
    if open_stack or in_string:
        tail = text + ('"' if in_string else "")
        candidates.append(tail + _closing(open_stack))
    for index, stack in reversed(cut_points[-_MAX_TRUNCATION_CUTS:]):
        candidates.append(text[:index] + _closing(stack))

    for candidate in candidates:
        try:
            return json.loads(re.sub(r",\s*([}\]])", r"\1", candidate))
        except json.JSONDecodeError:
            continue
    return None


def _scan(text: str) -> tuple[list[str], bool, list[tuple[int, list[str]]]] | None:
    """Walk the text tracking open brackets; ``None`` on mismatched brackets.

    Returns the bracket stack at the end, whether the text ends inside a
    string, and every top-level-or-nested comma position with its stack.
    """
    stack: list[str] = []
    cut_points: list[tuple[int, list[str]]] = []
    in_string = False
    escaped = False
    for i, char in enumerate(text):
        if escaped:
            escaped = False
            continue
        if in_string:
            if char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(char)
        elif char in "}]":
            if not stack or _CLOSERS[stack[-1]] != char:
                return None
            stack.pop()
            if not stack:
                # First complete top-level value: anything after it is noise.
                cut_points.append((i + 1, []))
                return stack, False, cut_points
        elif char == ",":
            cut_points.append((i, list(stack)))
    return stack, in_string, cut_points


def _closing(stack: list[str]) -> str:
    return "".join(_CLOSERS[c] for c in reversed(stack))
