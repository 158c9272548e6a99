"""Lenient parsing of JSON embedded in AI responses."""

from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def strip_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def extract_object_block(text: str) -> str | None:
    """Return the first balanced ``{...}`` block in text, ignoring braces in strings."""
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escape = False
    for idx in range(start, len(text)):
        char = text[idx]
        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    return None


def _remove_trailing_commas(text: str) -> str:
    return re.sub(r",\s*([}\]])", r"\1", text)


def _loads_object(text: str) -> dict[str, Any] | None:
    for candidate in (text, _remove_trailing_commas(text)):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def parse_ai_json(text: str | None) -> dict[str, Any] | None:
    """Parse a JSON object out of an AI response.

    Markdown fences are stripped first, then the whole text is parsed directly,
    then the first embedded ``{...}`` block is tried. Returns ``None`` when no
    object can be recovered; never raises.
    """
    if not text or not text.strip():
        return None
    stripped = strip_fences(text)
    parsed = _loads_object(stripped)
    if parsed is not None:
        return parsed
    block = extract_object_block(stripped)
    if block is None:
        return None
    return _loads_object(block)
