"""Tolerant JSON decoding for LLM completions.

Models wrap JSON in code fences, add prose around it, or get cut off by the
token limit. ``decode_llm_json`` recovers the first balanced JSON value and
reports two distinct failure kinds:

- ``IncompleteJSONError``: the value never balances (truncated output). A
  longer, stricter regeneration can fix this.
- ``MalformedJSONError``: the value balances but is not valid JSON even
  after low-risk repairs. Regenerating with more tokens will not help.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional, Tuple


INCOMPLETE = "incomplete"
MALFORMED = "malformed"

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_CODE_FENCE = re.compile(r"```[ \t]*(?:json|JSON)?")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_SMART_QUOTES = {
    "“": '"',
    "”": '"',
    "„": '"',
    "″": '"',
    "‘": "'",
    "’": "'",
}
_CLOSERS = {"{": "}", "[": "]"}


class LLMJSONError(ValueError):
    """Raised when a completion cannot be decoded into JSON."""

    kind = MALFORMED

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class IncompleteJSONError(LLMJSONError):
    """The JSON value was cut off before its brackets balanced."""

    kind = INCOMPLETE


class MalformedJSONError(LLMJSONError):
    """The JSON value balanced but could not be parsed."""

    kind = MALFORMED


def _try_parse(text: str) -> Tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return False, None


def strip_noise(text: str) -> str:
    """Drop control characters other than newline, carriage return and tab."""
    return _CONTROL_CHARS.sub("", text or "").strip()


def strip_code_fences(text: str) -> str:
    return _CODE_FENCE.sub("", text or "").strip()


def repair_json_text(text: str) -> str:
    """Low-risk textual repairs: trailing commas and smart quotes.

    Decoding the repaired text also tolerates raw control whitespace inside
    strings.
    """
    for smart, plain in _SMART_QUOTES.items():
        text = text.replace(smart, plain)
    return _TRAILING_COMMA.sub(r"\1", text)


def find_json_span(text: str) -> Optional[Tuple[int, int]]:
    """Locate the first balanced ``{...}`` or ``[...]`` value.

    Returns ``(start, end)`` with ``end`` exclusive, or None when the value
    never closes. Raises MalformedJSONError when no opener exists at all.
    """
    starts = [index for index in (text.find("{"), text.find("[")) if index != -1]
    if not starts:
        raise MalformedJSONError("No JSON object or array found in model output", text)
    start = min(starts)

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            depth += 1
        elif char in ("}", "]"):
            depth -= 1
            if depth == 0:
                return start, index + 1
    return None


def decode_llm_json(text: str) -> Any:
    """Decode the JSON value carried by a model completion."""
    cleaned = strip_noise(text)
    if not cleaned:
        raise IncompleteJSONError("Model output was empty", text or "")

    ok, value = _try_parse(cleaned)
    if ok:
        return value

    unfenced = strip_code_fences(cleaned)
    ok, value = _try_parse(unfenced)
    if ok:
        return value

    span = find_json_span(unfenced)
    if span is None:
        raise IncompleteJSONError(
            "JSON output is incomplete (brackets never balanced, likely truncated)",
            text,
        )

    candidate = unfenced[span[0]:span[1]]
    ok, value = _try_parse(candidate)
    if ok:
        return value

    try:
        # Raw newlines and tabs inside string values are accepted here.
        return json.loads(repair_json_text(candidate), strict=False)
    except (json.JSONDecodeError, ValueError) as exc:
        raise MalformedJSONError(f"JSON output is malformed: {exc}", text) from exc
