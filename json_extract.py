"""
Tolerant JSON Extraction
========================

Models asked for "JSON only" still wrap it in markdown fences, prefix it with
a sentence, or leave trailing commas. These helpers recover the payload and
report failure as a value instead of raising.

Author: EduGenie Team
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Optional, Union

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


@dataclass(frozen=True)
class Parsed:
    value: Any


@dataclass(frozen=True)
class MalformedOutput:
    reason: str
    raw: str = ""


ExtractResult = Union[Parsed, MalformedOutput]

_OPENERS = {"object": "{", "array": "["}
_CLOSERS = {"{": "}", "[": "]"}


def _loads(candidate: str) -> Optional[Any]:
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, TypeError):
        pass
    # One more try without trailing commas
    try:
        return json.loads(_TRAILING_COMMA_RE.sub(r"\1", candidate))
    except (json.JSONDecodeError, TypeError):
        return None


def _matches(value: Any, expect: Optional[str]) -> bool:
    if expect == "object":
        return isinstance(value, dict)
    if expect == "array":
        return isinstance(value, list)
    return isinstance(value, (dict, list))


def _span(text: str, opener: str) -> Optional[str]:
    start = text.find(opener)
    end = text.rfind(_CLOSERS[opener])
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def extract_json(text: str, expect: Optional[str] = None) -> ExtractResult:
    """
    Recover a JSON object or array from a model reply

    Tries, in order: the whole reply, the first fenced code block, then the
    span from the first opening bracket to the last matching closing one.

    Args:
        text: Raw model output
        expect: "object", "array" or None for either

    Returns:
        Parsed | MalformedOutput
    """
    if not text or not text.strip():
        return MalformedOutput("empty response", text or "")

    candidates = [text.strip()]

    fence = _FENCE_RE.search(text)
    if fence:
        candidates.append(fence.group(1).strip())

    openers = [_OPENERS[expect]] if expect in _OPENERS else sorted(
        _CLOSERS, key=lambda o: text.find(o) if o in text else len(text)
    )
    for opener in openers:
        span = _span(text, opener)
        if span:
            candidates.append(span)

    for candidate in candidates:
        value = _loads(candidate)
        if value is not None and _matches(value, expect):
            return Parsed(value)

    return MalformedOutput("no valid JSON found", text)


def first_json_object(text: str) -> ExtractResult:
    """
    Isolate the first balanced {...} object in a reply

    Used where the model must return exactly one object but sometimes
    emits several.
    """
    start = (text or "").find("{")
    if start == -1:
        return MalformedOutput("no JSON object found", text or "")

    depth = 0
    in_string = False
    escaped = False
    end = -1
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                end = i
                break

    if end == -1:
        return MalformedOutput("malformed JSON object", text)

    value = _loads(text[start:end + 1].strip())
    if not isinstance(value, dict):
        return MalformedOutput("malformed JSON object", text)
    return Parsed(value)


def find_array(value: Any, key: str) -> list:
    """
    Normalize the shapes models use for "a list of things"

    Accepts a bare list, a list under `key`, or the first list-valued field
    of an object.
    """
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        if isinstance(value.get(key), list):
            return value[key]
        for item in value.values():
            if isinstance(item, list):
                return item
    return []
