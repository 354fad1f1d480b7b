from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

_JSON_FENCE_RE = re.compile(r"```json(.*?)```", re.I | re.S)
_TRAILING_COMMA_OBJECT_RE = re.compile(r",\s*}")
_TRAILING_COMMA_ARRAY_RE = re.compile(r",\s*]")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


def strict_json_loads(candidate: str) -> Any:
    return json.loads(candidate, parse_constant=_reject_constant)


@dataclass(frozen=True)
class ExtractedJson:
    found: bool
    value: Any = None

    def __bool__(self) -> bool:
        return self.found

    def value_or(self, default: Any) -> Any:
        return self.value if self.found else default


NOT_FOUND = ExtractedJson(found=False)


def extract_json_loose(text: str) -> ExtractedJson:
    """
    Best-effort recovery of one JSON value from free model text.

    A ```json fence wins over brace scanning, even when its content does not
    parse. Without a fence the candidate is the span from the first "{" to the
    last "}", so text holding several objects usually yields NOT_FOUND.
    Trailing commas before "}" or "]" are repaired once. NaN and Infinity
    are rejected as in strict JSON. Never raises.
    """
    candidate = _candidate(text or "")
    if candidate is None:
        return NOT_FOUND
    try:
        return ExtractedJson(found=True, value=strict_json_loads(candidate))
    except (ValueError, RecursionError):
        pass

    repaired = _TRAILING_COMMA_OBJECT_RE.sub("}", candidate)
    repaired = _TRAILING_COMMA_ARRAY_RE.sub("]", repaired)
    try:
        return ExtractedJson(found=True, value=strict_json_loads(repaired))
    except (ValueError, RecursionError):
        return NOT_FOUND


def _candidate(text: str) -> str | None:
    fence = _JSON_FENCE_RE.search(text)
    if fence:
        return fence.group(1)
    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last != -1 and last > first:
        return text[first : last + 1]
    return None
