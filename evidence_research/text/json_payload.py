"""Recover JSON payloads embedded in model prose.

Models often wrap structured output in markdown fences or surround it with
commentary. ``extract_json`` strips fences, then scans for the first bracketed
span that is balanced and parses cleanly.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Optional

from ..exceptions import ParseFailure

_FENCE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_PAIRS = {"[": "]", "{": "}"}


@dataclass(frozen=True)
class ParseResult:
    ok: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Any) -> "ParseResult":
        return cls(True, value, None)

    @classmethod
    def failure(cls, error: str) -> "ParseResult":
        return cls(False, None, error)

    def unwrap(self, raw: Optional[str] = None) -> Any:
        """Return the value or raise ParseFailure."""
        if not self.ok:
            raise ParseFailure(self.error or "parse failed", raw)
        return self.value


def strip_fences(text: str) -> str:
    """Return the body of the first fenced block, or the text unchanged."""
    m = _FENCE.search(text)
    return m.group(1).strip() if m else text.strip()


def _balanced_end(text: str, start: int) -> int:
    """Index one past the bracket closing text[start], or -1 when unbalanced."""
    stack = [_PAIRS[text[start]]]
    in_str = False
    escaped = False
    for i in range(start + 1, len(text)):
        ch = text[i]
        if in_str:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch in _PAIRS:
            stack.append(_PAIRS[ch])
        elif ch in "]}":
            if ch != stack[-1]:
                return -1
            stack.pop()
            if not stack:
                return i + 1
    return -1


def extract_json(text: Optional[str], expect: Optional[type] = None) -> ParseResult:
    """Find and parse the first well-formed JSON array or object in text.

    Args:
        text: Raw model output
        expect: Optional required type of the parsed value (list or dict)

    Returns:
        ParseResult carrying the decoded value or the reason for failure
    """
    if not text or not text.strip():
        return ParseResult.failure("empty response")

    body = strip_fences(text)
    if expect is list:
        openers = "["
    elif expect is dict:
        openers = "{"
    else:
        openers = "[{"

    for start, ch in enumerate(body):
        if ch not in openers:
            continue
        end = _balanced_end(body, start)
        if end < 0:
            continue
        try:
            value = json.loads(body[start:end])
        except json.JSONDecodeError:
            continue
        if expect is not None and not isinstance(value, expect):
            continue
        return ParseResult.success(value)
    return ParseResult.failure("no well-formed JSON payload found")


def coerce_list(value: Any, *keys: str) -> Optional[list]:
    """Return value if it is a list, else the first list found under one of keys."""
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for k in keys:
            if isinstance(value.get(k), list):
                return value[k]
    return None
