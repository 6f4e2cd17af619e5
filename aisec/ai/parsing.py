"""
Defensive parsing of model replies into an enrichment array.

Models return free text, not guaranteed JSON. parse_enrichment() runs an
ordered list of strategies and stops at the first that yields a list of
objects:

1. strip code fences, then decode as JSON up to three times
   (replies are sometimes JSON-encoded strings of JSON)
2. repair a truncated array and decode that

If every strategy fails the result is None: callers keep their
original, unenriched data.
"""

import json
import re
from typing import Any, Callable, List, Optional

MAX_DECODE_ROUNDS = 3

# Keys a model sometimes wraps the array in
_WRAPPER_KEYS = ("findings", "items", "results", "data")

_FENCE_RE = re.compile(r"```[A-Za-z0-9_+-]*[ \t]*\n?(.*?)(?:```|$)", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """
    Returns the content of the first ``` fence, or the text itself.
    An unclosed fence (truncated reply) runs to the end of the text.
    """
    stripped = text.strip()
    if "```" not in stripped:
        return stripped
    match = _FENCE_RE.search(stripped)
    return match.group(1).strip() if match else stripped


def _loads(text: str) -> Any:
    # Fences inside valid JSON (e.g. a code sample in a remediation) must survive
    try:
        return json.loads(text)
    except ValueError:
        return json.loads(strip_code_fence(text))


def decode_nested(text: str, max_rounds: int = MAX_DECODE_ROUNDS) -> Any:
    """
    json.loads repeatedly while the value is still a string.
    Returns None when the first round is not JSON at all.
    """
    value: Any = text
    for _ in range(max_rounds):
        if not isinstance(value, str):
            break
        try:
            value = _loads(value)
        except ValueError:
            return None if value is text else value
    return value


def repair_truncated_array(text: str) -> Optional[str]:
    """
    Cut a possibly truncated JSON array back to its last complete element.

    - starts at the first '['
    - tracks bracket depth outside of strings
    - array closes: cut there (drops trailing chatter)
    - never closes: cut after the last element that did close
      (or, failing that, the last closing bracket), drop a trailing
      comma and close the array
    """
    start = text.find("[")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    element_end = None
    last_close = None

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
        elif ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            last_close = i
            if depth == 0:
                return text[start:i + 1]
            if depth == 1:
                element_end = i

    cut = element_end if element_end is not None else last_close
    if cut is None:
        return None

    candidate = text[start:cut + 1].rstrip().rstrip(",").rstrip()
    return candidate + "]"


def _as_items(value: Any) -> Optional[List[dict]]:
    if isinstance(value, dict):
        for key in _WRAPPER_KEYS:
            if isinstance(value.get(key), list):
                value = value[key]
                break
    if not isinstance(value, list):
        return None
    return [item for item in value if isinstance(item, dict)]


# ---------------------------------------------------------
# Strategies (tried in order)
# ---------------------------------------------------------

def _parse_direct(text: str) -> Optional[List[dict]]:
    return _as_items(decode_nested(text))


def _parse_repaired(text: str) -> Optional[List[dict]]:
    decoded = decode_nested(text)
    source = decoded if isinstance(decoded, str) else strip_code_fence(text)

    repaired = repair_truncated_array(source)
    if repaired is None:
        return None
    try:
        return _as_items(json.loads(repaired))
    except ValueError:
        return None


STRATEGIES: List[Callable[[str], Optional[List[dict]]]] = [
    _parse_direct,
    _parse_repaired,
]


def parse_enrichment(text: Any) -> Optional[List[dict]]:
    """
    Model reply -> list of objects, or None when nothing usable was found.
    Never raises.
    """
    if not isinstance(text, str) or not text.strip():
        return None

    for strategy in STRATEGIES:
        items = strategy(text)
        if items is not None:
            return items
    return None
