"""
Best-effort JSON recovery for LLM output.

Models wrap JSON in code fences, leave trailing commas, use Python literals
or forget to quote keys. These helpers undo the common cases before giving up.
"""

from __future__ import annotations

import ast
import json
import re
from typing import Any


def extract_json_block(content: str) -> str:
    """Return the first balanced {...} or [...] block in `content` (or `content`)."""
    text = content.strip()
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return text
    start = min(starts)
    opener = text[start]
    closer = "}" if opener == "{" else "]"

    depth = 0
    in_string = False
    escaped = False
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
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return text[start:]


def fix_json_string(raw: str) -> str:
    """Apply textual repairs for the usual LLM JSON mistakes."""
    if not raw:
        return ""
    result = raw.strip()

    result = re.sub(r"^```(?:json)?\s*", "", result, flags=re.IGNORECASE)
    result = re.sub(r"\s*```$", "", result)

    result = result.replace("“", '"').replace("”", '"').replace("‘", "'").replace("’", "'")

    # Trailing commas before a closing bracket.
    result = re.sub(r",(\s*[}\]])", r"\1", result)

    result = re.sub(r"\bNone\b", "null", result)
    result = re.sub(r"\bTrue\b", "true", result)
    result = re.sub(r"\bFalse\b", "false", result)

    # Bare keys directly after { or , only.
    result = re.sub(r"([\{,]\s*)([A-Za-z_][A-Za-z0-9_\-]*)(\s*:)", r'\1"\2"\3', result)

    if "'" in result and '"' not in result:
        result = result.replace("'", '"')
    return result


def coerce_to_json_types(obj: Any) -> Any:
    """Map Python literal output onto JSON-compatible types."""
    if obj is ...:
        return None
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, dict):
        return {str(k): coerce_to_json_types(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [coerce_to_json_types(v) for v in obj]
    return str(obj)


def parse_json_loose(raw: str) -> dict[str, Any] | list[Any] | None:
    """
    Parse JSON with repair.

    Returns:
        A dict or list on success, else None.
    """
    if not raw:
        return None

    cleaned = fix_json_string(raw)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    for candidate in (raw.strip(), cleaned):
        try:
            obj = ast.literal_eval(candidate)
        except (ValueError, SyntaxError, TypeError, MemoryError, RecursionError):
            continue
        if isinstance(obj, (dict, list, tuple, set)):
            return json.loads(json.dumps(coerce_to_json_types(obj)))
        return None
    return None
