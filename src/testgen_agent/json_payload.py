"""Locate and decode the JSON object an agent placed inside a marker block."""

from __future__ import annotations

import json
import math
import re
from typing import Any

_FENCE_RE = re.compile(r"^```[\w-]*\s*\n(?P<body>.*?)\n?```\s*$", re.DOTALL)


class JsonPayloadError(ValueError):
    """Raised when a marker block does not hold a usable JSON object.

    ``str(exc)`` is a short machine-readable code such as ``empty`` or
    ``invalid-json:<detail>``.
    """


def strip_code_fence(text: str) -> str:
    """Remove one surrounding Markdown code fence, if present."""
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    return match.group("body").strip() if match else stripped


def load_json_object(text: str) -> dict[str, Any]:
    """Decode *text* into a dict, tolerating fences and surrounding chatter."""
    stripped = strip_code_fence(text or "")
    if not stripped:
        raise JsonPayloadError("empty")

    try:
        value = json.loads(stripped)
    except json.JSONDecodeError as first_error:
        start = stripped.find("{")
        stop = stripped.rfind("}")
        if start == -1 or stop <= start:
            raise JsonPayloadError("no-json-object") from first_error
        try:
            value = json.loads(stripped[start : stop + 1])
        except json.JSONDecodeError as exc:
            raise JsonPayloadError(f"invalid-json:{exc.msg}") from exc

    if not isinstance(value, dict):
        raise JsonPayloadError("json-not-object")
    return value


def stringify_scalar(value: Any) -> str:
    """Render a JSON scalar the way it would read in a table cell.

    ``None``, NaN and infinities become ``""``; containers become ``""`` too.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return ""
        return str(int(value)) if value.is_integer() else repr(value)
    return ""


def is_json_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
