"""Small text helpers shared by reports and log handling."""

from __future__ import annotations

import re
from collections.abc import Iterable

REPORT_TEXT_LIMIT = 200_000

_ANSI_ESCAPE_RE = re.compile(
    r"[\u001B\u009B][\[\]()#;?]*(?:(?:\d{1,4}(?:;\d{0,4})*)?[\dA-ORZcf-nqry=><])"
)


def strip_ansi(text: str) -> str:
    """Remove terminal colour and cursor escape sequences."""
    return _ANSI_ESCAPE_RE.sub("", text)


def truncate_text(text: str, max_chars: int = REPORT_TEXT_LIMIT) -> str:
    """Cut *text* to *max_chars* and say so explicitly."""
    if len(text) <= max_chars:
        return text
    return f"{text[:max_chars]}\n\n... (truncated: {len(text)} chars -> {max_chars} chars)"


def dedupe_stable(items: Iterable[str]) -> list[str]:
    """Drop repeats while keeping first-seen order."""
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def code_block(lang: str, content: str) -> str:
    return f"```{lang}\n{content}\n```"
