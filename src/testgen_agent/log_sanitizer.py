"""Make agent logs readable for humans.

Agents interleave their output with internal ``<system...>`` blocks,
``event:``/``system:`` bookkeeping lines and terminal colour codes. None of
that belongs in a report.
"""

from __future__ import annotations

import re

from testgen_agent.text_utils import strip_ansi

_SYSTEM_TAG_RE = re.compile(r"<(/?)(system[\w:-]*)(?:\s[^<>]*)?(/?)>", re.IGNORECASE)
_MARKER_LINE_RE = re.compile(r"^(?:event|system):\S*$")


def _remove_system_blocks(text: str) -> str:
    matches = list(_SYSTEM_TAG_RE.finditer(text))
    out: list[str] = []
    pos = 0
    idx = 0
    while idx < len(matches):
        match = matches[idx]
        is_closing, name, is_self_closing = match.group(1), match.group(2).lower(), match.group(3)
        if is_closing or is_self_closing:
            # Stray closing tags and empty elements carry no content.
            out.append(text[pos : match.start()])
            pos = match.end()
            idx += 1
            continue

        depth = 1
        scan = idx + 1
        while scan < len(matches) and depth:
            inner = matches[scan]
            if inner.group(2).lower() == name and not inner.group(3):
                depth += -1 if inner.group(1) else 1
            scan += 1
        if depth:
            # Unterminated opener: keep its text, later blocks are still removed.
            out.append(text[pos : match.end()])
            pos = match.end()
            idx += 1
            continue
        out.append(text[pos : match.start()])
        pos = matches[scan - 1].end()
        idx = scan
    out.append(text[pos:])
    return "".join(out)


def _sanitize_once(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = strip_ansi(text)
    text = _remove_system_blocks(text)

    lines: list[str] = []
    previous_blank = False
    for raw_line in text.split("\n"):
        line = strip_ansi(raw_line).strip()
        if _MARKER_LINE_RE.match(line):
            continue
        if not line:
            if previous_blank:
                continue
            previous_blank = True
        else:
            previous_blank = False
        lines.append(line)
    return "\n".join(lines).strip("\n")


def sanitize(text: str) -> str:
    """Strip system blocks, marker lines and ANSI codes; normalize blank lines.

    Surviving lines keep their relative order. Runs of blank lines collapse
    to one and leading/trailing blank lines are dropped. The result is a
    fixed point: ``sanitize(sanitize(x)) == sanitize(x)``.
    """
    current = text or ""
    while True:
        cleaned = _sanitize_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned
