"""Perspective tables: parse the agent's answer and render the canonical table.

The table always has the same five columns. The agent is asked for a JSON
case list, which we render ourselves; a Markdown table written by older
prompts is accepted only when its header and separator are exactly the
canonical ones.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from testgen_agent.json_payload import JsonPayloadError, load_json_object, stringify_scalar
from testgen_agent.log_sanitizer import sanitize
from testgen_agent.markers import PERSPECTIVES_JSON, PERSPECTIVES_MARKDOWN
from testgen_agent.schemas import PerspectiveCase
from testgen_agent.text_utils import REPORT_TEXT_LIMIT, code_block, truncate_text

TABLE_HEADER = (
    "| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) "
    "| Expected Result | Notes |"
)
TABLE_SEPARATOR = "|---|---|---|---|---|"
EXTRACTION_ERROR_CASE_ID = "TC-E-EXTRACT-01"
SUPPORTED_PERSPECTIVE_VERSION = 1

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class PerspectiveParseResult:
    cases: list[PerspectiveCase] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_perspective_json(text: str) -> PerspectiveParseResult:
    """Parse ``{"version": 1, "cases": [...]}``.

    Items that are not objects, or whose ``caseId`` is blank, are skipped.
    """
    try:
        data = load_json_object(text)
    except JsonPayloadError as exc:
        return PerspectiveParseResult(error=str(exc))

    version = data.get("version")
    if isinstance(version, bool) or version != SUPPORTED_PERSPECTIVE_VERSION:
        return PerspectiveParseResult(error="unsupported-version")
    raw_cases = data.get("cases")
    if not isinstance(raw_cases, list):
        return PerspectiveParseResult(error="cases-not-array")

    cases: list[PerspectiveCase] = []
    for item in raw_cases:
        case = _coerce_case(item)
        if case is not None:
            cases.append(case)
    return PerspectiveParseResult(cases=cases)


def _coerce_case(item: Any) -> PerspectiveCase | None:
    if not isinstance(item, dict):
        return None
    case_id = stringify_scalar(item.get("caseId")).strip()
    if not case_id:
        return None
    return PerspectiveCase(
        case_id=case_id,
        input_precondition=stringify_scalar(item.get("inputPrecondition")),
        perspective=stringify_scalar(item.get("perspective")),
        expected_result=stringify_scalar(item.get("expectedResult")),
        notes=stringify_scalar(item.get("notes")),
    )


def normalize_cell(value: str) -> str:
    """Flatten a value onto one line and escape pipes."""
    flattened = value.replace("\r\n", "\n").replace("\n", " ")
    return _WHITESPACE_RE.sub(" ", flattened).strip().replace("|", "\\|")


def render_perspective_table(cases: Iterable[PerspectiveCase]) -> str:
    """Render *cases* as the canonical Markdown table (newline-terminated)."""
    rows = [TABLE_HEADER, TABLE_SEPARATOR]
    for case in cases:
        cells = (
            case.case_id,
            case.input_precondition,
            case.perspective,
            case.expected_result,
            case.notes,
        )
        rows.append("| " + " | ".join(normalize_cell(c) for c in cells) + " |")
    return "\n".join(rows) + "\n"


def coerce_legacy_markdown_table(markdown: str) -> str | None:
    """Re-emit a legacy table, or ``None`` unless the header is exactly canonical."""
    lines = markdown.replace("\r\n", "\n").split("\n")
    try:
        header_index = next(i for i, line in enumerate(lines) if line.strip() == TABLE_HEADER)
    except StopIteration:
        return None
    if header_index + 1 >= len(lines) or lines[header_index + 1].strip() != TABLE_SEPARATOR:
        return None

    body: list[str] = []
    for line in lines[header_index + 2 :]:
        if not line.strip().startswith("|"):
            break
        body.append(line.strip())
    return "\n".join([TABLE_HEADER, TABLE_SEPARATOR, *body]) + "\n"


def render_failure_table(reason: str, raw_log: str) -> str:
    """One error row plus the sanitized extraction log in a collapsible block."""
    table = render_perspective_table([PerspectiveCase(case_id=EXTRACTION_ERROR_CASE_ID, notes=reason)])
    log_text = sanitize(raw_log) if raw_log.strip() else ""
    details = "\n".join(
        [
            "<details>",
            "<summary>Extraction log (click to expand)</summary>",
            "",
            code_block("text", truncate_text(log_text or "(log was empty)", REPORT_TEXT_LIMIT)),
            "",
            "</details>",
        ]
    )
    return f"{table}\n{details}".rstrip()


# ---------------------------------------------------------------------------
# Extraction from a finished perspective sub-task
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PerspectiveExtraction:
    """Markdown to save, and whether it is a real table worth injecting."""

    markdown: str
    extracted: bool
    failure_reason: str | None = None


def extract_perspective_table(
    raw_log: str,
    *,
    exit_code: int | None,
    timed_out_after_ms: float | None = None,
) -> PerspectiveExtraction:
    """Turn a perspective sub-task's log into a table, JSON first.

    A JSON block that fails to parse still lets a legacy Markdown block
    win. When nothing usable is found the failure table names the first
    reason encountered.
    """
    reason: str | None = None

    json_block = PERSPECTIVES_JSON.extract(raw_log)
    if json_block:
        parsed = parse_perspective_json(json_block)
        if parsed.ok and parsed.cases:
            return PerspectiveExtraction(render_perspective_table(parsed.cases).rstrip(), True)
        reason = "empty cases" if parsed.ok else f"JSON parse failed: {parsed.error}"

    markdown_block = PERSPECTIVES_MARKDOWN.extract(raw_log)
    if markdown_block:
        normalized = coerce_legacy_markdown_table(markdown_block)
        if normalized is not None:
            return PerspectiveExtraction(normalized.rstrip(), True)
        reason = reason or "legacy markdown table could not be extracted"

    if reason is None:
        if timed_out_after_ms is not None:
            reason = f"timed out after {timed_out_after_ms:g} ms"
        else:
            reason = f"extraction failed: provider exit={'null' if exit_code is None else exit_code}"
    return PerspectiveExtraction(render_failure_table(reason, raw_log), False, reason)
