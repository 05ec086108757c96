"""Write perspective tables and test-execution reports to disk.

Both artifacts are Markdown files named ``<kind>_<YYYYMMDD_HHMMSS>.md`` so a
directory listing sorts by recency. An existing file is never overwritten;
a numeric suffix is added instead.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import platform
from collections.abc import Sequence
from pathlib import Path

from testgen_agent.file_io import atomic_write_text
from testgen_agent.schemas import ExecutionReport, ExecutionStatus, SavedArtifact
from testgen_agent.text_utils import REPORT_TEXT_LIMIT, code_block, strip_ansi, truncate_text

logger = logging.getLogger(__name__)

PERSPECTIVE_PREFIX = "test-perspectives"
EXECUTION_PREFIX = "test-execution"


def format_timestamp(moment: dt.datetime | None = None) -> str:
    """``YYYYMMDD_HHMMSS`` in local time."""
    return (moment or dt.datetime.now()).strftime("%Y%m%d_%H%M%S")


def _iso(moment: dt.datetime | None) -> str:
    value = moment or dt.datetime.now(dt.timezone.utc)
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(dt.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def resolve_dir_absolute(workspace_root: str | Path, directory: str) -> Path:
    """Resolve a configured report directory against the workspace root."""
    text = (directory or "").strip()
    root = Path(workspace_root)
    if not text:
        return root
    candidate = Path(os.path.expanduser(text))
    return candidate if candidate.is_absolute() else root / candidate


def to_workspace_relative(workspace_root: str | Path, absolute_path: str | Path) -> str | None:
    """Workspace-relative POSIX path, or ``None`` when the file lies outside it."""
    try:
        rel = os.path.relpath(Path(absolute_path), Path(workspace_root))
    except ValueError:
        # Different drives on Windows.
        return None
    if rel.startswith(".."):
        return None
    return Path(rel).as_posix()


def _unique_path(directory: Path, stem: str) -> Path:
    candidate = directory / f"{stem}.md"
    counter = 1
    while candidate.exists():
        candidate = directory / f"{stem}_{counter}.md"
        counter += 1
    return candidate


def _save(workspace_root: str | Path, report_dir: str, stem: str, content: str) -> SavedArtifact:
    directory = resolve_dir_absolute(workspace_root, report_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = _unique_path(directory, stem)
    atomic_write_text(path, content)
    logger.debug("Wrote artifact %s (%s bytes)", path, len(content.encode("utf-8")))
    return SavedArtifact(
        absolute_path=str(path),
        relative_path=to_workspace_relative(workspace_root, path),
    )


def _targets_block(target_paths: Sequence[str]) -> str:
    return "\n".join(f"- {p}" for p in target_paths) if target_paths else "- (none)"


# ---------------------------------------------------------------------------
# Perspective table
# ---------------------------------------------------------------------------


def build_perspective_markdown(
    *,
    target_label: str,
    target_paths: Sequence[str],
    table_markdown: str,
    generated_at: dt.datetime | None = None,
) -> str:
    table = table_markdown.strip()
    return "\n".join(
        [
            "# Test Perspective Table (auto-generated)",
            "",
            f"- Generated at: {_iso(generated_at)}",
            f"- Target: {target_label}",
            "- Target files:",
            _targets_block(target_paths),
            "",
            "---",
            "",
            table or "(the perspective table was empty)",
            "",
        ]
    )


def save_perspective_table(
    *,
    workspace_root: str | Path,
    report_dir: str,
    timestamp: str,
    target_label: str,
    target_paths: Sequence[str],
    table_markdown: str,
) -> SavedArtifact:
    content = build_perspective_markdown(
        target_label=target_label,
        target_paths=target_paths,
        table_markdown=table_markdown,
    )
    return _save(workspace_root, report_dir, f"{PERSPECTIVE_PREFIX}_{timestamp}", content)


# ---------------------------------------------------------------------------
# Test execution report
# ---------------------------------------------------------------------------


def _text_block(text: str) -> str:
    cleaned = strip_ansi(text or "")
    return code_block("text", truncate_text(cleaned if cleaned.strip() else "(no log)", REPORT_TEXT_LIMIT))


def build_execution_report_markdown(
    report: ExecutionReport,
    *,
    generation_label: str,
    target_paths: Sequence[str],
    model: str | None = None,
    generated_at: dt.datetime | None = None,
) -> str:
    """Render *report*; header lines with no value are dropped."""
    skip_line: str | None = None
    if report.status is ExecutionStatus.SKIPPED and (report.skip_reason or "").strip():
        skip_line = f"- skipReason: {report.skip_reason.strip()}"
    runner_line = f"- executionRunner: {report.execution_runner}" if report.execution_runner else None
    error_line = f"- error: {report.error_message.strip()}" if (report.error_message or "").strip() else None
    model_line = f"- model: {model}" if (model or "").strip() else "- model: (auto)"

    if report.file_writes:
        writes = "\n".join(
            f"- {w.path}"
            + (f" (lines={w.lines_created})" if w.lines_created is not None else "")
            + (f" (bytes={w.bytes_written})" if w.bytes_written is not None else "")
            for w in report.file_writes
        )
    else:
        writes = "- (none)"

    lines = [
        "# Test Execution Report (auto-generated)",
        "",
        f"- Generated at: {_iso(generated_at)}",
        f"- Generation target: {generation_label}",
        model_line,
        "- Target files:",
        _targets_block(target_paths),
        "",
        "## Environment",
        f"- OS: {platform.system() or 'unknown'} ({platform.machine() or 'unknown'})",
        f"- Python: {platform.python_version()}",
        "",
        "## Command",
        code_block("bash", report.command),
        "",
        "## Result",
        f"- status: {report.status.value}",
        skip_line,
        f"- exitCode: {'null' if report.exit_code is None else report.exit_code}",
        f"- signal: {report.signal or 'null'}",
        f"- durationMs: {report.duration_ms}",
        runner_line,
        error_line,
        "",
        "## stdout",
        _text_block(report.stdout),
        "",
        "## stderr",
        _text_block(report.stderr),
        "",
        "## Run log",
        _text_block(report.sanitized_log),
        "",
        "## Files written by the agent",
        writes,
        "",
    ]
    return "\n".join(line for line in lines if line is not None) + "\n"


def save_execution_report(
    report: ExecutionReport,
    *,
    workspace_root: str | Path,
    report_dir: str,
    timestamp: str,
    generation_label: str,
    target_paths: Sequence[str],
    model: str | None = None,
) -> SavedArtifact:
    content = build_execution_report_markdown(
        report,
        generation_label=generation_label,
        target_paths=target_paths,
        model=model,
    )
    return _save(workspace_root, report_dir, f"{EXECUTION_PREFIX}_{timestamp}", content)
