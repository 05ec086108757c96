"""Assemble the prompts sent to the agent from catalog text blocks."""

from __future__ import annotations

from collections.abc import Sequence

from testgen_agent.markers import EXECUTION_JSON, PERSPECTIVES_JSON
from testgen_agent.prompts.catalog import PromptCatalog, get_catalog


def _bullets(paths: Sequence[str], empty: str = "- (none)") -> str:
    lines = [f"- {p}" for p in paths if p.strip()]
    return "\n".join(lines) if lines else empty


def build_perspective_prompt(
    target_label: str,
    target_paths: Sequence[str],
    strategy_text: str = "",
    reference_text: str = "",
    *,
    language: str = "English",
    catalog: PromptCatalog | None = None,
) -> str:
    """Prompt asking for a JSON perspective table and nothing else.

    The agent answers inside the perspective JSON markers; the table is
    rendered to Markdown on our side so column layout never drifts.
    """
    catalog = catalog or get_catalog()
    strategy = strategy_text.strip() or catalog.text("perspective", "default_strategy")
    parts = [
        catalog.text("perspective", "intro"),
        "",
        "## Target",
        f"- Run type: {target_label}",
        "- Target files:",
        _bullets(target_paths),
        "",
        "## Output language (required)",
        f"- Test perspective table: {language}",
        "",
        "## Output requirements (required)",
        catalog.text("perspective", "output_requirements"),
        f"- Marker lines: `{PERSPECTIVES_JSON.begin}` and `{PERSPECTIVES_JSON.end}`",
        "",
        "## Critical Quality Rules (MUST)",
        catalog.text("perspective", "quality_rules"),
        "",
        "## Tooling constraints (required)",
        catalog.text("perspective", "tooling_constraints"),
        "",
        "## Test Strategy Rules (MUST)",
        "The following rules are mandatory. Follow them exactly.",
        strategy,
    ]
    if reference_text.strip():
        parts += [
            "",
            "## Reference (diff / additional context)",
            "Use this only if needed.",
            "",
            reference_text.strip(),
        ]
    parts += [
        "",
        "## Output format (required)",
        PERSPECTIVES_JSON.wrap(catalog.text("perspective", "example_case")),
    ]
    return "\n".join(parts)


def build_test_execution_prompt(test_command: str, *, catalog: PromptCatalog | None = None) -> str:
    """Constrained prompt for running *test_command* through the agent."""
    catalog = catalog or get_catalog()
    parts = [
        catalog.text("test_execution", "intro"),
        "",
        "## Constraints (required)",
        catalog.text("test_execution", "constraints"),
        "",
        "## Command to run (required)",
        catalog.text("test_execution", "command_heading"),
        "",
        "```bash",
        test_command,
        "```",
        "",
        "## Output format (required)",
        catalog.text("test_execution", "output_format"),
        f"- Marker lines: `{EXECUTION_JSON.begin}` and `{EXECUTION_JSON.end}`",
        "",
        EXECUTION_JSON.wrap(catalog.text("test_execution", "example_result")),
        "",
    ]
    return "\n".join(parts)


def inject_perspective_table(prompt: str, table_markdown: str, *, catalog: PromptCatalog | None = None) -> str:
    """Put the perspective table, under its fixed header, in front of *prompt*.

    *prompt* follows unchanged, even when empty. A blank table leaves the
    prompt untouched.
    """
    if not table_markdown.strip():
        return prompt
    catalog = catalog or get_catalog()
    header = catalog.text("injection", "header")
    return f"{header}\n\n{table_markdown.strip()}\n\n{prompt}"


def build_merge_assistance_prompt(
    task_id: str,
    apply_check_output: str,
    patch_path: str,
    snapshot_dir: str,
    test_paths: Sequence[str],
    pre_test_check_command: str = "",
    *,
    catalog: PromptCatalog | None = None,
) -> str:
    """Prompt a user can hand to an assistant to merge a rejected worktree patch."""
    catalog = catalog or get_catalog()
    check_log = apply_check_output.strip() or "(none)"
    steps = catalog.text("merge_assistance", "steps")
    pre_check = pre_test_check_command.strip()
    if pre_check:
        steps = f"{steps}\n\nType check / lint command: {pre_check}"
    return "\n".join(
        [
            catalog.text("merge_assistance", "intro"),
            "",
            "## Note",
            catalog.text("merge_assistance", "note"),
            "",
            "## Background",
            f"- taskId: {task_id}",
            "",
            "## Failure log (git apply --check)",
            check_log,
            "",
            "## Inputs (required)",
            f"- Patch file: {patch_path}",
            f"- Snapshot of the generated tests (final form): {snapshot_dir}",
            "- Files to change (tests only):",
            _bullets(test_paths),
            "",
            "## Constraints (required)",
            catalog.text("merge_assistance", "constraints"),
            "",
            "## Expected steps",
            steps,
        ]
    )


def build_merge_instructions_markdown(prompt_text: str, *, catalog: PromptCatalog | None = None) -> str:
    """Markdown file wrapping the merge-assistance prompt in a text fence."""
    catalog = catalog or get_catalog()
    return "\n".join(
        [
            "# Manual merge assistance (prompt for an AI assistant)",
            "",
            catalog.text("merge_assistance", "instructions_intro"),
            "",
            "```text",
            prompt_text,
            "```",
            "",
        ]
    )
