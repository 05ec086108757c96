"""Generate, extract and save the test perspective table."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from testgen_agent.artifacts import format_timestamp, save_perspective_table
from testgen_agent.config import RunConfiguration
from testgen_agent.perspectives import PerspectiveExtraction, extract_perspective_table
from testgen_agent.prompts import build_perspective_prompt
from testgen_agent.providers import AgentProvider, run_to_completion
from testgen_agent.schemas import AgentEvent, AgentTaskRequest, LogEvent, LogLevel, SavedArtifact, log_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PerspectiveStepResult:
    extraction: PerspectiveExtraction
    artifact: SavedArtifact
    exit_code: int | None
    timed_out: bool = False

    @property
    def injectable_table(self) -> str | None:
        """The table to prepend to the main prompt, or ``None``."""
        if not self.extraction.extracted or not self.extraction.markdown.strip():
            return None
        return self.extraction.markdown


def run_perspective_step(
    provider: AgentProvider,
    config: RunConfiguration,
    *,
    task_id: str,
    workspace_root: str | Path,
    report_workspace_root: str | Path | None = None,
    target_label: str,
    target_paths: Sequence[str],
    model: str | None = None,
    agent_command: str = "",
    strategy_text: str = "",
    reference_text: str = "",
    timestamp: str | None = None,
    emit: Callable[[AgentEvent], None] | None = None,
) -> PerspectiveStepResult:
    """Run the perspective sub-task and save whatever came out of it.

    The artifact is written whether or not a table could be extracted; a
    failure table carries the reason and the sanitized log. A timeout
    disposes the sub-task and is reported the same way.
    """
    messages: list[str] = []

    def on_event(event: AgentEvent) -> None:
        if emit is not None:
            emit(event)
        if isinstance(event, LogEvent):
            messages.append(event.message)

    request = AgentTaskRequest(
        task_id=task_id,
        workspace_root=str(workspace_root),
        command=agent_command,
        prompt=build_perspective_prompt(target_label, target_paths, strategy_text, reference_text),
        model=model,
        allow_write=False,
    )
    timeout_seconds = config.perspective_timeout_seconds
    completion = run_to_completion(provider, request, on_event, timeout_seconds=timeout_seconds)

    # The timeout note logged by run_to_completion is not part of the agent's output.
    raw_log = "\n".join(messages[:-1] if completion.timed_out and messages else messages)
    extraction = extract_perspective_table(
        raw_log,
        exit_code=completion.exit_code,
        timed_out_after_ms=config.perspective_timeout_ms if completion.timed_out else None,
    )
    if not extraction.extracted:
        logger.warning("Perspective table extraction failed: %s", extraction.failure_reason)

    artifact = save_perspective_table(
        workspace_root=report_workspace_root or workspace_root,
        report_dir=config.perspective_report_dir,
        timestamp=timestamp or format_timestamp(),
        target_label=target_label,
        target_paths=target_paths,
        table_markdown=extraction.markdown,
    )
    if emit is not None:
        emit(log_event(task_id, LogLevel.INFO, f"saved perspective table: {artifact.display_path}"))
    return PerspectiveStepResult(
        extraction=extraction,
        artifact=artifact,
        exit_code=completion.exit_code,
        timed_out=completion.timed_out,
    )
