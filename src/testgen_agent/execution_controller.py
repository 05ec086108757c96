"""Run the configured test command and write the execution report.

The controller picks a runner, applies the rejection fallback rule and
always leaves exactly one report behind, whichever branch was taken:

* empty command: skipped, reason ``empty command``
* ``internal`` runner: run locally, report the process result
* ``delegated`` runner: ask the agent to run it and extract the result;
  when the agent refused, re-run locally unless that could relaunch the
  host editor while unsafe commands are disallowed
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from testgen_agent.artifacts import format_timestamp, save_execution_report
from testgen_agent.command_runner import run_test_command
from testgen_agent.config import RunConfiguration, TestExecutionRunner
from testgen_agent.launch_heuristic import looks_like_host_editor_launch
from testgen_agent.log_sanitizer import sanitize
from testgen_agent.output_log import RunOutputLog, format_event
from testgen_agent.prompts import build_test_execution_prompt
from testgen_agent.providers import AgentProvider, run_to_completion
from testgen_agent.rejection import is_rejected, matched_rejection_phrase
from testgen_agent.result_extractor import extract
from testgen_agent.schemas import (
    AgentEvent,
    AgentTaskRequest,
    CommandResult,
    CompletedEvent,
    ExecutionReport,
    ExecutionStatus,
    ExtractedExecutionResult,
    FileWriteEvent,
    LogEvent,
    LogLevel,
    SavedArtifact,
    StartedEvent,
    log_event,
)

logger = logging.getLogger(__name__)

SKIP_EMPTY_COMMAND = "empty command"
SKIP_REJECTED_NO_FALLBACK = "rejected, no safe fallback"
COMMAND_LABEL = "test-command"

CommandRunner = Callable[[str, str], CommandResult]


@dataclass
class TestExecutionOutcome:
    """What the controller did and where the report went."""

    __test__ = False

    report: ExecutionReport
    artifact: SavedArtifact | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int | None:
        if self.report.status is ExecutionStatus.SKIPPED:
            return None
        return self.report.exit_code


class TestExecutionController:
    """Decide skip or execute, pick the runner, and emit the report.

    Parameters
    ----------
    provider:
        Agent provider used for the delegated runner.
    config:
        The run configuration.
    output_log:
        Shared run output log; every test event is also captured into
        the report's run-log section.
    command_runner:
        Local runner, ``run_test_command`` unless replaced (tests).
    """

    __test__ = False

    def __init__(
        self,
        provider: AgentProvider,
        config: RunConfiguration,
        *,
        output_log: RunOutputLog | None = None,
        command_runner: CommandRunner | None = None,
    ) -> None:
        self.provider = provider
        self.config = config
        self.output_log = output_log or RunOutputLog()
        self.command_runner: CommandRunner = command_runner or run_test_command
        self._captured: list[str] = []
        self._warnings: list[str] = []

    # ------------------------------------------------------------------
    # Event plumbing
    # ------------------------------------------------------------------

    def _emit(self, event: AgentEvent) -> None:
        self.output_log.append(event)
        self._captured.extend(format_event(event))

    def _log(self, task_id: str, level: LogLevel, message: str) -> None:
        if level is LogLevel.WARN:
            self._warnings.append(message)
        self._emit(log_event(task_id, level, message))

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def execute(
        self,
        *,
        run_id: str,
        run_workspace_root: str | Path,
        report_workspace_root: str | Path | None = None,
        generation_label: str = "",
        target_paths: Sequence[str] = (),
        model: str | None = None,
        agent_command: str = "",
        timestamp: str | None = None,
    ) -> TestExecutionOutcome:
        """Run the configured test command once and save the report.

        Tests run in *run_workspace_root*; the report is written under
        *report_workspace_root* (defaults to the same directory).
        """
        self._captured = []
        self._warnings = []
        run_root = str(run_workspace_root)
        report_root = str(report_workspace_root or run_workspace_root)
        test_task_id = f"{run_id}-test"
        command = self.config.test_command.strip()

        if not command:
            report = self._skip_empty_command(test_task_id, command)
        else:
            unsafe_launch = looks_like_host_editor_launch(run_root, command)
            if unsafe_launch:
                self._log(
                    test_task_id,
                    LogLevel.WARN,
                    "The test command looks like it launches another editor instance; "
                    "it may hang or interfere with this session.",
                )
            if self.config.test_execution_runner is TestExecutionRunner.DELEGATED:
                report = self._run_delegated(
                    test_task_id,
                    command,
                    run_root,
                    model=model,
                    agent_command=agent_command,
                    unsafe_launch=unsafe_launch,
                )
            else:
                report = self._run_internal(test_task_id, command, run_root)

        report = report.model_copy(update={"sanitized_log": sanitize("\n".join(self._captured))})
        artifact = save_execution_report(
            report,
            workspace_root=report_root,
            report_dir=self.config.test_execution_report_dir,
            timestamp=timestamp or format_timestamp(),
            generation_label=generation_label,
            target_paths=target_paths,
            model=model,
        )
        self.output_log.append(log_event(test_task_id, LogLevel.INFO, f"report saved: {artifact.display_path}"))
        return TestExecutionOutcome(report=report, artifact=artifact, warnings=list(self._warnings))

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def _skip_empty_command(self, task_id: str, command: str) -> ExecutionReport:
        self._emit(StartedEvent(task_id=task_id, label=COMMAND_LABEL, detail="skipped"))
        self._log(task_id, LogLevel.WARN, "Test command is empty; skipping test execution.")
        self._emit(CompletedEvent(task_id=task_id, exit_code=None))
        return ExecutionReport(
            status=ExecutionStatus.SKIPPED,
            command=command,
            skip_reason=SKIP_EMPTY_COMMAND,
        )

    def _run_internal(self, task_id: str, command: str, cwd: str, *, runner_label: str = "internal") -> ExecutionReport:
        self._emit(StartedEvent(task_id=task_id, label=COMMAND_LABEL, detail=f"runner={runner_label} cmd={command}"))
        result = self.command_runner(command, cwd)
        exit_text = "null" if result.exit_code is None else result.exit_code
        self._log(
            task_id,
            LogLevel.INFO if result.exit_code == 0 else LogLevel.ERROR,
            f"Test command completed (exit={exit_text}, durationMs={result.duration_ms})",
        )
        self._emit(CompletedEvent(task_id=task_id, exit_code=result.exit_code))
        return ExecutionReport(
            status=ExecutionStatus.EXECUTED,
            command=command,
            cwd=result.cwd,
            exit_code=result.exit_code,
            signal=result.signal,
            duration_ms=result.duration_ms,
            stdout=result.stdout,
            stderr=result.stderr,
            error_message=result.error_message,
            execution_runner=runner_label,
        )

    def _run_delegated(
        self,
        task_id: str,
        command: str,
        cwd: str,
        *,
        model: str | None,
        agent_command: str,
        unsafe_launch: bool,
    ) -> ExecutionReport:
        self._emit(StartedEvent(task_id=task_id, label=COMMAND_LABEL, detail=f"runner=delegated cmd={command}"))
        result, file_writes = self._ask_agent(
            f"{task_id}-agent",
            command,
            cwd,
            model=model,
            agent_command=agent_command,
        )

        if is_rejected(result):
            phrase = matched_rejection_phrase(result)
            reason = f"matched '{phrase}'" if phrase else "empty result"
            if unsafe_launch and not self.config.allow_unsafe_command:
                self._log(
                    task_id,
                    LogLevel.WARN,
                    f"The agent did not run the test command ({reason}); local fallback is unsafe "
                    "for this command, so test execution is skipped.",
                )
                self._emit(CompletedEvent(task_id=task_id, exit_code=None))
                return ExecutionReport(
                    status=ExecutionStatus.SKIPPED,
                    command=command,
                    cwd=cwd,
                    skip_reason=SKIP_REJECTED_NO_FALLBACK,
                    error_message=result.error_message,
                    execution_runner="delegated",
                    file_writes=file_writes,
                )
            self._log(
                task_id,
                LogLevel.WARN,
                f"The agent did not run the test command ({reason}); running it locally instead.",
            )
            report = self._run_internal(task_id, command, cwd, runner_label="internal (fallback)")
            return report.model_copy(update={"file_writes": file_writes})

        self._emit(CompletedEvent(task_id=task_id, exit_code=result.exit_code))
        return ExecutionReport(
            status=ExecutionStatus.EXECUTED,
            command=command,
            cwd=cwd,
            exit_code=result.exit_code,
            signal=result.signal,
            duration_ms=result.duration_ms,
            stdout=result.stdout,
            stderr=result.stderr,
            error_message=result.error_message,
            execution_runner="delegated",
            file_writes=file_writes,
        )

    def _ask_agent(
        self,
        agent_task_id: str,
        command: str,
        cwd: str,
        *,
        model: str | None,
        agent_command: str,
    ) -> tuple[ExtractedExecutionResult, list[FileWriteEvent]]:
        messages: list[str] = []
        file_writes: list[FileWriteEvent] = []

        def on_event(event: AgentEvent) -> None:
            self._emit(event)
            if isinstance(event, LogEvent):
                messages.append(event.message)
            elif isinstance(event, FileWriteEvent):
                file_writes.append(event)

        request = AgentTaskRequest(
            task_id=agent_task_id,
            workspace_root=cwd,
            command=agent_command,
            prompt=build_test_execution_prompt(command),
            model=model,
            allow_write=self.config.force_write_for_delegated_execution,
        )
        completion = run_to_completion(self.provider, request, on_event)
        result = extract(
            "\n".join(messages),
            completion.exit_code,
            measured_duration_ms=completion.duration_ms,
        )
        logger.debug(
            "Delegated test run %s finished (provider exit=%s, extracted exit=%s)",
            agent_task_id,
            completion.exit_code,
            result.exit_code,
        )
        return result, file_writes
