"""Sequence one test-generation run from perspectives to test report.

Phases, each preceded by a cancellation check:

1. acquire an isolated worktree (``run_location=isolatedWorkspace``)
2. perspective table (optional; terminal for ``perspectiveOnly``)
3. main generation, with the table prepended to the prompt when available
4. apply worktree test changes back to the local workspace
5. stray perspective file cleanup in the local workspace
6. test execution and report
7. final notification

Nothing raises out of :meth:`RunOrchestrator.run`; failures end up in the
output log, a warning notification and :class:`RunOutcome`.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from testgen_agent.artifacts import format_timestamp
from testgen_agent.cleanup import cleanup_stray_perspective_files
from testgen_agent.config import RunConfiguration, RunLocation
from testgen_agent.execution_controller import CommandRunner, TestExecutionController
from testgen_agent.notifications import LoggingNotifier, Notifier
from testgen_agent.output_log import RunOutputLog
from testgen_agent.perspective_step import run_perspective_step
from testgen_agent.prompts import inject_perspective_table
from testgen_agent.providers import AgentProvider, run_to_completion
from testgen_agent.schemas import AgentEvent, AgentTaskRequest, CleanupOutcome, LogLevel, log_event
from testgen_agent.worktree import (
    GitError,
    apply_worktree_test_changes,
    create_temporary_worktree,
    remove_temporary_worktree,
)

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_DIRNAME = ".testgen-agent"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PERSPECTIVE_ONLY = "perspective_only"
    FAILED = "failed"


class RunRequest(BaseModel):
    """Everything a run needs besides the configuration."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    workspace_root: str
    prompt: str = ""
    target_label: str = ""
    target_paths: list[str] = Field(default_factory=list)
    model: str | None = None
    agent_command: str = ""
    reference_text: str = ""
    strategy_text: str = ""
    #: Holds worktrees, patches and merge instructions. Defaults to
    #: ``<workspace_root>/.testgen-agent``.
    storage_dir: str | None = None
    generation_started_at: dt.datetime | None = None

    @property
    def resolved_storage_dir(self) -> Path:
        if self.storage_dir:
            return Path(self.storage_dir)
        return Path(self.workspace_root) / DEFAULT_STORAGE_DIRNAME


class RunOutcome(BaseModel):
    """How a run ended."""

    status: RunStatus
    exit_code: int | None = None
    generation_exit_code: int | None = None
    perspective: str | None = None
    execution_report: str | None = None
    cleanup: list[CleanupOutcome] = Field(default_factory=list)
    error: str | None = None


class _RunCancelled(Exception):
    """Internal signal: the cancel flag was seen at a phase boundary."""


class RunOrchestrator:
    """Drive one run through all phases.

    Parameters
    ----------
    provider:
        Agent provider for every sub-task.
    config:
        Immutable run configuration.
    notifier:
        Receives user-facing notices (``LoggingNotifier`` by default).
    output_log:
        Shared human-readable log (a fresh in-memory one by default).
    cancel_event:
        Set from any thread to stop the run at the next phase boundary.
    clock:
        Returns "now"; used for artifact timestamps.
    """

    def __init__(
        self,
        provider: AgentProvider,
        config: RunConfiguration,
        notifier: Notifier | None = None,
        output_log: RunOutputLog | None = None,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], dt.datetime] | None = None,
        *,
        command_runner: CommandRunner | None = None,
    ) -> None:
        self.provider = provider
        self.config = config
        self.notifier: Notifier = notifier or LoggingNotifier()
        self.output_log = output_log or RunOutputLog()
        self.cancel_event = cancel_event or threading.Event()
        self.clock = clock or dt.datetime.now
        self.command_runner = command_runner
        self._outcome = RunOutcome(status=RunStatus.COMPLETED)

    def cancel(self) -> None:
        self.cancel_event.set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _emit(self, event: AgentEvent) -> None:
        self.output_log.append(event)

    def _say(self, task_id: str, level: LogLevel, message: str) -> None:
        self._emit(log_event(task_id, level, message))

    def _checkpoint(self, phase: str) -> None:
        if self.cancel_event.is_set():
            logger.info("Run cancelled before %s", phase)
            raise _RunCancelled(phase)

    def _finish(self, status: RunStatus, **updates: object) -> RunOutcome:
        return self._outcome.model_copy(update={"status": status, **updates})

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, request: RunRequest) -> RunOutcome:
        """Execute every phase; never raises."""
        self._outcome = RunOutcome(status=RunStatus.COMPLETED)
        worktree: Path | None = None
        local_root = Path(request.workspace_root)
        try:
            self._checkpoint("worktree")
            if self.config.run_location is RunLocation.ISOLATED_WORKSPACE:
                worktree = self._acquire_worktree(request)
            return self._run_phases(request, local_root, worktree)
        except _RunCancelled as cancelled:
            self._say(request.run_id, LogLevel.INFO, f"Run cancelled before {cancelled}.")
            return self._finish(RunStatus.CANCELLED, exit_code=None)
        except Exception as exc:
            logger.exception("Run %s failed", request.run_id)
            self._say(request.run_id, LogLevel.ERROR, f"Run failed: {exc}")
            self._safe_notify_warning(f"Test generation failed: {exc}")
            return self._finish(RunStatus.FAILED, exit_code=None, error=str(exc))
        finally:
            if worktree is not None:
                self._release_worktree(request, local_root, worktree)

    def _safe_notify_warning(self, message: str) -> None:
        try:
            self.notifier.warning(message)
        except Exception as exc:
            logger.warning("Notification failed: %s", exc)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _acquire_worktree(self, request: RunRequest) -> Path | None:
        try:
            path = create_temporary_worktree(request.workspace_root, request.resolved_storage_dir, request.run_id)
        except GitError as exc:
            self._say(
                request.run_id,
                LogLevel.WARN,
                f"Could not create an isolated worktree; running in the local workspace instead: {exc}",
            )
            return None
        self._say(request.run_id, LogLevel.INFO, f"Created worktree: {path}")
        return path

    def _release_worktree(self, request: RunRequest, local_root: Path, worktree: Path) -> None:
        try:
            remove_temporary_worktree(local_root, worktree)
        except (GitError, OSError) as exc:
            logger.warning("Removing worktree %s failed: %s", worktree, exc)
            self._say(request.run_id, LogLevel.WARN, f"Could not remove worktree {worktree}: {exc}")
        else:
            self._say(request.run_id, LogLevel.INFO, "Removed worktree.")

    def _run_phases(self, request: RunRequest, local_root: Path, worktree: Path | None) -> RunOutcome:
        run_root = worktree or local_root
        timestamp = format_timestamp(request.generation_started_at or self.clock())
        prompt = request.prompt

        if self.config.wants_perspectives:
            self._checkpoint("perspectives")
            step = run_perspective_step(
                self.provider,
                self.config,
                task_id=f"{request.run_id}-perspectives",
                workspace_root=run_root,
                report_workspace_root=local_root,
                target_label=request.target_label,
                target_paths=request.target_paths,
                model=request.model,
                agent_command=request.agent_command,
                strategy_text=request.strategy_text,
                reference_text=request.reference_text,
                timestamp=timestamp,
                emit=self._emit,
            )
            self._outcome = self._outcome.model_copy(update={"perspective": step.artifact.absolute_path})

            if self.config.perspective_only:
                shown = (step.artifact.relative_path or "").strip() or "(none)"
                if step.extraction.extracted:
                    self.notifier.info(f"Test perspective table saved: {shown}")
                else:
                    self.notifier.warning(
                        f"Test perspective table could not be extracted ({step.extraction.failure_reason}); "
                        f"details saved: {shown}"
                    )
                return self._finish(RunStatus.PERSPECTIVE_ONLY, exit_code=None)

            table = step.injectable_table
            if table is not None:
                prompt = inject_perspective_table(prompt, table)

        self._checkpoint("generation")
        completion = run_to_completion(
            self.provider,
            AgentTaskRequest(
                task_id=request.run_id,
                workspace_root=str(run_root),
                command=request.agent_command,
                prompt=prompt,
                model=request.model,
                allow_write=True,
            ),
            self._emit,
        )
        generation_exit = completion.exit_code
        self._outcome = self._outcome.model_copy(update={"generation_exit_code": generation_exit})
        self._say(
            request.run_id,
            LogLevel.INFO if generation_exit == 0 else LogLevel.ERROR,
            f"Test generation finished (exit={'null' if generation_exit is None else generation_exit})",
        )

        if worktree is not None:
            self._checkpoint("apply-back")
            apply_worktree_test_changes(
                task_id=request.run_id,
                generation_exit_code=generation_exit,
                local_root=local_root,
                worktree_root=worktree,
                storage_dir=request.resolved_storage_dir,
                notifier=self.notifier,
                emit=self._emit,
            )

        self._checkpoint("cleanup")
        cleanup = self._cleanup(request, local_root)
        self._outcome = self._outcome.model_copy(update={"cleanup": cleanup})

        self._checkpoint("test execution")
        controller = TestExecutionController(
            self.provider,
            self.config,
            output_log=self.output_log,
            command_runner=self.command_runner,
        )
        execution = controller.execute(
            run_id=request.run_id,
            run_workspace_root=run_root,
            report_workspace_root=local_root,
            generation_label=request.target_label,
            target_paths=request.target_paths,
            model=request.model,
            agent_command=request.agent_command,
            timestamp=timestamp,
        )
        exit_code = execution.exit_code
        exit_text = "null" if exit_code is None else exit_code
        message = f"Test generation run finished ({request.target_label or request.run_id}): exit={exit_text}"
        if exit_code == 0:
            self.notifier.info(message)
        else:
            self.notifier.warning(message)
        return self._finish(
            RunStatus.COMPLETED,
            exit_code=exit_code,
            execution_report=execution.artifact.absolute_path if execution.artifact else None,
        )

    def _cleanup(self, request: RunRequest, root: Path) -> list[CleanupOutcome]:
        guard_id = f"{request.run_id}-guard"
        outcomes = cleanup_stray_perspective_files(root)
        for item in outcomes:
            if item.error_message:
                self._say(guard_id, LogLevel.WARN, f"Could not clean up {item.relative_path}: {item.error_message}")
            elif item.deleted:
                self._say(guard_id, LogLevel.INFO, f"Deleted stray perspective file: {item.relative_path}")
        return outcomes
