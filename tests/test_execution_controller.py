"""Tests for runner selection, the rejection fallback and report output."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from testgen_agent.config import RunConfiguration
from testgen_agent.execution_controller import (
    SKIP_EMPTY_COMMAND,
    SKIP_REJECTED_NO_FALLBACK,
    TestExecutionController,
)
from testgen_agent.markers import EXECUTION_JSON
from testgen_agent.output_log import RunOutputLog
from testgen_agent.schemas import CommandResult, ExecutionStatus

pytestmark = pytest.mark.unit

AGENT_RESULT = EXECUTION_JSON.wrap(
    json.dumps({"version": 1, "exitCode": 0, "signal": None, "durationMs": 12, "stdout": "agent-stdout", "stderr": ""})
)


class FakeRunner:
    """Stands in for the local command runner."""

    def __init__(self, exit_code: int | None = 0, stdout: str = "local-stdout") -> None:
        self.calls: list[tuple[str, str]] = []
        self.exit_code = exit_code
        self.stdout = stdout

    def __call__(self, command: str, cwd: str) -> CommandResult:
        self.calls.append((command, cwd))
        return CommandResult(command=command, cwd=cwd, exit_code=self.exit_code, duration_ms=7, stdout=self.stdout)


def _config(**fields: object) -> RunConfiguration:
    return RunConfiguration.model_validate(fields)


def _execute(controller: TestExecutionController, root: Path, **kwargs: object):
    return controller.execute(
        run_id="run-1",
        run_workspace_root=root,
        generation_label="src/app.ts",
        target_paths=["src/app.ts"],
        timestamp="20240101_000000",
        **kwargs,
    )


def _report_text(outcome) -> str:
    return Path(outcome.artifact.absolute_path).read_text(encoding="utf-8")


def test_empty_command_is_skipped(tmp_path: Path, scripted_provider) -> None:
    provider = scripted_provider()
    runner = FakeRunner()
    controller = TestExecutionController(provider, _config(testCommand="   "), command_runner=runner)

    outcome = _execute(controller, tmp_path)

    assert outcome.report.status is ExecutionStatus.SKIPPED
    assert outcome.report.skip_reason == SKIP_EMPTY_COMMAND
    assert outcome.exit_code is None
    assert provider.requests == []
    assert runner.calls == []
    text = _report_text(outcome)
    assert "- status: skipped" in text
    assert "- skipReason: empty command" in text
    assert outcome.artifact.relative_path == "docs/test-execution-reports/test-execution_20240101_000000.md"


def test_delegated_result_is_taken_from_agent_output(tmp_path: Path, scripted_provider) -> None:
    provider = scripted_provider({"test-agent": [("log", AGENT_RESULT), ("exit", 0)]})
    runner = FakeRunner()
    controller = TestExecutionController(provider, _config(testCommand="npm test"), command_runner=runner)

    outcome = _execute(controller, tmp_path, model="m1", agent_command="/bin/agent")

    assert outcome.report.status is ExecutionStatus.EXECUTED
    assert outcome.report.execution_runner == "delegated"
    assert outcome.exit_code == 0
    assert outcome.report.duration_ms == 12
    assert runner.calls == []
    request = provider.request_for("test-agent")
    assert request.allow_write is False
    assert request.model == "m1"
    assert request.command == "/bin/agent"
    assert "npm test" in request.prompt
    text = _report_text(outcome)
    assert "- exitCode: 0" in text
    assert "agent-stdout" in text
    assert "- executionRunner: delegated" in text


def test_rejected_delegation_falls_back_to_local_runner(tmp_path: Path, scripted_provider) -> None:
    provider = scripted_provider(
        {"test-agent": [("write", "tests/a.test.ts"), ("error", "Tool execution rejected"), ("exit", 1)]}
    )
    runner = FakeRunner(exit_code=0)
    controller = TestExecutionController(
        provider, _config(testCommand="npm test", allowUnsafeCommand=False), command_runner=runner
    )

    outcome = _execute(controller, tmp_path)

    assert runner.calls == [("npm test", str(tmp_path))]
    assert outcome.report.status is ExecutionStatus.EXECUTED
    assert outcome.report.execution_runner == "internal (fallback)"
    assert outcome.report.stdout == "local-stdout"
    assert [w.path for w in outcome.report.file_writes] == ["tests/a.test.ts"]
    assert any("running it locally instead" in w for w in outcome.warnings)
    assert "- executionRunner: internal (fallback)" in _report_text(outcome)


def test_agent_without_result_block_is_a_delegated_failure(tmp_path: Path, scripted_provider) -> None:
    provider = scripted_provider({"test-agent": [("log", "I ran the tests."), ("exit", 0)]})
    runner = FakeRunner()
    controller = TestExecutionController(provider, _config(testCommand="make test"), command_runner=runner)

    outcome = _execute(controller, tmp_path)

    assert runner.calls == []
    assert outcome.report.execution_runner == "delegated"
    assert outcome.report.error_message == "no markers found"
    assert outcome.report.stderr == "I ran the tests."
    assert outcome.exit_code == 0


def _editor_launch_manifest(root: Path) -> None:
    (root / "package.json").write_text(
        json.dumps({"scripts": {"test": "node ./out/test/runTest.js"}, "devDependencies": {"@vscode/test-electron": "*"}}),
        encoding="utf-8",
    )


def test_rejection_without_safe_fallback_is_skipped(tmp_path: Path, scripted_provider) -> None:
    _editor_launch_manifest(tmp_path)
    provider = scripted_provider({"test-agent": [("error", "Execution rejected"), ("exit", 1)]})
    runner = FakeRunner()
    controller = TestExecutionController(provider, _config(testCommand="npm test"), command_runner=runner)

    outcome = _execute(controller, tmp_path)

    assert runner.calls == []
    assert outcome.report.status is ExecutionStatus.SKIPPED
    assert outcome.report.skip_reason == SKIP_REJECTED_NO_FALLBACK
    assert outcome.exit_code is None
    assert any("another editor instance" in w for w in outcome.warnings)
    assert any("local fallback is unsafe" in w for w in outcome.warnings)


def test_allow_unsafe_permits_fallback_for_editor_launch(tmp_path: Path, scripted_provider) -> None:
    _editor_launch_manifest(tmp_path)
    provider = scripted_provider({"test-agent": [("error", "Execution rejected"), ("exit", 1)]})
    runner = FakeRunner(exit_code=2)
    controller = TestExecutionController(
        provider, _config(testCommand="npm test", allowUnsafeCommand=True), command_runner=runner
    )

    outcome = _execute(controller, tmp_path)

    assert runner.calls
    assert outcome.report.execution_runner == "internal (fallback)"
    assert outcome.exit_code == 2


def test_heuristic_only_warns_for_internal_runner(tmp_path: Path, scripted_provider) -> None:
    _editor_launch_manifest(tmp_path)
    runner = FakeRunner()
    controller = TestExecutionController(
        scripted_provider(), _config(testCommand="npm test", testExecutionRunner="internal"), command_runner=runner
    )

    outcome = _execute(controller, tmp_path)

    assert runner.calls == [("npm test", str(tmp_path))]
    assert outcome.report.execution_runner == "internal"
    assert any("another editor instance" in w for w in outcome.warnings)


def test_force_write_grants_write_access_to_test_agent(tmp_path: Path, scripted_provider) -> None:
    provider = scripted_provider({"test-agent": [("log", AGENT_RESULT), ("exit", 0)]})
    controller = TestExecutionController(
        provider,
        _config(testCommand="npm test", forceWriteForDelegatedExecution=True),
        command_runner=FakeRunner(),
    )

    _execute(controller, tmp_path)

    assert provider.request_for("test-agent").allow_write is True


def test_internal_runner_failure_is_reported(tmp_path: Path, scripted_provider) -> None:
    runner = FakeRunner(exit_code=1, stdout="1 failing")
    output_log = RunOutputLog()
    controller = TestExecutionController(
        scripted_provider(),
        _config(testCommand="pytest", testExecutionRunner="internal"),
        output_log=output_log,
        command_runner=runner,
    )

    outcome = _execute(controller, tmp_path)

    assert outcome.exit_code == 1
    text = _report_text(outcome)
    assert "1 failing" in text
    assert "Test command completed (exit=1, durationMs=7)" in outcome.report.sanitized_log
    assert any("report saved: docs/test-execution-reports/" in line for line in output_log.lines)


def test_report_goes_to_report_workspace(tmp_path: Path, scripted_provider) -> None:
    run_root = tmp_path / "worktree"
    report_root = tmp_path / "local"
    run_root.mkdir()
    runner = FakeRunner()
    controller = TestExecutionController(
        scripted_provider(), _config(testCommand="pytest", testExecutionRunner="internal"), command_runner=runner
    )

    outcome = _execute(controller, run_root, report_workspace_root=report_root)

    assert runner.calls == [("pytest", str(run_root))]
    assert Path(outcome.artifact.absolute_path).is_relative_to(report_root)
