"""Agent providers that drive a coding-agent CLI in print mode.

Both supported CLIs stream one JSON object per stdout line
(``--output-format stream-json``). Each line is translated into
:mod:`testgen_agent.schemas` events; anything that is not JSON is passed
through as an ``info`` log line so the result markers inside plain text
are never lost.
"""

from __future__ import annotations

import abc
import json
import logging
import os
import subprocess
import threading
from typing import Any

from testgen_agent.artifacts import to_workspace_relative
from testgen_agent.providers.base import AgentProvider, EventCallback, RunningTask, register_provider
from testgen_agent.runner_common import (
    coerce_optional_int,
    process_isolation_kwargs,
    resolve_binary,
    terminate_process_with_fallback,
)
from testgen_agent.schemas import (
    AgentEvent,
    AgentTaskRequest,
    CompletedEvent,
    FileWriteEvent,
    LogLevel,
    StartedEvent,
    log_event,
)

logger = logging.getLogger(__name__)

_POSIX_PROMPT_ARG_LIMIT = 60000
_WINDOWS_PROMPT_ARG_LIMIT = 24000


class _ProcessTask(RunningTask):
    """Disposable handle around the agent subprocess."""

    def __init__(self, task_id: str, process_name: str) -> None:
        super().__init__(task_id)
        self._process_name = process_name
        self._lock = threading.Lock()
        self._proc: subprocess.Popen[str] | None = None
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def attach(self, proc: subprocess.Popen[str]) -> None:
        with self._lock:
            self._proc = proc
            disposed = self._disposed
        if disposed:
            terminate_process_with_fallback(proc, process_name=self._process_name, reason="dispose")

    def dispose(self) -> None:
        with self._lock:
            self._disposed = True
            proc = self._proc
        if proc is not None:
            terminate_process_with_fallback(proc, process_name=self._process_name, reason="dispose")


class CliAgentProvider(AgentProvider):
    """Spawn an agent CLI per request and stream its JSONL output as events.

    Parameters
    ----------
    binary:
        Executable to launch; ``request.command`` wins when set.
    env_overrides:
        Extra environment variables forwarded to the child process.
    extra_args:
        Additional CLI flags appended verbatim.
    """

    default_binary: str = ""
    supports_stdin_prompt: bool = False

    def __init__(
        self,
        binary: str | None = None,
        *,
        env_overrides: dict[str, str] | None = None,
        extra_args: list[str] | None = None,
    ) -> None:
        self.binary = (binary or self.default_binary).strip()
        self.env_overrides = env_overrides or {}
        self.extra_args = list(extra_args or [])

    # ------------------------------------------------------------------
    # Command building
    # ------------------------------------------------------------------

    def _prompt_via_stdin(self, prompt: str) -> bool:
        if not self.supports_stdin_prompt:
            return False
        limit = _WINDOWS_PROMPT_ARG_LIMIT if os.name == "nt" else _POSIX_PROMPT_ARG_LIMIT
        return len(prompt) >= limit

    @abc.abstractmethod
    def build_command(self, request: AgentTaskRequest, *, prompt_via_stdin: bool) -> list[str]:
        """Full argv for *request*."""

    @abc.abstractmethod
    def parse_json_line(self, data: dict[str, Any], request: AgentTaskRequest) -> list[AgentEvent]:
        """Translate one decoded stream-json object into events."""

    def _binary_for(self, request: AgentTaskRequest) -> str:
        return resolve_binary(request.command.strip() or self.binary)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, request: AgentTaskRequest, on_event: EventCallback) -> RunningTask:
        task = _ProcessTask(request.task_id, self.display_name)
        worker = threading.Thread(
            target=self._drive,
            args=(request, on_event, task),
            name=f"{self.id}-{request.task_id}",
            daemon=True,
        )
        worker.start()
        return task

    def parse_line(self, line: str, request: AgentTaskRequest) -> list[AgentEvent]:
        """Decode one stdout line; non-JSON text becomes an ``info`` log event."""
        stripped = line.strip()
        if not stripped:
            return []
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError:
            return [log_event(request.task_id, LogLevel.INFO, line.rstrip())]
        if not isinstance(data, dict):
            return [log_event(request.task_id, LogLevel.INFO, stripped)]
        return self.parse_json_line(data, request)

    def _drive(self, request: AgentTaskRequest, on_event: EventCallback, task: _ProcessTask) -> None:
        exit_code: int | None = None
        try:
            exit_code = self._stream(request, on_event, task)
        except Exception as exc:
            logger.exception("%s task %s failed", self.display_name, request.task_id)
            on_event(log_event(request.task_id, LogLevel.ERROR, f"{self.display_name} failed: {exc}"))
        finally:
            on_event(CompletedEvent(task_id=request.task_id, exit_code=exit_code))

    def _stream(self, request: AgentTaskRequest, on_event: EventCallback, task: _ProcessTask) -> int | None:
        prompt_via_stdin = self._prompt_via_stdin(request.prompt)
        cmd = self.build_command(request, prompt_via_stdin=prompt_via_stdin)
        on_event(
            StartedEvent(
                task_id=request.task_id,
                label=self.id,
                detail=f"model={request.model or '(default)'} allowWrite={request.allow_write}",
            )
        )
        logger.info(
            "Running %s (cwd=%s, prompt_transport=%s, prompt_len=%s)",
            self.display_name,
            request.workspace_root,
            "stdin" if prompt_via_stdin else "argv",
            len(request.prompt),
        )

        try:
            proc = subprocess.Popen(
                cmd,
                cwd=request.workspace_root,
                stdin=subprocess.PIPE if prompt_via_stdin else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                env={**os.environ, **self.env_overrides},
                **process_isolation_kwargs(),
            )
        except (OSError, ValueError) as exc:
            on_event(log_event(request.task_id, LogLevel.ERROR, f"Failed to start {self.display_name}: {exc}"))
            return None

        task.attach(proc)
        if prompt_via_stdin and proc.stdin is not None:
            try:
                proc.stdin.write(request.prompt)
            except OSError as exc:
                logger.debug("%s stdin write failed: %s", self.display_name, exc)
            finally:
                try:
                    proc.stdin.close()
                except OSError:
                    pass

        stderr_thread = threading.Thread(
            target=self._pump_stderr,
            args=(proc, request.task_id, on_event),
            daemon=True,
        )
        stderr_thread.start()

        assert proc.stdout is not None
        for line in proc.stdout:
            try:
                events = self.parse_line(line, request)
            except Exception:  # pragma: no cover - parser isolation
                logger.warning("Failed to parse %s output line; keeping raw text", self.display_name)
                events = [log_event(request.task_id, LogLevel.INFO, line.rstrip())]
            for event in events:
                on_event(event)

        returncode = proc.wait()
        stderr_thread.join(timeout=1.0)
        proc.stdout.close()
        if task.disposed:
            logger.info("%s task %s was disposed (rc=%s)", self.display_name, request.task_id, returncode)
        return returncode

    @staticmethod
    def _pump_stderr(proc: subprocess.Popen[str], task_id: str, on_event: EventCallback) -> None:
        if proc.stderr is None:
            return
        try:
            for line in proc.stderr:
                text = line.rstrip()
                if text:
                    on_event(log_event(task_id, LogLevel.WARN, text))
        finally:
            proc.stderr.close()

    def _write_event(
        self,
        request: AgentTaskRequest,
        path: str,
        *,
        lines_created: int | None = None,
        bytes_written: int | None = None,
    ) -> FileWriteEvent:
        relative = to_workspace_relative(request.workspace_root, path) if os.path.isabs(path) else None
        return FileWriteEvent(
            task_id=request.task_id,
            path=relative or path,
            lines_created=lines_created,
            bytes_written=bytes_written,
        )


def _text_from_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts = [
        str(block.get("text", ""))
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return "".join(parts)


class ClaudeCodeProvider(CliAgentProvider):
    """Anthropic Claude Code (``claude -p --output-format stream-json``)."""

    id = "claude"
    display_name = "Claude Code"
    default_binary = "claude"
    supports_stdin_prompt = True

    _WRITE_TOOLS = frozenset({"Write", "Edit", "MultiEdit", "NotebookEdit"})

    def build_command(self, request: AgentTaskRequest, *, prompt_via_stdin: bool) -> list[str]:
        cmd = [self._binary_for(request), "-p"]
        if not prompt_via_stdin:
            cmd.append(request.prompt)
        cmd.extend(["--output-format", request.output_format.value])
        if request.output_format.value == "stream-json":
            cmd.append("--verbose")
        if request.allow_write:
            cmd.append("--dangerously-skip-permissions")
        if request.model:
            cmd.extend(["--model", request.model])
        cmd.extend(self.extra_args)
        return cmd

    def parse_json_line(self, data: dict[str, Any], request: AgentTaskRequest) -> list[AgentEvent]:
        kind = str(data.get("type") or "unknown")
        task_id = request.task_id
        if kind == "user":
            return []
        if kind == "system":
            subtype = data.get("subtype")
            return [log_event(task_id, LogLevel.INFO, f"system:{subtype}")] if subtype else []
        if kind == "assistant":
            message = data.get("message") if isinstance(data.get("message"), dict) else {}
            content = message.get("content", [])
            events: list[AgentEvent] = []
            text = _text_from_content(content)
            if text.strip():
                events.append(log_event(task_id, LogLevel.INFO, text))
            for block in content if isinstance(content, list) else []:
                if not isinstance(block, dict) or block.get("type") != "tool_use":
                    continue
                if block.get("name") not in self._WRITE_TOOLS:
                    continue
                tool_input = block.get("input") if isinstance(block.get("input"), dict) else {}
                path = tool_input.get("file_path") or tool_input.get("notebook_path")
                if isinstance(path, str) and path:
                    events.append(self._write_event(request, path))
            return events
        if kind == "result":
            if data.get("is_error") or str(data.get("subtype", "")).startswith("error"):
                detail = data.get("result") or data.get("subtype") or "unknown error"
                return [log_event(task_id, LogLevel.ERROR, f"result: {detail}")]
            duration = coerce_optional_int(data.get("duration_ms"))
            return [log_event(task_id, LogLevel.INFO, f"result: duration_ms={duration if duration is not None else 'unknown'}")]
        return [log_event(task_id, LogLevel.INFO, f"event:{kind}")]


class CursorAgentProvider(CliAgentProvider):
    """Cursor's ``cursor-agent -p --output-format stream-json``."""

    id = "cursor-agent"
    display_name = "Cursor Agent"
    default_binary = "cursor-agent"

    _WRITE_TOOL_CALLS = frozenset({"editToolCall", "writeToolCall"})

    def build_command(self, request: AgentTaskRequest, *, prompt_via_stdin: bool) -> list[str]:
        cmd = [self._binary_for(request), "-p", "--output-format", request.output_format.value]
        if request.model:
            cmd.extend(["--model", request.model])
        if request.allow_write:
            cmd.append("--force")
        cmd.extend(self.extra_args)
        cmd.append(request.prompt)
        return cmd

    def parse_json_line(self, data: dict[str, Any], request: AgentTaskRequest) -> list[AgentEvent]:
        kind = str(data.get("type") or "unknown")
        task_id = request.task_id
        if kind in {"thinking", "user"}:
            return []
        if kind == "assistant":
            message = data.get("message")
            content = message.get("content") if isinstance(message, dict) else message
            text = _text_from_content(content)
            return [log_event(task_id, LogLevel.INFO, text)] if text.strip() else []
        if kind == "system":
            subtype = data.get("subtype")
            return [log_event(task_id, LogLevel.INFO, f"system:{subtype}")] if subtype else []
        if kind == "result":
            if data.get("is_error"):
                return [log_event(task_id, LogLevel.ERROR, f"result: {data.get('result') or 'error'}")]
            duration = coerce_optional_int(data.get("duration_ms"))
            return [log_event(task_id, LogLevel.INFO, f"result: duration_ms={duration if duration is not None else 'unknown'}")]
        if kind == "tool_call":
            return self._tool_call_events(data, request)
        return [log_event(task_id, LogLevel.INFO, f"event:{kind}")]

    def _tool_call_events(self, data: dict[str, Any], request: AgentTaskRequest) -> list[AgentEvent]:
        if data.get("subtype") != "completed":
            return []
        tool_call = data.get("tool_call")
        if not isinstance(tool_call, dict):
            return []
        name = next((key for key in tool_call if key in self._WRITE_TOOL_CALLS), None)
        if name is None:
            return []
        body = tool_call.get(name) if isinstance(tool_call.get(name), dict) else {}
        args = body.get("args") if isinstance(body.get("args"), dict) else {}
        result = body.get("result") if isinstance(body.get("result"), dict) else {}
        success = result.get("success") if isinstance(result.get("success"), dict) else {}
        path = success.get("path") or args.get("path")
        if not isinstance(path, str) or not path:
            return []
        return [
            self._write_event(
                request,
                path,
                lines_created=coerce_optional_int(success.get("linesAdded") or success.get("linesCreated")),
                bytes_written=coerce_optional_int(success.get("fileSize")),
            )
        ]


register_provider(ClaudeCodeProvider.id, ClaudeCodeProvider)
register_provider(CursorAgentProvider.id, CursorAgentProvider)
