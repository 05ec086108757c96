"""Pydantic models for structured data exchanged between run phases."""

from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    """Wall-clock milliseconds since the epoch."""
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Agent sub-task requests and events
# ---------------------------------------------------------------------------


class OutputFormat(str, Enum):
    """Print-mode output formats understood by agent CLIs."""

    TEXT = "text"
    JSON = "json"
    STREAM_JSON = "stream-json"


class AgentTaskRequest(BaseModel):
    """One sub-task handed to an agent provider."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    workspace_root: str
    command: str = ""
    prompt: str = ""
    model: str | None = None
    output_format: OutputFormat = OutputFormat.STREAM_JSON
    allow_write: bool = False


class LogLevel(str, Enum):
    """Severity carried by ``log`` events."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class _AgentEventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    task_id: str
    timestamp_ms: int = Field(default_factory=now_ms)


class StartedEvent(_AgentEventBase):
    type: Literal["started"] = "started"
    label: str = ""
    detail: str | None = None


class LogEvent(_AgentEventBase):
    type: Literal["log"] = "log"
    level: LogLevel = LogLevel.INFO
    message: str = ""


class FileWriteEvent(_AgentEventBase):
    type: Literal["fileWrite"] = "fileWrite"
    path: str
    lines_created: int | None = None
    bytes_written: int | None = None


class CompletedEvent(_AgentEventBase):
    type: Literal["completed"] = "completed"
    exit_code: int | None = None


AgentEvent = Annotated[
    Union[StartedEvent, LogEvent, FileWriteEvent, CompletedEvent],
    Field(discriminator="type"),
]


def log_event(task_id: str, level: LogLevel | str, message: str) -> LogEvent:
    """Build a ``log`` event stamped with the current time."""
    return LogEvent(task_id=task_id, level=LogLevel(level), message=message)


# ---------------------------------------------------------------------------
# Test execution results
# ---------------------------------------------------------------------------


class ExtractedExecutionResult(BaseModel):
    """Structured test result recovered from an agent's free-text output."""

    exit_code: int | None = None
    signal: str | None = None
    duration_ms: int = 0
    stdout: str = ""
    stderr: str = ""
    error_message: str | None = None


class ExtractionFailure(ExtractedExecutionResult):
    """No usable result block was found.

    ``stderr`` holds the complete raw log and ``error_message`` explains
    why. This is an ordinary return value, never raised.
    """


class CommandResult(BaseModel):
    """Outcome of running a test command as a local process."""

    command: str
    cwd: str
    exit_code: int | None = None
    signal: str | None = None
    duration_ms: int = 0
    stdout: str = ""
    stderr: str = ""
    error_message: str | None = None


class ExecutionStatus(str, Enum):
    EXECUTED = "executed"
    SKIPPED = "skipped"


class ExecutionReport(BaseModel):
    """Everything written to one test-execution report artifact."""

    status: ExecutionStatus
    command: str
    cwd: str = ""
    exit_code: int | None = None
    signal: str | None = None
    duration_ms: int = 0
    stdout: str = ""
    stderr: str = ""
    error_message: str | None = None
    skip_reason: str | None = None
    execution_runner: str | None = None
    sanitized_log: str = ""
    file_writes: list[FileWriteEvent] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Perspective tables, cleanup, artifacts
# ---------------------------------------------------------------------------


class PerspectiveCase(BaseModel):
    """One row of the fixed five-column perspective table."""

    case_id: str
    input_precondition: str = ""
    perspective: str = ""
    expected_result: str = ""
    notes: str = ""


class CleanupOutcome(BaseModel):
    """Result of considering one stray perspective file for deletion."""

    model_config = ConfigDict(frozen=True)

    deleted: bool
    relative_path: str
    error_message: str | None = None


class SavedArtifact(BaseModel):
    """Location of a report written to disk."""

    model_config = ConfigDict(frozen=True)

    absolute_path: str
    relative_path: str | None = None

    @property
    def display_path(self) -> str:
        return self.relative_path or self.absolute_path
