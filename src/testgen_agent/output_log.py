"""The run's human-readable output log.

Every agent event of a run ends up here as one or more text lines. The log
is append-only and written by one phase at a time.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable
from pathlib import Path

from testgen_agent.file_io import append_text
from testgen_agent.log_sanitizer import sanitize
from testgen_agent.schemas import (
    AgentEvent,
    CompletedEvent,
    FileWriteEvent,
    LogEvent,
    LogLevel,
    StartedEvent,
)

logger = logging.getLogger(__name__)
output_logger = logging.getLogger("testgen_agent.output")

_LEVEL_TO_LOGGING = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def _stamp(timestamp_ms: int) -> str:
    moment = dt.datetime.fromtimestamp(timestamp_ms / 1000, tz=dt.timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_event(event: AgentEvent) -> list[str]:
    """Render *event* as output-log lines; empty when there is nothing to show."""
    prefix = f"[{_stamp(event.timestamp_ms)}] [{event.task_id}]"
    if isinstance(event, StartedEvent):
        detail = f" ({event.detail})" if event.detail else ""
        return [f"{prefix} START {event.label}{detail}"]
    if isinstance(event, LogEvent):
        message = sanitize(event.message)
        if not message:
            return []
        first, *rest = message.split("\n")
        return [f"{prefix} {event.level.value.upper()} {first}", *(f"  {line}" for line in rest)]
    if isinstance(event, FileWriteEvent):
        extras = ""
        if event.lines_created is not None:
            extras += f" lines={event.lines_created}"
        if event.bytes_written is not None:
            extras += f" bytes={event.bytes_written}"
        return [f"{prefix} WRITE {event.path}{extras}"]
    if isinstance(event, CompletedEvent):
        code = "null" if event.exit_code is None else event.exit_code
        return [f"{prefix} DONE exit={code}"]
    return []


class RunOutputLog:
    """Append-only log of formatted agent events.

    Parameters
    ----------
    path:
        Optional file that receives every line as it is appended.
    listener:
        Optional callback invoked with each formatted line (UI streaming).
    """

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        listener: Callable[[str], None] | None = None,
    ) -> None:
        self.path = Path(path) if path else None
        self._listener = listener
        self._lines: list[str] = []

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    def text(self) -> str:
        return "\n".join(self._lines)

    def append(self, event: AgentEvent) -> list[str]:
        """Format and record *event*; returns the lines written."""
        lines = format_event(event)
        if not lines:
            return lines
        level = logging.INFO
        if isinstance(event, LogEvent):
            level = _LEVEL_TO_LOGGING.get(event.level, logging.INFO)
        for line in lines:
            output_logger.log(level, "%s", line)
            if self._listener is not None:
                self._listener(line)
        self._lines.extend(lines)
        if self.path is not None:
            try:
                append_text(self.path, "\n".join(lines) + "\n")
            except OSError as exc:
                logger.warning("Could not append to output log %s: %s", self.path, exc)
        return lines
