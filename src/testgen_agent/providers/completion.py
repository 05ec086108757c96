"""Drive one provider sub-task to completion, optionally under a deadline."""

from __future__ import annotations

import logging
import math
import queue
import time
from collections.abc import Callable
from dataclasses import dataclass

from testgen_agent.config import MAX_TIMEOUT_MS
from testgen_agent.providers.base import AgentProvider, EventCallback, RunningTask
from testgen_agent.schemas import AgentEvent, AgentTaskRequest, CompletedEvent, LogLevel, log_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TaskCompletion:
    """How a sub-task ended."""

    exit_code: int | None
    timed_out: bool = False
    duration_ms: int = 0


def _usable_timeout(timeout_seconds: float | None) -> float | None:
    if timeout_seconds is None:
        return None
    try:
        value = float(timeout_seconds)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0 or value * 1000 > MAX_TIMEOUT_MS:
        return None
    return value


def run_to_completion(
    provider: AgentProvider,
    request: AgentTaskRequest,
    on_event: EventCallback,
    *,
    timeout_seconds: float | None = None,
    on_running_task: Callable[[RunningTask], None] | None = None,
) -> TaskCompletion:
    """Run *request* and block until its ``completed`` event or the deadline.

    Events are queued on a channel private to this sub-task and handed to
    *on_event* on the calling thread, in arrival order. When the deadline
    passes first, the task is disposed (a failing dispose is logged, never
    raised) and everything it emits afterwards is discarded.
    """
    timeout = _usable_timeout(timeout_seconds)
    channel: queue.Queue[AgentEvent] = queue.Queue()
    started = time.monotonic()

    task = provider.run(request, channel.put)
    if on_running_task is not None:
        on_running_task(task)

    deadline = None if timeout is None else started + timeout
    while True:
        wait = None if deadline is None else deadline - time.monotonic()
        if wait is not None and wait <= 0:
            break
        try:
            event = channel.get(timeout=wait)
        except queue.Empty:
            break
        on_event(event)
        if isinstance(event, CompletedEvent):
            return TaskCompletion(
                exit_code=event.exit_code,
                duration_ms=int((time.monotonic() - started) * 1000),
            )

    timeout_ms = int((timeout or 0) * 1000)
    on_event(log_event(request.task_id, LogLevel.ERROR, f"Sub-task timed out after {timeout_ms} ms; disposing it."))
    try:
        task.dispose()
    except Exception as exc:
        logger.warning("Disposing timed-out task %s failed: %s", request.task_id, exc)
    return TaskCompletion(
        exit_code=None,
        timed_out=True,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
