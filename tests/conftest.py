"""Shared pytest configuration, marker registration and a scripted agent provider."""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from typing import Any

import pytest

from testgen_agent.providers import AgentProvider, EventCallback, RunningTask
from testgen_agent.schemas import (
    AgentTaskRequest,
    CompletedEvent,
    FileWriteEvent,
    LogLevel,
    log_event,
)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast isolated unit tests")
    config.addinivalue_line("markers", "integration: filesystem/subprocess integration tests")
    config.addinivalue_line("markers", "slow: expensive tests that may call external APIs")


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Run fast unit tests first, integration tests second, slow tests last."""

    def sort_key(item: pytest.Item) -> tuple[int, str]:
        if item.get_closest_marker("slow"):
            return (2, item.nodeid)
        if item.get_closest_marker("integration"):
            return (1, item.nodeid)
        return (0, item.nodeid)

    items.sort(key=sort_key)


# ---------------------------------------------------------------------------
# Scripted provider
# ---------------------------------------------------------------------------

# A script is a sequence of steps:
#   ("log", "text") / ("warn", "text") / ("error", "text")
#   ("write", "path")
#   ("exit", code)        -> completed event; without it the task never completes
# Kinds listed in ``delays`` replay their script on a timer thread instead.
Script = Sequence[tuple[str, Any]]


class ScriptedTask(RunningTask):
    def __init__(self, task_id: str, dispose_error: Exception | None = None) -> None:
        super().__init__(task_id)
        self.disposed = False
        self._dispose_error = dispose_error

    def dispose(self) -> None:
        self.disposed = True
        if self._dispose_error is not None:
            raise self._dispose_error


def task_kind(task_id: str) -> str:
    if task_id.endswith("-perspectives"):
        return "perspectives"
    if task_id.endswith("-test-agent"):
        return "test-agent"
    return "generation"


class ScriptedProvider(AgentProvider):
    """Replays canned events per sub-task kind (perspectives, generation, test-agent)."""

    id = "scripted"
    display_name = "Scripted"

    def __init__(
        self,
        scripts: dict[str, Script] | None = None,
        *,
        dispose_error: Exception | None = None,
        on_run: Callable[[AgentTaskRequest], None] | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.scripts = dict(scripts or {})
        self.delays = dict(delays or {})
        self.dispose_error = dispose_error
        self.on_run = on_run
        self.requests: list[AgentTaskRequest] = []
        self.tasks: list[ScriptedTask] = []

    def request_for(self, kind: str) -> AgentTaskRequest:
        return next(r for r in self.requests if task_kind(r.task_id) == kind)

    def run(self, request: AgentTaskRequest, on_event: EventCallback) -> RunningTask:
        self.requests.append(request)
        if self.on_run is not None:
            self.on_run(request)
        task = ScriptedTask(request.task_id, self.dispose_error)
        self.tasks.append(task)
        kind = task_kind(request.task_id)
        if kind in self.delays:
            timer = threading.Timer(self.delays[kind], self._replay, args=(kind, request, on_event))
            timer.daemon = True
            timer.start()
        else:
            self._replay(kind, request, on_event)
        return task

    def _replay(self, kind: str, request: AgentTaskRequest, on_event: EventCallback) -> None:
        for step, value in self.scripts.get(kind, [("exit", 0)]):
            if step in {"log", "warn", "error"}:
                level = {"log": LogLevel.INFO, "warn": LogLevel.WARN, "error": LogLevel.ERROR}[step]
                on_event(log_event(request.task_id, level, value))
            elif step == "write":
                on_event(FileWriteEvent(task_id=request.task_id, path=value))
            elif step == "exit":
                on_event(CompletedEvent(task_id=request.task_id, exit_code=value))


@pytest.fixture
def scripted_provider() -> Callable[..., ScriptedProvider]:
    """Factory for :class:`ScriptedProvider` instances."""
    return ScriptedProvider
