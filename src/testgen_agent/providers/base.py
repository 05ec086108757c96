"""Abstract agent provider and the provider registry.

A provider starts one agent sub-task per :class:`AgentTaskRequest` and
reports progress through a callback: zero or more ``log``/``fileWrite``
events followed by exactly one ``completed`` event. Nothing else about
ordering or threading is promised; callbacks may arrive on any thread.
"""

from __future__ import annotations

import abc
from collections.abc import Callable

from testgen_agent.schemas import AgentEvent, AgentTaskRequest

EventCallback = Callable[[AgentEvent], None]


class RunningTask(abc.ABC):
    """Handle to an in-flight sub-task."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id

    @abc.abstractmethod
    def dispose(self) -> None:
        """Stop the sub-task as far as possible. May raise."""


class AgentProvider(abc.ABC):
    """Common interface for agent back ends."""

    #: Registry key, e.g. ``"claude"``.
    id: str = "base"
    #: Human-readable name used in logs.
    display_name: str = "base"

    @abc.abstractmethod
    def run(self, request: AgentTaskRequest, on_event: EventCallback) -> RunningTask:
        """Start *request* and return immediately with a disposable handle."""


# ── Registry ──────────────────────────────────────────────────────

_REGISTRY: dict[str, type[AgentProvider]] = {}


def register_provider(key: str, cls: type[AgentProvider]) -> None:
    """Register a provider class under a lookup key."""
    normalized_key = (key or "").strip()
    if not normalized_key:
        raise ValueError("Provider key must be a non-empty string")
    if not isinstance(cls, type) or not issubclass(cls, AgentProvider):
        raise TypeError("Registered provider must be an AgentProvider subclass")

    existing = _REGISTRY.get(normalized_key)
    if existing is not None and existing is not cls:
        raise ValueError(
            f"Provider '{normalized_key}' is already registered with {existing.__name__}"
        )
    _REGISTRY[normalized_key] = cls


def get_provider_class(key: str) -> type[AgentProvider]:
    """Look up a registered provider class by key."""
    normalized_key = (key or "").strip()
    if normalized_key not in _REGISTRY:
        available = ", ".join(sorted(_REGISTRY)) or "(none)"
        raise KeyError(f"Unknown provider '{normalized_key}'. Available: {available}")
    return _REGISTRY[normalized_key]


def list_providers() -> list[str]:
    """Return all registered provider keys."""
    return sorted(_REGISTRY)
