"""Agent providers: the abstract contract, the registry and the built-in CLIs."""

from testgen_agent.providers.base import (
    AgentProvider,
    EventCallback,
    RunningTask,
    get_provider_class,
    list_providers,
    register_provider,
)
from testgen_agent.providers.cli import ClaudeCodeProvider, CliAgentProvider, CursorAgentProvider
from testgen_agent.providers.completion import TaskCompletion, run_to_completion

__all__ = [
    "AgentProvider",
    "ClaudeCodeProvider",
    "CliAgentProvider",
    "CursorAgentProvider",
    "EventCallback",
    "RunningTask",
    "TaskCompletion",
    "get_provider_class",
    "list_providers",
    "register_provider",
    "run_to_completion",
]
