"""testgen-agent - drive an AI coding agent through perspective, generation and test phases."""

from importlib.metadata import PackageNotFoundError, version

from testgen_agent.config import RunConfiguration
from testgen_agent.orchestrator import RunOrchestrator, RunOutcome, RunRequest

__all__ = ["RunConfiguration", "RunOrchestrator", "RunOutcome", "RunRequest"]

try:
    __version__ = version("testgen-agent")
except PackageNotFoundError:
    __version__ = "0.0.0"
