"""User-facing notifications.

The orchestrator only decides *what* to say and whether it is an info or a
warning. Rendering, and picking one of at most two actions, belongs to
whatever front end implements :class:`Notifier`.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

logger = logging.getLogger(__name__)

MAX_ACTIONS = 2


class Notifier(Protocol):
    def info(self, message: str, actions: Sequence[str] = ()) -> str | None:
        """Show an informational notice; return the chosen action, if any."""

    def warning(self, message: str, actions: Sequence[str] = ()) -> str | None:
        """Show a warning notice; return the chosen action, if any."""


def _check_actions(actions: Sequence[str]) -> None:
    if len(actions) > MAX_ACTIONS:
        raise ValueError(f"At most {MAX_ACTIONS} notification actions are supported, got {len(actions)}")


class LoggingNotifier:
    """Headless notifier: writes notices to the log and never picks an action."""

    def info(self, message: str, actions: Sequence[str] = ()) -> str | None:
        _check_actions(actions)
        if actions:
            logger.info("%s [actions: %s]", message, ", ".join(actions))
        else:
            logger.info("%s", message)
        return None

    def warning(self, message: str, actions: Sequence[str] = ()) -> str | None:
        _check_actions(actions)
        if actions:
            logger.warning("%s [actions: %s]", message, ", ".join(actions))
        else:
            logger.warning("%s", message)
        return None
