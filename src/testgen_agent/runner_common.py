"""Process helpers shared by the agent CLI providers and the local test runner."""

from __future__ import annotations

import logging
import math
import os
import shutil
import subprocess
from contextlib import suppress
from typing import Any

logger = logging.getLogger(__name__)
if os.name != "nt":  # pragma: no cover - platform-specific import
    import signal


def process_isolation_kwargs() -> dict[str, object]:
    """Popen kwargs that keep the child out of our signal/console group.

    Windows needs CREATE_NEW_PROCESS_GROUP plus CREATE_NO_WINDOW so a dying
    child cannot send CTRL_C_EVENT back through a shared console. POSIX
    gets the same effect from a new session, which also lets us signal the
    whole process group on dispose.
    """
    if os.name == "nt":
        new_pg = int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0))
        no_win = int(getattr(subprocess, "CREATE_NO_WINDOW", 0))
        flags = new_pg | no_win
        return {"creationflags": flags} if flags else {}
    return {"start_new_session": True}


def resolve_binary(name: str) -> str:
    """Resolve a binary name to a full executable path when possible."""
    expanded = os.path.expandvars(os.path.expanduser(str(name or "").strip()))
    if len(expanded) >= 2 and expanded[0] == expanded[-1] and expanded[0] in {"'", '"'}:
        # Accept copy/paste paths wrapped in shell quotes.
        expanded = expanded[1:-1].strip()
    if not expanded:
        return ""
    return shutil.which(expanded) or expanded


def coerce_optional_int(value: Any) -> int | None:
    """Integer from a loosely typed JSON field, ``None`` when absent or unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def signal_name(returncode: int | None) -> str | None:
    """Name of the signal that killed a POSIX child (negative return code)."""
    if returncode is None or returncode >= 0 or os.name == "nt":
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


def terminate_process_with_fallback(
    proc: subprocess.Popen[Any],
    *,
    process_name: str,
    reason: str,
    terminate_timeout_seconds: float = 1.5,
) -> None:
    """Request graceful terminate first, then force-kill if still alive."""
    if proc.poll() is not None:
        return

    _send_to_group(proc, "SIGTERM")
    with suppress(OSError):
        proc.terminate()
    try:
        proc.wait(timeout=max(0.1, float(terminate_timeout_seconds)))
        return
    except subprocess.TimeoutExpired:
        logger.warning("%s did not exit after terminate during %s; forcing kill.", process_name, reason)

    _send_to_group(proc, "SIGKILL")
    with suppress(OSError):
        proc.kill()
    try:
        proc.wait(timeout=5.0)
    except subprocess.TimeoutExpired:  # pragma: no cover - extreme edge case
        logger.warning("%s ignored kill during %s.", process_name, reason)


def _send_to_group(proc: subprocess.Popen[Any], signal_attr: str) -> None:
    if os.name == "nt":  # pragma: no cover - Windows-only runtime branch
        return
    pid = int(getattr(proc, "pid", 0) or 0)
    if pid <= 0:
        return
    with suppress(OSError):
        os.killpg(os.getpgid(pid), getattr(signal, signal_attr))
