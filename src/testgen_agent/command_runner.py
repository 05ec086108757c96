"""Run a test command as a local process (the ``internal`` runner)."""

from __future__ import annotations

import logging
import subprocess
import time
from pathlib import Path

from testgen_agent.runner_common import process_isolation_kwargs, signal_name
from testgen_agent.schemas import CommandResult

logger = logging.getLogger(__name__)

#: Per-stream capture cap, in characters.
MAX_CAPTURE_CHARS = 5 * 1024 * 1024


def _cap(text: str, stream: str) -> str:
    if len(text) <= MAX_CAPTURE_CHARS:
        return text
    return text[:MAX_CAPTURE_CHARS] + f"\n... ({stream} truncated)"


def run_test_command(command: str, cwd: str | Path, *, timeout: float | None = None) -> CommandResult:
    """Execute *command* through the platform shell and capture its output.

    Never raises for process problems: a spawn failure or timeout is
    reported through ``exit_code=None`` and ``error_message``.
    """
    cwd = str(cwd)
    logger.info("Running tests: %s (cwd=%s)", command, cwd)
    started = time.monotonic()
    try:
        proc = subprocess.run(
            command,
            cwd=cwd,
            shell=True,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            **process_isolation_kwargs(),
        )
    except subprocess.TimeoutExpired as exc:
        duration_ms = int((time.monotonic() - started) * 1000)
        stdout = exc.stdout.decode("utf-8", "replace") if isinstance(exc.stdout, bytes) else (exc.stdout or "")
        stderr = exc.stderr.decode("utf-8", "replace") if isinstance(exc.stderr, bytes) else (exc.stderr or "")
        return CommandResult(
            command=command,
            cwd=cwd,
            exit_code=None,
            duration_ms=duration_ms,
            stdout=_cap(stdout, "stdout"),
            stderr=_cap(stderr, "stderr"),
            error_message=f"Test command timed out after {timeout}s",
        )
    except (OSError, ValueError) as exc:
        duration_ms = int((time.monotonic() - started) * 1000)
        logger.error("Test command could not be started: %s", exc)
        return CommandResult(
            command=command,
            cwd=cwd,
            exit_code=None,
            duration_ms=duration_ms,
            error_message=f"Test command could not be started: {exc}",
        )

    duration_ms = int((time.monotonic() - started) * 1000)
    signal = signal_name(proc.returncode)
    exit_code = None if signal else proc.returncode
    if exit_code == 0:
        logger.info("Test command completed (exit=%s, %s ms)", exit_code, duration_ms)
    else:
        logger.error("Test command completed (exit=%s, signal=%s, %s ms)", exit_code, signal, duration_ms)
    return CommandResult(
        command=command,
        cwd=cwd,
        exit_code=exit_code,
        signal=signal,
        duration_ms=duration_ms,
        stdout=_cap(proc.stdout or "", "stdout"),
        stderr=_cap(proc.stderr or "", "stderr"),
    )
