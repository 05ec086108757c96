"""Tests for shared process helpers."""

from __future__ import annotations

import os
import stat
import subprocess
import sys
from pathlib import Path

import pytest

from testgen_agent.runner_common import (
    coerce_optional_int,
    process_isolation_kwargs,
    resolve_binary,
    signal_name,
    terminate_process_with_fallback,
)

pytestmark = pytest.mark.unit


def _make_executable(tmp_path: Path, name: str) -> Path:
    path = tmp_path / name
    if os.name == "nt":
        path.write_text("@echo off\r\nexit /b 0\r\n", encoding="utf-8")
    else:
        path.write_text("#!/usr/bin/env sh\nexit 0\n", encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return path


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, None),
        (True, None),
        (4, 4),
        (4.9, 4),
        (float("nan"), None),
        (float("inf"), None),
        (" 12 ", 12),
        ("twelve", None),
        ([1], None),
    ],
)
def test_coerce_optional_int(value: object, expected: int | None) -> None:
    assert coerce_optional_int(value) == expected


def test_resolve_binary_expands_environment_variables(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    var_name = "TESTGEN_AGENT_TEST_BIN_DIR"
    monkeypatch.setenv(var_name, str(tmp_path))
    exe_name = "fake-agent.cmd" if os.name == "nt" else "fake-agent"
    exe_path = _make_executable(tmp_path, exe_name)

    raw = f"%{var_name}%\\{exe_name}" if os.name == "nt" else f"${var_name}/{exe_name}"
    assert Path(resolve_binary(raw)) == exe_path


def test_resolve_binary_strips_wrapping_quotes(tmp_path: Path) -> None:
    exe_path = _make_executable(tmp_path, "quoted-agent")
    assert Path(resolve_binary(f'"{exe_path}"')) == exe_path


def test_resolve_binary_empty_and_unknown() -> None:
    assert resolve_binary("   ") == ""
    assert resolve_binary("definitely-not-installed-agent-xyz") == "definitely-not-installed-agent-xyz"


@pytest.mark.skipif(os.name == "nt", reason="POSIX process groups")
def test_process_isolation_uses_new_session() -> None:
    assert process_isolation_kwargs() == {"start_new_session": True}


@pytest.mark.skipif(os.name == "nt", reason="POSIX signals")
def test_signal_name() -> None:
    assert signal_name(None) is None
    assert signal_name(0) is None
    assert signal_name(1) is None
    assert signal_name(-15) == "SIGTERM"


@pytest.mark.integration
@pytest.mark.skipif(os.name == "nt", reason="POSIX process groups")
def test_terminate_process_with_fallback_stops_child() -> None:
    proc = subprocess.Popen(
        [sys.executable, "-c", "import time; time.sleep(30)"],
        **process_isolation_kwargs(),
    )
    terminate_process_with_fallback(proc, process_name="sleeper", reason="test")
    assert proc.poll() is not None


def test_terminate_process_with_fallback_ignores_finished_process() -> None:
    class Finished:
        def poll(self) -> int:
            return 0

    terminate_process_with_fallback(Finished(), process_name="done", reason="test")  # type: ignore[arg-type]
