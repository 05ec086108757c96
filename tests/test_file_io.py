"""Tests for resilient file I/O helpers used by report and log writes."""

from __future__ import annotations

from pathlib import Path

import pytest

import testgen_agent.file_io as file_io

pytestmark = pytest.mark.unit


def test_path_lock_is_shared_for_resolved_aliases(tmp_path: Path) -> None:
    primary = tmp_path / "docs" / "report.md"
    alias = tmp_path / "docs" / ".." / "docs" / "report.md"

    with file_io.locked_path(primary):
        pass
    with file_io.locked_path(alias):
        pass

    assert str(primary.resolve()) in file_io._PATH_LOCKS
    assert str(alias.resolve()) == str(primary.resolve())


def test_replace_with_retry_retries_permission_denied_then_succeeds(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    src = tmp_path / "src.txt"
    dst = tmp_path / "dst.txt"
    src.write_text("new-content", encoding="utf-8")
    dst.write_text("old-content", encoding="utf-8")

    attempts = {"count": 0}
    original_replace = Path.replace

    def flaky_replace(self: Path, target: Path) -> Path:
        if self == src and Path(target) == dst and attempts["count"] < 2:
            attempts["count"] += 1
            raise PermissionError("file locked")
        return original_replace(self, target)

    monkeypatch.setattr(Path, "replace", flaky_replace)
    monkeypatch.setattr(file_io.time, "sleep", lambda _seconds: None)

    file_io._replace_with_retry(src, dst)

    assert attempts["count"] == 2
    assert dst.read_text(encoding="utf-8") == "new-content"


def test_replace_with_retry_gives_up(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def always_locked(self: Path, target: Path) -> Path:
        raise PermissionError("file locked")

    monkeypatch.setattr(Path, "replace", always_locked)
    monkeypatch.setattr(file_io.time, "sleep", lambda _seconds: None)

    with pytest.raises(PermissionError):
        file_io._replace_with_retry(tmp_path / "a", tmp_path / "b")


def test_atomic_write_creates_parents_and_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "out.md"
    file_io.atomic_write_text(target, "hello\n")
    file_io.atomic_write_text(target, "again\n")

    assert target.read_text(encoding="utf-8") == "again\n"
    assert [p.name for p in target.parent.iterdir()] == ["out.md"]


def test_append_text(tmp_path: Path) -> None:
    target = tmp_path / "logs" / "run.log"
    file_io.append_text(target, "a\n")
    file_io.append_text(target, "b\n")
    assert target.read_text(encoding="utf-8") == "a\nb\n"


def test_read_text_lossy_falls_back_to_cp1252(tmp_path: Path) -> None:
    target = tmp_path / "legacy.md"
    target.write_bytes("café".encode("cp1252"))
    assert file_io.read_text_lossy(target) == "café"


def test_read_text_lossy_raises_for_missing_file(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        file_io.read_text_lossy(tmp_path / "missing.md")
