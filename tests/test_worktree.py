"""Tests for test-path classification and worktree apply-back."""

from __future__ import annotations

import shutil
import subprocess
from collections.abc import Sequence
from pathlib import Path

import pytest

from testgen_agent.worktree import (
    ACTION_COPY_PROMPT,
    ACTION_OPEN_INSTRUCTIONS,
    GitError,
    _run_git,
    apply_worktree_test_changes,
    create_temporary_worktree,
    filter_test_like_paths,
    is_test_like_path,
    remove_temporary_worktree,
)


class RecordingNotifier:
    def __init__(self, choice: str | None = None) -> None:
        self.infos: list[str] = []
        self.warnings: list[tuple[str, tuple[str, ...]]] = []
        self.choice = choice

    def info(self, message: str, actions: Sequence[str] = ()) -> str | None:
        self.infos.append(message)
        return None

    def warning(self, message: str, actions: Sequence[str] = ()) -> str | None:
        self.warnings.append((message, tuple(actions)))
        return self.choice


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.parametrize(
    "path",
    [
        "tests/helpers.py",
        "src/__tests__/app.ts",
        "pkg/test_app.py",
        "pkg/app_test.py",
        "src/app.test.ts",
        "src/app.spec.js",
        "spec\\models\\user.rb",
    ],
)
def test_test_like_paths(path: str) -> None:
    assert is_test_like_path(path)


@pytest.mark.unit
@pytest.mark.parametrize("path", ["src/app.ts", "README.md", "testing/utils.py", "src/contest.py", "tests"])
def test_non_test_paths(path: str) -> None:
    assert not is_test_like_path(path)


@pytest.mark.unit
def test_filter_keeps_first_seen_order_without_duplicates() -> None:
    paths = ["src/a.test.ts", "src/a.ts", "tests/x.py", "src/a.test.ts"]
    assert filter_test_like_paths(paths) == ["src/a.test.ts", "tests/x.py"]


@pytest.mark.unit
def test_run_git_wraps_failures(tmp_path: Path) -> None:
    with pytest.raises(GitError):
        _run_git("rev-parse", "--verify", "no-such-ref", cwd=tmp_path)


# ---------------------------------------------------------------------------
# Apply-back against real repositories
# ---------------------------------------------------------------------------

needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(cwd: Path, *args: str) -> None:
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    root.mkdir()
    _git(root, "init", "-q")
    _git(root, "config", "user.email", "dev@example.com")
    _git(root, "config", "user.name", "Dev")
    _git(root, "config", "commit.gpgsign", "false")
    (root / "src").mkdir()
    (root / "src" / "app.py").write_text("def add(a, b):\n    return a + b\n", encoding="utf-8")
    (root / "tests").mkdir()
    (root / "tests" / "test_app.py").write_text("def test_placeholder():\n    pass\n", encoding="utf-8")
    _git(root, "add", ".")
    _git(root, "commit", "-q", "-m", "initial")
    return root


@pytest.mark.integration
@needs_git
def test_clean_patch_is_applied_to_local_workspace(repo: Path, tmp_path: Path) -> None:
    storage = tmp_path / "storage"
    worktree = create_temporary_worktree(repo, storage, "run-1")
    try:
        (worktree / "tests" / "test_new.py").write_text("def test_new():\n    assert True\n", encoding="utf-8")
        (worktree / "tests" / "test_app.py").write_text("def test_changed():\n    pass\n", encoding="utf-8")
        (worktree / "src" / "app.py").write_text("# source edits stay behind\n", encoding="utf-8")
        notifier = RecordingNotifier()

        outcome = apply_worktree_test_changes(
            task_id="run-1",
            generation_exit_code=0,
            local_root=repo,
            worktree_root=worktree,
            storage_dir=storage,
            notifier=notifier,
        )
    finally:
        remove_temporary_worktree(repo, worktree)

    assert outcome.applied
    assert sorted(outcome.test_paths) == ["tests/test_app.py", "tests/test_new.py"]
    assert (repo / "tests" / "test_new.py").is_file()
    assert "test_changed" in (repo / "tests" / "test_app.py").read_text(encoding="utf-8")
    assert "return a + b" in (repo / "src" / "app.py").read_text(encoding="utf-8")
    assert notifier.infos and notifier.warnings == []
    assert not worktree.exists()


@pytest.mark.integration
@needs_git
def test_failed_generation_leaves_merge_artifacts(repo: Path, tmp_path: Path) -> None:
    storage = tmp_path / "storage"
    worktree = create_temporary_worktree(repo, storage, "run-2")
    try:
        (worktree / "tests" / "test_new.py").write_text("def test_new():\n    pass\n", encoding="utf-8")
        notifier = RecordingNotifier(choice=ACTION_COPY_PROMPT)
        events = []

        outcome = apply_worktree_test_changes(
            task_id="run-2",
            generation_exit_code=1,
            local_root=repo,
            worktree_root=worktree,
            storage_dir=storage,
            notifier=notifier,
            emit=events.append,
            pre_test_check_command="npm run lint",
        )
    finally:
        remove_temporary_worktree(repo, worktree)

    assert not outcome.applied
    assert outcome.needs_manual_merge
    assert not (repo / "tests" / "test_new.py").exists()
    assert outcome.patch_path == storage / "patches" / "run-2.patch"
    assert outcome.patch_path.read_text(encoding="utf-8").startswith("diff --git")
    assert (outcome.snapshot_dir / "tests" / "test_new.py").is_file()
    instructions = outcome.instructions_path.read_text(encoding="utf-8")
    assert "exit=1" in instructions
    assert "npm run lint" in instructions
    assert notifier.warnings[0][1] == (ACTION_OPEN_INSTRUCTIONS, ACTION_COPY_PROMPT)
    assert outcome.chosen_action == ACTION_COPY_PROMPT
    assert events[-1].message == outcome.merge_prompt


@pytest.mark.integration
@needs_git
def test_conflicting_patch_is_not_applied(repo: Path, tmp_path: Path) -> None:
    storage = tmp_path / "storage"
    worktree = create_temporary_worktree(repo, storage, "run-3")
    try:
        (worktree / "tests" / "test_app.py").write_text("def test_worktree():\n    pass\n", encoding="utf-8")
        (repo / "tests" / "test_app.py").write_text("def test_local_edit():\n    pass\n", encoding="utf-8")
        notifier = RecordingNotifier()

        outcome = apply_worktree_test_changes(
            task_id="run-3",
            generation_exit_code=0,
            local_root=repo,
            worktree_root=worktree,
            storage_dir=storage,
            notifier=notifier,
        )
    finally:
        remove_temporary_worktree(repo, worktree)

    assert not outcome.applied
    assert outcome.needs_manual_merge
    assert "test_local_edit" in (repo / "tests" / "test_app.py").read_text(encoding="utf-8")
    assert notifier.warnings


@pytest.mark.integration
@needs_git
def test_no_test_changes_is_a_no_op(repo: Path, tmp_path: Path) -> None:
    storage = tmp_path / "storage"
    worktree = create_temporary_worktree(repo, storage, "run-4")
    try:
        (worktree / "src" / "app.py").write_text("changed = True\n", encoding="utf-8")
        notifier = RecordingNotifier()
        outcome = apply_worktree_test_changes(
            task_id="run-4",
            generation_exit_code=0,
            local_root=repo,
            worktree_root=worktree,
            storage_dir=storage,
            notifier=notifier,
        )
    finally:
        remove_temporary_worktree(repo, worktree)

    assert outcome.test_paths == []
    assert not outcome.applied
    assert not outcome.needs_manual_merge
    assert notifier.infos == [] and notifier.warnings == []


@pytest.mark.unit
def test_apply_back_outside_git_never_raises(tmp_path: Path) -> None:
    notifier = RecordingNotifier()
    events = []
    outcome = apply_worktree_test_changes(
        task_id="run-5",
        generation_exit_code=0,
        local_root=tmp_path,
        worktree_root=tmp_path / "missing",
        storage_dir=tmp_path / "storage",
        notifier=notifier,
        emit=events.append,
    )
    assert not outcome.applied
    assert "failed (continuing)" in events[-1].message
