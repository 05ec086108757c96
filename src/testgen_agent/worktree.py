"""Isolated-workspace support: temporary git worktrees and apply-back.

Generation can run in a detached worktree so the user's checkout is not
touched while the agent works. Afterwards only test-like paths are carried
back as a patch. When the patch cannot be applied cleanly (or generation
failed), the patch, a snapshot of the generated tests and a ready-made
merge prompt are left under the storage directory instead.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import shutil
import subprocess
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from testgen_agent.file_io import atomic_write_text
from testgen_agent.notifications import Notifier
from testgen_agent.prompts import build_merge_assistance_prompt, build_merge_instructions_markdown
from testgen_agent.runner_common import process_isolation_kwargs
from testgen_agent.schemas import LogEvent, LogLevel, log_event
from testgen_agent.text_utils import dedupe_stable

logger = logging.getLogger(__name__)

ACTION_OPEN_INSTRUCTIONS = "Open instructions"
ACTION_COPY_PROMPT = "Copy merge prompt"

_TEST_DIR_NAMES = frozenset({"test", "tests", "__tests__", "spec"})
_TEST_FILE_PATTERNS = ("test_*.py", "*_test.py", "*.test.*", "*.spec.*")


class GitError(RuntimeError):
    """Raised when a git command fails unexpectedly."""


def _run_git(
    *args: str,
    cwd: str | Path,
    check: bool = True,
    timeout: int = 60,
) -> subprocess.CompletedProcess[str]:
    """Run a git command and return the CompletedProcess."""
    cmd = ["git", *args]
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    kwargs = process_isolation_kwargs() if os.name == "nt" else {}
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            **kwargs,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise GitError(f"`git {' '.join(args)}` could not run: {exc}") from exc
    if check and result.returncode != 0:
        raise GitError(
            f"`git {' '.join(args)}` failed (rc={result.returncode}): {result.stderr.strip()}"
        )
    return result


def _list_paths(cwd: str | Path, *args: str) -> list[str]:
    out = _run_git(*args, cwd=cwd).stdout
    return [line.strip().replace("\\", "/") for line in out.splitlines() if line.strip()]


# ---------------------------------------------------------------------------
# Worktree lifecycle
# ---------------------------------------------------------------------------


def create_temporary_worktree(repo_root: str | Path, base_dir: str | Path, task_id: str) -> Path:
    """Create a detached worktree of ``HEAD`` at ``<base_dir>/worktrees/<task_id>``."""
    target = Path(base_dir) / "worktrees" / task_id
    target.parent.mkdir(parents=True, exist_ok=True)
    _run_git("worktree", "add", "--detach", str(target), "HEAD", cwd=repo_root, timeout=120)
    logger.info("Created worktree %s", target)
    return target


def remove_temporary_worktree(repo_root: str | Path, worktree_path: str | Path) -> None:
    """Unregister and delete a worktree; raises :class:`GitError` when git refuses."""
    path = Path(worktree_path)
    try:
        _run_git("worktree", "remove", "--force", str(path), cwd=repo_root, timeout=120)
    finally:
        if path.exists():
            shutil.rmtree(path, ignore_errors=True)
    logger.info("Removed worktree %s", path)


# ---------------------------------------------------------------------------
# Test path classification
# ---------------------------------------------------------------------------


def is_test_like_path(path: str) -> bool:
    """True for paths that look like test code (by file name or directory)."""
    normalized = PurePosixPath(path.replace("\\", "/"))
    name = normalized.name
    if any(fnmatch.fnmatchcase(name, pattern) for pattern in _TEST_FILE_PATTERNS):
        return True
    return any(part in _TEST_DIR_NAMES for part in normalized.parts[:-1])


def filter_test_like_paths(paths: Iterable[str]) -> list[str]:
    return [p for p in dedupe_stable(paths) if is_test_like_path(p)]


# ---------------------------------------------------------------------------
# Apply-back
# ---------------------------------------------------------------------------


@dataclass
class ApplyOutcome:
    """What happened to the generated test changes."""

    applied: bool = False
    test_paths: list[str] = field(default_factory=list)
    patch_path: Path | None = None
    snapshot_dir: Path | None = None
    instructions_path: Path | None = None
    merge_prompt: str = ""
    chosen_action: str | None = None

    @property
    def needs_manual_merge(self) -> bool:
        return self.instructions_path is not None


def _snapshot(worktree_root: Path, test_paths: Sequence[str], snapshot_dir: Path) -> None:
    for rel in test_paths:
        src = worktree_root / rel
        if not src.is_file():
            continue
        dst = snapshot_dir / rel
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dst)
        except OSError as exc:
            logger.warning("Could not snapshot %s: %s", src, exc)


def apply_worktree_test_changes(
    *,
    task_id: str,
    generation_exit_code: int | None,
    local_root: str | Path,
    worktree_root: str | Path,
    storage_dir: str | Path,
    notifier: Notifier,
    emit: Callable[[LogEvent], None] | None = None,
    pre_test_check_command: str = "",
) -> ApplyOutcome:
    """Carry test changes from *worktree_root* back into *local_root*.

    Never raises; every failure is logged as a warning.
    """

    def say(level: LogLevel, message: str) -> None:
        if emit is not None:
            emit(log_event(task_id, level, message))
        else:
            logger.log(logging.WARNING if level is not LogLevel.INFO else logging.INFO, "%s", message)

    outcome = ApplyOutcome()
    try:
        worktree = Path(worktree_root)
        changed = _list_paths(worktree, "diff", "--name-only")
        untracked = _list_paths(worktree, "ls-files", "--others", "--exclude-standard")
        test_paths = filter_test_like_paths([*changed, *untracked])
        outcome.test_paths = test_paths
        if not test_paths:
            say(LogLevel.INFO, "No test changes found in the worktree; nothing to apply.")
            return outcome

        untracked_set = set(untracked)
        new_tests = [p for p in test_paths if p in untracked_set]
        if new_tests:
            added = _run_git("add", "-N", "--", *new_tests, cwd=worktree, check=False)
            if added.returncode != 0:
                say(LogLevel.WARN, f"git add -N failed for new test files (continuing): {added.stderr.strip()}")

        patch_text = _run_git("diff", "--no-color", "--binary", "--", *test_paths, cwd=worktree).stdout
        if not patch_text.strip():
            say(LogLevel.INFO, "The worktree test diff is empty; nothing to apply.")
            return outcome
        if not patch_text.endswith("\n"):
            patch_text += "\n"

        storage = Path(storage_dir)
        tmp_patch = storage / "tmp" / f"{task_id}.patch"
        tmp_patch.parent.mkdir(parents=True, exist_ok=True)
        atomic_write_text(tmp_patch, patch_text)

        if generation_exit_code == 0:
            check = _run_git("apply", "--check", str(tmp_patch), cwd=local_root, check=False)
            check_output = (check.stdout + check.stderr).strip()
            if check.returncode == 0:
                applied = _run_git("apply", str(tmp_patch), cwd=local_root, check=False)
                if applied.returncode == 0:
                    tmp_patch.unlink(missing_ok=True)
                    message = f"Applied the worktree test changes to the local workspace ({len(test_paths)} files)."
                    say(LogLevel.INFO, message)
                    notifier.info(message)
                    outcome.applied = True
                    return outcome
                check_output = (applied.stdout + applied.stderr).strip()
        else:
            exit_text = "null" if generation_exit_code is None else generation_exit_code
            check_output = f"Generation did not exit with 0, so the patch was not applied automatically (exit={exit_text})."

        _persist_merge_artifacts(
            outcome,
            task_id=task_id,
            storage=storage,
            tmp_patch=tmp_patch,
            patch_text=patch_text,
            worktree=worktree,
            check_output=check_output,
            pre_test_check_command=pre_test_check_command,
        )
        say(
            LogLevel.INFO,
            f"Saved merge artifacts: patch={outcome.patch_path} snapshot={outcome.snapshot_dir} "
            f"instructions={outcome.instructions_path}",
        )
        warning = "The worktree test changes could not be applied automatically; a manual merge is required."
        say(LogLevel.WARN, warning)
        outcome.chosen_action = notifier.warning(warning, (ACTION_OPEN_INSTRUCTIONS, ACTION_COPY_PROMPT))
        if outcome.chosen_action == ACTION_OPEN_INSTRUCTIONS:
            say(LogLevel.INFO, f"Merge instructions: {outcome.instructions_path}")
        elif outcome.chosen_action == ACTION_COPY_PROMPT:
            say(LogLevel.INFO, outcome.merge_prompt)
    except Exception as exc:
        logger.warning("Applying worktree changes failed: %s", exc, exc_info=True)
        say(LogLevel.WARN, f"Applying the worktree test changes failed (continuing): {exc}")
    return outcome


def _persist_merge_artifacts(
    outcome: ApplyOutcome,
    *,
    task_id: str,
    storage: Path,
    tmp_patch: Path,
    patch_text: str,
    worktree: Path,
    check_output: str,
    pre_test_check_command: str,
) -> None:
    patch_path = storage / "patches" / f"{task_id}.patch"
    snapshot_dir = storage / "snapshots" / task_id
    instructions_path = storage / "merge-instructions" / f"{task_id}.md"
    for directory in (patch_path.parent, snapshot_dir, instructions_path.parent):
        directory.mkdir(parents=True, exist_ok=True)

    try:
        os.replace(tmp_patch, patch_path)
    except OSError:
        atomic_write_text(patch_path, patch_text)
        tmp_patch.unlink(missing_ok=True)

    _snapshot(worktree, outcome.test_paths, snapshot_dir)

    prompt = build_merge_assistance_prompt(
        task_id,
        check_output,
        str(patch_path),
        str(snapshot_dir),
        outcome.test_paths,
        pre_test_check_command,
    )
    atomic_write_text(instructions_path, build_merge_instructions_markdown(prompt))

    outcome.patch_path = patch_path
    outcome.snapshot_dir = snapshot_dir
    outcome.instructions_path = instructions_path
    outcome.merge_prompt = prompt
