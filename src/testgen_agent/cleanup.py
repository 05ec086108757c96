"""Remove perspective tables the agent saved on its own at the workspace root.

The agent is told not to write the perspective table to a file, but some
still drop a ``test_perspectives.md`` next to the code. A candidate is
only deleted when it carries both the begin and the end marker of one of
the perspective vocabularies; anything else might be the user's own file.
"""

from __future__ import annotations

import logging
from pathlib import Path

from testgen_agent.file_io import read_text_lossy
from testgen_agent.markers import PERSPECTIVE_MARKER_PAIRS
from testgen_agent.schemas import CleanupOutcome
from testgen_agent.text_utils import dedupe_stable

logger = logging.getLogger(__name__)

STRAY_PATTERNS: tuple[str, ...] = ("test_perspectives*.md", "test_perspectives*.json")


def _candidates(root: Path) -> list[Path]:
    found: list[str] = []
    for pattern in STRAY_PATTERNS:
        found.extend(str(p) for p in sorted(root.glob(pattern)) if p.is_file())
    return [Path(p) for p in dedupe_stable(found)]


def _has_marker_pair(content: str) -> bool:
    return any(pair.both_present(content) for pair in PERSPECTIVE_MARKER_PAIRS)


def cleanup_file(root: Path, path: Path) -> CleanupOutcome:
    """Consider one candidate; never raises."""
    relative = path.relative_to(root).as_posix() if path.is_relative_to(root) else path.name
    if not path.is_file():
        return CleanupOutcome(deleted=False, relative_path=relative)
    try:
        content = read_text_lossy(path)
    except OSError as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return CleanupOutcome(deleted=False, relative_path=relative, error_message=str(exc))
    if not _has_marker_pair(content):
        return CleanupOutcome(deleted=False, relative_path=relative)
    try:
        path.unlink()
    except FileNotFoundError:
        return CleanupOutcome(deleted=False, relative_path=relative)
    except OSError as exc:
        logger.warning("Could not delete %s: %s", path, exc)
        return CleanupOutcome(deleted=False, relative_path=relative, error_message=str(exc))
    logger.info("Deleted stray perspective file %s", relative)
    return CleanupOutcome(deleted=True, relative_path=relative)


def cleanup_stray_perspective_files(workspace_root: str | Path) -> list[CleanupOutcome]:
    """Delete marker-bearing perspective byproducts at *workspace_root*.

    Returns one outcome per candidate file, in discovery order.
    """
    root = Path(workspace_root)
    if not root.is_dir():
        return []
    return [cleanup_file(root, path) for path in _candidates(root)]
