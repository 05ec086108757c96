"""Guess whether a test command would start another copy of the host editor.

Editor-extension test suites usually boot a fresh editor instance through a
launcher script. Running one of those from inside the editor that is
driving this agent tends to hang or fight over the user profile, so the
execution controller warns about it (and refuses the unsafe fallback path).
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_LAUNCHER_COMMAND_RE = re.compile(r"(^|[\s/\\])out[/\\]test[/\\]runTest(\.js)?\b")
_TEST_PACKAGE_RE = re.compile(r"@vscode/test-electron")
_CANONICAL_TEST_RE = re.compile(r"^npm(\s+run)?\s+test\b")
_MANIFEST_TEST_SCRIPT_RE = re.compile(r"@vscode/test-electron|vscode-test|out/test/runTest\.js|out\\test\\runTest\.js")

MANIFEST_FILENAME = "package.json"


def _manifest_test_script(workspace_root: Path) -> str | None:
    manifest = workspace_root / MANIFEST_FILENAME
    try:
        data = json.loads(manifest.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    scripts = data.get("scripts")
    if not isinstance(scripts, dict):
        return None
    value = scripts.get("test")
    return value if isinstance(value, str) else None


def looks_like_host_editor_launch(workspace_root: str | Path, command: str) -> bool:
    """True when *command* looks like it would launch the host editor.

    Either the command names a launcher script or test package itself, or
    it is the canonical ``npm test`` and the manifest's ``test`` script
    does. A missing or malformed manifest never triggers.
    """
    trimmed = (command or "").strip()
    if not trimmed:
        return False
    if _LAUNCHER_COMMAND_RE.search(trimmed) or _TEST_PACKAGE_RE.search(trimmed):
        return True
    if not _CANONICAL_TEST_RE.match(trimmed):
        return False
    script = _manifest_test_script(Path(workspace_root))
    if script is None:
        return False
    return _MANIFEST_TEST_SCRIPT_RE.search(script) is not None
