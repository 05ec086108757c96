"""Tests for the host-editor launch heuristic."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from testgen_agent.launch_heuristic import looks_like_host_editor_launch

pytestmark = pytest.mark.unit


def _manifest(root: Path, test_script: object) -> None:
    (root / "package.json").write_text(json.dumps({"scripts": {"test": test_script}}), encoding="utf-8")


@pytest.mark.parametrize(
    "command",
    [
        "node ./out/test/runTest.js",
        "node out/test/runTest",
        r"node .\out\test\runTest.js",
        "npx @vscode/test-electron",
    ],
)
def test_command_naming_launcher_triggers(tmp_path: Path, command: str) -> None:
    assert looks_like_host_editor_launch(tmp_path, command)


@pytest.mark.parametrize(
    "script",
    ["node ./out/test/runTest.js", "vscode-test", "node -e \"require('@vscode/test-electron')\""],
)
@pytest.mark.parametrize("command", ["npm test", "npm run test", "  npm test -- --grep x"])
def test_canonical_npm_test_uses_manifest_script(tmp_path: Path, script: str, command: str) -> None:
    _manifest(tmp_path, script)
    assert looks_like_host_editor_launch(tmp_path, command)


def test_plain_test_script_does_not_trigger(tmp_path: Path) -> None:
    _manifest(tmp_path, "jest")
    assert not looks_like_host_editor_launch(tmp_path, "npm test")


def test_other_commands_ignore_manifest(tmp_path: Path) -> None:
    _manifest(tmp_path, "vscode-test")
    assert not looks_like_host_editor_launch(tmp_path, "pnpm test")
    assert not looks_like_host_editor_launch(tmp_path, "npm testing")


@pytest.mark.parametrize("content", [None, "{not json", "[]", '{"scripts": []}', '{"scripts": {"test": 5}}'])
def test_missing_or_malformed_manifest_never_triggers(tmp_path: Path, content: str | None) -> None:
    if content is not None:
        (tmp_path / "package.json").write_text(content, encoding="utf-8")
    assert not looks_like_host_editor_launch(tmp_path, "npm test")


@pytest.mark.parametrize("command", ["", "   "])
def test_empty_command_never_triggers(tmp_path: Path, command: str) -> None:
    assert not looks_like_host_editor_launch(tmp_path, command)
