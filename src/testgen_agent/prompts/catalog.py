"""Prompt catalog: every agent-facing text block in one YAML file.

Loads prompts from ``templates.yaml`` (next to this module). A user
override file at ``~/.testgen_agent/prompt_overrides.yaml`` is merged on
top of the built-in defaults, and an optional extra file (for example a
project-specific one) on top of that.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_BUILTIN_YAML = Path(__file__).resolve().parent / "templates.yaml"
_USER_OVERRIDE = Path.home() / ".testgen_agent" / "prompt_overrides.yaml"


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping, returning an empty dict on failure."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Failed to load %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: top level is not a mapping", path)
        return {}
    return data


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base* (override wins)."""
    merged = dict(base)
    for k, v in override.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


class PromptCatalog:
    """Loads and serves prompt blocks from the YAML catalog.

    Usage::

        catalog = PromptCatalog()
        header = catalog.text("injection", "header")
    """

    def __init__(self, extra_path: Path | None = None, *, user_override: Path | None = None) -> None:
        self._extra_path = extra_path
        self._user_override = _USER_OVERRIDE if user_override is None else user_override
        self._data: dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        """Load built-in templates, then merge user and extra overrides."""
        self._data = _load_yaml(_BUILTIN_YAML)

        for path, label in ((self._user_override, "prompt overrides"), (self._extra_path, "extra prompts")):
            if path is None or not path.exists():
                continue
            overrides = _load_yaml(path)
            if overrides:
                self._data = _deep_merge(self._data, overrides)
                logger.info("Loaded %s from %s", label, path)

    def reload(self) -> None:
        """Re-read all YAML files from disk."""
        self._load()

    def text(self, section: str, key: str) -> str:
        """Return one text block, stripped of surrounding blank lines."""
        entry = self._data.get(section, {})
        value = entry.get(key) if isinstance(entry, dict) else None
        return value.strip("\n") if isinstance(value, str) else ""

    def sections(self) -> list[str]:
        """Return all top-level section keys."""
        return list(self._data)

    @property
    def raw(self) -> dict[str, Any]:
        """Direct access to the full parsed data."""
        return self._data


# Module-level singleton for convenience
_default_catalog: PromptCatalog | None = None


def get_catalog() -> PromptCatalog:
    """Return the module-level singleton catalog (lazy-loaded)."""
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = PromptCatalog()
    return _default_catalog
