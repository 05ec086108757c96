"""Per-run configuration.

A :class:`RunConfiguration` is built once when a run starts and never
mutated. Values come from (lowest precedence first) built-in defaults, a
YAML settings file, ``TESTGEN_AGENT_*`` environment variables, and explicit
overrides such as CLI flags.

Enum-valued settings are tolerant: an unknown or malformed value falls
back to the documented default instead of failing validation.
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = ".testgen-agent.yaml"
SETTINGS_SECTION = "testgen-agent"
ENV_PREFIX = "TESTGEN_AGENT_"
MAX_TIMEOUT_MS = 2**31 - 1


class RunMode(str, Enum):
    FULL = "full"
    PERSPECTIVE_ONLY = "perspectiveOnly"


class RunLocation(str, Enum):
    LOCAL = "local"
    ISOLATED_WORKSPACE = "isolatedWorkspace"


class TestExecutionRunner(str, Enum):
    """Where the test command runs."""

    __test__ = False  # Prevent pytest from collecting this enum as a test class.

    INTERNAL = "internal"
    DELEGATED = "delegated"


# Spellings used by older settings files.
_ENUM_ALIASES: dict[type[Enum], dict[str, Enum]] = {
    RunMode: {"perspective-only": RunMode.PERSPECTIVE_ONLY},
    RunLocation: {"worktree": RunLocation.ISOLATED_WORKSPACE},
    TestExecutionRunner: {
        "extension": TestExecutionRunner.INTERNAL,
        "cursoragent": TestExecutionRunner.DELEGATED,
        "agent": TestExecutionRunner.DELEGATED,
    },
}


def coerce_enum(enum_cls: type[Enum], value: Any, default: Enum) -> Enum:
    """Map *value* onto *enum_cls*, returning *default* when it is unrecognized."""
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        return default
    text = value.strip()
    for member in enum_cls:
        if member.value == text:
            return member
    folded = text.casefold()
    for member in enum_cls:
        if str(member.value).casefold() == folded:
            return member
    return _ENUM_ALIASES.get(enum_cls, {}).get(folded, default)


def _coerce_timeout_ms(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return 0.0
    return 0.0


class RunConfiguration(BaseModel):
    """Immutable settings for a single run."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    include_test_perspective_table: bool = True
    perspective_report_dir: str = "docs/test-perspectives"
    test_execution_report_dir: str = "docs/test-execution-reports"
    test_command: str = "npm test"
    test_execution_runner: TestExecutionRunner = TestExecutionRunner.DELEGATED
    allow_unsafe_command: bool = False
    force_write_for_delegated_execution: bool = False
    # <= 0, NaN or infinite disables the perspective timeout.
    perspective_timeout_ms: float = 0.0
    run_mode: RunMode = RunMode.FULL
    run_location: RunLocation = RunLocation.LOCAL

    @field_validator("run_mode", mode="before")
    @classmethod
    def _tolerant_run_mode(cls, value: Any) -> Enum:
        return coerce_enum(RunMode, value, RunMode.FULL)

    @field_validator("run_location", mode="before")
    @classmethod
    def _tolerant_run_location(cls, value: Any) -> Enum:
        return coerce_enum(RunLocation, value, RunLocation.LOCAL)

    @field_validator("test_execution_runner", mode="before")
    @classmethod
    def _tolerant_runner(cls, value: Any) -> Enum:
        return coerce_enum(TestExecutionRunner, value, TestExecutionRunner.DELEGATED)

    @field_validator("perspective_timeout_ms", mode="before")
    @classmethod
    def _tolerant_timeout(cls, value: Any) -> float:
        return _coerce_timeout_ms(value)

    @field_validator("test_command", "perspective_report_dir", "test_execution_report_dir", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @model_validator(mode="before")
    @classmethod
    def _perspective_only_runs_locally(cls, data: Any) -> Any:
        """A perspective-only run never acquires an isolated workspace."""
        if not isinstance(data, Mapping):
            return data
        mode = data.get("run_mode", data.get("runMode"))
        if coerce_enum(RunMode, mode, RunMode.FULL) is not RunMode.PERSPECTIVE_ONLY:
            return data
        updated = {k: v for k, v in data.items() if k not in {"run_location", "runLocation"}}
        updated["run_location"] = RunLocation.LOCAL
        return updated

    @property
    def perspective_timeout_seconds(self) -> float | None:
        """Timeout for the perspective sub-task, or ``None`` when disabled."""
        ms = self.perspective_timeout_ms
        if not math.isfinite(ms) or ms <= 0 or ms > MAX_TIMEOUT_MS:
            return None
        return ms / 1000.0

    @property
    def perspective_only(self) -> bool:
        return self.run_mode is RunMode.PERSPECTIVE_ONLY

    @property
    def wants_perspectives(self) -> bool:
        return self.include_test_perspective_table or self.perspective_only


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _load_settings_file(path: Path) -> dict[str, Any]:
    """Read a YAML settings mapping, returning ``{}`` when unusable."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Ignoring settings file %s: %s", path, exc)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring settings file %s: top level is not a mapping", path)
        return {}
    section = data.get(SETTINGS_SECTION)
    if isinstance(section, dict):
        return dict(section)
    return data


def _settings_from_env(environ: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name in RunConfiguration.model_fields:
        key = f"{ENV_PREFIX}{name.upper()}"
        if key in environ:
            values[name] = environ[key]
    return values


def _canonical_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    """Rewrite camelCase keys to field names so later sources override earlier ones."""
    by_alias = {to_camel(name): name for name in RunConfiguration.model_fields}
    return {by_alias.get(key, key): value for key, value in data.items()}


def load_run_configuration(
    workspace_root: str | Path | None = None,
    *,
    settings_path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> RunConfiguration:
    """Merge defaults, settings file, environment and overrides into one configuration.

    ``settings_path`` wins over ``<workspace_root>/.testgen-agent.yaml``.
    A missing file is silently skipped.
    """
    merged: dict[str, Any] = {}

    path: Path | None = None
    if settings_path:
        path = Path(settings_path)
    elif workspace_root is not None:
        path = Path(workspace_root) / SETTINGS_FILENAME
    if path is not None and path.is_file():
        merged.update(_canonical_keys(_load_settings_file(path)))
        logger.debug("Loaded run settings from %s", path)

    merged.update(_settings_from_env(os.environ if environ is None else environ))
    if overrides:
        merged.update(_canonical_keys({k: v for k, v in overrides.items() if v is not None}))
    return RunConfiguration.model_validate(merged)
