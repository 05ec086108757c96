"""Recover a structured test result from an agent's free-text output.

The agent is asked to wrap a JSON document in the test-execution JSON
markers. Older prompts asked for a ``key: value`` block instead, so that
form is still understood. Each format is parsed all-or-nothing: a result
never mixes fields from both.
"""

from __future__ import annotations

import logging
import math
import re

from testgen_agent.json_payload import JsonPayloadError, is_json_number, load_json_object
from testgen_agent.markers import EXECUTION_JSON, EXECUTION_RESULT, STDERR_BLOCK, STDOUT_BLOCK
from testgen_agent.schemas import ExtractedExecutionResult, ExtractionFailure

logger = logging.getLogger(__name__)

SUPPORTED_RESULT_VERSION = 1
NO_MARKERS_MESSAGE = "no markers found"
JSON_PARSE_PREFIX = "JSON result could not be parsed; "

_EXIT_CODE_LINE_RE = re.compile(r"^\s*exitCode:\s*(.+?)\s*$", re.MULTILINE)
_SIGNAL_LINE_RE = re.compile(r"^\s*signal:\s*(.+?)\s*$", re.MULTILINE)
_DURATION_LINE_RE = re.compile(r"^\s*durationMs:\s*(\d+)\s*$", re.MULTILINE)


def parse_test_execution_json(text: str, *, measured_duration_ms: int = 0) -> ExtractedExecutionResult:
    """Validate a version-1 result document.

    Raises :class:`JsonPayloadError` on any schema violation.
    """
    data = load_json_object(text)
    if data.get("version") != SUPPORTED_RESULT_VERSION or isinstance(data.get("version"), bool):
        raise JsonPayloadError("unsupported-version")

    exit_code = data.get("exitCode")
    if exit_code is not None:
        if not is_json_number(exit_code) or not math.isfinite(exit_code) or exit_code != int(exit_code):
            raise JsonPayloadError("invalid-exit-code")
        exit_code = int(exit_code)

    signal = data.get("signal")
    if signal is not None and not isinstance(signal, str):
        raise JsonPayloadError("invalid-signal")

    duration = data.get("durationMs", 0)
    if not is_json_number(duration):
        raise JsonPayloadError("invalid-duration")
    if not math.isfinite(duration) or duration <= 0:
        # A self-reported zero is unreliable; trust the wall clock instead.
        duration_ms = measured_duration_ms
    else:
        duration_ms = int(duration)

    stdout = data.get("stdout", "")
    stderr = data.get("stderr", "")
    if stdout is None:
        stdout = ""
    if stderr is None:
        stderr = ""
    if not isinstance(stdout, str) or not isinstance(stderr, str):
        raise JsonPayloadError("invalid-output")

    return ExtractedExecutionResult(
        exit_code=exit_code,
        signal=signal or None,
        duration_ms=duration_ms,
        stdout=stdout,
        stderr=stderr,
    )


def _parse_legacy_block(
    block: str,
    *,
    fallback_exit_code: int | None,
    measured_duration_ms: int,
) -> ExtractedExecutionResult:
    exit_match = _EXIT_CODE_LINE_RE.search(block)
    exit_raw = exit_match.group(1).strip() if exit_match else ""
    if not exit_raw or exit_raw == "null":
        exit_code = None
    else:
        try:
            number = float(exit_raw)
        except ValueError:
            number = math.nan
        exit_code = int(number) if math.isfinite(number) and number.is_integer() else fallback_exit_code

    signal_match = _SIGNAL_LINE_RE.search(block)
    signal_raw = signal_match.group(1).strip() if signal_match else ""
    signal = None if not signal_raw or signal_raw == "null" else signal_raw

    duration_match = _DURATION_LINE_RE.search(block)
    duration_ms = int(duration_match.group(1)) if duration_match else measured_duration_ms

    return ExtractedExecutionResult(
        exit_code=exit_code,
        signal=signal,
        duration_ms=duration_ms,
        stdout=STDOUT_BLOCK.extract(block) or "",
        stderr=STDERR_BLOCK.extract(block) or "",
    )


def extract(
    raw_log: str,
    fallback_exit_code: int | None,
    *,
    measured_duration_ms: int = 0,
) -> ExtractedExecutionResult | ExtractionFailure:
    """Parse *raw_log* as JSON result, then legacy block, else report failure.

    ``fallback_exit_code`` is the provider's own exit code. It replaces an
    exit code that is present but not numeric, and it is the exit code of
    an :class:`ExtractionFailure`. ``measured_duration_ms`` replaces a
    missing, zero or negative duration.
    """
    json_block = EXECUTION_JSON.extract(raw_log)
    if json_block is not None:
        try:
            return parse_test_execution_json(json_block, measured_duration_ms=measured_duration_ms)
        except JsonPayloadError as exc:
            logger.debug("Test execution JSON rejected (%s); trying legacy block", exc)

    legacy_block = EXECUTION_RESULT.extract(raw_log)
    if legacy_block:
        return _parse_legacy_block(
            legacy_block,
            fallback_exit_code=fallback_exit_code,
            measured_duration_ms=measured_duration_ms,
        )

    prefix = JSON_PARSE_PREFIX if json_block is not None else ""
    return ExtractionFailure(
        exit_code=fallback_exit_code,
        signal=None,
        duration_ms=measured_duration_ms,
        stdout="",
        stderr=raw_log,
        error_message=f"{prefix}{NO_MARKERS_MESSAGE}",
    )
