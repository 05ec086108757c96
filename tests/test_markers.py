"""Tests for marker pairs, text helpers and the logging notifier."""

from __future__ import annotations

import pytest

from testgen_agent.markers import (
    EXECUTION_JSON,
    PERSPECTIVES_JSON,
    PERSPECTIVES_MARKDOWN,
    extract_between_markers,
)
from testgen_agent.notifications import LoggingNotifier
from testgen_agent.text_utils import dedupe_stable, strip_ansi, truncate_text

pytestmark = pytest.mark.unit


def test_marker_spelling_is_stable() -> None:
    assert PERSPECTIVES_JSON.begin == "<!-- BEGIN TEST PERSPECTIVES JSON -->"
    assert PERSPECTIVES_MARKDOWN.end == "<!-- END TEST PERSPECTIVES -->"
    assert EXECUTION_JSON.end == "<!-- END TEST EXECUTION JSON -->"


def test_extract_between_markers_uses_first_pair_and_strips() -> None:
    text = "x <B>\n  one  \n<E> y <B>two<E>"
    assert extract_between_markers(text, "<B>", "<E>") == "one"


@pytest.mark.parametrize("text", ["no markers", "<B> only begin", "<E> end before <B>"])
def test_extract_between_markers_missing(text: str) -> None:
    assert extract_between_markers(text, "<B>", "<E>") is None


def test_both_present_ignores_order() -> None:
    assert EXECUTION_JSON.both_present(f"{EXECUTION_JSON.end} {EXECUTION_JSON.begin}")
    assert not EXECUTION_JSON.both_present(EXECUTION_JSON.begin)


def test_wrap_round_trips() -> None:
    assert PERSPECTIVES_JSON.extract(PERSPECTIVES_JSON.wrap("{}")) == "{}"


def test_strip_ansi() -> None:
    assert strip_ansi("\x1b[1;31merror\x1b[0m: \x1b[2Kdone") == "error: done"


def test_truncate_text() -> None:
    assert truncate_text("short", 10) == "short"
    assert truncate_text("abcdefghij", 4) == "abcd\n\n... (truncated: 10 chars -> 4 chars)"


def test_dedupe_stable() -> None:
    assert dedupe_stable(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]


def test_logging_notifier(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level("INFO")
    notifier = LoggingNotifier()
    assert notifier.info("saved") is None
    assert notifier.warning("merge needed", ("Open", "Copy")) is None
    assert "saved" in caplog.text
    assert "merge needed [actions: Open, Copy]" in caplog.text
    with pytest.raises(ValueError, match="At most 2"):
        notifier.info("too many", ("a", "b", "c"))
