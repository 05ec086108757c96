"""Marker vocabulary shared with the agent.

These delimiters appear verbatim in the prompts we send and are searched
for verbatim in the agent's output, so they must never change spelling.
"""

from __future__ import annotations

from dataclasses import dataclass


def extract_between_markers(text: str, begin: str, end: str) -> str | None:
    """Return the stripped text between the first *begin* and the next *end*.

    ``None`` when either marker is missing (an *end* that only appears
    before *begin* does not count).
    """
    start = text.find(begin)
    if start == -1:
        return None
    body_start = start + len(begin)
    stop = text.find(end, body_start)
    if stop == -1:
        return None
    return text[body_start:stop].strip()


@dataclass(frozen=True, slots=True)
class MarkerPair:
    """A begin/end delimiter pair."""

    begin: str
    end: str

    def extract(self, text: str) -> str | None:
        return extract_between_markers(text, self.begin, self.end)

    def both_present(self, text: str) -> bool:
        """True when both delimiters occur anywhere in *text*, in any order."""
        return self.begin in text and self.end in text

    def wrap(self, body: str) -> str:
        return f"{self.begin}\n{body}\n{self.end}"


PERSPECTIVES_JSON = MarkerPair(
    "<!-- BEGIN TEST PERSPECTIVES JSON -->",
    "<!-- END TEST PERSPECTIVES JSON -->",
)
PERSPECTIVES_MARKDOWN = MarkerPair(
    "<!-- BEGIN TEST PERSPECTIVES -->",
    "<!-- END TEST PERSPECTIVES -->",
)
EXECUTION_JSON = MarkerPair(
    "<!-- BEGIN TEST EXECUTION JSON -->",
    "<!-- END TEST EXECUTION JSON -->",
)
EXECUTION_RESULT = MarkerPair(
    "<!-- BEGIN TEST EXECUTION RESULT -->",
    "<!-- END TEST EXECUTION RESULT -->",
)
STDOUT_BLOCK = MarkerPair("<!-- BEGIN STDOUT -->", "<!-- END STDOUT -->")
STDERR_BLOCK = MarkerPair("<!-- BEGIN STDERR -->", "<!-- END STDERR -->")

# Either vocabulary marks a perspective byproduct left behind by the agent.
PERSPECTIVE_MARKER_PAIRS: tuple[MarkerPair, ...] = (PERSPECTIVES_MARKDOWN, PERSPECTIVES_JSON)
