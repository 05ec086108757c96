"""Detect delegated test runs that the agent silently refused to perform.

Only complete known phrases count. A test suite that merely prints the
word "rejected" must not be mistaken for a refusal.
"""

from __future__ import annotations

from testgen_agent.schemas import ExtractedExecutionResult

REJECTION_PHRASES: tuple[str, ...] = (
    "Tool execution rejected",
    "Execution rejected",
    "Command execution rejected",
    "コマンドの実行が拒否されました",
    "コマンドが拒否されました",
    "実行が拒否されました",
)

MANUAL_APPROVAL_PHRASES: tuple[str, ...] = (
    "Manual approval required",
    "requires manual approval",
    "手動で承認が必要",
)


def _find_phrase(texts: tuple[str, ...], phrases: tuple[str, ...]) -> str | None:
    for text in texts:
        for phrase in phrases:
            if phrase in text:
                return phrase
    return None


def matched_rejection_phrase(result: ExtractedExecutionResult) -> str | None:
    """Return the first refusal or manual-approval phrase found in stderr/error text."""
    texts = (result.stderr or "", result.error_message or "")
    return _find_phrase(texts, REJECTION_PHRASES) or _find_phrase(texts, MANUAL_APPROVAL_PHRASES)


def is_suspicious_empty_result(result: ExtractedExecutionResult) -> bool:
    """A result with nothing in it at all: no exit code, time, signal or output."""
    return (
        result.exit_code is None
        and result.duration_ms == 0
        and result.signal is None
        and not result.stdout.strip()
        and not result.stderr.strip()
        and not (result.error_message or "").strip()
    )


def is_rejected(result: ExtractedExecutionResult) -> bool:
    """True when the agent most likely declined to run the command.

    Accepts extraction failures too (they subclass the result model).
    """
    return matched_rejection_phrase(result) is not None or is_suspicious_empty_result(result)
