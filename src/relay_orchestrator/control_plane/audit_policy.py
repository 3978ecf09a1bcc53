"""
Retry and audit-result interpretation policy.

This module owns every text-level decision the workflow engine makes about a
finished worker run:
- two-stage audit verdict classification (explicit token, then heuristic)
- tiered audit strictness wording by pass number
- retry-ceiling decisions
- feedback text threaded into the next attempt's prompt
- rolling-context summaries and changed-files extraction

All functions are pure; they never touch engine state.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from relay_orchestrator.constants import (
    AUDIT_RESULT_FAIL,
    AUDIT_RESULT_PASS,
    FILES_CHANGED_BEGIN,
    FILES_CHANGED_END,
)

_PASS_PHRASES: tuple[str, ...] = ("no issues found", "no findings")
_PROBLEM_PHRASES: tuple[str, ...] = ("issue", "bug", "error", "fix required", "needs change")

_STRICTNESS_BY_PASS: dict[int, str] = {
    1: "Pass 1 (strict): report all meaningful correctness, safety, reliability, and testability issues.",
    2: (
        "Pass 2 (moderate): prioritize substantial issues and avoid minor nits that do not "
        "materially affect behavior."
    ),
    3: "Pass 3 (targeted): focus only on high-impact defects or likely regressions.",
}
_STRICTNESS_CRITICAL = (
    "Pass 4+ (critical only): only fail for truly critical blockers that would prevent the "
    "broader plan from running."
)

NO_CHANGED_FILES_SUMMARY = "(no structured changed-files summary found in implementor output)"
NO_CAPTURED_OUTPUT = "No detailed output was captured."


class VerdictSource(StrEnum):
    """Which classifier stage produced a verdict."""

    TOKEN = "token"
    HEURISTIC = "heuristic"


class RetryAction(StrEnum):
    """Deterministic next action after a failed attempt."""

    RETRY = "retry"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True, slots=True)
class AuditVerdict:
    passed: bool
    source: VerdictSource

    @property
    def explicit_pass(self) -> bool:
        return self.passed and self.source is VerdictSource.TOKEN


def parse_verdict_token(lines: Sequence[str]) -> bool | None:
    """Return the first explicit verdict token, or ``None`` when absent.

    Lines are trimmed and compared case-insensitively; the whole line must be
    the token.
    """
    for line in lines:
        trimmed = line.strip()
        if not trimmed:
            continue
        upper = trimmed.upper()
        if upper == AUDIT_RESULT_PASS:
            return True
        if upper == AUDIT_RESULT_FAIL:
            return False
    return None


def classify_audit(lines: Sequence[str]) -> AuditVerdict:
    token = parse_verdict_token(lines)
    if token is not None:
        return AuditVerdict(passed=token, source=VerdictSource.TOKEN)

    text = "\n".join(lines).lower()
    if any(phrase in text for phrase in _PASS_PHRASES):
        return AuditVerdict(passed=True, source=VerdictSource.HEURISTIC)
    failed = any(phrase in text for phrase in _PROBLEM_PHRASES)
    return AuditVerdict(passed=not failed, source=VerdictSource.HEURISTIC)


def audit_failed(lines: Sequence[str], *, success: bool) -> bool:
    """An unsuccessful exit always counts as a failed audit."""
    return not success or not classify_audit(lines).passed


def final_audit_passed(lines: Sequence[str], *, success: bool) -> bool:
    """Final audits pass only on a successful exit with an explicit PASS token."""
    return success and parse_verdict_token(lines) is True


def strictness_policy(pass_number: int) -> str:
    return _STRICTNESS_BY_PASS.get(pass_number, _STRICTNESS_CRITICAL)


def decide_retry(attempt: int, ceiling: int) -> RetryAction:
    if attempt >= ceiling:
        return RetryAction.EXHAUSTED
    return RetryAction.RETRY


def audit_feedback(lines: Sequence[str], exit_code: int, *, success: bool) -> str:
    if not success:
        return f"Audit process exited with code {exit_code}; re-run implementation and validate."
    merged = " ".join(lines)
    if not merged.strip():
        return "Audit requested fixes without detailed notes; review implementation against requirements."
    return f"Audit feedback: {merged}"


def runner_failure_feedback(lines: Sequence[str], exit_code: int) -> str:
    merged = "\n".join(lines)
    if not merged.strip():
        return f"Deterministic test run failed with code {exit_code} and no output."
    return f"Deterministic test run failed with code {exit_code}. Output:\n{merged}"


def cleanup_feedback(reason: str) -> str:
    return (
        "Deterministic test retries exhausted.\n"
        "Remove the failing tests completely so they no longer fail.\n"
        "Do not add replacement tests in this pass.\n"
        "Then report exactly which tests/files were removed.\n"
        f"Failure details:\n{reason}"
    )


def implementor_failure_feedback(exit_code: int) -> str:
    return f"Previous implementor run failed with code {exit_code}."


def writer_failure_feedback(exit_code: int) -> str:
    return f"Previous test-writer run failed with code {exit_code}."


def extract_changed_files(lines: Sequence[str]) -> str:
    """Pull the normalized ``FILES_CHANGED_BEGIN``/``END`` block out of a transcript."""
    merged = "\n".join(lines)
    begin = merged.find(FILES_CHANGED_BEGIN)
    if begin >= 0:
        remainder = merged[begin + len(FILES_CHANGED_BEGIN) :]
        end = remainder.find(FILES_CHANGED_END)
        if end >= 0:
            body = [line.strip() for line in remainder[:end].splitlines()]
            normalized = "\n".join(line for line in body if line)
            if normalized:
                return normalized
    return NO_CHANGED_FILES_SUMMARY


def last_meaningful_line(lines: Sequence[str]) -> str:
    for line in reversed(lines):
        if line.strip():
            return line.strip()
    return NO_CAPTURED_OUTPUT


def context_summary(role_name: str, task_title: str, lines: Sequence[str], *, success: bool) -> str:
    outcome = "finished its pass successfully" if success else "ended with a failure state"
    return f'{role_name} on "{task_title}": {outcome}. Key result: {last_meaningful_line(lines)}'


__all__ = [
    "NO_CAPTURED_OUTPUT",
    "NO_CHANGED_FILES_SUMMARY",
    "AuditVerdict",
    "RetryAction",
    "VerdictSource",
    "audit_failed",
    "audit_feedback",
    "classify_audit",
    "cleanup_feedback",
    "context_summary",
    "decide_retry",
    "extract_changed_files",
    "final_audit_passed",
    "implementor_failure_feedback",
    "last_meaningful_line",
    "parse_verdict_token",
    "runner_failure_feedback",
    "strictness_policy",
    "writer_failure_feedback",
]
