"""Stable constants shared across orchestrator planes."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Retry ceilings (passes per role chain).
MAX_AUDIT_PASSES: Final[int] = 4
MAX_TEST_PASSES: Final[int] = 5
MAX_FINAL_AUDIT_PASSES: Final[int] = 4

# Rolling context window size.
CONTEXT_WINDOW_ENTRIES: Final[int] = 16

# Audit verdict protocol.
AUDIT_RESULT_PASS: Final[str] = "AUDIT_RESULT: PASS"
AUDIT_RESULT_FAIL: Final[str] = "AUDIT_RESULT: FAIL"

# Structured changed-files block emitted by implementors.
FILES_CHANGED_BEGIN: Final[str] = "FILES_CHANGED_BEGIN"
FILES_CHANGED_END: Final[str] = "FILES_CHANGED_END"

# Titles for nodes synthesized by the scheduler.
DEFAULT_IMPLEMENTOR_TITLE: Final[str] = "Implementation"
DEFAULT_AUDITOR_TITLE: Final[str] = "Audit"
DEFAULT_TEST_WRITER_TITLE: Final[str] = "Test Writing"
DEFAULT_TEST_RUNNER_TITLE: Final[str] = "Deterministic Test Run"

DEFAULT_IMPLEMENTOR_DETAILS: Final[str] = "Implement the required code changes for this top-level task."
DEFAULT_AUDITOR_DETAILS: Final[str] = "Audit implementation and tests for correctness, regressions, and completeness."
DEFAULT_TEST_WRITER_DETAILS: Final[str] = "Write or update tests that validate the intended behavior and regressions."
DEFAULT_TEST_RUNNER_DETAILS: Final[str] = "Run deterministic tests and report pass/fail outcomes for this task branch."

__all__ = [
    "AUDIT_RESULT_FAIL",
    "AUDIT_RESULT_PASS",
    "CONFIG_SCHEMA_VERSION",
    "CONTEXT_WINDOW_ENTRIES",
    "DEFAULT_AUDITOR_DETAILS",
    "DEFAULT_AUDITOR_TITLE",
    "DEFAULT_IMPLEMENTOR_DETAILS",
    "DEFAULT_IMPLEMENTOR_TITLE",
    "DEFAULT_TEST_RUNNER_DETAILS",
    "DEFAULT_TEST_RUNNER_TITLE",
    "DEFAULT_TEST_WRITER_DETAILS",
    "DEFAULT_TEST_WRITER_TITLE",
    "FILES_CHANGED_BEGIN",
    "FILES_CHANGED_END",
    "MAX_AUDIT_PASSES",
    "MAX_FINAL_AUDIT_PASSES",
    "MAX_TEST_PASSES",
]
