"""
Planning layer: task-graph arena, structural validation and snapshot codec.

Functional requirements
- A task list is accepted only when every structural rule holds.
- Snapshots round-trip live graphs, including mid-run statuses.
"""

from __future__ import annotations

from relay_orchestrator.planning.snapshot import from_external, to_external
from relay_orchestrator.planning.task_graph import TaskGraph
from relay_orchestrator.planning.validator import (
    TaskGraphValidationError,
    ValidationIssue,
    assert_valid_task_records,
    validate_task_records,
)

__all__ = [
    "TaskGraph",
    "TaskGraphValidationError",
    "ValidationIssue",
    "assert_valid_task_records",
    "from_external",
    "to_external",
    "validate_task_records",
]
