"""Domain types shared across planes: roles, statuses, task nodes and records, failures."""

from relay_orchestrator.domain.models import (
    DocReference,
    FailureKind,
    Role,
    TaskNode,
    TaskRecord,
    TaskStatus,
    WorkflowError,
    WorkflowFailure,
    records_from_dicts,
    records_to_dicts,
)

__all__ = [
    "DocReference",
    "FailureKind",
    "Role",
    "TaskNode",
    "TaskRecord",
    "TaskStatus",
    "WorkflowError",
    "WorkflowFailure",
    "records_from_dicts",
    "records_to_dicts",
]
