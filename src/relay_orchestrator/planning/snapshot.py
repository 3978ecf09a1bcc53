"""Conversion between live task graphs and persisted task records."""

from __future__ import annotations

from collections.abc import Sequence

from relay_orchestrator.domain.models import TaskNode, TaskRecord
from relay_orchestrator.planning.task_graph import TaskGraph
from relay_orchestrator.planning.validator import assert_valid_task_records


def to_external(graph: TaskGraph) -> list[TaskRecord]:
    """Emit one record per live node in canonical traversal order."""
    return [
        TaskRecord(
            id=node.id,
            title=node.title,
            details=node.details,
            role=node.role,
            status=node.status,
            parent_id=node.parent_id,
            order=node.order,
            docs=node.docs,
        )
        for node in graph.walk()
    ]


def from_external(records: Sequence[TaskRecord]) -> TaskGraph:
    """Validate ``records`` and build a fresh graph.

    Raises ``TaskGraphValidationError`` without constructing anything when the
    records break a structural rule.
    """
    assert_valid_task_records(records)
    return TaskGraph(
        TaskNode(
            id=record.id,
            title=record.title,
            details=record.details,
            role=record.role,
            status=record.status,
            parent_id=record.parent_id,
            order=record.order,
            docs=record.docs,
        )
        for record in records
    )


__all__ = ["from_external", "to_external"]
