"""Structural validation of task-store records before they become a live graph."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass

from relay_orchestrator.domain.models import Role, TaskRecord, WorkflowError

_UNORDERED = 2**32

_BRANCH_PARENTS = frozenset({Role.IMPLEMENTOR, Role.TEST_WRITER})
_ROOT_ROLES = frozenset({Role.TASK, Role.FINAL_AUDIT})


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    """One rejected structural rule, attributed to the offending node."""

    node_id: str
    role: Role
    rule: str
    message: str

    def __str__(self) -> str:
        return self.message


class TaskGraphValidationError(WorkflowError, ValueError):
    """Raised when a task list violates the structural invariants."""

    issues: tuple[ValidationIssue, ...]

    def __init__(self, issues: Sequence[ValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            message = "Task graph validation failed."
        else:
            preview = "; ".join(issue.message for issue in self.issues[:3])
            suffix = "; ..." if len(self.issues) > 3 else ""
            message = f"Task graph validation failed: {preview}{suffix}"
        super().__init__(message)


def validate_task_records(records: Sequence[TaskRecord]) -> list[ValidationIssue]:
    """Return every structural violation in ``records`` (empty when valid).

    Identity problems (empty or duplicate ids, missing details) are reported
    first. Dangling parents and cycles are reported next. Role placement rules
    run only once the parent relation is known to be a forest.
    """

    issues: list[ValidationIssue] = []

    id_counts = Counter(record.id for record in records)
    reported_duplicates: set[str] = set()
    for record in records:
        if not record.id.strip():
            issues.append(_issue(record, "id-required", "Planner task id cannot be empty"))
            continue
        if id_counts[record.id] > 1 and record.id not in reported_duplicates:
            reported_duplicates.add(record.id)
            issues.append(_issue(record, "duplicate-id", f"Duplicate planner task id {record.id}"))
        if not record.details.strip():
            issues.append(
                _issue(record, "details-required", f"Planner task {record.id} must include non-empty details")
            )
    if issues:
        return issues

    by_id: dict[str, TaskRecord] = {record.id: record for record in records}
    for record in records:
        if record.parent_id is not None and record.parent_id not in by_id:
            issues.append(
                _issue(
                    record,
                    "missing-parent",
                    f"Planner task {record.id} references missing parent_id {record.parent_id}",
                )
            )
    if issues:
        return issues

    issues.extend(_cycle_issues(records, by_id))
    if issues:
        return issues

    children: dict[str, list[tuple[int, TaskRecord]]] = {record.id: [] for record in records}
    for index, record in enumerate(records):
        if record.parent_id is not None:
            children[record.parent_id].append((index, record))

    for record in records:
        parent = by_id[record.parent_id] if record.parent_id is not None else None
        issues.extend(_placement_issues(record, parent))
        if record.role in _BRANCH_PARENTS:
            ordered = [child for _, child in sorted(children[record.id], key=_sibling_key)]
            issues.extend(_branch_issues(record, ordered))

    return issues


def assert_valid_task_records(records: Sequence[TaskRecord]) -> None:
    issues = validate_task_records(records)
    if issues:
        raise TaskGraphValidationError(issues)


def _placement_issues(record: TaskRecord, parent: TaskRecord | None) -> list[ValidationIssue]:
    role = record.role
    parent_role = parent.role if parent is not None else None

    if parent is None:
        if role not in _ROOT_ROLES:
            return [
                _issue(
                    record,
                    "root-role",
                    f'Root planner task {record.id} must have kind "task" or "final_audit"',
                )
            ]
        return []

    if role is Role.TASK:
        return [
            _issue(
                record,
                "task-top-level",
                f'Task "{record.id}" must be a top-level task (parent_id must be null)',
            )
        ]
    if role is Role.FINAL_AUDIT:
        return [
            _issue(
                record,
                "final-audit-top-level",
                f'Final-audit task "{record.id}" must be a top-level task (parent_id must be null)',
            )
        ]
    if role is Role.IMPLEMENTOR and parent_role is not Role.TASK:
        return [
            _issue(
                record,
                "implementor-parent",
                f'Implementor task "{record.id}" must be a direct child of a top-level task',
            )
        ]
    if role is Role.TEST_WRITER and parent_role is not Role.TASK:
        return [
            _issue(
                record,
                "test-writer-parent",
                f'Test-writer task "{record.id}" must be a direct child of a top-level task '
                "(no nested test_writer groups)",
            )
        ]
    if role is Role.AUDITOR and parent_role not in _BRANCH_PARENTS:
        return [
            _issue(
                record,
                "auditor-parent",
                f'Auditor task "{record.id}" must be a child of implementor or test_writer',
            )
        ]
    if role is Role.TEST_RUNNER and parent_role not in _BRANCH_PARENTS:
        return [
            _issue(
                record,
                "test-runner-parent",
                f'Test-runner task "{record.id}" must be a child of implementor or test_writer',
            )
        ]
    return []


def _branch_issues(record: TaskRecord, ordered_children: list[TaskRecord]) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    label = "Implementor" if record.role is Role.IMPLEMENTOR else "Test-writer"
    audit_positions = [index for index, child in enumerate(ordered_children) if child.role is Role.AUDITOR]
    runner_positions = [index for index, child in enumerate(ordered_children) if child.role is Role.TEST_RUNNER]

    if record.role is Role.IMPLEMENTOR:
        if not audit_positions:
            issues.append(
                _issue(
                    record,
                    "implementor-auditor",
                    f'Implementor task "{record.id}" must include at least one auditor subtask',
                )
            )
        elif any(position <= audit_positions[-1] for position in runner_positions):
            issues.append(
                _issue(
                    record,
                    "runner-after-audit",
                    f'Implementor task "{record.id}" has test_runner before audit; '
                    "test_runner must come after audit",
                )
            )
    elif not runner_positions:
        issues.append(
            _issue(
                record,
                "test-writer-runner",
                f'Test-writer task "{record.id}" must include at least one test_runner subtask',
            )
        )

    if len(runner_positions) > 1:
        issues.append(
            _issue(
                record,
                "single-test-runner",
                f'{label} task "{record.id}" must include at most one test_runner subtask',
            )
        )
    return issues


def _cycle_issues(records: Sequence[TaskRecord], by_id: dict[str, TaskRecord]) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    settled: set[str] = set()
    for record in records:
        chain: list[str] = []
        on_chain: set[str] = set()
        current: TaskRecord | None = record
        while current is not None and current.id not in settled:
            if current.id in on_chain:
                cycle = chain[chain.index(current.id) :]
                anchor = min(cycle)
                issues.append(
                    _issue(
                        by_id[anchor],
                        "cycle",
                        f"Cycle detected in planner tasks at {anchor} ({' -> '.join(cycle + [current.id])})",
                    )
                )
                break
            chain.append(current.id)
            on_chain.add(current.id)
            current = by_id[current.parent_id] if current.parent_id is not None else None
        settled.update(chain)
    return issues


def _sibling_key(item: tuple[int, TaskRecord]) -> tuple[int, int]:
    index, record = item
    return (_UNORDERED if record.order is None else record.order, index)


def _issue(record: TaskRecord, rule: str, message: str) -> ValidationIssue:
    return ValidationIssue(node_id=record.id, role=record.role, rule=rule, message=message)


__all__ = [
    "TaskGraphValidationError",
    "ValidationIssue",
    "assert_valid_task_records",
    "validate_task_records",
]
