"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import NoReturn, TypeVar

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TEnum = TypeVar("TEnum", bound=StrEnum)

_MAX_TEXT = 65_536
_MAX_ORDER = 2**31 - 1


class WorkflowError(RuntimeError):
    """Base class for workflow engine errors."""


class Role(StrEnum):
    TASK = "task"
    IMPLEMENTOR = "implementor"
    AUDITOR = "auditor"
    TEST_WRITER = "test_writer"
    TEST_RUNNER = "test_runner"
    FINAL_AUDIT = "final_audit"

    @property
    def label(self) -> str:
        """Short display label used in task-tree renderings and context summaries."""
        return _ROLE_LABELS[self]

    @property
    def is_branch_root(self) -> bool:
        return self in (Role.IMPLEMENTOR, Role.TEST_WRITER)


_ROLE_LABELS: dict[Role, str] = {
    Role.TASK: "Task",
    Role.IMPLEMENTOR: "Impl",
    Role.AUDITOR: "Audit",
    Role.TEST_WRITER: "Tests",
    Role.TEST_RUNNER: "TestRun",
    Role.FINAL_AUDIT: "FinalAudit",
}


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    NEEDS_CHANGES = "needs_changes"
    DONE = "done"

    @property
    def marker(self) -> str:
        return _STATUS_MARKERS[self]


_STATUS_MARKERS: dict[TaskStatus, str] = {
    TaskStatus.PENDING: "[ ]",
    TaskStatus.IN_PROGRESS: "[~]",
    TaskStatus.NEEDS_CHANGES: "[!]",
    TaskStatus.DONE: "[x]",
}


class FailureKind(StrEnum):
    AUDIT = "audit"
    TEST = "test"


@dataclass(frozen=True, slots=True)
class DocReference:
    """Documentation link attached to a task node; opaque to the engine."""

    title: str
    url: str
    summary: str = ""

    def to_dict(self) -> dict[str, JSONValue]:
        return {"title": self.title, "url": self.url, "summary": self.summary}

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, path: str = "DocReference") -> DocReference:
        parsed = _expect_object(data, path, required={"title", "url"}, optional={"summary"})
        return cls(
            title=_as_str(parsed["title"], f"{path}.title", min_len=0),
            url=_as_str(parsed["url"], f"{path}.url", min_len=0),
            summary=_as_str(parsed.get("summary", ""), f"{path}.summary", min_len=0),
        )


@dataclass(slots=True)
class TaskNode:
    """Live node in the task-graph arena. Only ``status`` changes during a run."""

    id: str
    title: str
    details: str
    role: Role
    status: TaskStatus = TaskStatus.PENDING
    parent_id: str | None = None
    order: int | None = None
    docs: tuple[DocReference, ...] = ()

    @property
    def is_done(self) -> bool:
        return self.status is TaskStatus.DONE


@dataclass(frozen=True, slots=True)
class TaskRecord:
    """Persisted task-store entry; the external form of a ``TaskNode``."""

    id: str
    title: str
    details: str
    role: Role
    status: TaskStatus = TaskStatus.PENDING
    parent_id: str | None = None
    order: int | None = None
    docs: tuple[DocReference, ...] = field(default=())

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "title": self.title,
            "details": self.details,
            "docs": [doc.to_dict() for doc in self.docs],
            "role": self.role.value,
            "status": self.status.value,
            "parent_id": self.parent_id,
            "order": self.order,
        }

    def to_json(self) -> str:
        return _canonical_json(self.to_dict())

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, path: str = "TaskRecord") -> TaskRecord:
        parsed = _expect_object(
            data,
            path,
            required={"id", "title", "details", "role"},
            optional={"docs", "status", "parent_id", "order"},
        )
        raw_docs = parsed.get("docs", [])
        if not isinstance(raw_docs, Sequence) or isinstance(raw_docs, (str, bytes, bytearray)):
            _fail(f"{path}.docs", f"expected array, got {type(raw_docs).__name__}")
        docs = tuple(
            DocReference.from_dict(_as_mapping(item, f"{path}.docs[{index}]"), path=f"{path}.docs[{index}]")
            for index, item in enumerate(raw_docs)
        )
        raw_parent = parsed.get("parent_id")
        raw_order = parsed.get("order")
        return cls(
            id=_as_str(parsed["id"], f"{path}.id", min_len=0),
            title=_as_str(parsed["title"], f"{path}.title", min_len=0).strip(),
            details=_as_str(parsed["details"], f"{path}.details", min_len=0).strip(),
            role=_as_enum(Role, parsed["role"], f"{path}.role"),
            status=_as_enum(TaskStatus, parsed.get("status", TaskStatus.PENDING.value), f"{path}.status"),
            parent_id=None if raw_parent is None else _as_str(raw_parent, f"{path}.parent_id"),
            order=None if raw_order is None else _as_int(raw_order, f"{path}.order", minimum=0),
            docs=docs,
        )

    @classmethod
    def from_json(cls, raw: str) -> TaskRecord:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        return cls.from_dict(_as_mapping(parsed, cls.__name__))


@dataclass(frozen=True, slots=True)
class WorkflowFailure:
    """User-reportable record of an exhausted retry ceiling."""

    kind: FailureKind
    top_task_id: str
    top_task_title: str
    attempts: int
    reason: str
    action_taken: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "kind": self.kind.value,
            "top_task_id": self.top_task_id,
            "top_task_title": self.top_task_title,
            "attempts": self.attempts,
            "reason": self.reason,
            "action_taken": self.action_taken,
        }


def records_from_dicts(payload: Sequence[object]) -> list[TaskRecord]:
    """Parse a task-store payload (a JSON array of node objects)."""

    if not isinstance(payload, Sequence) or isinstance(payload, (str, bytes, bytearray)):
        _fail("tasks", f"expected array, got {type(payload).__name__}")
    return [
        TaskRecord.from_dict(_as_mapping(item, f"tasks[{index}]"), path=f"tasks[{index}]")
        for index, item in enumerate(payload)
    ]


def records_to_dicts(records: Sequence[TaskRecord]) -> list[dict[str, JSONValue]]:
    return [record.to_dict() for record in records]


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _as_mapping(value: object, path: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    return value


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    mapping = _as_mapping(value, path)

    parsed: dict[str, object] = {}
    for key, item in mapping.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")

    return parsed


def _as_str(value: object, path: str, *, min_len: int = 1, max_len: int = _MAX_TEXT) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    if len(value.strip()) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(value) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return value


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    if value > _MAX_ORDER:
        _fail(path, f"must be <= {_MAX_ORDER}")
    return value


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


__all__ = [
    "DocReference",
    "FailureKind",
    "JSONScalar",
    "JSONValue",
    "Role",
    "TaskNode",
    "TaskRecord",
    "TaskStatus",
    "WorkflowError",
    "WorkflowFailure",
    "records_from_dicts",
    "records_to_dicts",
]
