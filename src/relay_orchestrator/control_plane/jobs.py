"""Job descriptors handed from the scheduler to external workers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar

from relay_orchestrator.domain.models import Role


class JobKind(StrEnum):
    """Step of a branch (or final audit) a job executes."""

    IMPLEMENTOR = "implementor"
    AUDITOR = "auditor"
    IMPLEMENTOR_TEST_RUNNER = "implementor_test_runner"
    TEST_WRITER = "test_writer"
    TEST_AUDITOR = "test_auditor"
    TEST_RUNNER = "test_runner"
    FINAL_AUDIT = "final_audit"

    @property
    def role(self) -> Role:
        return _KIND_ROLES[self]

    @property
    def context_name(self) -> str:
        """Actor name used in rolling-context summaries."""
        return _CONTEXT_NAMES[self.role]

    @property
    def is_test_run(self) -> bool:
        return self in (JobKind.IMPLEMENTOR_TEST_RUNNER, JobKind.TEST_RUNNER)


_KIND_ROLES: dict[JobKind, Role] = {
    JobKind.IMPLEMENTOR: Role.IMPLEMENTOR,
    JobKind.AUDITOR: Role.AUDITOR,
    JobKind.IMPLEMENTOR_TEST_RUNNER: Role.TEST_RUNNER,
    JobKind.TEST_WRITER: Role.TEST_WRITER,
    JobKind.TEST_AUDITOR: Role.AUDITOR,
    JobKind.TEST_RUNNER: Role.TEST_RUNNER,
    JobKind.FINAL_AUDIT: Role.FINAL_AUDIT,
}

_CONTEXT_NAMES: dict[Role, str] = {
    Role.TASK: "Task",
    Role.IMPLEMENTOR: "Implementor",
    Role.AUDITOR: "Auditor",
    Role.TEST_WRITER: "TestWriter",
    Role.TEST_RUNNER: "TestRunner",
    Role.FINAL_AUDIT: "FinalAudit",
}


@dataclass(frozen=True, slots=True)
class JobRun:
    """What the worker should execute: an agent prompt or the deterministic test run."""

    DETERMINISTIC_TEST_RUN: ClassVar[JobRun]

    prompt: str | None = None

    @classmethod
    def agent(cls, prompt: str) -> JobRun:
        return cls(prompt=prompt)

    @property
    def is_deterministic_test_run(self) -> bool:
        return self.prompt is None


JobRun.DETERMINISTIC_TEST_RUN = JobRun()


@dataclass(frozen=True, slots=True)
class PendingJob:
    """Queued step; the prompt is rendered only when the job is dispatched."""

    kind: JobKind
    top_task_id: str
    node_id: str
    branch_id: str
    pass_number: int
    feedback: str | None = None
    cleanup: bool = False

    @property
    def role(self) -> Role:
        return self.kind.role

    @property
    def parent_context_key(self) -> str:
        if self.kind is JobKind.AUDITOR:
            return f"auditor:{self.node_id}"
        if self.kind is JobKind.TEST_AUDITOR:
            return f"test_auditor:{self.node_id}"
        if self.kind is JobKind.FINAL_AUDIT:
            return f"final_audit:{self.node_id}"
        if self.kind in (JobKind.IMPLEMENTOR, JobKind.IMPLEMENTOR_TEST_RUNNER):
            return f"implementor:{self.branch_id}"
        return f"test_writer:{self.branch_id}"


@dataclass(frozen=True, slots=True)
class Job:
    """Dispatched job as seen by the caller."""

    kind: JobKind
    top_task_id: str
    node_id: str
    pass_number: int
    run: JobRun
    parent_context_key: str

    @property
    def role(self) -> Role:
        return self.kind.role

    @classmethod
    def dispatch(cls, pending: PendingJob, run: JobRun) -> Job:
        return cls(
            kind=pending.kind,
            top_task_id=pending.top_task_id,
            node_id=pending.node_id,
            pass_number=pending.pass_number,
            run=run,
            parent_context_key=pending.parent_context_key,
        )


__all__ = ["Job", "JobKind", "JobRun", "PendingJob"]
