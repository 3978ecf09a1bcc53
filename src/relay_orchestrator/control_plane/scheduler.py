"""
Externally driven workflow engine for role-based task execution.

The engine owns the live task graph, a FIFO of pending steps and at most one
active job. A caller drives it by alternating ``start_next_job()`` and
``finish_active_job(success, exit_code)``:
- top-level tasks run strictly in order; only one has queued or active work
- each branch (implementor or test writer) advances through its audit chain
  and optional deterministic test run
- ``final_audit`` roots run only after every regular top-level task is done
- retry ceilings never raise; they surface as ``WorkflowFailure`` records

The next step of a branch is derived from persisted statuses, so a graph
reloaded mid-run resumes where it stopped. Pass counters are transient and
reset on every load.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from relay_orchestrator.config.schema import WorkflowConfig
from relay_orchestrator.constants import (
    DEFAULT_AUDITOR_DETAILS,
    DEFAULT_AUDITOR_TITLE,
    DEFAULT_IMPLEMENTOR_DETAILS,
    DEFAULT_IMPLEMENTOR_TITLE,
    DEFAULT_TEST_RUNNER_DETAILS,
    DEFAULT_TEST_RUNNER_TITLE,
    DEFAULT_TEST_WRITER_DETAILS,
    DEFAULT_TEST_WRITER_TITLE,
)
from relay_orchestrator.control_plane.audit_policy import (
    RetryAction,
    audit_failed,
    audit_feedback,
    cleanup_feedback,
    context_summary,
    decide_retry,
    extract_changed_files,
    final_audit_passed,
    implementor_failure_feedback,
    runner_failure_feedback,
    strictness_policy,
    writer_failure_feedback,
)
from relay_orchestrator.control_plane.context_log import RollingContextLog
from relay_orchestrator.control_plane.jobs import Job, JobKind, JobRun, PendingJob
from relay_orchestrator.domain.models import (
    FailureKind,
    Role,
    TaskNode,
    TaskRecord,
    TaskStatus,
    WorkflowError,
    WorkflowFailure,
)
from relay_orchestrator.observability.logging import correlation_scope
from relay_orchestrator.planning.snapshot import from_external, to_external
from relay_orchestrator.planning.task_graph import TaskGraph
from relay_orchestrator.synthesis_plane.prompt_templates import (
    PromptBuilder,
    PromptRequest,
    TemplatePromptBuilder,
)

_AUDIT_KINDS = frozenset({JobKind.AUDITOR, JobKind.TEST_AUDITOR})

_DEFAULT_CHILDREN: dict[Role, dict[str, Any]] = {
    Role.IMPLEMENTOR: {
        "role": Role.IMPLEMENTOR,
        "title": DEFAULT_IMPLEMENTOR_TITLE,
        "details": DEFAULT_IMPLEMENTOR_DETAILS,
    },
    Role.AUDITOR: {"role": Role.AUDITOR, "title": DEFAULT_AUDITOR_TITLE, "details": DEFAULT_AUDITOR_DETAILS},
    Role.TEST_WRITER: {
        "role": Role.TEST_WRITER,
        "title": DEFAULT_TEST_WRITER_TITLE,
        "details": DEFAULT_TEST_WRITER_DETAILS,
    },
    Role.TEST_RUNNER: {
        "role": Role.TEST_RUNNER,
        "title": DEFAULT_TEST_RUNNER_TITLE,
        "details": DEFAULT_TEST_RUNNER_DETAILS,
    },
}


class EngineBusyError(WorkflowError):
    """Raised when the task graph is replaced while a job is active or queued."""


@dataclass(slots=True)
class _BranchProgress:
    """Transient per-branch retry state; never persisted."""

    feedback: str | None = None
    report: str | None = None
    changed_files: str | None = None
    cleanup: bool = False
    main_attempts: int = 0
    run_attempts: int = 0
    writer_failures: int = 0
    audit_attempts: dict[str, int] = field(default_factory=dict)
    exhausted_auditors: set[str] = field(default_factory=set)


@dataclass(slots=True)
class _ActiveSlot:
    pending: PendingJob
    job: Job
    transcript: list[str] = field(default_factory=list)


class WorkflowEngine:
    """Single-threaded scheduler over a validated task graph."""

    def __init__(
        self,
        config: WorkflowConfig | None = None,
        *,
        prompt_builder: PromptBuilder | None = None,
        logger: Any | None = None,
    ) -> None:
        self._config = config if config is not None else WorkflowConfig()
        self._prompt_builder = prompt_builder if prompt_builder is not None else TemplatePromptBuilder()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        self._graph = TaskGraph()
        self._context = RollingContextLog(capacity=self._config.context_window)
        self._queue: deque[PendingJob] = deque()
        self._active: _ActiveSlot | None = None
        self._enabled = False
        self._failures: list[WorkflowFailure] = []
        self._progress: dict[str, _BranchProgress] = {}
        self._final_attempts: dict[str, int] = {}
        self._final_feedback: dict[str, str] = {}
        self._exhausted_final_audits: set[str] = set()

    @property
    def config(self) -> WorkflowConfig:
        return self._config

    @property
    def graph(self) -> TaskGraph:
        return self._graph

    @property
    def active_job(self) -> Job | None:
        return self._active.job if self._active is not None else None

    @property
    def execution_enabled(self) -> bool:
        return self._enabled

    @property
    def execution_busy(self) -> bool:
        return self._enabled and (self._active is not None or bool(self._queue))

    @property
    def queued_jobs(self) -> tuple[PendingJob, ...]:
        return tuple(self._queue)

    # Loading and persistence

    def load(self, records: Iterable[TaskRecord | Mapping[str, object]]) -> int:
        """Replace the live graph with ``records`` and return the node count.

        Every record is re-parsed through ``TaskRecord.from_dict`` so titles and
        details are trimmed and field bounds apply to dataclass input too.
        Raises ``EngineBusyError`` while a job is active or queued, ``ValueError``
        for a malformed record and ``TaskGraphValidationError`` for a
        structurally invalid list. None of these failures touch the current state.
        """
        if self.execution_busy:
            raise EngineBusyError("Cannot reload tasks while execution is running")

        parsed = [
            TaskRecord.from_dict(
                record.to_dict() if isinstance(record, TaskRecord) else record,
                path=f"records[{index}]",
            )
            for index, record in enumerate(records)
        ]
        graph = from_external(parsed)

        if self._enabled:
            self._enabled = False

        self._graph = graph
        self._queue.clear()
        self._active = None
        self._failures.clear()
        self._progress.clear()
        self._final_attempts.clear()
        self._final_feedback.clear()
        self._exhausted_final_audits.clear()

        self._logger.info(
            "workflow_tasks_loaded",
            node_count=len(graph),
            root_count=len(graph.roots()),
        )
        return len(parsed)

    sync = load

    def snapshot(self) -> list[TaskRecord]:
        """Current graph (including synthesized nodes) as task-store records."""
        return to_external(self._graph)

    def render_task_tree(self) -> str:
        return self._graph.render()

    def context_entries(self) -> list[str]:
        return self._context.entries()

    def replace_context_entries(self, entries: Iterable[str]) -> None:
        """Restore a saved rolling context; only the most recent entries are kept."""
        self._context.replace(entries)

    def drain_failures(self) -> list[WorkflowFailure]:
        drained = list(self._failures)
        self._failures.clear()
        return drained

    # Execution control

    def start_execution(self) -> list[str]:
        """Enable dispatch and queue the first outstanding step."""
        if self._enabled:
            if self._active is not None or self._queue:
                return ["System: Execution is already running; continuing current task."]
            queued = self._enqueue_ready([])
            if queued > 0:
                return [f"System: Resumed from last unfinished task(s). Queued {queued} task job(s)."]
            return ["System: Execution is already enabled. No unfinished tasks to resume."]

        self._enabled = True
        queued = self._enqueue_ready([])
        return [f"System: Execution enabled. Queued {queued} task job(s)."]

    def reset_execution(self) -> None:
        """Stop dispatching, discard queued and active work, and re-arm final audits."""
        self._enabled = False
        self._queue.clear()
        self._active = None
        self._failures.clear()
        self._final_attempts.clear()
        self._final_feedback.clear()
        self._exhausted_final_audits.clear()

    def start_next_job(self) -> Job | None:
        if not self._enabled or self._active is not None or not self._queue:
            return None

        pending = self._queue.popleft()
        self._mark_started(pending)
        job = Job.dispatch(pending, self._run_for(pending))
        self._active = _ActiveSlot(pending=pending, job=job)

        self._logger.info(
            "workflow_job_started",
            job_kind=pending.kind.value,
            role=pending.role.value,
            top_task_id=pending.top_task_id,
            node_id=pending.node_id,
            pass_number=pending.pass_number,
            parent_context_key=pending.parent_context_key,
        )
        return job

    def append_active_output(self, line: str) -> None:
        if self._active is not None:
            self._active.transcript.append(line)

    def finish_active_job(self, success: bool, exit_code: int) -> list[str]:
        """Apply a worker result to the graph and queue what follows.

        Always appends one rolling-context entry and clears the active slot.
        Returns an empty list when no job is active.
        """
        if self._active is None:
            return []

        slot = self._active
        self._active = None
        pending = slot.pending
        lines = tuple(slot.transcript)
        messages: list[str] = []

        top = self._graph.get(pending.top_task_id)
        with correlation_scope(top_task_id=pending.top_task_id, node_id=pending.node_id, role=pending.role.value):
            self._context.append(
                context_summary(pending.kind.context_name, top.title, lines, success=success)
            )
            self._logger.info(
                "workflow_job_finished",
                job_kind=pending.kind.value,
                role=pending.role.value,
                top_task_id=pending.top_task_id,
                node_id=pending.node_id,
                pass_number=pending.pass_number,
                success=success,
                exit_code=exit_code,
            )

            handler = _HANDLERS[pending.kind]
            handler(self, pending, lines, success, exit_code, messages)

            if self._enabled:
                self._enqueue_ready(messages)
        return messages

    # Completion handlers

    def _on_implementor(
        self, pending: PendingJob, lines: tuple[str, ...], success: bool, exit_code: int, messages: list[str]
    ) -> None:
        progress = self._progress_for(pending.branch_id)
        progress.main_attempts = pending.pass_number
        top_id = pending.top_task_id

        if success:
            self._graph.set_status(pending.node_id, TaskStatus.DONE)
            progress.report = "\n".join(lines)
            progress.changed_files = extract_changed_files(lines)
            progress.feedback = None
            messages.append(f"System: Task {top_id} implementation pass {pending.pass_number} complete.")
            return

        self._graph.set_status(pending.node_id, TaskStatus.NEEDS_CHANGES)
        progress.feedback = implementor_failure_feedback(exit_code)
        messages.append(f"System: Task {top_id} implementation failed (code {exit_code}); retry queued.")

    def _on_audit(
        self, pending: PendingJob, lines: tuple[str, ...], success: bool, exit_code: int, messages: list[str]
    ) -> None:
        progress = self._progress_for(pending.branch_id)
        progress.audit_attempts[pending.node_id] = pending.pass_number
        top_id = pending.top_task_id
        writer_branch = pending.kind is JobKind.TEST_AUDITOR
        label = "test-writer audit" if writer_branch else "audit"

        if not audit_failed(lines, success=success):
            self._graph.set_status(pending.node_id, TaskStatus.DONE)
            messages.append(f"System: Task {top_id} {label} pass {pending.pass_number} complete.")
            return

        feedback = audit_feedback(lines, exit_code, success=success)
        ceiling = self._config.max_audit_passes
        if decide_retry(pending.pass_number, ceiling) is RetryAction.EXHAUSTED:
            self._graph.set_status(pending.node_id, TaskStatus.DONE)
            progress.exhausted_auditors.add(pending.node_id)
            action = (
                "Test-writer audit retries exhausted; continued to deterministic test run."
                if writer_branch
                else "Audit retries exhausted; continued execution to next audit/step."
            )
            self._record_failure(FailureKind.AUDIT, pending, pending.pass_number, feedback, action)
            next_stage = "deterministic tests" if writer_branch else "next audit/step"
            messages.append(
                f"System: Task {top_id} {label} still found critical blockers at pass {pending.pass_number}. "
                f"Max retries ({ceiling}) reached; proceeding to {next_stage}."
            )
            return

        self._graph.set_status(pending.branch_id, TaskStatus.NEEDS_CHANGES)
        self._graph.set_status(pending.node_id, TaskStatus.NEEDS_CHANGES)
        for auditor in self._graph.children_with_role(pending.branch_id, Role.AUDITOR):
            if auditor.id != pending.node_id and auditor.id not in progress.exhausted_auditors:
                self._graph.set_status(auditor.id, TaskStatus.PENDING)
        progress.feedback = feedback
        actor = "test-writer" if writer_branch else "implementor"
        messages.append(
            f"System: Task {top_id} {label} requested fixes; {actor} pass {progress.main_attempts + 1} queued."
        )

    def _on_implementor_test_run(
        self, pending: PendingJob, lines: tuple[str, ...], success: bool, exit_code: int, messages: list[str]
    ) -> None:
        progress = self._progress_for(pending.branch_id)
        progress.run_attempts = pending.pass_number
        top_id = pending.top_task_id

        if success:
            self._graph.set_status(pending.node_id, TaskStatus.DONE)
            self._graph.set_status(pending.branch_id, TaskStatus.DONE)
            messages.append(
                f"System: Task {top_id} existing-test runner passed on run {pending.pass_number}; "
                "implementor branch complete."
            )
            return

        feedback = runner_failure_feedback(lines, exit_code)
        ceiling = self._config.max_test_passes
        if decide_retry(pending.pass_number, ceiling) is RetryAction.EXHAUSTED:
            self._graph.set_status(pending.node_id, TaskStatus.DONE)
            self._graph.set_status(pending.branch_id, TaskStatus.DONE)
            self._record_failure(
                FailureKind.TEST,
                pending,
                pending.pass_number,
                feedback,
                "Existing-tests runner retries exhausted; continued to next step.",
            )
            messages.append(
                f"System: Task {top_id} existing tests still failing at pass {pending.pass_number}. "
                f"Max retries ({ceiling}) reached; proceeding to next step."
            )
            return

        self._graph.set_status(pending.node_id, TaskStatus.NEEDS_CHANGES)
        self._graph.set_status(pending.branch_id, TaskStatus.NEEDS_CHANGES)
        progress.feedback = feedback
        messages.append(
            f"System: Task {top_id} existing tests failed; implementor pass {progress.main_attempts + 1} queued."
        )

    def _on_test_writer(
        self, pending: PendingJob, lines: tuple[str, ...], success: bool, exit_code: int, messages: list[str]
    ) -> None:
        progress = self._progress_for(pending.branch_id)
        progress.main_attempts = pending.pass_number
        top_id = pending.top_task_id

        if success:
            self._graph.set_status(pending.node_id, TaskStatus.DONE)
            progress.feedback = None
            if pending.cleanup:
                progress.cleanup = False
                self._force_runners_done(pending.branch_id)
                messages.append(f"System: Task {top_id} removed failing tests after retries and proceeded.")
                return
            progress.report = "\n".join(lines)
            messages.append(f"System: Task {top_id} test-writer pass {pending.pass_number} complete.")
            return

        progress.writer_failures += 1
        ceiling = self._config.max_test_passes
        if decide_retry(progress.writer_failures, ceiling) is RetryAction.EXHAUSTED:
            self._graph.set_status(pending.node_id, TaskStatus.DONE)
            self._force_runners_done(pending.branch_id)
            progress.cleanup = False
            self._record_failure(
                FailureKind.TEST,
                pending,
                progress.writer_failures,
                f"Test-writer failed repeatedly; latest exit code {exit_code}.",
                "Test-writer retries exhausted; proceeded without adding tests.",
            )
            messages.append(
                f"System: Task {top_id} test-writer still failing at pass {pending.pass_number}. "
                f"Max retries ({ceiling}) reached; proceeding to next step."
            )
            return

        self._graph.set_status(pending.node_id, TaskStatus.NEEDS_CHANGES)
        if not pending.cleanup:
            progress.feedback = writer_failure_feedback(exit_code)
        messages.append(f"System: Task {top_id} test-writer failed (code {exit_code}); retry queued.")

    def _on_test_run(
        self, pending: PendingJob, lines: tuple[str, ...], success: bool, exit_code: int, messages: list[str]
    ) -> None:
        progress = self._progress_for(pending.branch_id)
        progress.run_attempts = pending.pass_number
        top_id = pending.top_task_id

        if success:
            self._graph.set_status(pending.node_id, TaskStatus.DONE)
            self._graph.set_status(pending.branch_id, TaskStatus.DONE)
            messages.append(f"System: Task {top_id} deterministic tests passed on run {pending.pass_number}.")
            return

        reason = runner_failure_feedback(lines, exit_code)
        self._graph.set_status(pending.node_id, TaskStatus.NEEDS_CHANGES)
        self._graph.set_status(pending.branch_id, TaskStatus.NEEDS_CHANGES)
        ceiling = self._config.max_test_passes
        if decide_retry(pending.pass_number, ceiling) is RetryAction.EXHAUSTED:
            self._record_failure(
                FailureKind.TEST,
                pending,
                pending.pass_number,
                reason,
                "Requested test cleanup (remove failing tests) and continued.",
            )
            progress.cleanup = True
            progress.feedback = cleanup_feedback(reason)
            messages.append(
                f"System: Task {top_id} tests still failing at pass {pending.pass_number}. "
                f"Max retries ({ceiling}) reached; queued cleanup removal pass."
            )
            return

        progress.feedback = reason
        messages.append(
            f"System: Task {top_id} tests failed; test-writer pass {progress.main_attempts + 1} queued."
        )

    def _on_final_audit(
        self, pending: PendingJob, lines: tuple[str, ...], success: bool, exit_code: int, messages: list[str]
    ) -> None:
        node_id = pending.node_id
        self._final_attempts[node_id] = pending.pass_number

        if final_audit_passed(lines, success=success):
            self._exhausted_final_audits.discard(node_id)
            self._final_feedback.pop(node_id, None)
            self._graph.set_status(node_id, TaskStatus.DONE)
            messages.append(f"System: Final audit task {node_id} completed on pass {pending.pass_number}.")
            return

        self._graph.set_status(node_id, TaskStatus.NEEDS_CHANGES)
        feedback = audit_feedback(lines, exit_code, success=success)
        ceiling = self._config.max_final_audit_passes
        if decide_retry(pending.pass_number, ceiling) is RetryAction.EXHAUSTED:
            self._exhausted_final_audits.add(node_id)
            self._record_failure(
                FailureKind.AUDIT,
                pending,
                pending.pass_number,
                feedback,
                f"Final audit retries exhausted at pass {pending.pass_number}; "
                "stopped requeueing and awaiting user action.",
            )
            messages.append(
                f"System: Final audit task {node_id} still failed at pass {pending.pass_number}. "
                f"Max retries ({ceiling}) reached; no further final-audit retries queued."
            )
            return

        self._final_feedback[node_id] = feedback
        if success:
            messages.append(f"System: Final audit task {node_id} did not explicitly pass; retry queued.")
        else:
            messages.append(f"System: Final audit task {node_id} failed (code {exit_code}); retry queued.")

    # Queueing

    def _enqueue_ready(self, messages: list[str]) -> int:
        """Queue the next step of the first unfinished top-level task.

        Completed tasks found on the way are marked ``done``. Final audits are
        queued one at a time once every regular task is done.
        """
        roots = self._graph.roots()
        regular = [root for root in roots if root.role is not Role.FINAL_AUDIT]
        finals = [root for root in roots if root.role is Role.FINAL_AUDIT]

        if any(not root.is_done for root in regular):
            self._queue = deque(job for job in self._queue if job.kind is not JobKind.FINAL_AUDIT)

        for top in regular:
            if top.is_done:
                continue
            self._ensure_default_children(top)
            if self._has_work(top.id):
                return 0
            step = self._next_step(top)
            if step is not None:
                self._queue.append(step)
                return 1
            self._complete_top(top, messages)

        for final in finals:
            if final.is_done or final.id in self._exhausted_final_audits:
                continue
            if self._has_work(final.id):
                return 0
            self._queue.append(
                PendingJob(
                    kind=JobKind.FINAL_AUDIT,
                    top_task_id=final.id,
                    node_id=final.id,
                    branch_id=final.id,
                    pass_number=self._final_attempts.get(final.id, 0) + 1,
                    feedback=self._final_feedback.get(final.id),
                )
            )
            return 1
        return 0

    def _next_step(self, top: TaskNode) -> PendingJob | None:
        branches = (
            *self._graph.children_with_role(top.id, Role.IMPLEMENTOR),
            *self._graph.children_with_role(top.id, Role.TEST_WRITER),
        )
        for branch in branches:
            step = self._branch_step(top, branch)
            if step is not None:
                return step
        return None

    def _branch_step(self, top: TaskNode, branch: TaskNode) -> PendingJob | None:
        progress = self._progress_for(branch.id)
        implementor = branch.role is Role.IMPLEMENTOR

        if not branch.is_done:
            return PendingJob(
                kind=JobKind.IMPLEMENTOR if implementor else JobKind.TEST_WRITER,
                top_task_id=top.id,
                node_id=branch.id,
                branch_id=branch.id,
                pass_number=progress.main_attempts + 1,
                feedback=progress.feedback,
                cleanup=progress.cleanup and not implementor,
            )

        for auditor in self._graph.children_with_role(branch.id, Role.AUDITOR):
            if not auditor.is_done:
                return PendingJob(
                    kind=JobKind.AUDITOR if implementor else JobKind.TEST_AUDITOR,
                    top_task_id=top.id,
                    node_id=auditor.id,
                    branch_id=branch.id,
                    pass_number=progress.audit_attempts.get(auditor.id, 0) + 1,
                )

        for runner in self._graph.children_with_role(branch.id, Role.TEST_RUNNER):
            if not runner.is_done:
                return PendingJob(
                    kind=JobKind.IMPLEMENTOR_TEST_RUNNER if implementor else JobKind.TEST_RUNNER,
                    top_task_id=top.id,
                    node_id=runner.id,
                    branch_id=branch.id,
                    pass_number=progress.run_attempts + 1,
                )
        return None

    def _ensure_default_children(self, top: TaskNode) -> None:
        if top.role is not Role.TASK:
            return
        graph = self._graph

        if not graph.children(top.id):
            writer = graph.add_child(top.id, **_DEFAULT_CHILDREN[Role.TEST_WRITER])
            graph.add_child(writer.id, **_DEFAULT_CHILDREN[Role.TEST_RUNNER])
        if not graph.children_with_role(top.id, Role.IMPLEMENTOR):
            graph.add_child(top.id, **_DEFAULT_CHILDREN[Role.IMPLEMENTOR])

        for implementor in graph.children_with_role(top.id, Role.IMPLEMENTOR):
            if not graph.children_with_role(implementor.id, Role.AUDITOR):
                graph.add_child(implementor.id, **_DEFAULT_CHILDREN[Role.AUDITOR])
        for writer in graph.children_with_role(top.id, Role.TEST_WRITER):
            if not graph.children_with_role(writer.id, Role.TEST_RUNNER):
                graph.add_child(writer.id, **_DEFAULT_CHILDREN[Role.TEST_RUNNER])

    def _complete_top(self, top: TaskNode, messages: list[str]) -> None:
        self._graph.set_status(top.id, TaskStatus.DONE)
        messages.append(f"System: Task {top.id} complete.")
        self._logger.info("workflow_task_completed", top_task_id=top.id, title=top.title)

    def _has_work(self, top_id: str) -> bool:
        if self._active is not None and self._active.pending.top_task_id == top_id:
            return True
        return any(job.top_task_id == top_id for job in self._queue)

    # Dispatch

    def _mark_started(self, pending: PendingJob) -> None:
        for node_id in (pending.node_id, pending.top_task_id):
            if self._graph.status_of(node_id) is not TaskStatus.DONE:
                self._graph.set_status(node_id, TaskStatus.IN_PROGRESS)

    def _run_for(self, pending: PendingJob) -> JobRun:
        if pending.kind.is_test_run:
            return JobRun.DETERMINISTIC_TEST_RUN
        return JobRun.agent(self._prompt_builder.build(self._prompt_request(pending)))

    def _prompt_request(self, pending: PendingJob) -> PromptRequest:
        graph = self._graph
        node = graph.get(pending.node_id)
        top = graph.get(pending.top_task_id)
        progress = self._progress.get(pending.branch_id, _BranchProgress())

        parent_title = ""
        parent_details = ""
        report: str | None = None
        changed_files: str | None = None
        strictness = ""
        if pending.kind in _AUDIT_KINDS:
            branch = graph.get(pending.branch_id)
            parent_title = branch.title
            parent_details = branch.details
            report = progress.report
            strictness = strictness_policy(pending.pass_number)
            if pending.kind is JobKind.AUDITOR:
                changed_files = progress.changed_files
        elif pending.kind is JobKind.FINAL_AUDIT:
            strictness = strictness_policy(pending.pass_number)

        if pending.kind is JobKind.FINAL_AUDIT:
            max_passes = self._config.max_final_audit_passes
        elif pending.kind in (JobKind.IMPLEMENTOR, *_AUDIT_KINDS):
            max_passes = self._config.max_audit_passes
        else:
            max_passes = self._config.max_test_passes

        return PromptRequest(
            kind=pending.kind,
            top_task_title=top.title,
            node_title=node.title,
            node_details=node.details,
            docs=node.docs,
            parent_title=parent_title,
            parent_details=parent_details,
            pass_number=pending.pass_number,
            max_passes=max_passes,
            strictness=strictness,
            context_block=self._context.render(),
            task_tree=graph.render(),
            feedback=pending.feedback,
            report=report,
            changed_files=changed_files,
            cleanup=pending.cleanup,
        )

    # Helpers

    def _progress_for(self, branch_id: str) -> _BranchProgress:
        progress = self._progress.get(branch_id)
        if progress is None:
            progress = _BranchProgress()
            self._progress[branch_id] = progress
        return progress

    def _force_runners_done(self, branch_id: str) -> None:
        for runner in self._graph.children_with_role(branch_id, Role.TEST_RUNNER):
            self._graph.set_status(runner.id, TaskStatus.DONE)

    def _record_failure(
        self,
        kind: FailureKind,
        pending: PendingJob,
        attempts: int,
        reason: str,
        action_taken: str,
    ) -> None:
        top = self._graph.get(pending.top_task_id)
        failure = WorkflowFailure(
            kind=kind,
            top_task_id=top.id,
            top_task_title=top.title,
            attempts=attempts,
            reason=reason,
            action_taken=action_taken,
        )
        self._failures.append(failure)
        self._logger.warning(
            "workflow_retry_exhausted",
            failure_kind=kind.value,
            role=pending.role.value,
            top_task_id=top.id,
            node_id=pending.node_id,
            pass_number=pending.pass_number,
            attempts=attempts,
            action_taken=action_taken,
            reason=reason,
        )


_HANDLERS = {
    JobKind.IMPLEMENTOR: WorkflowEngine._on_implementor,
    JobKind.AUDITOR: WorkflowEngine._on_audit,
    JobKind.IMPLEMENTOR_TEST_RUNNER: WorkflowEngine._on_implementor_test_run,
    JobKind.TEST_WRITER: WorkflowEngine._on_test_writer,
    JobKind.TEST_AUDITOR: WorkflowEngine._on_audit,
    JobKind.TEST_RUNNER: WorkflowEngine._on_test_run,
    JobKind.FINAL_AUDIT: WorkflowEngine._on_final_audit,
}


__all__ = ["EngineBusyError", "WorkflowEngine"]
