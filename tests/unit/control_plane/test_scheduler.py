"""Unit tests for the control-plane workflow engine."""

from __future__ import annotations

from typing import Any

import pytest

from relay_orchestrator.config.schema import WorkflowConfig
from relay_orchestrator.control_plane.jobs import Job, JobKind, JobRun
from relay_orchestrator.control_plane.scheduler import EngineBusyError, WorkflowEngine
from relay_orchestrator.domain.models import FailureKind, Role, TaskRecord, TaskStatus
from relay_orchestrator.planning.snapshot import from_external
from relay_orchestrator.planning.validator import TaskGraphValidationError
from relay_orchestrator.synthesis_plane.prompt_templates import PromptRequest


class _RecordingBuilder:
    def __init__(self, *, fail_first: bool = False) -> None:
        self.requests: list[PromptRequest] = []
        self._fail_next = fail_first

    def build(self, request: PromptRequest) -> str:
        if self._fail_next:
            self._fail_next = False
            raise RuntimeError("prompt backend unavailable")
        self.requests.append(request)
        return f"{request.kind.value}:{request.node_title}:pass-{request.pass_number}"


class _RecordingLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, Any]]] = []

    def info(self, event: str, **fields: Any) -> None:
        self.events.append(("info", event, fields))

    def warning(self, event: str, **fields: Any) -> None:
        self.events.append(("warning", event, fields))


def _rec(
    node_id: str,
    role: Role,
    parent_id: str | None = None,
    *,
    order: int | None = None,
    status: TaskStatus = TaskStatus.PENDING,
) -> TaskRecord:
    return TaskRecord(
        id=node_id,
        title=f"{node_id} title",
        details=f"{node_id} details",
        role=role,
        status=status,
        parent_id=parent_id,
        order=order,
    )


def _impl_branch(top: str = "t1", *, order: int | None = 0, runner: bool = False) -> list[TaskRecord]:
    records = [
        _rec(top, Role.TASK, order=order),
        _rec(f"{top}.impl", Role.IMPLEMENTOR, top, order=0),
        _rec(f"{top}.impl.audit", Role.AUDITOR, f"{top}.impl", order=0),
    ]
    if runner:
        records.append(_rec(f"{top}.impl.run", Role.TEST_RUNNER, f"{top}.impl", order=1))
    return records


def _full_task(*, writer_audit: bool = False) -> list[TaskRecord]:
    records = [
        *_impl_branch(),
        _rec("t1.tests", Role.TEST_WRITER, "t1", order=1),
    ]
    if writer_audit:
        records.append(_rec("t1.tests.audit", Role.AUDITOR, "t1.tests", order=0))
    records.append(_rec("t1.tests.run", Role.TEST_RUNNER, "t1.tests", order=1))
    return records


def _engine(
    records: list[TaskRecord] | None = None,
    *,
    config: WorkflowConfig | None = None,
    builder: _RecordingBuilder | None = None,
    logger: _RecordingLogger | None = None,
) -> WorkflowEngine:
    engine = WorkflowEngine(
        config,
        prompt_builder=builder if builder is not None else _RecordingBuilder(),
        logger=logger if logger is not None else _RecordingLogger(),
    )
    if records is not None:
        engine.load(records)
    return engine


def _run(engine: WorkflowEngine, *lines: str, success: bool = True, code: int = 0) -> tuple[Job, list[str]]:
    job = engine.start_next_job()
    assert job is not None
    for line in lines:
        engine.append_active_output(line)
    return job, engine.finish_active_job(success, code)


def test_load_returns_node_count_and_accepts_dict_records() -> None:
    engine = _engine()

    assert engine.load(_full_task(writer_audit=True)) == 6
    assert engine.sync([record.to_dict() for record in _impl_branch()]) == 3
    assert [record.id for record in engine.snapshot()] == ["t1", "t1.impl", "t1.impl.audit"]


def test_invalid_load_keeps_previous_graph() -> None:
    engine = _engine(_impl_branch())
    before = engine.snapshot()

    with pytest.raises(TaskGraphValidationError) as error:
        engine.load([_rec("t1", Role.TASK), _rec("t1.impl", Role.IMPLEMENTOR, "t1")])

    assert error.value.issues[0].rule == "implementor-auditor"
    assert engine.snapshot() == before


def test_load_while_busy_raises_without_mutation() -> None:
    engine = _engine(_impl_branch())
    engine.start_execution()
    before = engine.snapshot()

    with pytest.raises(EngineBusyError):
        engine.load(_full_task())

    assert engine.snapshot() == before
    assert engine.execution_busy


def test_load_while_enabled_but_idle_returns_to_planning_mode() -> None:
    engine = _engine([_rec("fa", Role.FINAL_AUDIT)])
    engine.start_execution()
    _run(engine, "AUDIT_RESULT: PASS")
    assert engine.execution_enabled
    assert not engine.execution_busy

    engine.load(_impl_branch())

    assert not engine.execution_enabled
    assert engine.start_next_job() is None


def test_start_execution_messages() -> None:
    engine = _engine(_impl_branch())

    assert engine.start_execution() == ["System: Execution enabled. Queued 1 task job(s)."]
    assert engine.start_execution() == ["System: Execution is already running; continuing current task."]

    _run(engine)
    _run(engine, "AUDIT_RESULT: PASS")

    assert engine.start_execution() == ["System: Execution is already enabled. No unfinished tasks to resume."]


def test_start_execution_resumes_after_dispatch_failure() -> None:
    builder = _RecordingBuilder(fail_first=True)
    engine = _engine(_impl_branch(), builder=builder)
    engine.start_execution()

    with pytest.raises(RuntimeError, match="prompt backend unavailable"):
        engine.start_next_job()
    assert engine.active_job is None
    assert not engine.execution_busy

    assert engine.start_execution() == ["System: Resumed from last unfinished task(s). Queued 1 task job(s)."]
    job = engine.start_next_job()
    assert job is not None
    assert job.kind is JobKind.IMPLEMENTOR


def test_dispatch_is_gated_on_execution_and_single_active_job() -> None:
    engine = _engine(_impl_branch())
    assert engine.start_next_job() is None
    assert engine.finish_active_job(True, 0) == []

    engine.start_execution()
    first = engine.start_next_job()
    assert first is not None
    assert engine.active_job == first
    assert engine.start_next_job() is None
    engine.append_active_output("working")


def test_happy_path_runs_branches_in_order() -> None:
    engine = _engine(_full_task())
    engine.start_execution()

    job, messages = _run(engine, "FILES_CHANGED_BEGIN", "- a.py: add", "FILES_CHANGED_END")
    assert (job.kind, job.node_id, job.pass_number) == (JobKind.IMPLEMENTOR, "t1.impl", 1)
    assert job.parent_context_key == "implementor:t1.impl"
    assert job.role is Role.IMPLEMENTOR
    assert job.run.prompt == "implementor:t1.impl title:pass-1"
    assert messages == ["System: Task t1 implementation pass 1 complete."]

    job, messages = _run(engine, "AUDIT_RESULT: PASS")
    assert (job.kind, job.node_id) == (JobKind.AUDITOR, "t1.impl.audit")
    assert job.parent_context_key == "auditor:t1.impl.audit"
    assert messages == ["System: Task t1 audit pass 1 complete."]

    job, _ = _run(engine, "added tests")
    assert (job.kind, job.node_id, job.parent_context_key) == (JobKind.TEST_WRITER, "t1.tests", "test_writer:t1.tests")

    job, messages = _run(engine, "3 passed")
    assert job.kind is JobKind.TEST_RUNNER
    assert job.parent_context_key == "test_writer:t1.tests"
    assert job.run == JobRun.DETERMINISTIC_TEST_RUN
    assert messages == [
        "System: Task t1 deterministic tests passed on run 1.",
        "System: Task t1 complete.",
    ]

    assert engine.start_next_job() is None
    assert all(record.status is TaskStatus.DONE for record in engine.snapshot())
    assert len(engine.context_entries()) == 4
    assert engine.context_entries()[-1] == (
        'TestRunner on "t1 title": finished its pass successfully. Key result: 3 passed'
    )
    assert engine.drain_failures() == []


def test_dispatch_marks_node_and_top_in_progress() -> None:
    engine = _engine(_impl_branch())
    engine.start_execution()
    engine.start_next_job()

    statuses = {record.id: record.status for record in engine.snapshot()}
    assert statuses == {
        "t1": TaskStatus.IN_PROGRESS,
        "t1.impl": TaskStatus.IN_PROGRESS,
        "t1.impl.audit": TaskStatus.PENDING,
    }


def test_auditor_prompt_receives_report_changed_files_and_strictness() -> None:
    builder = _RecordingBuilder()
    engine = _engine(_impl_branch(), builder=builder)
    engine.start_execution()

    _run(engine, "Implemented parser.", "FILES_CHANGED_BEGIN", "- parser.py: new", "FILES_CHANGED_END")
    engine.start_next_job()

    request = builder.requests[-1]
    assert request.kind is JobKind.AUDITOR
    assert request.parent_title == "t1.impl title"
    assert request.parent_details == "t1.impl details"
    assert request.changed_files == "- parser.py: new"
    assert request.report is not None and request.report.startswith("Implemented parser.")
    assert request.strictness.startswith("Pass 1 (strict)")
    assert request.max_passes == 4
    assert request.context_block.startswith('1. Implementor on "t1 title"')
    assert "- [x] Impl: t1.impl title" in request.task_tree


def test_audit_failure_requeues_implementor_and_restarts_chain() -> None:
    builder = _RecordingBuilder()
    records = [
        *_impl_branch(),
        _rec("t1.impl.audit2", Role.AUDITOR, "t1.impl", order=1),
    ]
    engine = _engine(records, builder=builder)
    engine.start_execution()

    _run(engine)
    _run(engine, "AUDIT_RESULT: PASS")
    job, messages = _run(engine, "AUDIT_RESULT: FAIL", "missing null check")
    assert job.node_id == "t1.impl.audit2"
    assert messages == ["System: Task t1 audit requested fixes; implementor pass 2 queued."]

    statuses = {record.id: record.status for record in engine.snapshot()}
    assert statuses["t1.impl"] is TaskStatus.NEEDS_CHANGES
    assert statuses["t1.impl.audit"] is TaskStatus.PENDING
    assert statuses["t1.impl.audit2"] is TaskStatus.NEEDS_CHANGES

    job, _ = _run(engine)
    assert (job.kind, job.pass_number) == (JobKind.IMPLEMENTOR, 2)
    assert builder.requests[-1].feedback == "Audit feedback: AUDIT_RESULT: FAIL missing null check"

    job = engine.start_next_job()
    assert job is not None
    assert (job.kind, job.node_id, job.pass_number) == (JobKind.AUDITOR, "t1.impl.audit", 2)


def test_audit_ceiling_records_failure_and_continues() -> None:
    engine = _engine(_impl_branch(), config=WorkflowConfig(max_audit_passes=2))
    engine.start_execution()

    _run(engine)
    _run(engine, "AUDIT_RESULT: FAIL", "bug")
    _run(engine)
    job, messages = _run(engine, "AUDIT_RESULT: FAIL", "still a bug")

    assert job.pass_number == 2
    assert messages == [
        "System: Task t1 audit still found critical blockers at pass 2. "
        "Max retries (2) reached; proceeding to next audit/step.",
        "System: Task t1 complete.",
    ]
    failures = engine.drain_failures()
    assert len(failures) == 1
    failure = failures[0]
    assert failure.kind is FailureKind.AUDIT
    assert failure.top_task_id == "t1"
    assert failure.top_task_title == "t1 title"
    assert failure.attempts == 2
    assert failure.reason == "Audit feedback: AUDIT_RESULT: FAIL still a bug"
    assert failure.action_taken == "Audit retries exhausted; continued execution to next audit/step."
    assert engine.drain_failures() == []
    assert engine.graph.status_of("t1") is TaskStatus.DONE


def test_implementor_crash_is_retried_with_exit_code_feedback() -> None:
    builder = _RecordingBuilder()
    engine = _engine(_impl_branch(), builder=builder)
    engine.start_execution()

    _, messages = _run(engine, success=False, code=9)
    assert messages == ["System: Task t1 implementation failed (code 9); retry queued."]
    assert engine.graph.status_of("t1.impl") is TaskStatus.NEEDS_CHANGES

    job, _ = _run(engine)
    assert (job.kind, job.pass_number) == (JobKind.IMPLEMENTOR, 2)
    assert builder.requests[-1].feedback == "Previous implementor run failed with code 9."


def test_implementor_test_run_failure_requeues_implementor() -> None:
    builder = _RecordingBuilder()
    engine = _engine(_impl_branch(runner=True), builder=builder)
    engine.start_execution()

    _run(engine)
    _run(engine, "AUDIT_RESULT: PASS")
    job, messages = _run(engine, "FAILED test_x", success=False, code=1)
    assert job.kind is JobKind.IMPLEMENTOR_TEST_RUNNER
    assert job.parent_context_key == "implementor:t1.impl"
    assert job.run.is_deterministic_test_run
    assert messages == ["System: Task t1 existing tests failed; implementor pass 2 queued."]

    job, _ = _run(engine)
    assert (job.kind, job.pass_number) == (JobKind.IMPLEMENTOR, 2)
    assert builder.requests[-1].feedback == "Deterministic test run failed with code 1. Output:\nFAILED test_x"

    job, messages = _run(engine, "all green")
    assert (job.kind, job.pass_number) == (JobKind.IMPLEMENTOR_TEST_RUNNER, 2)
    assert messages == [
        "System: Task t1 existing-test runner passed on run 2; implementor branch complete.",
        "System: Task t1 complete.",
    ]


def test_implementor_test_run_ceiling_forces_branch_done() -> None:
    engine = _engine(_impl_branch(runner=True), config=WorkflowConfig(max_test_passes=2))
    engine.start_execution()

    _run(engine)
    _run(engine, "AUDIT_RESULT: PASS")
    _run(engine, success=False, code=1)
    _run(engine)
    _, messages = _run(engine, success=False, code=1)

    assert messages[0].startswith("System: Task t1 existing tests still failing at pass 2.")
    (failure,) = engine.drain_failures()
    assert failure.kind is FailureKind.TEST
    assert failure.attempts == 2
    assert failure.action_taken == "Existing-tests runner retries exhausted; continued to next step."
    assert engine.graph.status_of("t1.impl.run") is TaskStatus.DONE
    assert engine.graph.status_of("t1") is TaskStatus.DONE


def test_test_writer_crash_ceiling_forces_writer_and_runner_done() -> None:
    builder = _RecordingBuilder()
    engine = _engine(_full_task(), config=WorkflowConfig(max_test_passes=2), builder=builder)
    engine.start_execution()

    _run(engine)
    _run(engine, "AUDIT_RESULT: PASS")
    job, messages = _run(engine, success=False, code=4)
    assert job.kind is JobKind.TEST_WRITER
    assert messages == ["System: Task t1 test-writer failed (code 4); retry queued."]

    job, messages = _run(engine, success=False, code=5)
    assert builder.requests[-1].feedback == "Previous test-writer run failed with code 4."
    assert messages[0].startswith("System: Task t1 test-writer still failing at pass 2.")
    assert messages[-1] == "System: Task t1 complete."

    (failure,) = engine.drain_failures()
    assert failure.kind is FailureKind.TEST
    assert failure.reason == "Test-writer failed repeatedly; latest exit code 5."
    assert failure.action_taken == "Test-writer retries exhausted; proceeded without adding tests."
    assert engine.graph.status_of("t1.tests.run") is TaskStatus.DONE


def test_test_audit_ceiling_proceeds_to_deterministic_run() -> None:
    builder = _RecordingBuilder()
    engine = _engine(_full_task(writer_audit=True), config=WorkflowConfig(max_audit_passes=1), builder=builder)
    engine.start_execution()

    _run(engine)
    _run(engine, "AUDIT_RESULT: PASS")
    _run(engine, "wrote tests")
    job, messages = _run(engine, "AUDIT_RESULT: FAIL", "weak assertions")

    assert (job.kind, job.parent_context_key) == (JobKind.TEST_AUDITOR, "test_auditor:t1.tests.audit")
    assert builder.requests[-1].report == "wrote tests"
    assert messages == [
        "System: Task t1 test-writer audit still found critical blockers at pass 1. "
        "Max retries (1) reached; proceeding to deterministic tests."
    ]
    (failure,) = engine.drain_failures()
    assert failure.action_taken == "Test-writer audit retries exhausted; continued to deterministic test run."

    next_job = engine.start_next_job()
    assert next_job is not None
    assert next_job.kind is JobKind.TEST_RUNNER


def test_task_without_children_gets_default_branches() -> None:
    engine = _engine([_rec("t1", Role.TASK)])
    engine.start_execution()

    job = engine.start_next_job()
    assert job is not None
    assert (job.kind, job.node_id) == (JobKind.IMPLEMENTOR, "t1.impl")

    snapshot = {record.id: record for record in engine.snapshot()}
    assert [record.id for record in engine.snapshot()] == [
        "t1",
        "t1.tests",
        "t1.tests.test-run",
        "t1.impl",
        "t1.impl.audit",
    ]
    assert snapshot["t1.tests"].title == "Test Writing"
    assert snapshot["t1.tests.test-run"].title == "Deterministic Test Run"
    assert snapshot["t1.impl"].title == "Implementation"
    assert snapshot["t1.impl.audit"].title == "Audit"
    assert snapshot["t1.impl.audit"].details.startswith("Audit implementation and tests")
    assert snapshot["t1.impl"].parent_id == "t1"
    assert snapshot["t1.tests.test-run"].status is TaskStatus.PENDING


def test_top_level_tasks_and_final_audits_run_in_sequence() -> None:
    builder = _RecordingBuilder()
    records = [
        _rec("fa", Role.FINAL_AUDIT, order=0),
        *_impl_branch("t1", order=1),
        *_impl_branch("t2", order=2),
    ]
    engine = _engine(records, builder=builder)
    engine.start_execution()
    assert len(engine.queued_jobs) == 1

    seen: list[tuple[str, str]] = []
    for _ in range(4):
        queued_kinds = {pending.kind for pending in engine.queued_jobs}
        assert JobKind.FINAL_AUDIT not in queued_kinds
        job, _ = _run(engine, "AUDIT_RESULT: PASS")
        seen.append((job.top_task_id, job.kind.value))

    assert [pending.kind for pending in engine.queued_jobs] == [JobKind.FINAL_AUDIT]
    assert seen == [
        ("t1", "implementor"),
        ("t1", "auditor"),
        ("t2", "implementor"),
        ("t2", "auditor"),
    ]

    job, messages = _run(engine, "AUDIT_RESULT: PASS")
    assert (job.kind, job.top_task_id, job.parent_context_key) == (JobKind.FINAL_AUDIT, "fa", "final_audit:fa")
    assert builder.requests[-1].kind is JobKind.FINAL_AUDIT
    assert messages == ["System: Final audit task fa completed on pass 1."]
    assert engine.graph.status_of("fa") is TaskStatus.DONE


def test_final_audit_without_token_is_retried_then_exhausted() -> None:
    builder = _RecordingBuilder()
    engine = _engine([_rec("fa", Role.FINAL_AUDIT)], config=WorkflowConfig(max_final_audit_passes=2), builder=builder)
    engine.start_execution()

    _, messages = _run(engine, "No issues found")
    assert messages == ["System: Final audit task fa did not explicitly pass; retry queued."]
    assert engine.graph.status_of("fa") is TaskStatus.NEEDS_CHANGES

    job, messages = _run(engine, success=False, code=2)
    assert job.pass_number == 2
    assert builder.requests[-1].feedback == "Audit feedback: No issues found"
    assert messages == [
        "System: Final audit task fa still failed at pass 2. "
        "Max retries (2) reached; no further final-audit retries queued."
    ]
    (failure,) = engine.drain_failures()
    assert failure.kind is FailureKind.AUDIT
    assert failure.action_taken == (
        "Final audit retries exhausted at pass 2; stopped requeueing and awaiting user action."
    )
    assert engine.start_next_job() is None
    assert engine.graph.status_of("fa") is TaskStatus.NEEDS_CHANGES


def test_reset_execution_discards_queue_and_active_job() -> None:
    engine = _engine(_impl_branch())
    engine.start_execution()
    engine.start_next_job()

    engine.reset_execution()

    assert engine.active_job is None
    assert not engine.execution_enabled
    assert not engine.execution_busy
    assert engine.queued_jobs == ()
    assert engine.finish_active_job(True, 0) == []


def test_reset_execution_rearms_exhausted_final_audit() -> None:
    builder = _RecordingBuilder()
    engine = _engine([_rec("fa", Role.FINAL_AUDIT)], config=WorkflowConfig(max_final_audit_passes=1), builder=builder)
    engine.start_execution()
    _run(engine, "Gaps remain in error handling")
    assert engine.start_next_job() is None

    engine.reset_execution()

    assert engine.drain_failures() == []
    assert engine.start_execution() == ["System: Execution enabled. Queued 1 task job(s)."]
    job = engine.start_next_job()
    assert job is not None
    assert (job.kind, job.node_id, job.pass_number) == (JobKind.FINAL_AUDIT, "fa", 1)
    assert builder.requests[-1].feedback is None


def test_rolling_context_window_follows_config_and_can_be_restored() -> None:
    engine = _engine(_impl_branch(), config=WorkflowConfig(context_window=2))
    engine.start_execution()
    for index in range(3):
        _run(engine, f"attempt {index}", success=False, code=1)

    entries = engine.context_entries()
    assert len(entries) == 2
    assert entries[-1].endswith("Key result: attempt 2")

    engine.replace_context_entries(["a", "b", "c"])
    assert engine.context_entries() == ["b", "c"]


def test_engine_logs_decisions_through_injected_logger() -> None:
    logger = _RecordingLogger()
    engine = _engine(_impl_branch(), config=WorkflowConfig(max_audit_passes=1), logger=logger)
    engine.start_execution()
    _run(engine)
    _run(engine, "AUDIT_RESULT: FAIL")

    names = [event for _, event, _ in logger.events]
    assert names == [
        "workflow_tasks_loaded",
        "workflow_job_started",
        "workflow_job_finished",
        "workflow_job_started",
        "workflow_job_finished",
        "workflow_retry_exhausted",
        "workflow_task_completed",
    ]
    level, _, started = logger.events[1]
    assert level == "info"
    assert started["role"] == "implementor"
    assert started["top_task_id"] == "t1"
    assert started["node_id"] == "t1.impl"
    assert started["pass_number"] == 1
    exhausted_level, _, exhausted = logger.events[5]
    assert exhausted_level == "warning"
    assert exhausted["failure_kind"] == "audit"


def test_reloaded_snapshot_resumes_at_next_unfinished_step() -> None:
    engine = _engine(_impl_branch(runner=True))
    engine.start_execution()
    _run(engine)
    _run(engine, "AUDIT_RESULT: PASS")

    resumed = _engine(engine.snapshot())
    resumed.start_execution()
    job = resumed.start_next_job()

    assert job is not None
    assert (job.kind, job.node_id, job.pass_number) == (JobKind.IMPLEMENTOR_TEST_RUNNER, "t1.impl.run", 1)


def test_reloaded_snapshot_reruns_interrupted_implementor_before_its_audit() -> None:
    engine = _engine(_impl_branch())
    engine.start_execution()
    assert engine.start_next_job() is not None

    resumed = _engine(engine.snapshot())
    resumed.start_execution()
    job = resumed.start_next_job()

    assert job is not None
    assert (job.kind, job.node_id) == (JobKind.IMPLEMENTOR, "t1.impl")


def test_snapshot_round_trips_every_state_reached_during_a_run() -> None:
    engine = _engine([_rec("t1", Role.TASK, order=0)])
    engine.start_execution()

    kinds: list[JobKind] = []
    for _ in range(10):
        job = engine.start_next_job()
        if job is None:
            break
        kinds.append(job.kind)
        assert from_external(engine.snapshot()) == engine.graph
        engine.append_active_output("AUDIT_RESULT: PASS")
        engine.finish_active_job(True, 0)
        assert from_external(engine.snapshot()) == engine.graph

    assert kinds == [JobKind.IMPLEMENTOR, JobKind.AUDITOR, JobKind.TEST_WRITER, JobKind.TEST_RUNNER]
    assert {record.id for record in engine.snapshot()} == {
        "t1",
        "t1.tests",
        "t1.tests.test-run",
        "t1.impl",
        "t1.impl.audit",
    }
    assert all(record.status is TaskStatus.DONE for record in engine.snapshot())


def test_load_normalizes_dataclass_records() -> None:
    engine = _engine()
    padded = [
        TaskRecord(id="t1", title="  Build parser \n", details="\tParse input.  ", role=Role.TASK, order=0),
        *_impl_branch()[1:],
    ]

    engine.load(padded)

    top = engine.snapshot()[0]
    assert (top.title, top.details) == ("Build parser", "Parse input.")

    with pytest.raises(ValueError, match=r"^records\[0\]\.order: must be <= 2147483647"):
        engine.load([_rec("t1", Role.TASK, order=2**31)])
    assert engine.snapshot()[0].title == "Build parser"
