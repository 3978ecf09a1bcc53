"""Control-plane public API: job descriptors, audit policy and rolling context.

``WorkflowEngine`` is imported from ``relay_orchestrator.control_plane.scheduler``
directly; it depends on the synthesis plane, which in turn uses the job types
exported here.
"""

from relay_orchestrator.control_plane.audit_policy import (
    AuditVerdict,
    RetryAction,
    VerdictSource,
    classify_audit,
    decide_retry,
    strictness_policy,
)
from relay_orchestrator.control_plane.context_log import RollingContextLog
from relay_orchestrator.control_plane.jobs import Job, JobKind, JobRun, PendingJob

__all__ = [
    "AuditVerdict",
    "Job",
    "JobKind",
    "JobRun",
    "PendingJob",
    "RetryAction",
    "RollingContextLog",
    "VerdictSource",
    "classify_audit",
    "decide_retry",
    "strictness_policy",
]
