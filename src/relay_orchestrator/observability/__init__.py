"""Run-scoped structured logging for engine decisions."""

from relay_orchestrator.observability.logging import (
    CORRELATION_KEYS,
    RunLogHandle,
    active_run_log,
    configure_structlog,
    correlation_scope,
    redact_secrets,
    redact_transcripts,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "CORRELATION_KEYS",
    "RunLogHandle",
    "active_run_log",
    "configure_structlog",
    "correlation_scope",
    "redact_secrets",
    "redact_transcripts",
    "setup_logging",
    "shutdown_logging",
]
