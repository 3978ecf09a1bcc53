"""Run-scoped JSON-lines log of workflow engine decisions.

The engine emits structlog events (``workflow_job_started``,
``workflow_retry_exhausted`` ...). ``setup_logging`` routes them into the
stdlib ``relay_orchestrator`` logger, which hands records to a
``QueueHandler``; a ``QueueListener`` thread writes one JSON object per line to
``<log_dir>/<run_id>/workflow.jsonl``.

Each line carries ``timestamp``, ``level``, ``logger``, ``event``, the run id
and any correlation keys at the top level. Remaining event keywords are placed
under ``fields`` after redaction.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import queue
import re
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog

from relay_orchestrator.config.schema import ObservabilityConfig

Redactor = Callable[[Mapping[str, object]], dict[str, object]]

LOGGER_NAME: Final[str] = "relay_orchestrator"
LOG_FILENAME: Final[str] = "workflow.jsonl"
REDACTED: Final[str] = "***REDACTED***"

CORRELATION_KEYS: Final[tuple[str, ...]] = (
    "run_id",
    "top_task_id",
    "node_id",
    "role",
    "parent_context_key",
)

# Event keywords that may carry worker output.
_TRANSCRIPT_KEYS: Final[frozenset[str]] = frozenset({"reason", "feedback", "transcript", "prompt", "report"})
_SECRET_KEY_TERMS: Final[tuple[str, ...]] = ("secret", "token", "password", "api_key", "credential")
_SECRET_ASSIGNMENT: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret)(\s*[:=]\s*)[^\s,;]+"
)

_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime"}

_active: RunLogHandle | None = None


def redact_transcripts(fields: Mapping[str, object]) -> dict[str, object]:
    """Hide transcript-bearing fields entirely and mask secrets everywhere else."""
    return {
        key: REDACTED if key in _TRANSCRIPT_KEYS else _mask_secrets(key, value) for key, value in fields.items()
    }


def redact_secrets(fields: Mapping[str, object]) -> dict[str, object]:
    """Keep transcripts readable; mask only secret keys and ``key=value`` secrets."""
    return {key: _mask_secrets(key, value) for key, value in fields.items()}


class _ContextQueueHandler(logging.handlers.QueueHandler):
    """Stamps bound correlation keys onto records before they leave the emitting thread."""

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        for key, value in structlog.contextvars.get_contextvars().items():
            if key in CORRELATION_KEYS and not hasattr(record, key):
                setattr(record, key, value)
        return super().prepare(record)


class _WorkflowEventFormatter(logging.Formatter):
    def __init__(self, *, run_id: str, redactor: Redactor) -> None:
        super().__init__()
        self._run_id = run_id
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            "run_id": self._run_id,
        }
        fields: dict[str, object] = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES or key.startswith("_"):
                continue
            if key in CORRELATION_KEYS:
                line[key] = str(value)
            else:
                fields[key] = value
        if fields:
            line["fields"] = self._redactor(fields)
        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)
        return json.dumps(line, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


class RunLogHandle:
    """Owns the queue listener and file sink for one run."""

    def __init__(
        self,
        *,
        run_id: str,
        log_path: Path,
        logger: logging.Logger,
        queue_handler: logging.Handler,
        file_handler: logging.Handler,
        listener: logging.handlers.QueueListener,
    ) -> None:
        self.run_id = run_id
        self.log_path = log_path
        self.logger = logger
        self._queue_handler = queue_handler
        self._file_handler = file_handler
        self._listener = listener
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Drain queued records to disk and detach the sink. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._listener.stop()
        self.logger.removeHandler(self._queue_handler)
        self._queue_handler.close()
        self._file_handler.close()


def setup_logging(
    observability: ObservabilityConfig | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
) -> RunLogHandle:
    """Start the JSON-lines sink for ``run_id`` and route engine events into it.

    A previously active run log is closed first. ``log_dir`` overrides
    ``observability.log_dir``.
    """
    global _active

    settings = observability if observability is not None else ObservabilityConfig()
    run_id = run_id.strip()
    if not run_id or Path(run_id).name != run_id:
        raise ValueError(f"run_id must be a non-empty single path component, got {run_id!r}")
    level = logging.getLevelName(settings.log_level.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"unsupported log level {settings.log_level!r}")

    shutdown_logging()

    log_path = Path(log_dir if log_dir is not None else settings.log_dir) / run_id / LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    redactor = redact_transcripts if settings.redact_transcripts else redact_secrets
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(_WorkflowEventFormatter(run_id=run_id, redactor=redactor))

    records: queue.Queue[logging.LogRecord] = queue.Queue()
    queue_handler = _ContextQueueHandler(records)
    listener = logging.handlers.QueueListener(records, file_handler)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(queue_handler)
    listener.start()

    configure_structlog()
    _active = RunLogHandle(
        run_id=run_id,
        log_path=log_path,
        logger=logger,
        queue_handler=queue_handler,
        file_handler=file_handler,
        listener=listener,
    )
    return _active


def configure_structlog() -> None:
    """Render structlog events as stdlib records; keywords become record attributes."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def shutdown_logging(handle: RunLogHandle | None = None) -> None:
    """Close ``handle`` (default: the active run log)."""
    global _active

    target = handle if handle is not None else _active
    if target is None:
        return
    target.close()
    if target is _active:
        _active = None


def active_run_log() -> RunLogHandle | None:
    return _active


@contextmanager
def correlation_scope(**fields: str) -> Iterator[None]:
    """Bind correlation keys for every event logged inside the block.

    Only ``CORRELATION_KEYS`` are accepted; nested scopes override and restore.
    """
    unknown = sorted(set(fields) - set(CORRELATION_KEYS))
    if unknown:
        raise ValueError(f"unknown correlation key(s): {', '.join(unknown)}")
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def _mask_secrets(key: str, value: Any) -> Any:
    if any(term in key.lower() for term in _SECRET_KEY_TERMS):
        return REDACTED
    if isinstance(value, str):
        return _SECRET_ASSIGNMENT.sub(lambda match: f"{match.group(1)}{match.group(2)}{REDACTED}", value)
    if isinstance(value, Mapping):
        return {str(inner): _mask_secrets(str(inner), item) for inner, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_mask_secrets(key, item) for item in value]
    return value


__all__ = [
    "CORRELATION_KEYS",
    "LOGGER_NAME",
    "LOG_FILENAME",
    "REDACTED",
    "Redactor",
    "RunLogHandle",
    "active_run_log",
    "configure_structlog",
    "correlation_scope",
    "redact_secrets",
    "redact_transcripts",
    "setup_logging",
    "shutdown_logging",
]
