"""
relay-orchestrator: configuration schema and validation.

Purpose
- Define authoritative configuration defaults and strict validation rules.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Expose typed, frozen views of the validated sections to the engine.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, TypedDict

from relay_orchestrator.constants import (
    CONFIG_SCHEMA_VERSION,
    CONTEXT_WINDOW_ENTRIES,
    MAX_AUDIT_PASSES,
    MAX_FINAL_AUDIT_PASSES,
    MAX_TEST_PASSES,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")


class MetaConfig(TypedDict):
    schema_version: int


class WorkflowSection(TypedDict):
    max_audit_passes: int
    max_test_passes: int
    max_final_audit_passes: int
    context_window: int


class ObservabilitySection(TypedDict):
    log_level: str
    log_dir: str
    redact_transcripts: bool


class RelayConfig(TypedDict):
    meta: MetaConfig
    workflow: WorkflowSection
    observability: ObservabilitySection


DEFAULT_CONFIG: Final[RelayConfig] = {
    "meta": {"schema_version": CONFIG_SCHEMA_VERSION},
    "workflow": {
        "max_audit_passes": MAX_AUDIT_PASSES,
        "max_test_passes": MAX_TEST_PASSES,
        "max_final_audit_passes": MAX_FINAL_AUDIT_PASSES,
        "context_window": CONTEXT_WINDOW_ENTRIES,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": ".relay/logs",
        "redact_transcripts": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


@dataclass(frozen=True, slots=True)
class WorkflowConfig:
    """Retry ceilings and rolling-context size used by the workflow engine."""

    max_audit_passes: int = MAX_AUDIT_PASSES
    max_test_passes: int = MAX_TEST_PASSES
    max_final_audit_passes: int = MAX_FINAL_AUDIT_PASSES
    context_window: int = CONTEXT_WINDOW_ENTRIES

    def __post_init__(self) -> None:
        issues = _IssueCollector()
        _validate_workflow(
            {
                "max_audit_passes": self.max_audit_passes,
                "max_test_passes": self.max_test_passes,
                "max_final_audit_passes": self.max_final_audit_passes,
                "context_window": self.context_window,
            },
            "workflow",
            issues,
        )
        if issues.has_issues:
            raise ConfigValidationError(issues.items())

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> WorkflowConfig:
        section = config.get("workflow", {})
        return cls(**{key: section[key] for key in DEFAULT_CONFIG["workflow"] if key in section})


@dataclass(frozen=True, slots=True)
class ObservabilityConfig:
    log_level: str = "INFO"
    log_dir: Path = Path(".relay/logs")
    redact_transcripts: bool = True

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> ObservabilityConfig:
        section = config.get("observability", {})
        defaults = DEFAULT_CONFIG["observability"]
        return cls(
            log_level=str(section.get("log_level", defaults["log_level"])),
            log_dir=Path(section.get("log_dir", defaults["log_dir"])),
            redact_transcripts=bool(section.get("redact_transcripts", defaults["redact_transcripts"])),
        )


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> RelayConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade relay.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the relay-orchestrator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    sections = {
        "meta": _validate_meta,
        "workflow": _validate_workflow,
        "observability": _validate_observability,
    }
    _reject_unknown_keys(root, set(sections), "", issues)
    _require_keys(root, set(sections), "", issues)

    normalized: dict[str, Any] = {}
    for key in sorted(sections):
        if key not in root:
            continue
        section = _as_object(root[key], key, issues)
        if section is not None:
            normalized[key] = sections[key](section, key, issues)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _validate_meta(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(payload["schema_version"], _join(path, "schema_version"), issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_workflow(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["workflow"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key not in payload:
            continue
        parsed = _as_int(payload[key], _join(path, key), issues, minimum=1)
        if parsed is not None:
            out[key] = parsed
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["observability"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        parsed_level = _as_enum(payload["log_level"], _join(path, "log_level"), issues, allowed_values=LOG_LEVELS)
        if parsed_level is not None:
            out["log_level"] = parsed_level

    if "log_dir" in payload:
        parsed_dir = _as_str(payload["log_dir"], _join(path, "log_dir"), issues)
        if parsed_dir is not None:
            if "\x00" in parsed_dir:
                issues.add(_join(path, "log_dir"), "must not contain NUL bytes")
            else:
                out["log_dir"] = parsed_dir

    if "redact_transcripts" in payload:
        parsed_redact = _as_bool(payload["redact_transcripts"], _join(path, "redact_transcripts"), issues)
        if parsed_redact is not None:
            out["redact_transcripts"] = parsed_redact
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    normalized = parsed.upper()
    if normalized not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return normalized


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        item = value[key]
        out[key] = _deep_copy_mapping(item) if isinstance(item, Mapping) else copy.deepcopy(item)
    return out


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "ObservabilityConfig",
    "ObservabilitySection",
    "RelayConfig",
    "WorkflowConfig",
    "WorkflowSection",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
