"""
relay-orchestrator config package public API.

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``relay.toml`` + ``RELAY_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from relay_orchestrator.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
    load_settings,
    normalize_paths,
)
from relay_orchestrator.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    ObservabilityConfig,
    WorkflowConfig,
    assert_valid_config,
    default_config,
    merge_config,
    validate_config,
)

__all__ = [
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "ObservabilityConfig",
    "WorkflowConfig",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "load_settings",
    "merge_config",
    "normalize_paths",
    "validate_config",
]
