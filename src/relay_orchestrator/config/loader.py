"""
relay-orchestrator: runtime config loader.

Purpose
- Build the effective ``[workflow]`` and ``[observability]`` settings from
  defaults, ``relay.toml``, ``RELAY_*`` environment variables, and caller overrides.

Functional requirements
- Precedence: overrides > env > file > defaults.
- Env names are ``RELAY_<SECTION>_<FIELD>``, e.g. ``RELAY_WORKFLOW_MAX_AUDIT_PASSES``.
- ``observability.log_dir`` resolves against the directory holding the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Final

from relay_orchestrator.config.schema import (
    ObservabilityConfig,
    WorkflowConfig,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "relay.toml"
ENV_PREFIX: Final[str] = "RELAY_"
ENV_SECTIONS: Final[tuple[str, ...]] = ("workflow", "observability")

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be read or an env/override value cannot be applied."""


def load_config(
    path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> dict[str, Any]:
    """Load effective config with precedence overrides > env > file > defaults.

    A missing ``relay.toml`` in the working directory is not an error; an
    explicitly named file that does not exist is.
    """

    if path is None:
        config_path = Path.cwd().resolve() / DEFAULT_CONFIG_FILE
    else:
        config_path = Path(path).expanduser().resolve()
    from_file = _read_toml(config_path, required=path is not None)

    layered = merge_config(default_config(), from_file)
    layered = merge_config(layered, _env_layer(os.environ if environ is None else environ))
    layered = merge_config(layered, _override_layer(overrides or {}))

    return normalize_paths(assert_valid_config(layered), base_dir=config_path.parent)


def load_settings(
    path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> tuple[WorkflowConfig, ObservabilityConfig]:
    """``load_config`` narrowed to the typed engine and logging settings."""
    config = load_config(path, environ=environ, overrides=overrides)
    return WorkflowConfig.from_config(config), ObservabilityConfig.from_config(config)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Return a copy with a relative ``observability.log_dir`` anchored at ``base_dir``."""

    copied = merge_config({}, config)
    observability = copied.get("observability")
    if isinstance(observability, dict) and isinstance(observability.get("log_dir"), str):
        log_dir = Path(os.path.expandvars(observability["log_dir"])).expanduser()
        if not log_dir.is_absolute():
            log_dir = base_dir / log_dir
        observability["log_dir"] = Path(os.path.normpath(log_dir)).as_posix()
    return copied


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Canonical JSON of ``config`` (sorted keys, compact separators)."""

    return json.dumps(merge_config({}, config), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def env_variable_names() -> dict[str, str]:
    """Map every recognised ``RELAY_*`` variable to its dotted config field."""
    return {env_name: f"{section}.{field}" for env_name, (section, field, _) in _env_bindings().items()}


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.is_file():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_bindings() -> dict[str, tuple[str, str, Callable[[str, str], object]]]:
    defaults = default_config()
    bindings: dict[str, tuple[str, str, Callable[[str, str], object]]] = {}
    for section in ENV_SECTIONS:
        for field, default in defaults[section].items():  # type: ignore[literal-required]
            parse: Callable[[str, str], object]
            if isinstance(default, bool):
                parse = _parse_bool
            elif isinstance(default, int):
                parse = _parse_int
            else:
                parse = _parse_text
            bindings[f"{ENV_PREFIX}{section.upper()}_{field.upper()}"] = (section, field, parse)
    return bindings


def _env_layer(environ: Mapping[str, str]) -> dict[str, dict[str, object]]:
    layer: dict[str, dict[str, object]] = {}
    for env_name, (section, field, parse) in sorted(_env_bindings().items()):
        raw = environ.get(env_name)
        if raw is not None:
            layer.setdefault(section, {})[field] = parse(raw.strip(), f"{env_name} -> {section}.{field}")
    return layer


def _override_layer(overrides: Mapping[str, object]) -> dict[str, dict[str, object]]:
    layer: dict[str, dict[str, object]] = {}
    for dotted in sorted(overrides):
        section, _, field = dotted.partition(".")
        if not section or not field or "." in field:
            raise ConfigLoadError(f"invalid override key {dotted!r}; expected '<section>.<field>'")
        layer.setdefault(section, {})[field] = overrides[dotted]
    return layer


def _parse_int(value: str, label: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigLoadError(f"{label} must be an integer, got {value!r}") from exc


def _parse_bool(value: str, label: str) -> bool:
    lowered = value.lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    raise ConfigLoadError(f"{label} must be a boolean (1/0, true/false, yes/no, on/off), got {value!r}")


def _parse_text(value: str, label: str) -> str:
    return value


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ENV_SECTIONS",
    "dump_effective_config",
    "env_variable_names",
    "load_config",
    "load_settings",
    "normalize_paths",
]
