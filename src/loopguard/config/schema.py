"""
loopguard — configuration schema and validation.

File: src/loopguard/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- ``handoff.api_key`` is the only embedded secret accepted; everything else that looks
  like a secret must be referenced through an ``*_env`` key.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, NotRequired, TypedDict

from loopguard.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_CHARS_PER_TOKEN,
    DEFAULT_CRITICAL_PERCENT,
    DEFAULT_FALLBACK_TOKENS,
    DEFAULT_MULTIPLIER,
    DEFAULT_OUTPUT_LINES,
    DEFAULT_PERSIST_TIMEOUT_SECONDS,
    DEFAULT_SPAWN_TIMEOUT_SECONDS,
    DEFAULT_THRESHOLD,
    DEFAULT_VERIFICATION_TIMEOUT_SECONDS,
    DEFAULT_WARN_PERCENT,
    LOG_FILE,
    STATE_DIR,
    TASK_FILE,
)
from loopguard.domain.models import ActionCategory

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_LOG_LEVELS: Final[tuple[str, ...]] = ("CRITICAL", "DEBUG", "ERROR", "INFO", "WARNING")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {
        "secret",
        "password",
        "passwd",
        "apikey",
        "private",
        "credential",
        "credentials",
        "auth",
    }
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "refresh_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Config paths that should be normalized relative to the workspace root.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("task", "file"),
    ("state", "dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class BudgetConfig(TypedDict):
    threshold: int
    warn_percent: int
    critical_percent: int
    chars_per_token: int
    multiplier: int
    fallback_tokens: int
    exempt_categories: list[str]


class TaskConfig(TypedDict):
    file: str


class StateConfig(TypedDict):
    dir: str


class HandoffConfig(TypedDict):
    api_key_env: str
    api_key: NotRequired[str]
    spawn_command: list[str]
    spawn_timeout_seconds: float
    persist_timeout_seconds: float
    push: bool
    remote: str


class VerificationConfig(TypedDict):
    timeout_seconds: float
    output_lines: int


class ObservabilityConfig(TypedDict):
    log_level: str
    log_file: str
    redact_secrets: bool


class LoopguardConfig(TypedDict):
    meta: MetaConfig
    budget: BudgetConfig
    task: TaskConfig
    state: StateConfig
    handoff: HandoffConfig
    verification: VerificationConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[LoopguardConfig] = {
    "meta": {"schema_version": CONFIG_SCHEMA_VERSION},
    "budget": {
        "threshold": DEFAULT_THRESHOLD,
        "warn_percent": DEFAULT_WARN_PERCENT,
        "critical_percent": DEFAULT_CRITICAL_PERCENT,
        "chars_per_token": DEFAULT_CHARS_PER_TOKEN,
        "multiplier": DEFAULT_MULTIPLIER,
        "fallback_tokens": DEFAULT_FALLBACK_TOKENS,
        "exempt_categories": [ActionCategory.PERSIST.value],
    },
    "task": {"file": TASK_FILE},
    "state": {"dir": STATE_DIR.as_posix()},
    "handoff": {
        "api_key_env": "LOOPGUARD_API_KEY",
        "spawn_command": [],
        "spawn_timeout_seconds": DEFAULT_SPAWN_TIMEOUT_SECONDS,
        "persist_timeout_seconds": DEFAULT_PERSIST_TIMEOUT_SECONDS,
        "push": True,
        "remote": "origin",
    },
    "verification": {
        "timeout_seconds": DEFAULT_VERIFICATION_TIMEOUT_SECONDS,
        "output_lines": DEFAULT_OUTPUT_LINES,
    },
    "observability": {
        "log_level": "INFO",
        "log_file": LOG_FILE.as_posix(),
        "redact_secrets": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

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


def default_config() -> LoopguardConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


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

    normalized = _validate_root(root, issues)
    if normalized is None or issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs and ``loopguard config``."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any] | None:
    allowed = set(DEFAULT_CONFIG)
    _reject_unknown_keys(payload, allowed, "", issues)
    _require_keys(payload, allowed, "", issues)
    if issues.has_issues:
        return None

    out: dict[str, Any] = {}
    out["meta"] = _validate_meta(payload["meta"], issues)
    out["budget"] = _validate_budget(payload["budget"], issues)
    out["task"] = _validate_single_path(payload["task"], "task", "file", issues)
    out["state"] = _validate_single_path(payload["state"], "state", "dir", issues)
    out["handoff"] = _validate_handoff(payload["handoff"], issues)
    out["verification"] = _validate_verification(payload["verification"], issues)
    out["observability"] = _validate_observability(payload["observability"], issues)
    return out


def _validate_meta(value: object, issues: _IssueCollector) -> dict[str, Any]:
    section = _section(value, "meta", {"schema_version"}, issues)
    version = _as_int(section.get("schema_version"), "meta.schema_version", issues, minimum=1)
    if version is not None and version != ConfigSchemaVersion:
        issues.add(
            "meta.schema_version",
            f"schema version {version} is not supported (expected {ConfigSchemaVersion})",
        )
    return {"schema_version": version}


def _validate_budget(value: object, issues: _IssueCollector) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["budget"])
    section = _section(value, "budget", allowed, issues)
    out: dict[str, Any] = {
        "threshold": _as_int(section.get("threshold"), "budget.threshold", issues, minimum=1),
        "chars_per_token": _as_int(
            section.get("chars_per_token"), "budget.chars_per_token", issues, minimum=1
        ),
        "multiplier": _as_int(section.get("multiplier"), "budget.multiplier", issues, minimum=1),
        "fallback_tokens": _as_int(
            section.get("fallback_tokens"), "budget.fallback_tokens", issues, minimum=0
        ),
    }
    warn = _as_int(section.get("warn_percent"), "budget.warn_percent", issues, minimum=1)
    critical = _as_int(
        section.get("critical_percent"), "budget.critical_percent", issues, minimum=1
    )
    if warn is not None and critical is not None and warn > critical:
        issues.add("budget.warn_percent", "must be <= budget.critical_percent")
    out["warn_percent"] = warn
    out["critical_percent"] = critical

    raw_categories = section.get("exempt_categories")
    categories: list[str] = []
    if not isinstance(raw_categories, list):
        issues.add("budget.exempt_categories", "expected list of category names")
    else:
        allowed_values = tuple(item.value for item in ActionCategory)
        for index, item in enumerate(raw_categories):
            parsed = _as_enum(
                item,
                f"budget.exempt_categories[{index}]",
                issues,
                allowed_values=allowed_values,
            )
            if parsed is not None and parsed not in categories:
                categories.append(parsed)
    out["exempt_categories"] = categories
    return out


def _validate_single_path(
    value: object, section_name: str, key: str, issues: _IssueCollector
) -> dict[str, Any]:
    section = _section(value, section_name, {key}, issues)
    return {key: _as_path_text(section.get(key), f"{section_name}.{key}", issues)}


def _validate_handoff(value: object, issues: _IssueCollector) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["handoff"]) | {"api_key"}
    section = _section(value, "handoff", allowed, issues, optional={"api_key"})
    out: dict[str, Any] = {
        "api_key_env": _as_env_name(section.get("api_key_env"), "handoff.api_key_env", issues),
        "spawn_command": _as_command(section.get("spawn_command"), "handoff.spawn_command", issues),
        "spawn_timeout_seconds": _as_float(
            section.get("spawn_timeout_seconds"),
            "handoff.spawn_timeout_seconds",
            issues,
            minimum=0.0,
        ),
        "persist_timeout_seconds": _as_float(
            section.get("persist_timeout_seconds"),
            "handoff.persist_timeout_seconds",
            issues,
            minimum=0.0,
        ),
        "push": _as_bool(section.get("push"), "handoff.push", issues),
        "remote": _as_str(section.get("remote"), "handoff.remote", issues),
    }
    if "api_key" in section:
        raw_key = section["api_key"]
        if not isinstance(raw_key, str):
            issues.add("handoff.api_key", f"expected string, got {type(raw_key).__name__}")
        elif raw_key.strip():
            out["api_key"] = raw_key.strip()
    return out


def _validate_verification(value: object, issues: _IssueCollector) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["verification"])
    section = _section(value, "verification", allowed, issues)
    return {
        "timeout_seconds": _as_float(
            section.get("timeout_seconds"), "verification.timeout_seconds", issues, minimum=0.0
        ),
        "output_lines": _as_int(
            section.get("output_lines"), "verification.output_lines", issues, minimum=1
        ),
    }


def _validate_observability(value: object, issues: _IssueCollector) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["observability"])
    section = _section(value, "observability", allowed, issues)
    raw_level = section.get("log_level")
    level = raw_level.strip().upper() if isinstance(raw_level, str) else raw_level
    return {
        "log_level": _as_enum(level, "observability.log_level", issues, allowed_values=_LOG_LEVELS),
        "log_file": _as_path_text(section.get("log_file"), "observability.log_file", issues),
        "redact_secrets": _as_bool(
            section.get("redact_secrets"), "observability.redact_secrets", issues
        ),
    }


def _section(
    value: object,
    path: str,
    allowed: set[str],
    issues: _IssueCollector,
    *,
    optional: set[str] | None = None,
) -> dict[str, object]:
    section = _as_object(value, path, issues)
    if section is None:
        return {}
    _reject_unknown_keys(section, allowed, path, issues)
    _require_keys(section, allowed - (optional or set()), path, issues)
    return section


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


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_env_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if not _ENV_NAME_PATTERN.fullmatch(parsed):
        issues.add(path, "must be an env var name (example: LOOPGUARD_API_KEY)")
        return None
    return parsed


def _as_command(value: object, path: str, issues: _IssueCollector) -> list[str]:
    if isinstance(value, str):
        try:
            return shlex.split(value)
        except ValueError as exc:
            issues.add(path, f"cannot split command string: {exc}")
            return []
    if not isinstance(value, list):
        issues.add(
            path, f"expected list of strings or a command string, got {type(value).__name__}"
        )
        return []
    argv: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str) or not item:
            issues.add(f"{path}[{index}]", "expected non-empty string")
            continue
        argv.append(item)
    return argv


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


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


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
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(
                key_path,
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


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
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        out[key] = _deep_copy_value(value[key])
    return out


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for key, item in value.items():
            if isinstance(key, str):
                out[key] = _deep_copy_value(item)
        return out
    if isinstance(value, list):
        return [_deep_copy_value(item) for item in value]
    return copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if _looks_sensitive_key(key):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "LoopguardConfig",
    "PATH_FIELDS",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "redact_config",
    "validate_config",
]
