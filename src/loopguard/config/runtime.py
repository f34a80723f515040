"""Immutable runtime configuration resolved once per process."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loopguard.config.loader import LoadedConfig, SourceName, load_config
from loopguard.constants import (
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

# Credential lookup order; first match wins.
CREDENTIAL_PRECEDENCE: tuple[SourceName, ...] = ("env", "project", "user")


@dataclass(frozen=True, slots=True)
class RuntimeConfig:
    """Effective settings passed by context to every loopguard component."""

    workspace_root: Path
    task_file: Path | None = None
    state_dir: Path | None = None
    threshold: int = DEFAULT_THRESHOLD
    warn_percent: int = DEFAULT_WARN_PERCENT
    critical_percent: int = DEFAULT_CRITICAL_PERCENT
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN
    multiplier: int = DEFAULT_MULTIPLIER
    fallback_tokens: int = DEFAULT_FALLBACK_TOKENS
    exempt_categories: frozenset[ActionCategory] = frozenset({ActionCategory.PERSIST})
    api_key: str | None = field(default=None, repr=False)
    credential_source: SourceName | None = None
    api_key_env: str = "LOOPGUARD_API_KEY"
    spawn_command: tuple[str, ...] = ()
    spawn_timeout_seconds: float = DEFAULT_SPAWN_TIMEOUT_SECONDS
    persist_timeout_seconds: float = DEFAULT_PERSIST_TIMEOUT_SECONDS
    push: bool = True
    remote: str = "origin"
    verification_timeout_seconds: float = DEFAULT_VERIFICATION_TIMEOUT_SECONDS
    output_lines: int = DEFAULT_OUTPUT_LINES
    log_level: str = "INFO"
    log_file: Path | None = None
    redact_secrets: bool = True

    def __post_init__(self) -> None:
        root = Path(self.workspace_root)
        object.__setattr__(self, "workspace_root", root)
        if self.task_file is None:
            object.__setattr__(self, "task_file", root / TASK_FILE)
        if self.state_dir is None:
            object.__setattr__(self, "state_dir", root / STATE_DIR)
        if self.log_file is None:
            object.__setattr__(self, "log_file", self.state_path / LOG_FILE)
        object.__setattr__(self, "exempt_categories", frozenset(self.exempt_categories))
        if self.threshold <= 0:
            raise ValueError("threshold must be > 0")
        if self.credential_source is None and self.api_key:
            object.__setattr__(self, "credential_source", "env")

    @property
    def state_path(self) -> Path:
        assert self.state_dir is not None
        return self.state_dir

    @property
    def task_path(self) -> Path:
        assert self.task_file is not None
        return self.task_file

    @property
    def log_path(self) -> Path:
        assert self.log_file is not None
        return self.log_file

    @property
    def warn_threshold(self) -> int:
        return self.threshold * self.warn_percent // 100

    @property
    def auto_continuation(self) -> bool:
        """Remote continuation is enabled when any credential source resolved a key."""

        return bool(self.api_key)

    @classmethod
    def from_loaded(
        cls,
        loaded: LoadedConfig,
        *,
        environ: Mapping[str, str] | None = None,
    ) -> RuntimeConfig:
        config = loaded.config
        budget = config["budget"]
        handoff = config["handoff"]
        verification = config["verification"]
        observability = config["observability"]
        state_dir = Path(config["state"]["dir"])
        api_key, source = resolve_credential(loaded, environ=environ)
        log_file = Path(observability["log_file"]).expanduser()
        if not log_file.is_absolute():
            log_file = state_dir / log_file

        return cls(
            workspace_root=loaded.workspace_root,
            task_file=Path(config["task"]["file"]),
            state_dir=state_dir,
            threshold=budget["threshold"],
            warn_percent=budget["warn_percent"],
            critical_percent=budget["critical_percent"],
            chars_per_token=budget["chars_per_token"],
            multiplier=budget["multiplier"],
            fallback_tokens=budget["fallback_tokens"],
            exempt_categories=frozenset(
                ActionCategory(item) for item in budget["exempt_categories"]
            ),
            api_key=api_key,
            credential_source=source,
            api_key_env=handoff["api_key_env"],
            spawn_command=tuple(handoff["spawn_command"]),
            spawn_timeout_seconds=handoff["spawn_timeout_seconds"],
            persist_timeout_seconds=handoff["persist_timeout_seconds"],
            push=handoff["push"],
            remote=handoff["remote"],
            verification_timeout_seconds=verification["timeout_seconds"],
            output_lines=verification["output_lines"],
            log_level=observability["log_level"],
            log_file=log_file,
            redact_secrets=observability["redact_secrets"],
        )

    def summary(self) -> dict[str, Any]:
        """Secret-free summary used by ``loopguard status``."""

        return {
            "workspace_root": self.workspace_root.as_posix(),
            "task_file": self.task_path.as_posix(),
            "state_dir": self.state_path.as_posix(),
            "threshold": self.threshold,
            "warn_threshold": self.warn_threshold,
            "exempt_categories": sorted(item.value for item in self.exempt_categories),
            "continuation_mode": "remote" if self.auto_continuation else "local",
            "credential_source": self.credential_source,
        }


def resolve_credential(
    loaded: LoadedConfig,
    *,
    environ: Mapping[str, str] | None = None,
) -> tuple[str | None, SourceName | None]:
    """Return the spawn credential and the source it came from.

    Order: explicit environment value, project-local config, user-global config.
    """

    env_map = os.environ if environ is None else environ
    env_name = loaded.config["handoff"]["api_key_env"]
    for name in CREDENTIAL_PRECEDENCE:
        if name == "env":
            value = env_map.get(env_name, "").strip()
        else:
            source = loaded.source(name)
            value = _source_api_key(source.payload) if source is not None else ""
        if value:
            return value, name
    return None, None


def resolve_runtime_config(
    workspace_root: str | Path,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
    home: str | Path | None = None,
) -> RuntimeConfig:
    """Load every config source once and freeze the result."""

    loaded = load_config(workspace_root, cli_overrides=cli_overrides, environ=environ, home=home)
    return RuntimeConfig.from_loaded(loaded, environ=environ)


def _source_api_key(payload: Mapping[str, object]) -> str:
    handoff = payload.get("handoff")
    if not isinstance(handoff, Mapping):
        return ""
    raw = handoff.get("api_key")
    if not isinstance(raw, str):
        return ""
    return raw.strip()


__all__ = [
    "CREDENTIAL_PRECEDENCE",
    "RuntimeConfig",
    "resolve_credential",
    "resolve_runtime_config",
]
