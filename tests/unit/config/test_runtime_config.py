"""
loopguard — unit tests for layered config and the frozen runtime view

File: tests/unit/config/test_runtime_config.py

Purpose
- Validate source precedence: defaults < user TOML < project TOML < env < CLI.
- Validate credential precedence: env > project > user, first match wins.

Functional requirements
- Offline; every test isolates HOME and the environment.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from loopguard.config import (
    ConfigLoadError,
    ConfigValidationError,
    RuntimeConfig,
    dump_effective_config,
    load_config,
    resolve_credential,
    resolve_runtime_config,
)
from loopguard.domain.models import ActionCategory


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "ws"
    root.mkdir()
    return root


@pytest.fixture()
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


def test_defaults_without_any_source(workspace: Path, home: Path) -> None:
    config = resolve_runtime_config(workspace, environ={}, home=home)

    assert config.threshold == 80_000
    assert config.warn_percent == 80
    assert config.warn_threshold == 64_000
    assert config.chars_per_token == 4
    assert config.multiplier == 4
    assert config.exempt_categories == frozenset({ActionCategory.PERSIST})
    assert config.task_path == workspace.resolve() / "LOOP_TASK.md"
    assert config.state_path == workspace.resolve() / ".loopguard"
    assert config.log_path == workspace.resolve() / ".loopguard" / "logs" / "loopguard.jsonl"
    assert config.auto_continuation is False
    assert config.credential_source is None


def test_source_precedence_user_project_env_cli(workspace: Path, home: Path) -> None:
    _write(
        home / ".config" / "loopguard" / "config.toml",
        "[budget]\nthreshold = 1000\nwarn_percent = 50\nmultiplier = 2\n",
    )
    _write(
        workspace / ".loopguard" / "config.toml",
        "[budget]\nthreshold = 2000\nwarn_percent = 60\n",
    )
    environ = {"LOOPGUARD_BUDGET_THRESHOLD": "3000"}

    loaded = load_config(
        workspace,
        cli_overrides={"budget.warn_percent": 90},
        environ=environ,
        home=home,
    )
    budget = loaded.config["budget"]

    assert budget["threshold"] == 3000
    assert budget["warn_percent"] == 90
    assert budget["multiplier"] == 2
    assert [source.name for source in loaded.sources] == [
        "defaults",
        "user",
        "project",
        "env",
        "cli",
    ]


def test_env_values_are_coerced_to_default_types(workspace: Path, home: Path) -> None:
    environ = {
        "LOOPGUARD_HANDOFF_PUSH": "off",
        "LOOPGUARD_VERIFICATION_TIMEOUT_SECONDS": "12.5",
        "LOOPGUARD_HANDOFF_PERSIST_TIMEOUT_SECONDS": "45",
    }

    config = resolve_runtime_config(workspace, environ=environ, home=home)

    assert config.push is False
    assert config.verification_timeout_seconds == 12.5
    assert config.persist_timeout_seconds == 45.0
    assert config.spawn_timeout_seconds == 60.0


def test_invalid_env_integer_raises_config_load_error(workspace: Path, home: Path) -> None:
    with pytest.raises(ConfigLoadError, match="LOOPGUARD_BUDGET_THRESHOLD"):
        load_config(workspace, environ={"LOOPGUARD_BUDGET_THRESHOLD": "lots"}, home=home)


def test_validation_rejects_unknown_keys_and_bad_bands(workspace: Path, home: Path) -> None:
    _write(
        workspace / ".loopguard" / "config.toml",
        "[budget]\nwarn_percent = 120\ncritical_percent = 100\nsurprise = 1\n",
    )

    with pytest.raises(ConfigValidationError) as exc_info:
        load_config(workspace, environ={}, home=home)

    paths = {issue.path for issue in exc_info.value.issues}
    assert "budget.warn_percent" in paths
    assert "budget.surprise" in paths


def test_exempt_categories_are_typed(workspace: Path, home: Path) -> None:
    _write(
        workspace / ".loopguard" / "config.toml",
        '[budget]\nexempt_categories = ["persist", "inspect"]\n',
    )

    config = resolve_runtime_config(workspace, environ={}, home=home)

    assert config.exempt_categories == frozenset(
        {ActionCategory.PERSIST, ActionCategory.INSPECT}
    )


def test_credential_env_wins_over_project_and_user(workspace: Path, home: Path) -> None:
    _write(home / ".config" / "loopguard" / "config.toml", '[handoff]\napi_key = "user-key"\n')
    _write(workspace / ".loopguard" / "config.toml", '[handoff]\napi_key = "project-key"\n')

    loaded = load_config(workspace, environ={"LOOPGUARD_API_KEY": "env-key"}, home=home)

    assert resolve_credential(loaded, environ={"LOOPGUARD_API_KEY": "env-key"}) == (
        "env-key",
        "env",
    )


def test_credential_project_wins_over_user(workspace: Path, home: Path) -> None:
    _write(home / ".config" / "loopguard" / "config.toml", '[handoff]\napi_key = "user-key"\n')
    _write(workspace / ".loopguard" / "config.toml", '[handoff]\napi_key = "project-key"\n')

    config = resolve_runtime_config(workspace, environ={}, home=home)

    assert config.api_key == "project-key"
    assert config.credential_source == "project"
    assert config.auto_continuation is True


def test_credential_falls_back_to_user_config(workspace: Path, home: Path) -> None:
    _write(home / ".config" / "loopguard" / "config.toml", '[handoff]\napi_key = "user-key"\n')

    config = resolve_runtime_config(workspace, environ={"LOOPGUARD_API_KEY": "  "}, home=home)

    assert config.api_key == "user-key"
    assert config.credential_source == "user"


def test_custom_api_key_env_name_is_honoured(workspace: Path, home: Path) -> None:
    _write(workspace / ".loopguard" / "config.toml", '[handoff]\napi_key_env = "AGENT_KEY"\n')

    config = resolve_runtime_config(workspace, environ={"AGENT_KEY": "abc"}, home=home)

    assert config.api_key == "abc"
    assert config.api_key_env == "AGENT_KEY"


def test_secrets_never_leak_into_dumps_or_repr(workspace: Path, home: Path) -> None:
    _write(
        workspace / ".loopguard" / "config.toml",
        '[handoff]\napi_key = "sk-ant-REDACTED"\n',
    )

    loaded = load_config(workspace, environ={}, home=home)
    dumped = json.loads(dump_effective_config(loaded.config))
    config = RuntimeConfig.from_loaded(loaded, environ={})

    assert dumped["handoff"]["api_key"] == "<redacted>"
    assert "sk-ant" not in repr(config)
    assert "sk-ant" not in json.dumps(config.summary())
