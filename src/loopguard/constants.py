"""Stable constants shared across loopguard planes."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted records.
CONFIG_SCHEMA_VERSION: Final[int] = 1
LEDGER_SCHEMA_VERSION: Final[int] = 1
ITERATION_SCHEMA_VERSION: Final[int] = 1

# Default workspace paths (relative to the workspace root unless overridden by config).
TASK_FILE: Final[str] = "LOOP_TASK.md"
STATE_DIR: Final[PurePosixPath] = PurePosixPath(".loopguard")
LEDGER_FILE: Final[str] = "ledger.json"
ITERATION_FILE: Final[str] = "iteration.json"
ALLOCATIONS_FILE: Final[str] = "allocations.jsonl"
PREVIOUS_ALLOCATIONS_FILE: Final[str] = "allocations.prev.jsonl"
LAST_TEST_OUTPUT_FILE: Final[str] = "last_test_output.txt"
GUARDRAILS_FILE: Final[str] = "guardrails.md"
LOCK_FILE: Final[str] = "state.lock"
LOG_FILE: Final[PurePosixPath] = PurePosixPath("logs/loopguard.jsonl")

# Config file locations, lowest precedence first.
PROJECT_CONFIG_FILE: Final[PurePosixPath] = PurePosixPath(".loopguard/config.toml")
USER_CONFIG_FILE: Final[PurePosixPath] = PurePosixPath(".config/loopguard/config.toml")

# Budget defaults.
DEFAULT_THRESHOLD: Final[int] = 80_000
DEFAULT_WARN_PERCENT: Final[int] = 80
DEFAULT_CRITICAL_PERCENT: Final[int] = 100
DEFAULT_CHARS_PER_TOKEN: Final[int] = 4
DEFAULT_MULTIPLIER: Final[int] = 4
DEFAULT_FALLBACK_TOKENS: Final[int] = 100

# Handoff defaults.
DEFAULT_SPAWN_TIMEOUT_SECONDS: Final[float] = 60.0
DEFAULT_PERSIST_TIMEOUT_SECONDS: Final[float] = 120.0

# Verification defaults.
DEFAULT_VERIFICATION_TIMEOUT_SECONDS: Final[float] = 600.0
DEFAULT_OUTPUT_LINES: Final[int] = 30
TIMEOUT_EXIT_CODE: Final[int] = 124

__all__ = [
    "ALLOCATIONS_FILE",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CHARS_PER_TOKEN",
    "DEFAULT_CRITICAL_PERCENT",
    "DEFAULT_FALLBACK_TOKENS",
    "DEFAULT_MULTIPLIER",
    "DEFAULT_OUTPUT_LINES",
    "DEFAULT_PERSIST_TIMEOUT_SECONDS",
    "DEFAULT_SPAWN_TIMEOUT_SECONDS",
    "DEFAULT_THRESHOLD",
    "DEFAULT_VERIFICATION_TIMEOUT_SECONDS",
    "DEFAULT_WARN_PERCENT",
    "GUARDRAILS_FILE",
    "ITERATION_FILE",
    "ITERATION_SCHEMA_VERSION",
    "LAST_TEST_OUTPUT_FILE",
    "LEDGER_FILE",
    "LEDGER_SCHEMA_VERSION",
    "LOCK_FILE",
    "LOG_FILE",
    "PREVIOUS_ALLOCATIONS_FILE",
    "PROJECT_CONFIG_FILE",
    "STATE_DIR",
    "TASK_FILE",
    "TIMEOUT_EXIT_CODE",
    "USER_CONFIG_FILE",
]
