"""
loopguard — external capability interfaces

File: src/loopguard/integration_plane/capabilities.py

Purpose
- Model the external collaborators (checkpoint persistence, worker spawn) as
  narrow protocols whose calls return ``CapabilityOk | CapabilityError``.
- Provide the default subprocess runner shared by the capability adapters and
  the completion verifier.

Functional requirements
- Adapters never raise for an unavailable tool; they return ``CapabilityError``
  carrying a human-readable reason.
- Subprocess calls are bounded by a timeout; a timeout is reported as exit code
  124 with whatever output was captured.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, TypeAlias

from loopguard.constants import TIMEOUT_EXIT_CODE
from loopguard.errors import CapabilityUnavailableError


@dataclass(frozen=True, slots=True)
class CapabilityOk:
    """Successful capability call."""

    detail: str = ""


@dataclass(frozen=True, slots=True)
class CapabilityError:
    """Failed or unavailable capability call; never raised, only returned."""

    reason: str


CapabilityResult: TypeAlias = CapabilityOk | CapabilityError


class PersistCapability(Protocol):
    """Checkpoint the workspace (stage, commit, optionally push)."""

    def persist(self, *, iteration: int, allocated: int) -> CapabilityResult: ...


class SpawnCapability(Protocol):
    """Launch a fresh worker that continues the task."""

    def spawn(self, *, workspace_root: Path, next_iteration: int) -> CapabilityResult: ...


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized subprocess result."""

    command: tuple[str, ...]
    cwd: str
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def output(self) -> str:
        """Combined stdout and stderr, in that order."""

        if self.stdout and self.stderr:
            separator = "" if self.stdout.endswith("\n") else "\n"
            return f"{self.stdout}{separator}{self.stderr}"
        return self.stdout or self.stderr


class CommandRunner(Protocol):
    """Injectable command runner used for deterministic/offline testing."""

    def run(
        self,
        command: Sequence[str] | str,
        *,
        cwd: Path,
        timeout_seconds: float,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult: ...


class SubprocessCommandRunner:
    """Default command runner backed by ``subprocess.run``.

    A ``str`` command runs through the shell; a sequence runs as argv.
    """

    def run(
        self,
        command: Sequence[str] | str,
        *,
        cwd: Path,
        timeout_seconds: float,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        shell = isinstance(command, str)
        argv: tuple[str, ...] = (command,) if isinstance(command, str) else tuple(command)
        run_env = dict(os.environ)
        if env is not None:
            run_env.update(env)

        try:
            completed = subprocess.run(
                command if shell else list(argv),
                cwd=cwd,
                env=run_env,
                shell=shell,
                check=False,
                capture_output=True,
                timeout=timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            return CommandResult(
                command=argv,
                cwd=Path(cwd).as_posix(),
                returncode=TIMEOUT_EXIT_CODE,
                stdout=_decode_output(exc.stdout),
                stderr=_decode_output(exc.stderr)
                + f"\ncommand timed out after {timeout_seconds:g} seconds",
                timed_out=True,
            )
        except OSError as exc:
            raise CapabilityUnavailableError(
                f"unable to execute {' '.join(argv)!r}: {exc}"
            ) from exc

        return CommandResult(
            command=argv,
            cwd=Path(cwd).as_posix(),
            returncode=completed.returncode,
            stdout=_decode_output(completed.stdout),
            stderr=_decode_output(completed.stderr),
        )


def _decode_output(raw: str | bytes | None) -> str:
    if raw is None:
        return ""
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    return text.replace("\r\n", "\n").replace("\r", "\n")


__all__ = [
    "CapabilityError",
    "CapabilityOk",
    "CapabilityResult",
    "CommandResult",
    "CommandRunner",
    "PersistCapability",
    "SpawnCapability",
    "SubprocessCommandRunner",
]
