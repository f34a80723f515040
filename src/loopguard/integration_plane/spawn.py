"""Spawn adapter: launch a fresh worker through a configured command."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from loopguard.constants import DEFAULT_SPAWN_TIMEOUT_SECONDS
from loopguard.errors import CapabilityUnavailableError
from loopguard.integration_plane.capabilities import (
    CapabilityError,
    CapabilityOk,
    CapabilityResult,
    CommandRunner,
    SubprocessCommandRunner,
)

if TYPE_CHECKING:
    from loopguard.config.runtime import RuntimeConfig

NEXT_ITERATION_ENV = "LOOPGUARD_NEXT_ITERATION"


class CommandSpawner:
    """
    Run ``spawn_command <workspace_root>`` with the credential in the environment.

    The credential is passed through ``api_key_env`` and never appears on the
    command line or in log events.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        api_key: str | None,
        api_key_env: str,
        timeout_seconds: float = DEFAULT_SPAWN_TIMEOUT_SECONDS,
        runner: CommandRunner | None = None,
        logger: Any | None = None,
    ) -> None:
        self._command = tuple(command)
        self._api_key = api_key
        self._api_key_env = api_key_env
        self._timeout_seconds = timeout_seconds
        self._runner = runner if runner is not None else SubprocessCommandRunner()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_config(
        cls,
        config: RuntimeConfig,
        *,
        runner: CommandRunner | None = None,
        logger: Any | None = None,
    ) -> CommandSpawner:
        return cls(
            config.spawn_command,
            api_key=config.api_key,
            api_key_env=config.api_key_env,
            timeout_seconds=config.spawn_timeout_seconds,
            runner=runner,
            logger=logger,
        )

    @property
    def configured(self) -> bool:
        return bool(self._command) and bool(self._api_key)

    def spawn(self, *, workspace_root: Path, next_iteration: int) -> CapabilityResult:
        if not self._api_key:
            return CapabilityError(reason="no spawn credential configured")
        if not self._command:
            return CapabilityError(reason="handoff.spawn_command is not configured")

        argv = (*self._command, str(workspace_root))
        env = {self._api_key_env: self._api_key, NEXT_ITERATION_ENV: str(next_iteration)}
        try:
            result = self._runner.run(
                argv,
                cwd=Path(workspace_root),
                timeout_seconds=self._timeout_seconds,
                env=env,
            )
        except CapabilityUnavailableError as exc:
            self._logger.warning("spawn_unavailable", error=str(exc))
            return CapabilityError(reason=str(exc))

        if result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip() or "no output"
            self._logger.warning(
                "spawn_failed",
                returncode=result.returncode,
                timed_out=result.timed_out,
                next_iteration=next_iteration,
            )
            return CapabilityError(
                reason=f"spawn command exited with {result.returncode}: {detail}"
            )

        self._logger.info("spawn_completed", next_iteration=next_iteration)
        first_line = result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""
        return CapabilityOk(detail=first_line)


__all__ = ["NEXT_ITERATION_ENV", "CommandSpawner"]
