"""Git checkpoint adapter implementing the persist capability."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from loopguard.constants import DEFAULT_PERSIST_TIMEOUT_SECONDS
from loopguard.errors import CapabilityUnavailableError, LoopguardError
from loopguard.integration_plane.capabilities import (
    CapabilityError,
    CapabilityOk,
    CapabilityResult,
    CommandResult,
    CommandRunner,
    SubprocessCommandRunner,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from loopguard.config.runtime import RuntimeConfig

_GIT_ENV: dict[str, str] = {"GIT_TERMINAL_PROMPT": "0"}


class GitCommandError(LoopguardError):
    """Raised when a git subprocess command exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"git command failed ({returncode}): {' '.join(command)}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class CheckpointResult:
    """What a checkpoint actually did."""

    committed: bool
    pushed: bool
    message: str
    push_error: str | None = None


def checkpoint_message(iteration: int, allocated: int) -> str:
    return f"checkpoint: iteration {iteration} (budget: {allocated} units)"


class GitCheckpointer:
    """
    Stage, commit and optionally push every change in the workspace.

    Push is best-effort: a failed push still counts as a successful checkpoint
    because the commit exists locally.
    """

    def __init__(
        self,
        workspace_root: str | Path,
        *,
        push: bool = True,
        remote: str = "origin",
        timeout_seconds: float = DEFAULT_PERSIST_TIMEOUT_SECONDS,
        runner: CommandRunner | None = None,
        logger: Any | None = None,
    ) -> None:
        self.workspace_root = Path(workspace_root)
        self._push = push
        self._remote = remote
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
    ) -> GitCheckpointer:
        return cls(
            config.workspace_root,
            push=config.push,
            remote=config.remote,
            timeout_seconds=config.persist_timeout_seconds,
            runner=runner,
            logger=logger,
        )

    def persist(self, *, iteration: int, allocated: int) -> CapabilityResult:
        try:
            result = self.checkpoint(iteration=iteration, allocated=allocated)
        except (GitCommandError, CapabilityUnavailableError) as exc:
            self._logger.warning("checkpoint_failed", iteration=iteration, error=str(exc))
            return CapabilityError(reason=str(exc))

        if not result.committed:
            detail = "no changes to checkpoint"
        elif result.pushed:
            detail = f"committed and pushed to {self._remote}"
        elif result.push_error is not None:
            detail = f"committed locally; push failed: {result.push_error}"
        else:
            detail = "committed locally"
        self._logger.info(
            "checkpoint_completed",
            iteration=iteration,
            allocated=allocated,
            committed=result.committed,
            pushed=result.pushed,
        )
        return CapabilityOk(detail=detail)

    def checkpoint(self, *, iteration: int, allocated: int) -> CheckpointResult:
        """Run the checkpoint; raises :class:`GitCommandError` on git failures."""

        message = checkpoint_message(iteration, allocated)
        status = self._run_git(["status", "--porcelain"])
        if not status.stdout.strip():
            return CheckpointResult(committed=False, pushed=False, message=message)

        self._run_git(["add", "-A"])
        self._run_git(["commit", "--quiet", "-m", message])

        if not self._push:
            return CheckpointResult(committed=True, pushed=False, message=message)

        pushed = self._run_git(["push", self._remote, "HEAD"], check=False)
        if pushed.returncode != 0:
            error = pushed.stderr.strip() or f"exit code {pushed.returncode}"
            return CheckpointResult(
                committed=True, pushed=False, message=message, push_error=error
            )
        return CheckpointResult(committed=True, pushed=True, message=message)

    def _run_git(self, args: Sequence[str], *, check: bool = True) -> CommandResult:
        command = ("git", *args)
        result = self._runner.run(
            command,
            cwd=self.workspace_root,
            timeout_seconds=self._timeout_seconds,
            env=_GIT_ENV,
        )
        if check and result.returncode != 0:
            raise GitCommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result


__all__ = [
    "CheckpointResult",
    "GitCheckpointer",
    "GitCommandError",
    "checkpoint_message",
]
