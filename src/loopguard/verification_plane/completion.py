"""
Completion verification: decide from the task document and the verification
command whether the work is actually done.

| unchecked | test_command | outcome               |
|-----------|--------------|-----------------------|
| > 0       | any          | incomplete            |
| 0         | absent       | complete (unverified) |
| 0         | exit 0       | complete (verified)   |
| 0         | exit != 0    | verification failed   |

The agent never decides completion by itself: the criteria and the test
command do.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from loopguard.constants import (
    DEFAULT_OUTPUT_LINES,
    DEFAULT_VERIFICATION_TIMEOUT_SECONDS,
    LAST_TEST_OUTPUT_FILE,
)
from loopguard.errors import CapabilityUnavailableError
from loopguard.integration_plane.capabilities import CommandRunner, SubprocessCommandRunner
from loopguard.spec_ingestion.task_spec import load_task_spec
from loopguard.utils.fs import atomic_write, read_text_or_none

if TYPE_CHECKING:
    from loopguard.config.runtime import RuntimeConfig
    from loopguard.domain.models import TaskSpec

_COMMAND_NOT_RUNNABLE_EXIT_CODE = 127


class VerificationOutcome(StrEnum):
    INCOMPLETE = "incomplete"
    COMPLETE_UNVERIFIED = "complete_unverified"
    COMPLETE_VERIFIED = "complete_verified"
    VERIFICATION_FAILED = "verification_failed"


@dataclass(frozen=True, slots=True)
class CompletionResult:
    """Outcome of one verification pass."""

    outcome: VerificationOutcome
    unchecked: int
    total: int
    test_command: str | None = None
    exit_code: int | None = None
    output: str = ""
    timed_out: bool = False

    @property
    def is_complete(self) -> bool:
        return self.outcome in {
            VerificationOutcome.COMPLETE_UNVERIFIED,
            VerificationOutcome.COMPLETE_VERIFIED,
        }

    def to_dict(self) -> dict[str, object]:
        return {
            "outcome": self.outcome.value,
            "unchecked": self.unchecked,
            "total": self.total,
            "test_command": self.test_command,
            "exit_code": self.exit_code,
            "timed_out": self.timed_out,
        }


class CompletionVerifier:
    """Evaluate completion criteria and run the verification command."""

    def __init__(
        self,
        workspace_root: str | Path,
        task_file: str | Path,
        state_dir: str | Path,
        *,
        timeout_seconds: float = DEFAULT_VERIFICATION_TIMEOUT_SECONDS,
        output_lines: int = DEFAULT_OUTPUT_LINES,
        runner: CommandRunner | None = None,
        logger: Any | None = None,
    ) -> None:
        self._workspace_root = Path(workspace_root)
        self._task_file = Path(task_file)
        self._state_dir = Path(state_dir)
        self._timeout_seconds = timeout_seconds
        self._output_lines = output_lines
        self._runner = runner if runner is not None else SubprocessCommandRunner()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_config(
        cls,
        config: RuntimeConfig,
        *,
        runner: CommandRunner | None = None,
        logger: Any | None = None,
    ) -> CompletionVerifier:
        return cls(
            config.workspace_root,
            config.task_path,
            config.state_path,
            timeout_seconds=config.verification_timeout_seconds,
            output_lines=config.output_lines,
            runner=runner,
            logger=logger,
        )

    @property
    def output_path(self) -> Path:
        return self._state_dir / LAST_TEST_OUTPUT_FILE

    def verify(self, task: TaskSpec | None = None) -> CompletionResult:
        spec = task if task is not None else load_task_spec(self._task_file)
        unchecked = spec.unchecked_count
        total = len(spec.criteria)

        if unchecked > 0:
            result = CompletionResult(
                outcome=VerificationOutcome.INCOMPLETE,
                unchecked=unchecked,
                total=total,
                test_command=spec.test_command,
            )
        elif spec.test_command is None:
            result = CompletionResult(
                outcome=VerificationOutcome.COMPLETE_UNVERIFIED,
                unchecked=0,
                total=total,
            )
        else:
            result = self._run_verification(spec.test_command, total=total)

        self._logger.info("completion_verified", **result.to_dict())
        return result

    def last_output(self, max_lines: int | None = None) -> str | None:
        """First ``max_lines`` lines of the most recent verification output."""

        text = read_text_or_none(self.output_path)
        if text is None or not text.strip():
            return None
        limit = self._output_lines if max_lines is None else max_lines
        return "\n".join(text.splitlines()[:limit])

    def _run_verification(self, command: str, *, total: int) -> CompletionResult:
        try:
            executed = self._runner.run(
                command,
                cwd=self._workspace_root,
                timeout_seconds=self._timeout_seconds,
            )
            exit_code = executed.returncode
            output = executed.output
            timed_out = executed.timed_out
        except CapabilityUnavailableError as exc:
            exit_code = _COMMAND_NOT_RUNNABLE_EXIT_CODE
            output = str(exc)
            timed_out = False

        outcome = (
            VerificationOutcome.COMPLETE_VERIFIED
            if exit_code == 0
            else VerificationOutcome.VERIFICATION_FAILED
        )
        if outcome is VerificationOutcome.VERIFICATION_FAILED and not output.strip():
            output = f"command {command!r} exited with {exit_code} and produced no output\n"
        atomic_write(self.output_path, output)
        if outcome is VerificationOutcome.VERIFICATION_FAILED:
            self._logger.warning(
                "verification_command_failed",
                exit_code=exit_code,
                timed_out=timed_out,
            )
        return CompletionResult(
            outcome=outcome,
            unchecked=0,
            total=total,
            test_command=command,
            exit_code=exit_code,
            output=output,
            timed_out=timed_out,
        )


__all__ = ["CompletionResult", "CompletionVerifier", "VerificationOutcome"]
