"""
Handoff orchestration: checkpoint, reserve the next iteration, reset, continue.

Once a handoff starts its steps always run in order:
1. persist (best-effort; a failed checkpoint is reported, not fatal)
2. write a handoff-pending record for ``iteration + 1``
3. reset the budget ledger
4. spawn a fresh worker when auto-continuation is configured
5. activate the reserved iteration on spawn success (remote mode), otherwise
   leave it pending and emit a resume instruction (local mode)

A handoff requested while the record is already pending with an empty ledger
is a duplicate: it repeats the resume instruction and changes nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from loopguard.domain.models import SessionStatus
from loopguard.errors import SessionCompleteError
from loopguard.integration_plane.capabilities import (
    CapabilityError,
    CapabilityOk,
    CapabilityResult,
    PersistCapability,
    SpawnCapability,
)

if TYPE_CHECKING:
    from loopguard.control_plane.budgets import BudgetLedger
    from loopguard.control_plane.tracker import IterationTracker


class ContinuationMode(StrEnum):
    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True, slots=True)
class HandoffOutcome:
    """Result of one handoff request."""

    mode: ContinuationMode
    trigger: str
    previous_iteration: int
    next_iteration: int
    allocated_at_handoff: int
    checkpoint: CapabilityResult | None = None
    spawn: CapabilityResult | None = None
    duplicate: bool = False

    @property
    def resume_instruction(self) -> str:
        return f'Start a NEW conversation: "Continue from iteration {self.next_iteration}"'

    @property
    def checkpoint_failed(self) -> bool:
        return isinstance(self.checkpoint, CapabilityError)

    @property
    def user_message(self) -> str:
        if self.duplicate:
            message = f"Handoff to iteration {self.next_iteration} is already pending. "
            message += self.resume_instruction
        elif self.mode is ContinuationMode.REMOTE:
            message = (
                f"Budget exhausted ({self.allocated_at_handoff} units). "
                f"A fresh worker was spawned for iteration {self.next_iteration}."
            )
        elif isinstance(self.spawn, CapabilityError):
            message = (
                f"Budget exhausted ({self.allocated_at_handoff} units) but spawning a fresh "
                f"worker failed: {self.spawn.reason}. {self.resume_instruction}"
            )
        else:
            message = (
                f"Budget exhausted ({self.allocated_at_handoff} units). {self.resume_instruction}"
            )

        if isinstance(self.checkpoint, CapabilityError):
            message += (
                f"\nCheckpoint failed: {self.checkpoint.reason}. "
                "Commit your changes manually before resuming."
            )
        return message

    def to_dict(self) -> dict[str, object]:
        return {
            "mode": self.mode.value,
            "trigger": self.trigger,
            "previous_iteration": self.previous_iteration,
            "next_iteration": self.next_iteration,
            "allocated_at_handoff": self.allocated_at_handoff,
            "checkpoint": _result_to_dict(self.checkpoint),
            "spawn": _result_to_dict(self.spawn),
            "duplicate": self.duplicate,
        }


class HandoffOrchestrator:
    """Transfer execution to a fresh worker when the budget is exhausted."""

    def __init__(
        self,
        ledger: BudgetLedger,
        tracker: IterationTracker,
        *,
        persist: PersistCapability,
        spawn: SpawnCapability,
        workspace_root: str | Path,
        auto_continuation: bool = False,
        logger: Any | None = None,
    ) -> None:
        self._ledger = ledger
        self._tracker = tracker
        self._persist = persist
        self._spawn = spawn
        self._workspace_root = Path(workspace_root)
        self._auto_continuation = auto_continuation
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def auto_continuation(self) -> bool:
        return self._auto_continuation

    def handoff(self, trigger: str) -> HandoffOutcome:
        """Run the handoff sequence; raises :class:`SessionCompleteError` on a finished session."""

        with self._ledger.lock:
            record = self._tracker.current()
            snapshot = self._ledger.current()

            if record.status is SessionStatus.COMPLETE:
                raise SessionCompleteError(record.iteration)

            if record.status is SessionStatus.HANDOFF_PENDING and snapshot.allocated == 0:
                outcome = HandoffOutcome(
                    mode=ContinuationMode.LOCAL,
                    trigger=trigger,
                    previous_iteration=max(0, record.iteration - 1),
                    next_iteration=record.iteration,
                    allocated_at_handoff=record.previous_context or 0,
                    duplicate=True,
                )
                self._logger.info("handoff_duplicate", **outcome.to_dict())
                return outcome

            self._logger.info(
                "handoff_started",
                trigger=trigger,
                iteration=record.iteration,
                allocated=snapshot.allocated,
            )
            checkpoint = self._persist.persist(
                iteration=record.iteration, allocated=snapshot.allocated
            )
            pending = self._tracker.reserve_next(previous_context=snapshot.allocated)
            self._ledger.reset()

        spawn_result: CapabilityResult | None = None
        mode = ContinuationMode.LOCAL
        if self._auto_continuation:
            spawn_result = self._spawn.spawn(
                workspace_root=self._workspace_root,
                next_iteration=pending.iteration,
            )
            if isinstance(spawn_result, CapabilityOk):
                self._tracker.activate_pending()
                mode = ContinuationMode.REMOTE

        outcome = HandoffOutcome(
            mode=mode,
            trigger=trigger,
            previous_iteration=record.iteration,
            next_iteration=pending.iteration,
            allocated_at_handoff=snapshot.allocated,
            checkpoint=checkpoint,
            spawn=spawn_result,
        )
        log = self._logger.warning if outcome.checkpoint_failed else self._logger.info
        log("handoff_completed", **outcome.to_dict())
        return outcome


def _result_to_dict(result: CapabilityResult | None) -> dict[str, object] | None:
    if result is None:
        return None
    if isinstance(result, CapabilityOk):
        return {"ok": True, "detail": result.detail}
    return {"ok": False, "reason": result.reason}


__all__ = ["ContinuationMode", "HandoffOrchestrator", "HandoffOutcome"]
