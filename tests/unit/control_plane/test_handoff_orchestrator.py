"""
loopguard — unit tests for handoff orchestration

File: tests/unit/control_plane/test_handoff_orchestrator.py

Purpose
- Local and remote continuation, spawn failure fallback and checkpoint failure.
- A repeated handoff while one is pending changes nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from loopguard.control_plane.budgets import BudgetLedger
from loopguard.control_plane.handoff import ContinuationMode, HandoffOrchestrator
from loopguard.control_plane.tracker import IterationTracker
from loopguard.domain.models import SessionStatus
from loopguard.errors import SessionCompleteError
from loopguard.integration_plane.capabilities import (
    CapabilityError,
    CapabilityOk,
    CapabilityResult,
)


@dataclass
class _RecordingPersist:
    result: CapabilityResult = field(default_factory=lambda: CapabilityOk(detail="committed"))
    calls: list[tuple[int, int]] = field(default_factory=list)

    def persist(self, *, iteration: int, allocated: int) -> CapabilityResult:
        self.calls.append((iteration, allocated))
        return self.result


@dataclass
class _RecordingSpawn:
    result: CapabilityResult = field(default_factory=lambda: CapabilityOk(detail="spawned"))
    calls: list[tuple[Path, int]] = field(default_factory=list)

    def spawn(self, *, workspace_root: Path, next_iteration: int) -> CapabilityResult:
        self.calls.append((workspace_root, next_iteration))
        return self.result


_Setup = tuple[
    HandoffOrchestrator, BudgetLedger, IterationTracker, _RecordingPersist, _RecordingSpawn
]


def _setup(
    tmp_path: Path,
    *,
    allocated: int = 81_000,
    iteration: int = 4,
    auto_continuation: bool = False,
    persist: _RecordingPersist | None = None,
    spawn: _RecordingSpawn | None = None,
) -> _Setup:
    state_dir = tmp_path / ".loopguard"
    ledger = BudgetLedger(state_dir)
    tracker = IterationTracker(state_dir)
    for _ in range(iteration):
        tracker.advance()
    ledger.record(allocated, target="seed")
    persist = persist or _RecordingPersist()
    spawn = spawn or _RecordingSpawn()
    orchestrator = HandoffOrchestrator(
        ledger,
        tracker,
        persist=persist,
        spawn=spawn,
        workspace_root=tmp_path,
        auto_continuation=auto_continuation,
    )
    return orchestrator, ledger, tracker, persist, spawn


def test_local_handoff_reserves_next_iteration(tmp_path: Path) -> None:
    orchestrator, ledger, tracker, persist, spawn = _setup(tmp_path)

    outcome = orchestrator.handoff("budget_exhausted")

    assert outcome.mode is ContinuationMode.LOCAL
    assert (outcome.previous_iteration, outcome.next_iteration) == (4, 5)
    assert outcome.allocated_at_handoff == 81_000
    assert persist.calls == [(4, 81_000)]
    assert spawn.calls == []
    assert ledger.current().allocated == 0
    record = tracker.current()
    assert record.status is SessionStatus.HANDOFF_PENDING
    assert record.iteration == 5
    assert record.previous_context == 81_000
    assert 'Start a NEW conversation: "Continue from iteration 5"' in outcome.user_message


def test_remote_handoff_activates_reserved_iteration(tmp_path: Path) -> None:
    orchestrator, _, tracker, _, spawn = _setup(tmp_path, auto_continuation=True)

    outcome = orchestrator.handoff("stop")

    assert outcome.mode is ContinuationMode.REMOTE
    assert spawn.calls == [(tmp_path, 5)]
    record = tracker.current()
    assert record.status is SessionStatus.ACTIVE
    assert record.iteration == 5
    assert "fresh worker was spawned for iteration 5" in outcome.user_message


def test_spawn_failure_falls_back_to_local_mode(tmp_path: Path) -> None:
    spawn = _RecordingSpawn(result=CapabilityError(reason="no network"))
    orchestrator, _, tracker, _, _ = _setup(tmp_path, auto_continuation=True, spawn=spawn)

    outcome = orchestrator.handoff("budget_exhausted")

    assert outcome.mode is ContinuationMode.LOCAL
    assert tracker.current().status is SessionStatus.HANDOFF_PENDING
    assert "no network" in outcome.user_message
    assert "Continue from iteration 5" in outcome.user_message


def test_checkpoint_failure_is_reported_but_handoff_completes(tmp_path: Path) -> None:
    persist = _RecordingPersist(result=CapabilityError(reason="not a git repository"))
    orchestrator, ledger, tracker, _, _ = _setup(tmp_path, persist=persist)

    outcome = orchestrator.handoff("budget_exhausted")

    assert outcome.checkpoint_failed is True
    assert "Checkpoint failed: not a git repository" in outcome.user_message
    assert ledger.current().allocated == 0
    assert tracker.current().iteration == 5


def test_second_handoff_while_pending_is_a_duplicate(tmp_path: Path) -> None:
    orchestrator, ledger, tracker, persist, _ = _setup(tmp_path)
    first = orchestrator.handoff("budget_exhausted")

    second = orchestrator.handoff("handoff_pending")

    assert second.duplicate is True
    assert second.next_iteration == first.next_iteration == 5
    assert second.resume_instruction == first.resume_instruction
    assert second.allocated_at_handoff == 81_000
    assert persist.calls == [(4, 81_000)]
    assert tracker.current().iteration == 5
    assert ledger.current().allocated == 0


def test_handoff_on_completed_session_raises(tmp_path: Path) -> None:
    orchestrator, _, tracker, persist, _ = _setup(tmp_path)
    tracker.complete()

    with pytest.raises(SessionCompleteError):
        orchestrator.handoff("stop")
    assert persist.calls == []


def test_outcome_serializes_capability_results(tmp_path: Path) -> None:
    orchestrator, _, _, _, _ = _setup(tmp_path, auto_continuation=True)

    payload = orchestrator.handoff("stop").to_dict()

    assert payload["mode"] == "remote"
    assert payload["checkpoint"] == {"ok": True, "detail": "committed"}
    assert payload["spawn"] == {"ok": True, "detail": "spawned"}
    assert payload["duplicate"] is False
