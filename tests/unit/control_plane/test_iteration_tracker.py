"""
loopguard — unit tests for the iteration tracker

File: tests/unit/control_plane/test_iteration_tracker.py

Purpose
- Iteration numbers never decrease and advance by exactly one per cycle.
- A reserved (handoff-pending) iteration is activated without a second increment.
- Corrupt records recover to the initial record; completion is terminal.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from loopguard.control_plane.tracker import IterationTracker
from loopguard.domain.models import SessionStatus
from loopguard.errors import CorruptStateError, SessionCompleteError


class _FixedClock:
    def __init__(self) -> None:
        self._now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self._now += timedelta(seconds=1)
        return self._now


def test_missing_record_reads_as_initial(tmp_path: Path) -> None:
    tracker = IterationTracker(tmp_path)

    record = tracker.current()

    assert record.iteration == 0
    assert record.status is SessionStatus.INITIALIZED
    assert tracker.read_record() is None


def test_advance_increments_and_persists(tmp_path: Path) -> None:
    tracker = IterationTracker(tmp_path, clock=_FixedClock())

    first = tracker.advance()
    second = tracker.advance()

    assert (first.iteration, second.iteration) == (1, 2)
    assert second.status is SessionStatus.ACTIVE
    assert second.started_at > first.started_at
    payload = json.loads(tracker.path.read_text(encoding="utf-8"))
    assert payload["iteration"] == 2
    assert payload["status"] == "active"
    assert payload["schema_version"] == 1


def test_reserved_iteration_is_activated_without_second_increment(tmp_path: Path) -> None:
    tracker = IterationTracker(tmp_path)
    tracker.advance()
    tracker.advance()

    pending = tracker.reserve_next(previous_context=81_000)
    resumed = tracker.advance()

    assert pending.iteration == 3
    assert pending.status is SessionStatus.HANDOFF_PENDING
    assert pending.previous_context == 81_000
    assert resumed.iteration == 3
    assert resumed.status is SessionStatus.ACTIVE
    assert resumed.previous_context == 81_000
    assert tracker.advance().previous_context is None


def test_activate_pending_is_a_no_op_for_active_records(tmp_path: Path) -> None:
    tracker = IterationTracker(tmp_path)
    active = tracker.advance()

    assert tracker.activate_pending() == active

    tracker.reserve_next(previous_context=10)
    activated = tracker.activate_pending()
    assert activated.status is SessionStatus.ACTIVE
    assert activated.iteration == 2


def test_complete_is_terminal_and_idempotent(tmp_path: Path) -> None:
    tracker = IterationTracker(tmp_path)
    tracker.advance()

    done = tracker.complete()

    assert done.status is SessionStatus.COMPLETE
    assert done.completed_at is not None
    assert tracker.complete() == done
    with pytest.raises(SessionCompleteError) as exc_info:
        tracker.advance()
    assert exc_info.value.iteration == 1
    with pytest.raises(SessionCompleteError):
        tracker.reserve_next(previous_context=0)


def test_corrupt_record_recovers_as_initial(tmp_path: Path) -> None:
    tracker = IterationTracker(tmp_path)
    tracker.path.parent.mkdir(parents=True, exist_ok=True)
    tracker.path.write_text('{"iteration": "seven"}', encoding="utf-8")

    with pytest.raises(CorruptStateError):
        tracker.read_record()
    assert tracker.current().iteration == 0
    assert tracker.advance().iteration == 1


@settings(max_examples=25, deadline=None)
@given(steps=st.lists(st.sampled_from(["advance", "reserve", "activate"]), max_size=20))
def test_iteration_never_decreases(
    tmp_path_factory: pytest.TempPathFactory, steps: list[str]
) -> None:
    tracker = IterationTracker(tmp_path_factory.mktemp("tracker"))
    previous = tracker.current().iteration

    for step in steps:
        before = tracker.current()
        if step == "advance":
            record = tracker.advance()
            expected = (
                before.iteration
                if before.status is SessionStatus.HANDOFF_PENDING
                else before.iteration + 1
            )
            assert record.iteration == expected
        elif step == "reserve":
            record = tracker.reserve_next(previous_context=before.iteration)
            assert record.iteration == before.iteration + 1
        else:
            record = tracker.activate_pending()
            assert record.iteration == before.iteration
        assert record.iteration >= previous
        previous = record.iteration
