"""
loopguard — unit tests for the size estimator and the budget ledger

File: tests/unit/control_plane/test_budget_ledger.py

Purpose
- Estimate = (chars // 4) * 4 with size-hint, file-size and fallback paths.
- Ledger totals persist across instances, reset to zero, and recover from corruption.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from loopguard.control_plane.budgets import (
    BudgetLedger,
    SizeEstimator,
    estimate_cost,
    status_for,
)
from loopguard.domain.models import LedgerStatus
from loopguard.errors import CorruptStateError


def test_estimate_from_content_length() -> None:
    assert estimate_cost("x" * 5000) == 5000
    assert estimate_cost("abc") == 0
    assert estimate_cost("x" * 4001) == 4000


def test_estimate_prefers_size_hint_then_file_size(tmp_path: Path) -> None:
    target = tmp_path / "big.txt"
    target.write_text("y" * 800, encoding="utf-8")
    estimator = SizeEstimator()

    assert estimator.estimate(None, target) == 800
    assert estimator.estimate(None, target, size=400) == 400
    assert estimator.estimate("z" * 40, target, size=400) == 40


def test_estimate_falls_back_when_nothing_is_known(tmp_path: Path) -> None:
    assert estimate_cost(None, tmp_path / "missing.txt") == 400
    assert SizeEstimator(fallback_tokens=10, multiplier=3).estimate() == 30


def test_estimator_rejects_nonpositive_parameters() -> None:
    with pytest.raises(ValueError, match="chars_per_token"):
        SizeEstimator(chars_per_token=0)
    with pytest.raises(ValueError, match="multiplier"):
        SizeEstimator(multiplier=0)


@given(length=st.integers(min_value=0, max_value=200_000))
def test_estimate_is_a_multiple_of_the_multiplier(length: int) -> None:
    cost = SizeEstimator().estimate("a" * length)
    assert cost % 4 == 0
    assert cost <= max(length, 400)


def test_status_bands_are_inclusive_at_lower_edge() -> None:
    assert status_for(63_999, 80_000) is LedgerStatus.HEALTHY
    assert status_for(64_000, 80_000) is LedgerStatus.WARNING
    assert status_for(79_999, 80_000) is LedgerStatus.WARNING
    assert status_for(80_000, 80_000) is LedgerStatus.CRITICAL


def test_record_accumulates_and_persists(tmp_path: Path) -> None:
    ledger = BudgetLedger(tmp_path / "state")

    assert ledger.current().allocated == 0
    assert ledger.record(5000, target="a.py") == 5000
    assert ledger.record(1000, target="b.py", iteration=2) == 6000

    reopened = BudgetLedger(tmp_path / "state")
    snapshot = reopened.current()
    assert snapshot.allocated == 6000
    assert snapshot.remaining == 74_000
    assert snapshot.status is LedgerStatus.HEALTHY

    entries = reopened.entries()
    assert [(item.target, item.cost, item.allocated_after) for item in entries] == [
        ("a.py", 5000, 5000),
        ("b.py", 1000, 6000),
    ]
    assert entries[1].iteration == 2


def test_record_rejects_negative_and_non_integer_costs(tmp_path: Path) -> None:
    ledger = BudgetLedger(tmp_path)

    with pytest.raises(ValueError):
        ledger.record(-1)
    with pytest.raises(TypeError):
        ledger.record(True)  # type: ignore[arg-type]


def test_reset_zeroes_and_rotates_journal(tmp_path: Path) -> None:
    ledger = BudgetLedger(tmp_path, threshold=100)
    ledger.record(90, target="x")

    snapshot = ledger.reset()

    assert snapshot.allocated == 0
    assert ledger.current().allocated == 0
    assert ledger.entries() == ()
    assert (tmp_path / "allocations.prev.jsonl").is_file()


def test_corrupt_ledger_reads_as_zero_and_recovers(tmp_path: Path) -> None:
    ledger = BudgetLedger(tmp_path)
    ledger.path.write_text("{not json", encoding="utf-8")

    with pytest.raises(CorruptStateError):
        ledger.read_snapshot()
    assert ledger.current().allocated == 0
    assert ledger.record(40) == 40
    assert json.loads(ledger.path.read_text(encoding="utf-8"))["allocated"] == 40


def test_malformed_journal_lines_are_skipped(tmp_path: Path) -> None:
    ledger = BudgetLedger(tmp_path)
    ledger.record(8, target="ok")
    with ledger.journal_path.open("a", encoding="utf-8") as handle:
        handle.write("garbage\n[1, 2]\n")

    assert [item.target for item in ledger.entries()] == ["ok"]


@settings(max_examples=30, deadline=None)
@given(costs=st.lists(st.integers(min_value=0, max_value=10_000), max_size=15))
def test_ledger_total_is_sum_of_recorded_costs(
    tmp_path_factory: pytest.TempPathFactory, costs: list[int]
) -> None:
    ledger = BudgetLedger(tmp_path_factory.mktemp("ledger"))
    running = 0
    for cost in costs:
        running += cost
        assert ledger.record(cost) == running
    assert ledger.current().allocated == sum(costs)
