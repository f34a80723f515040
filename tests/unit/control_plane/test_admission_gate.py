"""
loopguard — unit tests for the admission gate

File: tests/unit/control_plane/test_admission_gate.py

Purpose
- Validate the decision bands against the pre-action allocation.
- Validate exemption, metering and the handoff-pending deny path.

Functional requirements
- Threshold 80000, multiplier 4, warn at 80%.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from loopguard.control_plane.admission import (
    ActionDescriptor,
    AdmissionGate,
    DecisionKind,
)
from loopguard.control_plane.budgets import BudgetLedger
from loopguard.domain.models import ActionCategory, ActionKind


def _gate(
    state_dir: Path,
    *,
    allocated: int = 0,
    exempt_categories: tuple[ActionCategory, ...] = (ActionCategory.PERSIST,),
) -> AdmissionGate:
    ledger = BudgetLedger(state_dir)
    if allocated:
        ledger.record(allocated, target="seed")
    return AdmissionGate(
        ledger, exempt_categories=exempt_categories, workspace_root=state_dir.parent
    )


def _read(content: str | None = None, target: str = "notes.md") -> ActionDescriptor:
    return ActionDescriptor(kind=ActionKind.READ, target=target, content_hint=content)


def _shell(command: str, content: str | None = None) -> ActionDescriptor:
    return ActionDescriptor(kind=ActionKind.SHELL, target=command, content_hint=content)


def test_fresh_ledger_allows_and_charges_read(tmp_path: Path) -> None:
    gate = _gate(tmp_path / "state")

    decision = gate.evaluate(_read("x" * 5000))

    assert decision.kind is DecisionKind.ALLOW
    assert decision.reason_code == "within_budget"
    assert decision.allocated == 0
    assert decision.cost == 5000
    assert BudgetLedger(tmp_path / "state").current().allocated == 5000


def test_warning_reports_remaining_budget(tmp_path: Path) -> None:
    gate = _gate(tmp_path / "state", allocated=65_000)

    decision = gate.evaluate(_read("abcd"))

    assert decision.kind is DecisionKind.ALLOW_WITH_WARNING
    assert decision.reason_code == "approaching_threshold"
    assert decision.remaining == 15_000
    assert decision.percent_used == 81


def test_exhausted_budget_denies_mutation_and_allows_checkpoint(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    gate = _gate(state_dir, allocated=81_000)

    denied = gate.evaluate(_shell("rm -rf /tmp/x"))
    allowed = gate.evaluate(_shell("git commit -m x"))

    assert denied.kind is DecisionKind.DENY
    assert denied.reason_code == "budget_exhausted"
    assert denied.category is ActionCategory.MUTATE
    assert allowed.kind is DecisionKind.ALLOW
    assert allowed.exempt is True
    assert allowed.stop_after is True
    assert allowed.reason_code == "exempt_after_exhaustion"
    assert BudgetLedger(state_dir).current().allocated == 81_000


def test_threshold_is_inclusive(tmp_path: Path) -> None:
    at_threshold = _gate(tmp_path / "a", allocated=80_000)
    just_below = _gate(tmp_path / "b", allocated=79_999)

    assert at_threshold.evaluate(_read("abcd")).kind is DecisionKind.DENY
    assert just_below.evaluate(_read("abcd")).kind is DecisionKind.ALLOW_WITH_WARNING


def test_action_cost_counts_toward_next_decision_only(tmp_path: Path) -> None:
    gate = _gate(tmp_path / "state", allocated=63_000)

    first = gate.evaluate(_read("x" * 4000))
    second = gate.evaluate(_read("abcd"))

    assert first.kind is DecisionKind.ALLOW
    assert first.allocated == 63_000
    assert second.kind is DecisionKind.ALLOW_WITH_WARNING
    assert second.allocated == 67_000


def test_exempt_actions_are_never_metered(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    gate = _gate(state_dir, allocated=1_000)

    decision = gate.evaluate(_shell("git add -A && git commit -m wip", content="x" * 8000))

    assert decision.exempt is True
    assert decision.cost == 0
    assert decision.stop_after is False
    assert BudgetLedger(state_dir).current().allocated == 1_000


def test_shell_without_size_is_not_metered(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    gate = _gate(state_dir)

    plain = gate.evaluate(_shell("pytest -q"))
    sized = gate.evaluate(_shell("pytest -q", content="y" * 400))

    assert plain.cost == 0
    assert sized.cost == 400
    assert BudgetLedger(state_dir).current().allocated == 400


def test_read_without_content_uses_workspace_file_size(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    (tmp_path / "big.txt").write_text("q" * 1200, encoding="utf-8")
    gate = _gate(state_dir)

    sized = gate.evaluate(_read(target="big.txt"))
    unknown = gate.evaluate(_read(target="nowhere.txt"))

    assert sized.cost == 1200
    assert unknown.cost == 400


def test_denied_actions_are_not_charged(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    gate = _gate(state_dir, allocated=90_000)

    decision = gate.evaluate(_read("x" * 10_000))

    assert decision.denied
    assert decision.cost == 0
    assert BudgetLedger(state_dir).current().allocated == 90_000


def test_pending_handoff_denies_non_exempt_actions(tmp_path: Path) -> None:
    gate = _gate(tmp_path / "state")

    read = gate.evaluate(_read("abcd"), handoff_pending=True)
    checkpoint = gate.evaluate(_shell("git push"), handoff_pending=True)
    cycle = gate.evaluate(ActionDescriptor(kind=ActionKind.CYCLE_START), handoff_pending=True)

    assert read.kind is DecisionKind.DENY
    assert read.reason_code == "handoff_pending"
    assert checkpoint.allowed
    assert checkpoint.reason_code == "exempt_during_handoff"
    assert checkpoint.stop_after is True
    assert cycle.kind is DecisionKind.ALLOW


def test_configured_exempt_categories_extend_the_exempt_set(tmp_path: Path) -> None:
    gate = _gate(
        tmp_path / "state",
        allocated=85_000,
        exempt_categories=(ActionCategory.PERSIST, ActionCategory.INSPECT),
    )

    decision = gate.evaluate(_shell("git log --oneline"))

    assert gate.exempt_categories == frozenset({ActionCategory.PERSIST, ActionCategory.INSPECT})
    assert decision.allowed
    assert decision.stop_after is True


def test_warn_percent_must_be_a_valid_percentage(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="warn_percent"):
        AdmissionGate(BudgetLedger(tmp_path), warn_percent=0)


@settings(max_examples=40, deadline=None)
@given(allocated=st.integers(min_value=0, max_value=120_000))
def test_decision_band_matches_allocation(
    tmp_path_factory: pytest.TempPathFactory, allocated: int
) -> None:
    gate = _gate(tmp_path_factory.mktemp("band") / "state", allocated=allocated)

    decision = gate.evaluate(_read("abcd"))

    if allocated >= 80_000:
        assert decision.kind is DecisionKind.DENY
    elif allocated >= 64_000:
        assert decision.kind is DecisionKind.ALLOW_WITH_WARNING
    else:
        assert decision.kind is DecisionKind.ALLOW
    assert decision.allocated == allocated
