"""
loopguard — control plane

File: src/loopguard/control_plane/__init__.py

Purpose
- Budget metering, admission decisions, iteration tracking and handoff orchestration.
"""

from loopguard.control_plane.admission import (
    ActionDescriptor,
    AdmissionGate,
    Decision,
    DecisionKind,
    classify_action,
    classify_command,
)
from loopguard.control_plane.budgets import (
    BudgetLedger,
    SizeEstimator,
    estimate_cost,
    status_for,
)
from loopguard.control_plane.handoff import (
    ContinuationMode,
    HandoffOrchestrator,
    HandoffOutcome,
)
from loopguard.control_plane.tracker import IterationTracker

__all__ = [
    "ActionDescriptor",
    "AdmissionGate",
    "BudgetLedger",
    "ContinuationMode",
    "Decision",
    "DecisionKind",
    "HandoffOrchestrator",
    "HandoffOutcome",
    "IterationTracker",
    "SizeEstimator",
    "classify_action",
    "classify_command",
    "estimate_cost",
    "status_for",
]
