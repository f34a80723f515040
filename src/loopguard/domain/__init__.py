"""
loopguard — domain types

File: src/loopguard/domain/__init__.py

Purpose
- Domain types shared across planes: ledger snapshot, iteration record, task spec, guardrails.

Functional requirements
- Domain objects must be serializable and keep the domain layer free of IO side effects.
"""

from loopguard.domain.models import (
    SESSION_TRANSITIONS,
    ActionCategory,
    ActionKind,
    AllocationEntry,
    Criterion,
    GuardrailSet,
    IterationRecord,
    LedgerSnapshot,
    LedgerStatus,
    SessionStatus,
    TaskSpec,
    can_transition,
)

__all__ = [
    "SESSION_TRANSITIONS",
    "ActionCategory",
    "ActionKind",
    "AllocationEntry",
    "Criterion",
    "GuardrailSet",
    "IterationRecord",
    "LedgerSnapshot",
    "LedgerStatus",
    "SessionStatus",
    "TaskSpec",
    "can_transition",
]
