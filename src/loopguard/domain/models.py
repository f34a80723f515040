"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import NoReturn, TypeVar


TEnum = TypeVar("TEnum", bound=StrEnum)

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


class LedgerStatus(StrEnum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class SessionStatus(StrEnum):
    INITIALIZED = "initialized"
    ACTIVE = "active"
    HANDOFF_PENDING = "handoff_pending"
    COMPLETE = "complete"


class ActionKind(StrEnum):
    """What the host is about to do."""

    READ = "read"
    SHELL = "shell"
    CYCLE_START = "cycle_start"


class ActionCategory(StrEnum):
    """Typed exemption category assigned by the action classifier."""

    PERSIST = "persist"
    INSPECT = "inspect"
    MUTATE = "mutate"
    OTHER = "other"


SESSION_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.INITIALIZED: frozenset(
        {SessionStatus.ACTIVE, SessionStatus.HANDOFF_PENDING, SessionStatus.COMPLETE}
    ),
    SessionStatus.ACTIVE: frozenset(
        {SessionStatus.ACTIVE, SessionStatus.HANDOFF_PENDING, SessionStatus.COMPLETE}
    ),
    SessionStatus.HANDOFF_PENDING: frozenset(
        {SessionStatus.ACTIVE, SessionStatus.HANDOFF_PENDING, SessionStatus.COMPLETE}
    ),
    SessionStatus.COMPLETE: frozenset(),
}


def can_transition(source: SessionStatus, target: SessionStatus) -> bool:
    """Return ``True`` when ``source -> target`` is an edge of the session DAG."""

    return target in SESSION_TRANSITIONS[source]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    """Persisted budget ledger state."""

    allocated: int
    threshold: int
    status: LedgerStatus = LedgerStatus.HEALTHY
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        _require_int(self.allocated, "LedgerSnapshot.allocated", minimum=0)
        _require_int(self.threshold, "LedgerSnapshot.threshold", minimum=1)
        object.__setattr__(self, "status", LedgerStatus(self.status))

    @property
    def remaining(self) -> int:
        return max(0, self.threshold - self.allocated)

    @property
    def percent_used(self) -> int:
        return self.allocated * 100 // self.threshold

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "allocated": self.allocated,
            "threshold": self.threshold,
            "status": self.status.value,
            "updated_at": _format_ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> LedgerSnapshot:
        allocated = data.get("allocated")
        threshold = data.get("threshold")
        if not isinstance(allocated, int) or isinstance(allocated, bool):
            _fail("LedgerSnapshot.allocated", "expected integer")
        if not isinstance(threshold, int) or isinstance(threshold, bool):
            _fail("LedgerSnapshot.threshold", "expected integer")
        return cls(
            allocated=allocated,
            threshold=threshold,
            status=_parse_enum(LedgerStatus, data.get("status"), "LedgerSnapshot.status"),
            updated_at=_parse_optional_ts(data.get("updated_at"), "LedgerSnapshot.updated_at"),
        )


@dataclass(frozen=True, slots=True)
class IterationRecord:
    """Persisted session record advanced once per work cycle."""

    iteration: int
    status: SessionStatus
    started_at: datetime
    previous_context: int | None = None
    completed_at: datetime | None = None

    def __post_init__(self) -> None:
        _require_int(self.iteration, "IterationRecord.iteration", minimum=0)
        object.__setattr__(self, "status", SessionStatus(self.status))
        if self.previous_context is not None:
            _require_int(self.previous_context, "IterationRecord.previous_context", minimum=0)

    @classmethod
    def initial(cls, *, now: datetime | None = None) -> IterationRecord:
        return cls(iteration=0, status=SessionStatus.INITIALIZED, started_at=now or utc_now())

    @property
    def is_terminal(self) -> bool:
        return self.status is SessionStatus.COMPLETE

    def transition_to(self, status: SessionStatus, **changes: object) -> IterationRecord:
        """Return a copy moved to ``status``; rejects edges outside the session DAG."""

        if not can_transition(self.status, status):
            _fail(
                "IterationRecord.status",
                f"invalid transition {self.status.value} -> {status.value}",
            )
        return replace(self, status=status, **changes)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "iteration": self.iteration,
            "status": self.status.value,
            "started_at": _format_ts(self.started_at),
            "previous_context": self.previous_context,
            "completed_at": _format_ts(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> IterationRecord:
        iteration = data.get("iteration")
        if not isinstance(iteration, int) or isinstance(iteration, bool):
            _fail("IterationRecord.iteration", "expected integer")
        previous = data.get("previous_context")
        if previous is not None and (not isinstance(previous, int) or isinstance(previous, bool)):
            _fail("IterationRecord.previous_context", "expected integer or null")
        started_at = _parse_optional_ts(data.get("started_at"), "IterationRecord.started_at")
        if started_at is None:
            _fail("IterationRecord.started_at", "missing timestamp")
        return cls(
            iteration=iteration,
            status=_parse_enum(SessionStatus, data.get("status"), "IterationRecord.status"),
            started_at=started_at,
            previous_context=previous,
            completed_at=_parse_optional_ts(
                data.get("completed_at"), "IterationRecord.completed_at"
            ),
        )


@dataclass(frozen=True, slots=True)
class AllocationEntry:
    """One metered action in the allocation journal."""

    target: str
    cost: int
    allocated_after: int
    iteration: int
    recorded_at: datetime

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "target": self.target,
            "cost": self.cost,
            "allocated_after": self.allocated_after,
            "iteration": self.iteration,
            "recorded_at": _format_ts(self.recorded_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> AllocationEntry:
        recorded_at = _parse_optional_ts(data.get("recorded_at"), "AllocationEntry.recorded_at")
        if recorded_at is None:
            _fail("AllocationEntry.recorded_at", "missing timestamp")
        values: dict[str, int] = {}
        for key in ("cost", "allocated_after", "iteration"):
            raw = data.get(key)
            if not isinstance(raw, int) or isinstance(raw, bool):
                _fail(f"AllocationEntry.{key}", "expected integer")
            values[key] = raw
        target = data.get("target")
        if not isinstance(target, str):
            _fail("AllocationEntry.target", "expected string")
        return cls(target=target, recorded_at=recorded_at, **values)


@dataclass(frozen=True, slots=True)
class Criterion:
    text: str
    checked: bool = False


@dataclass(frozen=True, slots=True)
class TaskSpec:
    """Read-only view of the externally authored task document."""

    test_command: str | None = None
    criteria: tuple[Criterion, ...] = ()

    @property
    def unchecked_count(self) -> int:
        return sum(1 for item in self.criteria if not item.checked)

    @property
    def checked_count(self) -> int:
        return len(self.criteria) - self.unchecked_count


@dataclass(frozen=True, slots=True)
class GuardrailSet:
    """Ordered, append-only guardrail rules surfaced to the agent."""

    rules: tuple[str, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.rules)

    def render(self) -> str:
        return "\n\n".join(self.rules)


def canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _require_int(value: object, path: str, *, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if value < minimum:
        _fail(path, f"must be >= {minimum}")


def _parse_enum(enum_type: type[TEnum], raw: object, path: str) -> TEnum:
    if not isinstance(raw, str):
        _fail(path, "expected string")
    try:
        return enum_type(raw)
    except ValueError:
        allowed = ", ".join(item.value for item in enum_type)
        _fail(path, f"invalid value {raw!r}; expected one of: {allowed}")


def _format_ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _parse_optional_ts(raw: object, path: str) -> datetime | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        _fail(path, "expected ISO-8601 string")
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        _fail(path, f"invalid timestamp {raw!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


__all__ = [
    "SESSION_TRANSITIONS",
    "ActionCategory",
    "ActionKind",
    "AllocationEntry",
    "Criterion",
    "GuardrailSet",
    "IterationRecord",
    "JSONValue",
    "LedgerSnapshot",
    "LedgerStatus",
    "SessionStatus",
    "TaskSpec",
    "can_transition",
    "canonical_json",
    "utc_now",
]
