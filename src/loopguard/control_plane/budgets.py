"""
Budget ledger and size estimation for metered agent actions.

The ledger is a persisted, monotonically growing allocation counter compared
against a fixed threshold:
- ``record()`` adds an action's estimated cost under the state lock and
  persists before returning
- ``reset()`` zeroes the counter; only the handoff orchestrator calls it
- ``current()`` is a read-only snapshot

An unreadable or malformed ledger file is treated as an empty ledger.
Metering fails open; decisions never crash on a parse error.

Decision logs use ``structlog`` with snake_case event names.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from loopguard.constants import (
    ALLOCATIONS_FILE,
    DEFAULT_CHARS_PER_TOKEN,
    DEFAULT_CRITICAL_PERCENT,
    DEFAULT_FALLBACK_TOKENS,
    DEFAULT_MULTIPLIER,
    DEFAULT_THRESHOLD,
    DEFAULT_WARN_PERCENT,
    LEDGER_FILE,
    LEDGER_SCHEMA_VERSION,
    LOCK_FILE,
    PREVIOUS_ALLOCATIONS_FILE,
)
from loopguard.domain.models import (
    AllocationEntry,
    LedgerSnapshot,
    LedgerStatus,
    canonical_json,
    utc_now,
)
from loopguard.errors import CorruptStateError
from loopguard.utils.fs import StateLock, append_line, atomic_write, state_lock

if TYPE_CHECKING:
    from datetime import datetime

    from loopguard.config.runtime import RuntimeConfig


@dataclass(frozen=True, slots=True)
class SizeEstimator:
    """Approximate the context cost of an action from its content length.

    ``estimate = (chars // chars_per_token) * multiplier``. The multiplier
    stands in for everything the hooks never see (agent replies, tool
    chatter, system prompts).
    """

    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN
    multiplier: int = DEFAULT_MULTIPLIER
    fallback_tokens: int = DEFAULT_FALLBACK_TOKENS

    def __post_init__(self) -> None:
        if self.chars_per_token <= 0:
            raise ValueError("chars_per_token must be > 0")
        if self.multiplier <= 0:
            raise ValueError("multiplier must be > 0")
        if self.fallback_tokens < 0:
            raise ValueError("fallback_tokens must be >= 0")

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> SizeEstimator:
        return cls(
            chars_per_token=config.chars_per_token,
            multiplier=config.multiplier,
            fallback_tokens=config.fallback_tokens,
        )

    def estimate(
        self,
        content: str | None = None,
        path: str | Path | None = None,
        *,
        size: int | None = None,
    ) -> int:
        """Estimate from ``content``, else a size hint or the byte size of ``path``.

        With none of those available the fixed fallback is charged.
        """

        if content:
            raw_tokens = len(content) // self.chars_per_token
        else:
            if size is None or size < 0:
                size = _file_size(path)
            if size is not None:
                raw_tokens = size // self.chars_per_token
            else:
                raw_tokens = self.fallback_tokens
        return raw_tokens * self.multiplier


def estimate_cost(
    content: str | None = None,
    path: str | Path | None = None,
    *,
    size: int | None = None,
    estimator: SizeEstimator | None = None,
) -> int:
    """Module-level shortcut for :meth:`SizeEstimator.estimate`."""

    return (estimator or SizeEstimator()).estimate(content, path, size=size)


def status_for(
    allocated: int,
    threshold: int,
    *,
    warn_percent: int = DEFAULT_WARN_PERCENT,
    critical_percent: int = DEFAULT_CRITICAL_PERCENT,
) -> LedgerStatus:
    """Map an allocation to its status band; bands are inclusive at the lower edge."""

    scaled = allocated * 100
    if scaled >= threshold * critical_percent:
        return LedgerStatus.CRITICAL
    if scaled >= threshold * warn_percent:
        return LedgerStatus.WARNING
    return LedgerStatus.HEALTHY


class BudgetLedger:
    """Persisted cumulative allocation counter shared by every hook process."""

    def __init__(
        self,
        state_dir: str | Path,
        *,
        threshold: int = DEFAULT_THRESHOLD,
        warn_percent: int = DEFAULT_WARN_PERCENT,
        critical_percent: int = DEFAULT_CRITICAL_PERCENT,
        logger: Any | None = None,
    ) -> None:
        if threshold <= 0:
            raise ValueError("threshold must be > 0")
        if not 0 < warn_percent <= critical_percent:
            raise ValueError("warn_percent must be > 0 and <= critical_percent")

        self._state_dir = Path(state_dir)
        self._threshold = threshold
        self._warn_percent = warn_percent
        self._critical_percent = critical_percent
        self._lock = state_lock(self._state_dir / LOCK_FILE)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_config(cls, config: RuntimeConfig, *, logger: Any | None = None) -> BudgetLedger:
        return cls(
            config.state_path,
            threshold=config.threshold,
            warn_percent=config.warn_percent,
            critical_percent=config.critical_percent,
            logger=logger,
        )

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def lock(self) -> StateLock:
        """State lock shared with the tracker for multi-record critical sections."""

        return self._lock

    @property
    def path(self) -> Path:
        return self._state_dir / LEDGER_FILE

    @property
    def journal_path(self) -> Path:
        return self._state_dir / ALLOCATIONS_FILE

    def status_for(self, allocated: int) -> LedgerStatus:
        return status_for(
            allocated,
            self._threshold,
            warn_percent=self._warn_percent,
            critical_percent=self._critical_percent,
        )

    def current(self) -> LedgerSnapshot:
        """Return the persisted allocation; a corrupt or missing store reads as 0."""

        return self._snapshot(self._load_allocated())

    def record(self, cost: int, *, target: str = "", iteration: int = 0) -> int:
        """Add ``cost`` to the ledger and return the new cumulative allocation."""

        if isinstance(cost, bool) or not isinstance(cost, int):
            raise TypeError("cost must be an integer")
        if cost < 0:
            raise ValueError("cost must be >= 0")

        with self._lock:
            previous = self._load_allocated()
            snapshot = self._snapshot(previous + cost, updated_at=utc_now())
            self._write(snapshot)
            entry = AllocationEntry(
                target=target,
                cost=cost,
                allocated_after=snapshot.allocated,
                iteration=iteration,
                recorded_at=snapshot.updated_at or utc_now(),
            )
            append_line(self.journal_path, canonical_json(entry.to_dict()))

        if snapshot.status is not self.status_for(previous):
            self._logger.warning(
                "ledger_status_changed",
                previous_status=self.status_for(previous).value,
                status=snapshot.status.value,
                allocated=snapshot.allocated,
                threshold=self._threshold,
            )
        self._logger.info(
            "ledger_recorded",
            target=target,
            cost=cost,
            allocated=snapshot.allocated,
            remaining=snapshot.remaining,
            status=snapshot.status.value,
            iteration=iteration,
        )
        return snapshot.allocated

    def reset(self) -> LedgerSnapshot:
        """Zero the ledger and rotate the allocation journal."""

        with self._lock:
            before = self._load_allocated()
            snapshot = self._snapshot(0, updated_at=utc_now())
            self._write(snapshot)
            if self.journal_path.exists():
                os.replace(self.journal_path, self._state_dir / PREVIOUS_ALLOCATIONS_FILE)

        self._logger.info("ledger_reset", allocated_before=before, threshold=self._threshold)
        return snapshot

    def entries(self) -> tuple[AllocationEntry, ...]:
        """Return the current session's journal; malformed lines are skipped."""

        try:
            text = self.journal_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ()
        except (OSError, UnicodeDecodeError) as exc:
            self._logger.warning(
                "ledger_journal_unreadable", path=str(self.journal_path), error=str(exc)
            )
            return ()

        parsed: list[AllocationEntry] = []
        for line_number, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
                if not isinstance(payload, dict):
                    raise ValueError("expected object")
                parsed.append(AllocationEntry.from_dict(payload))
            except ValueError as exc:
                self._logger.warning(
                    "ledger_journal_line_skipped", line=line_number, error=str(exc)
                )
        return tuple(parsed)

    def read_snapshot(self) -> LedgerSnapshot | None:
        """Parse the ledger file strictly.

        Returns ``None`` when no ledger has been written yet and raises
        :class:`CorruptStateError` when the file exists but cannot be parsed.
        """

        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise CorruptStateError(self.path, str(exc)) from exc

        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict):
                raise ValueError("expected JSON object")
            return LedgerSnapshot.from_dict(payload)
        except ValueError as exc:
            raise CorruptStateError(self.path, str(exc)) from exc

    def _load_allocated(self) -> int:
        try:
            snapshot = self.read_snapshot()
        except CorruptStateError as exc:
            self._logger.warning("ledger_corrupt_state", path=str(exc.path), detail=exc.detail)
            return 0
        return 0 if snapshot is None else snapshot.allocated

    def _snapshot(self, allocated: int, *, updated_at: datetime | None = None) -> LedgerSnapshot:
        return LedgerSnapshot(
            allocated=allocated,
            threshold=self._threshold,
            status=self.status_for(allocated),
            updated_at=updated_at,
        )

    def _write(self, snapshot: LedgerSnapshot) -> None:
        payload = {"schema_version": LEDGER_SCHEMA_VERSION, **snapshot.to_dict()}
        atomic_write(self.path, canonical_json(payload) + "\n")


def _file_size(path: str | Path | None) -> int | None:
    if path is None or str(path) == "":
        return None
    candidate = Path(path)
    try:
        if not candidate.is_file():
            return None
        return candidate.stat().st_size
    except OSError:
        return None


__all__ = [
    "BudgetLedger",
    "SizeEstimator",
    "estimate_cost",
    "status_for",
]
