"""Persisted iteration record advanced once per work cycle."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from loopguard.constants import ITERATION_FILE, ITERATION_SCHEMA_VERSION, LOCK_FILE
from loopguard.domain.models import IterationRecord, SessionStatus, canonical_json, utc_now
from loopguard.errors import CorruptStateError, SessionCompleteError
from loopguard.utils.fs import atomic_write, state_lock

if TYPE_CHECKING:
    from loopguard.config.runtime import RuntimeConfig

Clock = Callable[[], datetime]


class IterationTracker:
    """
    Own the session record: iteration number, lifecycle status and timestamps.

    Status transitions follow ``SESSION_TRANSITIONS``:
    ``initialized -> active -> ... -> handoff_pending -> active | complete``.
    A handoff-pending record has already reserved the next iteration number,
    so activating it never increments a second time.
    """

    def __init__(
        self,
        state_dir: str | Path,
        *,
        clock: Clock = utc_now,
        logger: Any | None = None,
    ) -> None:
        self._state_dir = Path(state_dir)
        self._clock = clock
        self._lock = state_lock(self._state_dir / LOCK_FILE)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_config(cls, config: RuntimeConfig, *, logger: Any | None = None) -> IterationTracker:
        return cls(config.state_path, logger=logger)

    @property
    def path(self) -> Path:
        return self._state_dir / ITERATION_FILE

    def read_record(self) -> IterationRecord | None:
        """Strict read; ``None`` when absent, :class:`CorruptStateError` when unparsable."""

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
            return IterationRecord.from_dict(payload)
        except ValueError as exc:
            raise CorruptStateError(self.path, str(exc)) from exc

    def current(self) -> IterationRecord:
        """Return the persisted record, recovering missing or corrupt state as iteration 0."""

        try:
            record = self.read_record()
        except CorruptStateError as exc:
            self._logger.warning("tracker_corrupt_state", path=str(exc.path), detail=exc.detail)
            record = None
        return record if record is not None else IterationRecord.initial(now=self._clock())

    def advance(self) -> IterationRecord:
        """Start the next work cycle and return its record.

        Raises :class:`SessionCompleteError` when the session is already complete.
        """

        with self._lock:
            previous = self.current()
            now = self._clock()
            if previous.status is SessionStatus.COMPLETE:
                raise SessionCompleteError(previous.iteration)
            if previous.status is SessionStatus.HANDOFF_PENDING:
                record = previous.transition_to(SessionStatus.ACTIVE, started_at=now)
            else:
                record = previous.transition_to(
                    SessionStatus.ACTIVE,
                    iteration=previous.iteration + 1,
                    started_at=now,
                    previous_context=None,
                    completed_at=None,
                )
            self._write(record)

        self._logger.info(
            "tracker_advanced",
            iteration=record.iteration,
            previous_iteration=previous.iteration,
            previous_status=previous.status.value,
            resumed=previous.status is SessionStatus.HANDOFF_PENDING,
        )
        return record

    def reserve_next(self, previous_context: int) -> IterationRecord:
        """Write a handoff-pending record for ``iteration + 1``."""

        with self._lock:
            previous = self.current()
            if previous.status is SessionStatus.COMPLETE:
                raise SessionCompleteError(previous.iteration)
            record = previous.transition_to(
                SessionStatus.HANDOFF_PENDING,
                iteration=previous.iteration + 1,
                started_at=self._clock(),
                previous_context=previous_context,
                completed_at=None,
            )
            self._write(record)

        self._logger.info(
            "tracker_handoff_reserved",
            iteration=record.iteration,
            previous_context=previous_context,
        )
        return record

    def activate_pending(self) -> IterationRecord:
        """Move a handoff-pending record to active without changing its number."""

        with self._lock:
            previous = self.current()
            if previous.status is not SessionStatus.HANDOFF_PENDING:
                return previous
            record = previous.transition_to(SessionStatus.ACTIVE, started_at=self._clock())
            self._write(record)

        self._logger.info("tracker_pending_activated", iteration=record.iteration)
        return record

    def complete(self) -> IterationRecord:
        """Mark the session complete; completing twice is a no-op."""

        with self._lock:
            previous = self.current()
            if previous.is_terminal:
                return previous
            record = previous.transition_to(SessionStatus.COMPLETE, completed_at=self._clock())
            self._write(record)

        self._logger.info("tracker_completed", iteration=record.iteration)
        return record

    def _write(self, record: IterationRecord) -> None:
        payload = {"schema_version": ITERATION_SCHEMA_VERSION, **record.to_dict()}
        atomic_write(self.path, canonical_json(payload) + "\n")


__all__ = ["Clock", "IterationTracker"]
