"""Exception hierarchy shared by loopguard planes."""

from __future__ import annotations

from pathlib import Path


class LoopguardError(RuntimeError):
    """Base error for loopguard failures."""


class CorruptStateError(LoopguardError):
    """Raised when a persisted record cannot be parsed.

    Public ledger and tracker operations absorb this error and fall back to a
    zero/initial value, so callers only see it when reading records directly.
    """

    def __init__(self, path: Path | str, detail: str) -> None:
        self.path = Path(path)
        self.detail = detail
        super().__init__(f"corrupt state in {self.path}: {detail}")


class CapabilityUnavailableError(LoopguardError):
    """Raised inside a capability adapter when the external tool cannot run."""


class SessionCompleteError(LoopguardError):
    """Raised when a terminal (complete) session is asked to advance."""

    def __init__(self, iteration: int) -> None:
        self.iteration = iteration
        super().__init__(f"session already complete at iteration {iteration}")


__all__ = [
    "CapabilityUnavailableError",
    "CorruptStateError",
    "LoopguardError",
    "SessionCompleteError",
]
