"""Utility exports for filesystem helpers."""

from loopguard.utils.fs import (
    StateLock,
    append_line,
    atomic_write,
    read_text_or_none,
    state_lock,
)

__all__ = [
    "StateLock",
    "append_line",
    "atomic_write",
    "read_text_or_none",
    "state_lock",
]
