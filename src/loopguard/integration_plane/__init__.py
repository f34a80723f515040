"""Integration plane: adapters for the external capabilities."""

from loopguard.integration_plane.capabilities import (
    CapabilityError,
    CapabilityOk,
    CapabilityResult,
    CommandResult,
    CommandRunner,
    PersistCapability,
    SpawnCapability,
    SubprocessCommandRunner,
)
from loopguard.integration_plane.git_engine import (
    CheckpointResult,
    GitCheckpointer,
    GitCommandError,
    checkpoint_message,
)
from loopguard.integration_plane.spawn import NEXT_ITERATION_ENV, CommandSpawner

__all__ = [
    "NEXT_ITERATION_ENV",
    "CapabilityError",
    "CapabilityOk",
    "CapabilityResult",
    "CheckpointResult",
    "CommandResult",
    "CommandRunner",
    "CommandSpawner",
    "GitCheckpointer",
    "GitCommandError",
    "PersistCapability",
    "SpawnCapability",
    "SubprocessCommandRunner",
    "checkpoint_message",
]
