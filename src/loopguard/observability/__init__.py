"""Observability exports."""

from loopguard.observability.logging import (
    bind_hook_context,
    configure_logging,
    redact_event,
    redact_text,
    shutdown_logging,
)

__all__ = [
    "bind_hook_context",
    "configure_logging",
    "redact_event",
    "redact_text",
    "shutdown_logging",
]
