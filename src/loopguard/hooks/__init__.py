"""Host hook protocol and event handlers."""

from loopguard.hooks.handlers import (
    HookContext,
    before_prompt,
    build_context,
    gate_action,
    handle_hook,
    run_hook,
    stop,
)
from loopguard.hooks.protocol import (
    GateResponse,
    HookEvent,
    HookPayloadError,
    HookRequest,
    HookResponse,
    Permission,
    PromptResponse,
    StopResponse,
)

__all__ = [
    "GateResponse",
    "HookContext",
    "HookEvent",
    "HookPayloadError",
    "HookRequest",
    "HookResponse",
    "Permission",
    "PromptResponse",
    "StopResponse",
    "before_prompt",
    "build_context",
    "gate_action",
    "handle_hook",
    "run_hook",
    "stop",
]
