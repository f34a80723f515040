"""
loopguard — hook wire protocol

File: src/loopguard/hooks/protocol.py

Purpose
- Parse the single JSON object the host writes to stdin for each hook event.
- Build the single JSON object written back on stdout.

Functional requirements
- Accept both the documented field names and the host's native aliases.
- Response objects omit absent fields rather than emitting ``null``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Final

from loopguard.control_plane.admission import ActionDescriptor
from loopguard.domain.models import ActionKind

_TARGET_KEYS: Final[tuple[str, ...]] = ("command_or_path", "command", "file_path", "path")
_CONTENT_KEYS: Final[tuple[str, ...]] = ("content", "file_content")
_SIZE_KEYS: Final[tuple[str, ...]] = ("size", "size_hint")
_STATUS_KEYS: Final[tuple[str, ...]] = ("event_status", "status")


class HookEvent(StrEnum):
    BEFORE_READ = "before-read"
    BEFORE_SHELL = "before-shell"
    BEFORE_PROMPT = "before-prompt"
    STOP = "stop"


class Permission(StrEnum):
    ALLOW = "allow"
    DENY = "deny"


class HookPayloadError(ValueError):
    """Raised when stdin does not carry a JSON object."""


_EVENT_ACTION_KINDS: Final[dict[HookEvent, ActionKind]] = {
    HookEvent.BEFORE_READ: ActionKind.READ,
    HookEvent.BEFORE_SHELL: ActionKind.SHELL,
    HookEvent.BEFORE_PROMPT: ActionKind.CYCLE_START,
}


@dataclass(frozen=True, slots=True)
class HookRequest:
    """Normalized hook input."""

    event: HookEvent
    workspace_root: Path
    target: str = ""
    content_hint: str | None = None
    size_hint: int | None = None
    event_status: str | None = None

    @classmethod
    def from_payload(
        cls,
        event: HookEvent,
        payload: Mapping[str, object],
        *,
        default_root: str | Path,
    ) -> HookRequest:
        target = _first_str(payload, _TARGET_KEYS) or ""
        content, size = _content_or_size(payload)
        return cls(
            event=event,
            workspace_root=_workspace_root(payload, default_root),
            target=target,
            content_hint=content,
            size_hint=size,
            event_status=_first_str(payload, _STATUS_KEYS),
        )

    def to_action(self) -> ActionDescriptor:
        kind = _EVENT_ACTION_KINDS.get(self.event)
        if kind is None:
            raise ValueError(f"hook event {self.event.value!r} is not a gated action")
        return ActionDescriptor(
            kind=kind,
            target=self.target,
            content_hint=self.content_hint,
            size_hint=self.size_hint,
        )


@dataclass(frozen=True, slots=True)
class GateResponse:
    """Response to ``before-read`` and ``before-shell``."""

    permission: Permission = Permission.ALLOW
    user_message: str | None = None
    agent_message: str | None = None

    def to_dict(self) -> dict[str, object]:
        return _drop_none(
            {
                "permission": self.permission.value,
                "user_message": self.user_message,
                "agent_message": self.agent_message,
            }
        )


@dataclass(frozen=True, slots=True)
class PromptResponse:
    """Response to ``before-prompt``."""

    continue_: bool = True
    user_message: str | None = None
    agent_message: str | None = None

    def to_dict(self) -> dict[str, object]:
        return _drop_none(
            {
                "continue": self.continue_,
                "user_message": self.user_message,
                "agent_message": self.agent_message,
            }
        )


@dataclass(frozen=True, slots=True)
class StopResponse:
    """Response to ``stop``; an empty object lets the agent stop."""

    followup_message: str | None = None

    def to_dict(self) -> dict[str, object]:
        return _drop_none({"followup_message": self.followup_message})


HookResponse = GateResponse | PromptResponse | StopResponse


def _first_str(payload: Mapping[str, object], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _content_or_size(payload: Mapping[str, object]) -> tuple[str | None, int | None]:
    hint = payload.get("content_or_size_hint")
    if isinstance(hint, str):
        digits = hint.strip()
        if digits.isascii() and digits.isdigit():
            return None, int(digits)
        return hint, None
    if isinstance(hint, int) and not isinstance(hint, bool) and hint >= 0:
        return None, hint

    content = _first_str(payload, _CONTENT_KEYS)
    if content is not None:
        return content, None
    for key in _SIZE_KEYS:
        value = payload.get(key)
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            return None, value
    return None, None


def _workspace_root(payload: Mapping[str, object], default_root: str | Path) -> Path:
    explicit = payload.get("workspace_root")
    if isinstance(explicit, str) and explicit:
        return Path(explicit)
    roots = payload.get("workspace_roots")
    if isinstance(roots, list) and roots and isinstance(roots[0], str) and roots[0]:
        return Path(roots[0])
    cwd = payload.get("cwd")
    if isinstance(cwd, str) and cwd:
        return Path(cwd)
    return Path(default_root)


def _drop_none(payload: dict[str, object]) -> dict[str, object]:
    return {key: value for key, value in payload.items() if value is not None}


__all__ = [
    "GateResponse",
    "HookEvent",
    "HookPayloadError",
    "HookRequest",
    "HookResponse",
    "Permission",
    "PromptResponse",
    "StopResponse",
]
