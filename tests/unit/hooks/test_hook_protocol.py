"""
loopguard — unit tests for hook payload normalization and responses
"""

from __future__ import annotations

from pathlib import Path

import pytest

from loopguard.domain.models import ActionKind
from loopguard.hooks.protocol import (
    GateResponse,
    HookEvent,
    HookRequest,
    Permission,
    PromptResponse,
    StopResponse,
)


def test_documented_field_names_are_read(tmp_path: Path) -> None:
    request = HookRequest.from_payload(
        HookEvent.BEFORE_SHELL,
        {
            "command_or_path": "pytest -q",
            "content_or_size_hint": 2048,
            "workspace_root": str(tmp_path),
        },
        default_root="/elsewhere",
    )

    assert request.target == "pytest -q"
    assert request.size_hint == 2048
    assert request.content_hint is None
    assert request.workspace_root == tmp_path


@pytest.mark.parametrize(
    ("payload", "target", "content", "size"),
    [
        ({"file_path": "a.py", "content": "abc"}, "a.py", "abc", None),
        ({"path": "b.py", "size": 12}, "b.py", None, 12),
        ({"command": "ls", "content_or_size_hint": "out"}, "ls", "out", None),
        ({"command": "ls", "content_or_size_hint": "5000"}, "ls", None, 5000),
        ({"command": "ls", "content_or_size_hint": "50 lines"}, "ls", "50 lines", None),
        ({"command": "ls", "size_hint": -1}, "ls", None, None),
        ({"command": "ls", "size": True}, "ls", None, None),
    ],
)
def test_host_aliases_are_normalized(
    payload: dict[str, object], target: str, content: str | None, size: int | None
) -> None:
    request = HookRequest.from_payload(HookEvent.BEFORE_READ, payload, default_root=".")

    assert (request.target, request.content_hint, request.size_hint) == (target, content, size)


def test_workspace_root_falls_back_through_roots_cwd_and_default(tmp_path: Path) -> None:
    roots = HookRequest.from_payload(
        HookEvent.STOP, {"workspace_roots": ["/a", "/b"], "cwd": "/c"}, default_root="/d"
    )
    cwd = HookRequest.from_payload(HookEvent.STOP, {"cwd": "/c"}, default_root="/d")
    default = HookRequest.from_payload(HookEvent.STOP, {}, default_root=tmp_path)

    assert roots.workspace_root == Path("/a")
    assert cwd.workspace_root == Path("/c")
    assert default.workspace_root == tmp_path


def test_events_map_to_action_kinds() -> None:
    read = HookRequest(event=HookEvent.BEFORE_READ, workspace_root=Path("."), target="x")
    prompt = HookRequest(event=HookEvent.BEFORE_PROMPT, workspace_root=Path("."))
    stop = HookRequest(event=HookEvent.STOP, workspace_root=Path("."), event_status="aborted")

    assert read.to_action().kind is ActionKind.READ
    assert prompt.to_action().kind is ActionKind.CYCLE_START
    with pytest.raises(ValueError, match="not a gated action"):
        stop.to_action()


def test_responses_drop_absent_fields() -> None:
    assert GateResponse().to_dict() == {"permission": "allow"}
    assert GateResponse(Permission.DENY, user_message="u", agent_message="a").to_dict() == {
        "permission": "deny",
        "user_message": "u",
        "agent_message": "a",
    }
    assert PromptResponse(continue_=False, user_message="u").to_dict() == {
        "continue": False,
        "user_message": "u",
    }
    assert StopResponse().to_dict() == {}
    assert StopResponse(followup_message="go on").to_dict() == {"followup_message": "go on"}
