"""
loopguard — unit tests for the typed action classifier

File: tests/unit/control_plane/test_action_classifier.py

Purpose
- Map shell commands and reads onto PERSIST / INSPECT / MUTATE / OTHER.
- Compound commands take the most restrictive category of their segments.
"""

from __future__ import annotations

import pytest

from loopguard.control_plane.admission import (
    ActionDescriptor,
    classify_action,
    classify_command,
)
from loopguard.domain.models import ActionCategory, ActionKind


@pytest.mark.parametrize(
    "command",
    [
        "git",
        "git status",
        "git add -A",
        'git commit -m "checkpoint: iteration 3"',
        "git push origin HEAD",
        "git diff --stat",
        "git add . && git commit -m wip && git push",
        "GIT_AUTHOR_NAME=bot git commit -m x",
        "git -C repo commit -m x",
        "git --no-pager diff",
        "git -c user.name=bot --git-dir=.git add -A",
    ],
)
def test_checkpoint_commands_are_persist(command: str) -> None:
    assert classify_command(command) is ActionCategory.PERSIST


@pytest.mark.parametrize(
    "command",
    [
        "git log --oneline -5",
        "git -C sub --no-pager log -1",
        "cat README.md",
        "ls -la",
        "grep -rn TODO src",
        "git status && git log -1",
        "head -n 20 notes.txt 2>/dev/null",
        "ls 2>&1",
    ],
)
def test_read_only_commands_are_inspect(command: str) -> None:
    assert classify_command(command) is ActionCategory.INSPECT


@pytest.mark.parametrize(
    "command",
    [
        "rm -rf /tmp/x",
        "mv a b",
        "echo hi > out.txt",
        "cat a >> b",
        "git status; rm -f lock",
        "sed -i s/a/b/ file.txt",
        "sudo rm -rf /",
        "git reset --hard HEAD~1",
        "git checkout -- .",
        "git -C repo reset --hard",
        "echo data | tee log.txt",
    ],
)
def test_mutating_commands_are_mutate(command: str) -> None:
    assert classify_command(command) is ActionCategory.MUTATE


@pytest.mark.parametrize(
    "command",
    [
        "pytest -q",
        "python -m build",
        "git status && pytest",
        "git fetch",
        "",
        "echo 'unterminated",
    ],
)
def test_everything_else_is_other(command: str) -> None:
    assert classify_command(command) is ActionCategory.OTHER


def test_reads_are_inspect_and_cycle_start_is_other() -> None:
    assert classify_action(ActionDescriptor(kind=ActionKind.READ, target="a.py")) is (
        ActionCategory.INSPECT
    )
    assert classify_action(ActionDescriptor(kind=ActionKind.CYCLE_START)) is ActionCategory.OTHER


def test_quoted_operators_do_not_split_segments() -> None:
    assert classify_command('git commit -m "fix; rm -rf /"') is ActionCategory.PERSIST


def test_full_path_programs_are_recognised() -> None:
    assert classify_command("/usr/bin/git push") is ActionCategory.PERSIST
    assert classify_command("/bin/rm x") is ActionCategory.MUTATE
