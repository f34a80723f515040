"""
loopguard — unit tests for atomic writes, journals and the state lock

File: tests/unit/utils/test_state_files.py

Purpose
- Atomic writes leave no temp files behind and replace content in one step.
- The state lock is re-entrant within a process and exclusive across processes.
"""

from __future__ import annotations

import subprocess
import sys
import textwrap
from pathlib import Path

import pytest

from loopguard.utils.fs import (
    append_line,
    atomic_write,
    read_text_or_none,
    state_lock,
)


def test_atomic_write_creates_parents_and_replaces(tmp_path: Path) -> None:
    target = tmp_path / "state" / "ledger.json"

    atomic_write(target, '{"allocated": 1}')
    atomic_write(target, b'{"allocated": 2}')

    assert target.read_text(encoding="utf-8") == '{"allocated": 2}'
    assert sorted(path.name for path in target.parent.iterdir()) == ["ledger.json"]


def test_append_line_terminates_each_entry(tmp_path: Path) -> None:
    journal = tmp_path / "allocations.jsonl"

    append_line(journal, '{"cost": 4}')
    append_line(journal, '{"cost": 8}\n')

    assert journal.read_text(encoding="utf-8") == '{"cost": 4}\n{"cost": 8}\n'


def test_read_text_or_none_for_missing_and_binary_files(tmp_path: Path) -> None:
    binary = tmp_path / "blob.bin"
    binary.write_bytes(b"\xff\xfe\x00\x80")

    assert read_text_or_none(tmp_path / "missing.txt") is None
    assert read_text_or_none(binary) is None


def test_state_lock_is_shared_and_reentrant(tmp_path: Path) -> None:
    lock = state_lock(tmp_path / "state.lock")

    assert state_lock(tmp_path / "state.lock") is lock
    with lock:
        with lock:
            assert lock.held
        assert lock.held
    assert not lock.held


@pytest.mark.skipif(sys.platform == "win32", reason="flock semantics")
def test_state_lock_excludes_other_processes(tmp_path: Path) -> None:
    lock_path = tmp_path / "state.lock"
    probe = textwrap.dedent(
        f"""
        import fcntl, os, sys
        fd = os.open({str(lock_path)!r}, os.O_RDWR)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            sys.exit(1)
        sys.exit(0)
        """
    )

    with state_lock(lock_path):
        blocked = subprocess.run([sys.executable, "-c", probe], check=False)
    released = subprocess.run([sys.executable, "-c", probe], check=False)

    assert blocked.returncode == 1
    assert released.returncode == 0
