from __future__ import annotations

import os
from pathlib import Path

import pytest

from provisor.core.lock import LOCK_NAME, RunLock, RunLockError


def test_lock_writes_pid_and_releases(tmp_path: Path) -> None:
    lock = RunLock.for_root(tmp_path)
    assert lock.path == tmp_path / LOCK_NAME

    with lock:
        assert lock.path.read_text(encoding="utf-8").strip() == str(os.getpid())
    assert not lock.path.exists()


def test_second_lock_is_refused_while_owner_alive(tmp_path: Path) -> None:
    first = RunLock.for_root(tmp_path)
    first.acquire()
    try:
        with pytest.raises(RunLockError) as excinfo:
            RunLock.for_root(tmp_path).acquire()
        assert excinfo.value.owner == os.getpid()
        assert "locked" in str(excinfo.value)
    finally:
        first.release()


def test_stale_lock_is_reclaimed(tmp_path: Path) -> None:
    path = tmp_path / LOCK_NAME
    # pid far above any pid_max, never alive
    path.write_text("99999999\n", encoding="utf-8")

    lock = RunLock(path)
    lock.acquire()
    assert path.read_text(encoding="utf-8").strip() == str(os.getpid())
    lock.release()


def test_unreadable_owner_is_not_reclaimed(tmp_path: Path) -> None:
    path = tmp_path / LOCK_NAME
    path.write_text("garbage", encoding="utf-8")

    with pytest.raises(RunLockError) as excinfo:
        RunLock(path).acquire()
    assert excinfo.value.owner is None
    assert path.exists()


def test_release_without_acquire_keeps_foreign_lock(tmp_path: Path) -> None:
    path = tmp_path / LOCK_NAME
    path.write_text(f"{os.getpid()}\n", encoding="utf-8")
    RunLock(path).release()
    assert path.exists()
