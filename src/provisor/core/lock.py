from __future__ import annotations

import os
from pathlib import Path

LOCK_NAME = ".provisor.lock"


class RunLockError(RuntimeError):
    def __init__(self, path: Path, owner: int | None):
        self.path = path
        self.owner = owner
        holder = f"pid {owner}" if owner else "another run"
        super().__init__(f"Install root is locked by {holder}: {path}")


class RunLock:
    """Advisory lock file under an installation root.

    The file holds the owner pid. A lock left behind by a process that is no
    longer alive is reclaimed.
    """

    def __init__(self, path: Path):
        self.path = path
        self._held = False

    @classmethod
    def for_root(cls, install_root: Path) -> "RunLock":
        return cls(install_root / LOCK_NAME)

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                owner = _read_owner(self.path)
                if owner is not None and not _pid_alive(owner):
                    self.path.unlink(missing_ok=True)
                    continue
                raise RunLockError(self.path, owner) from None
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(f"{os.getpid()}\n")
            self._held = True
            return
        raise RunLockError(self.path, _read_owner(self.path))

    def release(self) -> None:
        if not self._held:
            return
        self.path.unlink(missing_ok=True)
        self._held = False

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def _read_owner(path: Path) -> int | None:
    try:
        text = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    try:
        return int(text)
    except ValueError:
        return None


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
