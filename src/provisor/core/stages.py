from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Mapping, Sequence, Union

CheckFn = Callable[[], bool]


@dataclass(frozen=True)
class Command:
    argv: tuple[str, ...]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    label: str = ""

    kind = "command"

    def __post_init__(self) -> None:
        if not self.argv or not all(isinstance(item, str) for item in self.argv):
            raise ValueError("Command requires argv as a non-empty sequence of strings")
        object.__setattr__(self, "argv", tuple(self.argv))

    def describe(self) -> str:
        return shlex.join(self.argv)


@dataclass(frozen=True)
class WriteFile:
    path: Path
    content: str
    label: str = ""

    kind = "write"

    def describe(self) -> str:
        return f"write {self.path}"


@dataclass(frozen=True)
class Download:
    url: str
    dest: Path
    label: str = ""
    reuse: bool = True

    kind = "download"

    def describe(self) -> str:
        return f"download {self.url} -> {self.dest}"


Step = Union[Command, WriteFile, Download]


@dataclass(frozen=True)
class FileExists:
    """Regular file present; by default it must also be non-empty."""

    path: Path
    non_empty: bool = True
    executable: bool = False

    def __call__(self) -> bool:
        path = Path(self.path)
        if not path.is_file():
            return False
        if self.non_empty and path.stat().st_size == 0:
            return False
        if self.executable and not os.access(path, os.X_OK):
            return False
        return True

    def __str__(self) -> str:
        return f"file {self.path}"


@dataclass(frozen=True)
class DirExists:
    path: Path
    marker: str | None = None

    def __call__(self) -> bool:
        path = Path(self.path)
        if not path.is_dir():
            return False
        if self.marker is not None:
            return (path / self.marker).exists()
        return True

    def __str__(self) -> str:
        if self.marker:
            return f"dir {Path(self.path) / self.marker}"
        return f"dir {self.path}"


@dataclass(frozen=True)
class AllOf:
    checks: tuple[CheckFn, ...] = field(default_factory=tuple)

    def __call__(self) -> bool:
        return all(check() for check in self.checks)

    def __str__(self) -> str:
        return " and ".join(describe_check(check) for check in self.checks)


def describe_check(check: CheckFn) -> str:
    if isinstance(check, (FileExists, DirExists, AllOf)):
        return str(check)
    return getattr(check, "__name__", repr(check))


@dataclass(frozen=True)
class Stage:
    stage_id: str
    label: str
    check: CheckFn
    steps: tuple[Step, ...] = ()

    def __post_init__(self) -> None:
        if not self.stage_id:
            raise ValueError("Stage requires a non-empty stage_id")
        object.__setattr__(self, "steps", tuple(self.steps))


class StageRegistry:
    """Ordered, append-only list of stages.

    Declaration order is the dependency order: a stage is only ever run after
    every stage registered before it.
    """

    def __init__(self, stages: Sequence[Stage] = ()):
        self._stages: list[Stage] = []
        for stage in stages:
            self.register(stage)

    def register(self, stage: Stage) -> Stage:
        if any(existing.stage_id == stage.stage_id for existing in self._stages):
            raise ValueError(f"Duplicate stage id: {stage.stage_id}")
        self._stages.append(stage)
        return stage

    def stages(self) -> tuple[Stage, ...]:
        return tuple(self._stages)

    def labels(self) -> list[tuple[str, str]]:
        return [(stage.stage_id, stage.label) for stage in self._stages]

    def __iter__(self) -> Iterator[Stage]:
        return iter(self.stages())

    def __len__(self) -> int:
        return len(self._stages)
