from __future__ import annotations

import shutil
from dataclasses import dataclass
from typing import Iterable, Sequence


@dataclass(frozen=True)
class Prerequisite:
    name: str
    executables: tuple[str, ...] = ()
    required: bool = True
    hint: str | None = None

    def candidates(self) -> tuple[str, ...]:
        return self.executables or (self.name,)


@dataclass(frozen=True)
class PrerequisiteStatus:
    prerequisite: Prerequisite
    path: str | None

    @property
    def found(self) -> bool:
        return self.path is not None


def locate(prerequisite: Prerequisite) -> str | None:
    for name in prerequisite.candidates():
        path = shutil.which(name)
        if path:
            return path
    return None


def check_prerequisites(prerequisites: Iterable[Prerequisite]) -> list[PrerequisiteStatus]:
    return [PrerequisiteStatus(prerequisite=item, path=locate(item)) for item in prerequisites]


def missing_required(statuses: Sequence[PrerequisiteStatus]) -> list[Prerequisite]:
    return [status.prerequisite for status in statuses if status.prerequisite.required and not status.found]
