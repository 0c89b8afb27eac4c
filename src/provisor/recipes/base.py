from __future__ import annotations

from dataclasses import dataclass, field

from provisor.core.prereq import Prerequisite
from provisor.core.stages import StageRegistry


@dataclass(frozen=True)
class Recipe:
    name: str
    description: str
    registry: StageRegistry
    prerequisites: tuple[Prerequisite, ...] = ()
    milestones: tuple[tuple[str, int], ...] | None = None
    summary: tuple[str, ...] = field(default_factory=tuple)
