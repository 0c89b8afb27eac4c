from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class ProvisorEvent:
    ts: float = field(default_factory=time.perf_counter)
    level: str = "INFO"
    command: str = ""
    type: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _serialize(asdict(self))


@dataclass(frozen=True)
class CommandStarted(ProvisorEvent):
    type: str = "CommandStarted"
    install_root: Path | None = None
    config_path: Path | None = None
    recipe: str = ""
    options: dict[str, Any] | None = None


@dataclass(frozen=True)
class CommandCompleted(ProvisorEvent):
    type: str = "CommandCompleted"
    ok: bool = True
    exit_code: int = 0


@dataclass(frozen=True)
class StagesPlanned(ProvisorEvent):
    type: str = "StagesPlanned"
    stages: list[dict[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class PrerequisiteChecked(ProvisorEvent):
    type: str = "PrerequisiteChecked"
    name: str = ""
    found: bool = True
    required: bool = True
    path: str | None = None
    hint: str | None = None


@dataclass(frozen=True)
class LockAcquired(ProvisorEvent):
    type: str = "LockAcquired"
    path: Path | None = None


@dataclass(frozen=True)
class StageStarted(ProvisorEvent):
    type: str = "StageStarted"
    stage_id: str = ""
    label: str = ""
    index: int = 0
    total: int = 0


@dataclass(frozen=True)
class StageChecked(ProvisorEvent):
    type: str = "StageChecked"
    stage_id: str = ""
    label: str = ""
    satisfied: bool = False
    check: str = ""


@dataclass(frozen=True)
class StageCompleted(ProvisorEvent):
    type: str = "StageCompleted"
    stage_id: str = ""
    duration_ms: float = 0.0
    status: str = "success"


@dataclass(frozen=True)
class StageFailed(ProvisorEvent):
    type: str = "StageFailed"
    level: str = "ERROR"
    stage_id: str = ""
    duration_ms: float = 0.0
    error_code: str = ""
    exit_code: int | None = None
    message: str = ""
    hint: str | None = None


@dataclass(frozen=True)
class StepStarted(ProvisorEvent):
    type: str = "StepStarted"
    stage_id: str = ""
    kind: str = ""
    label: str = ""
    detail: str = ""


@dataclass(frozen=True)
class ProcessStarted(ProvisorEvent):
    type: str = "ProcessStarted"
    stage_id: str = ""
    pid: int = 0


@dataclass(frozen=True)
class ProcessExited(ProvisorEvent):
    type: str = "ProcessExited"
    stage_id: str = ""
    exit_code: int = 0
    terminated: bool = False


@dataclass(frozen=True)
class OutputLine(ProvisorEvent):
    type: str = "OutputLine"
    stage_id: str = ""
    stream: str = "stdout"
    line: str = ""
    severity: str = "plain"


@dataclass(frozen=True)
class ProgressChanged(ProvisorEvent):
    type: str = "ProgressChanged"
    percent: int = 0


@dataclass(frozen=True)
class RunFinished(ProvisorEvent):
    type: str = "RunFinished"
    outcome: str = "completed"
    stage_id: str | None = None
    exit_code: int | None = None
    error_code: str | None = None
    message: str = ""
    progress: int = 0


@dataclass(frozen=True)
class InstallSummary(ProvisorEvent):
    type: str = "InstallSummary"
    recipe: str = ""
    lines: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Warning(ProvisorEvent):
    type: str = "Warning"
    level: str = "WARNING"
    code: str = ""
    message: str = ""
    hint: str | None = None


@dataclass(frozen=True)
class Debug(ProvisorEvent):
    type: str = "Debug"
    level: str = "DEBUG"
    message: str = ""
    data: dict[str, Any] | None = None


@dataclass(frozen=True)
class RecipesDiscovered(ProvisorEvent):
    type: str = "RecipesDiscovered"
    recipes: list[dict[str, str]] = field(default_factory=list)


def _serialize(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {key: _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    return value
