from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

from provisor.core import events as ev
from provisor.core.prereq import check_prerequisites
from provisor.core.provision import EXIT_OK, prepare
from provisor.core.stages import describe_check

EXIT_PENDING = 1


def status_events(
    *,
    base_dir: Path,
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Iterable[ev.ProvisorEvent]:
    """Evaluate every completion predicate without running anything."""
    prepared = prepare("status", base_dir.resolve(), config_path, overrides)
    if isinstance(prepared, list):
        yield from prepared
        return
    _config, recipe, started_event = prepared
    yield started_event

    stages = recipe.registry.stages()
    yield ev.StagesPlanned(
        command="status",
        stages=[{"stage_id": stage.stage_id, "label": stage.label} for stage in stages],
    )
    for status in check_prerequisites(recipe.prerequisites):
        yield ev.PrerequisiteChecked(
            command="status",
            name=status.prerequisite.name,
            found=status.found,
            required=status.prerequisite.required,
            path=status.path,
            hint=status.prerequisite.hint,
        )

    pending = 0
    for stage in stages:
        satisfied = stage.check()
        if not satisfied:
            pending += 1
        yield ev.StageChecked(
            command="status",
            stage_id=stage.stage_id,
            label=stage.label,
            satisfied=satisfied,
            check=describe_check(stage.check),
        )

    exit_code = EXIT_OK if pending == 0 else EXIT_PENDING
    yield ev.CommandCompleted(command="status", ok=True, exit_code=exit_code)
