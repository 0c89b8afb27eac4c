from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Any, Iterable

from provisor.config.load import ConfigError, load_config
from provisor.config.model import Config
from provisor.core import events as ev
from provisor.core.classify import OutputClassifier, ProgressEstimator
from provisor.core.lock import RunLock
from provisor.core.runner import pipeline_events
from provisor.plugins.registry import load_recipe
from provisor.recipes.base import Recipe

EXIT_OK = 0
EXIT_FAILED = 2
EXIT_CANCELLED = 130


def provision_events(
    *,
    base_dir: Path,
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
    cancel_token: threading.Event | None = None,
) -> Iterable[ev.ProvisorEvent]:
    base_dir = base_dir.resolve()
    prepared = prepare("run", base_dir, config_path, overrides)
    if isinstance(prepared, list):
        yield from prepared
        return
    config, recipe, started_event = prepared
    yield started_event

    classifier = OutputClassifier.with_overrides(config.output.rules)
    milestones = [(item.keyword, item.percent) for item in config.output.milestones] or recipe.milestones
    estimator = ProgressEstimator(milestones)
    root = config.root_path()

    yield ev.Debug(
        command="run",
        message="Resolved pipeline",
        data={
            "recipe": recipe.name,
            "install_root": str(root),
            "stages": [stage.stage_id for stage in recipe.registry],
        },
    )

    exit_code = EXIT_FAILED
    for event in pipeline_events(
        recipe.registry,
        classifier=classifier,
        estimator=estimator,
        cancel_token=cancel_token,
        prerequisites=recipe.prerequisites,
        lock_path=RunLock.for_root(root).path,
        timeout_s=config.command_timeout_s,
        command="run",
    ):
        if isinstance(event, ev.RunFinished):
            if event.outcome == "completed":
                exit_code = EXIT_OK
            elif event.outcome == "cancelled":
                exit_code = EXIT_CANCELLED
        yield event
    if exit_code == EXIT_OK and recipe.summary:
        yield ev.InstallSummary(command="run", recipe=recipe.name, lines=list(recipe.summary))
    yield ev.CommandCompleted(command="run", ok=exit_code == EXIT_OK, exit_code=exit_code)


def prepare(
    command: str,
    base_dir: Path,
    config_path: Path | None,
    overrides: dict[str, Any] | None,
) -> tuple[Config, Recipe, ev.CommandStarted] | list[ev.ProvisorEvent]:
    """Load config and build the recipe.

    Returns the terminal events instead when either step fails.
    """
    started = time.perf_counter()
    try:
        config = load_config(base_dir, config_path, overrides=overrides)
    except ConfigError as exc:
        return [
            ev.CommandStarted(command=command, config_path=config_path),
            ev.StageFailed(
                command=command,
                stage_id="load_config",
                duration_ms=_elapsed_ms(started),
                error_code="config_error",
                message=str(exc),
            ),
            ev.CommandCompleted(command=command, ok=False, exit_code=EXIT_FAILED),
        ]

    started_event = ev.CommandStarted(
        command=command,
        install_root=config.root_path(),
        config_path=config_path,
        recipe=config.recipe,
        options={
            "enable_optional_module": config.enable_optional_module,
            "parallelism": config.parallelism,
            "verbose": config.verbose,
            "command_timeout_s": config.command_timeout_s,
        },
    )
    try:
        factory = load_recipe(config.recipe)
        recipe = factory(config)
    except Exception as exc:  # noqa: BLE001
        return [
            started_event,
            ev.StageFailed(
                command=command,
                stage_id="load_recipe",
                duration_ms=_elapsed_ms(started),
                error_code="recipe_error",
                message=str(exc),
            ),
            ev.CommandCompleted(command=command, ok=False, exit_code=EXIT_FAILED),
        ]
    if not isinstance(recipe, Recipe):
        return [
            started_event,
            ev.StageFailed(
                command=command,
                stage_id="load_recipe",
                duration_ms=_elapsed_ms(started),
                error_code="recipe_error",
                message=f"Recipe {config.recipe} did not return a Recipe.",
            ),
            ev.CommandCompleted(command=command, ok=False, exit_code=EXIT_FAILED),
        ]
    return config, recipe, started_event


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
