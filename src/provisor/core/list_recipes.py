from __future__ import annotations

from typing import Iterable

from provisor.core import events as ev
from provisor.plugins.registry import discover_recipes


def list_recipes_events() -> Iterable[ev.ProvisorEvent]:
    yield ev.CommandStarted(command="list-recipes")
    yield ev.RecipesDiscovered(command="list-recipes", recipes=discover_recipes())
    yield ev.CommandCompleted(command="list-recipes", ok=True, exit_code=0)
