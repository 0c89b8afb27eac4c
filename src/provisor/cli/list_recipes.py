from __future__ import annotations

import typer
from rich.console import Console

from provisor.cli.renderers import (
    ListRecipesJsonRenderer,
    ListRecipesPlainRenderer,
    ListRecipesRichRenderer,
    run_events,
)
from provisor.core.list_recipes import list_recipes_events

console = Console()


def list_recipes(
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit machine-readable JSON report.",
    ),
) -> None:
    events = list_recipes_events()
    if json_output:
        renderer = ListRecipesJsonRenderer(console)
    else:
        renderer = ListRecipesRichRenderer(console) if console.is_terminal else ListRecipesPlainRenderer(console)
    exit_code = run_events(events, renderer)
    raise typer.Exit(code=exit_code)
