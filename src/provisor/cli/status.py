from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from provisor.cli.renderers import JsonLinesRenderer, StatusPlainRenderer, StatusRichRenderer, run_events
from provisor.core.status import status_events

console = Console()


def status(
    config: Path = typer.Option(
        Path("provisor.yaml"),
        "--config",
        "-c",
        help="Path to provisor.yaml.",
    ),
    base_dir: Path = typer.Option(
        Path("."),
        "--base-dir",
        "-p",
        help="Base directory for relative paths.",
    ),
    install_root: str | None = typer.Option(
        None,
        "--install-root",
        help="Directory everything is installed under.",
    ),
    optional_module: bool | None = typer.Option(
        None,
        "--optional-module/--no-optional-module",
        help="Include the optional QML module stages.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit one JSON event per line.",
    ),
) -> None:
    """Show which stages are satisfied without running anything."""
    events = status_events(
        base_dir=base_dir,
        config_path=config,
        overrides={"install_root": install_root, "enable_optional_module": optional_module},
    )
    if json_output:
        renderer = JsonLinesRenderer(console)
    else:
        renderer = StatusRichRenderer(console) if console.is_terminal else StatusPlainRenderer(console)
    exit_code = run_events(events, renderer)
    raise typer.Exit(code=exit_code)
