from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import typer
from rich.console import Console

from provisor.cli.renderers import JsonLinesRenderer, RunPlainRenderer, RunRichRenderer, run_events
from provisor.core.provision import provision_events

console = Console()


def run(
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
        help="Directory everything is installed under (defaults to install_root or ~).",
    ),
    optional_module: bool | None = typer.Option(
        None,
        "--optional-module/--no-optional-module",
        help="Also build the optional QML module stages.",
    ),
    jobs: int | None = typer.Option(
        None,
        "--jobs",
        "-j",
        min=1,
        help="Parallel build jobs passed to the build tool.",
    ),
    verbose: bool | None = typer.Option(
        None,
        "--verbose/--quiet",
        help="Stream all tool output, or only classified lines.",
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        help="Per-command timeout in seconds.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit one JSON event per line.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Include debug events and show stack traces for unexpected errors.",
    ),
) -> None:
    """Run every stage that is not yet satisfied."""
    overrides = {
        "install_root": install_root,
        "enable_optional_module": optional_module,
        "parallelism": jobs,
        "verbose": verbose,
        "command_timeout_s": timeout,
    }
    cancel_token = threading.Event()
    if json_output:
        renderer = JsonLinesRenderer(console, debug=debug)
    else:
        renderer = RunRichRenderer(console, debug=debug) if console.is_terminal else RunPlainRenderer(console, debug=debug)
    try:
        with _cancel_on_interrupt(cancel_token):
            events = provision_events(
                base_dir=base_dir,
                config_path=config,
                overrides=overrides,
                cancel_token=cancel_token,
            )
            exit_code = run_events(events, renderer)
    except Exception as exc:  # noqa: BLE001
        if debug:
            raise
        console.print(f"[red]Unexpected error:[/red] {exc}")
        raise typer.Exit(code=3)
    raise typer.Exit(code=exit_code)


@contextmanager
def _cancel_on_interrupt(cancel_token: threading.Event) -> Iterator[None]:
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame) -> None:
        cancel_token.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)
