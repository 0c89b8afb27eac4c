from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Iterable

from rich import box
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from provisor import __version__
from provisor.core import events as ev

RULE_WIDTH = 64
RULE_LINE = "-" * RULE_WIDTH
STATUS_GLYPHS = {
    "pending": "⏸",
    "running": "⠋",
    "success": "✅",
    "satisfied": "✔",
    "failed": "❌",
    "cancelled": "⏹",
}
SEVERITY_STYLES = {
    "error": "red",
    "warning": "dark_orange",
    "success": "green",
    "section": "cyan",
    "info": "blue",
    "plain": "",
}
SEVERITY_PREFIXES = {
    "error": "[ERROR]",
    "warning": "[WARNING]",
    "success": "[SUCCESS]",
    "info": "[INFO]",
}


def run_events(events: Iterable[ev.ProvisorEvent], renderer: "Renderer") -> int:
    exit_code = 0
    try:
        for event in events:
            renderer.handle(event)
            if isinstance(event, ev.CommandCompleted):
                exit_code = event.exit_code
    finally:
        renderer.close()
    return exit_code


class Renderer:
    def handle(self, event: ev.ProvisorEvent) -> None:  # noqa: D401
        """Handle a single event."""

    def close(self) -> None:
        return None


class JsonLinesRenderer(Renderer):
    """One JSON object per event; doubles as a machine-readable run log."""

    def __init__(self, console: Console, *, debug: bool = False):
        self.console = console
        self.debug = debug

    def handle(self, event: ev.ProvisorEvent) -> None:
        if isinstance(event, ev.Debug) and not self.debug:
            return
        payload = json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False)
        self.console.print(payload, markup=False, highlight=False, soft_wrap=True)


class _RunState:
    def __init__(self) -> None:
        self.verbose = True
        self.stages: list[tuple[str, str]] = []
        self.stage_status: dict[str, str] = {}
        self.stage_elapsed: dict[str, float] = {}
        self.progress = 0
        self.buffered: dict[str, list[ev.OutputLine]] = {}
        self.missing: list[ev.PrerequisiteChecked] = []
        self.failure: ev.StageFailed | None = None
        self.finished: ev.RunFinished | None = None
        self.summary: list[str] = []

    def on_event(self, event: ev.ProvisorEvent) -> None:
        if isinstance(event, ev.CommandStarted):
            self.verbose = bool(event.options.get("verbose", True)) if event.options else True
        elif isinstance(event, ev.StagesPlanned):
            self.stages = [(item["stage_id"], item["label"]) for item in event.stages]
            self.stage_status = {stage_id: "pending" for stage_id, _ in self.stages}
        elif isinstance(event, ev.PrerequisiteChecked):
            if not event.found and event.required:
                self.missing.append(event)
        elif isinstance(event, ev.StageStarted):
            self.stage_status[event.stage_id] = "running"
        elif isinstance(event, ev.StageCompleted):
            self.stage_status[event.stage_id] = event.status
            self.buffered.pop(event.stage_id, None)
            if event.status == "success":
                self.stage_elapsed[event.stage_id] = event.duration_ms
        elif isinstance(event, ev.StageFailed):
            self.stage_status[event.stage_id] = "failed"
            self.stage_elapsed[event.stage_id] = event.duration_ms
            self.failure = event
        elif isinstance(event, ev.OutputLine):
            if not self.verbose and event.severity == "plain":
                self.buffered.setdefault(event.stage_id, []).append(event)
        elif isinstance(event, ev.ProgressChanged):
            self.progress = event.percent
        elif isinstance(event, ev.RunFinished):
            self.finished = event
            if event.outcome == "cancelled" and event.stage_id:
                self.stage_status[event.stage_id] = "cancelled"
        elif isinstance(event, ev.InstallSummary):
            self.summary = list(event.lines)

    def shows_output(self, event: ev.OutputLine) -> bool:
        return self.verbose or event.severity != "plain"

    def failed_output(self) -> list[ev.OutputLine]:
        if self.failure is None:
            return []
        return self.buffered.get(self.failure.stage_id, [])


class RunRichRenderer(Renderer):
    def __init__(self, console: Console, *, debug: bool = False):
        self.console = console
        self.debug = debug
        self.state = _RunState()
        self._live: Live | None = None

    def handle(self, event: ev.ProvisorEvent) -> None:
        self.state.on_event(event)
        if isinstance(event, ev.CommandStarted):
            _print_header(self.console, event)
            return
        if isinstance(event, ev.StagesPlanned):
            if self.console.is_terminal:
                self._live = Live(self._render(), console=self.console, refresh_per_second=10)
                self._live.__enter__()
            return
        if isinstance(event, ev.PrerequisiteChecked):
            if event.found:
                if self.state.verbose:
                    self.console.print(Text(f"  ✓ {event.name} found: {event.path}", style="dim"))
            elif event.required:
                self.console.print(Text(f"  ✗ {event.name} not found", style="red"))
            return
        if isinstance(event, ev.Warning):
            message = _redact(event.message)
            if event.hint:
                message = f"{message} ({_redact(event.hint)})"
            self.console.print(Text(f"[WARNING] {message}", style=SEVERITY_STYLES["warning"]))
            return
        if isinstance(event, ev.StageStarted):
            self.console.print(Text(f"[INFO] {event.label}", style=SEVERITY_STYLES["info"]))
            self._refresh()
            return
        if isinstance(event, ev.StepStarted):
            if self.state.verbose:
                self.console.print(Text(f"  {event.label}", style="dim"))
            return
        if isinstance(event, ev.OutputLine):
            if self.state.shows_output(event):
                self.console.print(_output_text(event))
            return
        if isinstance(event, ev.StageCompleted):
            label = self._label(event.stage_id)
            if event.status == "satisfied":
                self.console.print(Text(f"[SUCCESS] {label} already satisfied", style=SEVERITY_STYLES["success"]))
            else:
                duration = _format_duration(event.duration_ms)
                self.console.print(Text(f"[SUCCESS] {label} done in {duration}", style=SEVERITY_STYLES["success"]))
            self._refresh()
            return
        if isinstance(event, (ev.StageFailed, ev.ProgressChanged, ev.RunFinished)):
            self._refresh()
            return
        if isinstance(event, ev.Debug):
            if self.debug:
                self.console.print(Text(f"DEBUG {event.message} {json.dumps(event.data or {})}", style="dim"))
            return
        if isinstance(event, ev.CommandCompleted):
            self._finish(event)

    def close(self) -> None:
        if self._live:
            self._live.__exit__(None, None, None)
            self._live = None

    def _finish(self, event: ev.CommandCompleted) -> None:
        self.close()
        finished = self.state.finished
        if finished is None:
            if self.state.failure:
                self.console.print(_stage_failure_panel(self.state.failure, "Run failed"))
            return
        if finished.outcome == "cancelled":
            where = f" during {self._label(finished.stage_id)}" if finished.stage_id else ""
            self.console.print(Panel(f"Run cancelled{where}.", title="Cancelled", box=box.ROUNDED, title_align="left"))
            return
        if finished.outcome == "failed":
            for line in self.state.failed_output():
                self.console.print(_output_text(line))
            self.console.print(_failure_panel(finished, self.state))
            return
        self.console.print(Text("=== Installation Complete! ===", style="bold green"))
        if self.state.summary:
            body = "\n".join(self.state.summary)
            self.console.print(Panel(body, title="Install locations", box=box.ROUNDED, title_align="left"))

    def _label(self, stage_id: str | None) -> str:
        return _stage_label(stage_id or "", self.state.stages)

    def _refresh(self) -> None:
        if self._live:
            self._live.update(self._render())

    def _render(self) -> Group:
        total = len(self.state.stages)
        stage_table = Table(show_header=True, box=box.MINIMAL, show_lines=False)
        stage_table.add_column("#", justify="right", style="dim")
        stage_table.add_column("Stage")
        stage_table.add_column("Status")
        stage_table.add_column("Time", justify="right")
        for index, (stage_id, label) in enumerate(self.state.stages, start=1):
            status = self.state.stage_status.get(stage_id, "pending")
            elapsed = self.state.stage_elapsed.get(stage_id)
            duration = _format_duration(elapsed) if elapsed is not None else ""
            glyph = STATUS_GLYPHS.get(status, "?")
            stage_table.add_row(f"{index}/{total}", label, f"{glyph} {status}", duration)
        bar = ProgressBar(total=100, completed=self.state.progress)
        progress = Table.grid(padding=(0, 1))
        progress.add_row(bar, Text(f"{self.state.progress:>3}%"))
        return Group(
            Panel(stage_table, title="Stages", box=box.ROUNDED, title_align="left"),
            progress,
        )


class RunPlainRenderer(Renderer):
    def __init__(self, console: Console, *, debug: bool = False):
        self.console = console
        self.debug = debug
        self.state = _RunState()

    def handle(self, event: ev.ProvisorEvent) -> None:
        self.state.on_event(event)
        if isinstance(event, ev.CommandStarted):
            _print_header(self.console, event)
            return
        if isinstance(event, ev.PrerequisiteChecked):
            if not event.found and event.required:
                hint = f" ({event.hint})" if event.hint else ""
                self._print(f"[ERROR] {event.name} not found{hint}")
            elif event.found and self.state.verbose:
                self._print(f"  ok {event.name}: {event.path}")
            return
        if isinstance(event, ev.Warning):
            hint = f" ({_redact(event.hint)})" if event.hint else ""
            self._print(f"[WARNING] {_redact(event.message)}{hint}")
            return
        if isinstance(event, ev.StageStarted):
            line = _format_stage_start_line(event.index, event.label, event.total)
            self._print(line)
            return
        if isinstance(event, ev.StepStarted):
            if self.state.verbose:
                self._print(f"  {event.label}")
            return
        if isinstance(event, ev.OutputLine):
            if self.state.shows_output(event):
                self._print(event.line)
            return
        if isinstance(event, ev.ProgressChanged):
            self._print(f"PROGRESS {event.percent}%")
            return
        if isinstance(event, ev.StageCompleted):
            index = _stage_index(event.stage_id, self.state.stages)
            label = _stage_label(event.stage_id, self.state.stages)
            elapsed = event.duration_ms if event.status == "success" else None
            self._print(_format_stage_line(index, label, event.status, elapsed, len(self.state.stages)))
            return
        if isinstance(event, ev.StageFailed):
            index = _stage_index(event.stage_id, self.state.stages)
            label = _stage_label(event.stage_id, self.state.stages)
            line = _format_stage_line(index, label, "failed", event.duration_ms, len(self.state.stages))
            self._print(f"{line}\n[ERROR] {_redact(event.message)}")
            return
        if isinstance(event, ev.Debug):
            if self.debug:
                self._print(f"DEBUG {event.message} {json.dumps(event.data or {})}")
            return
        if isinstance(event, ev.CommandCompleted):
            self._finish()

    def _finish(self) -> None:
        finished = self.state.finished
        if finished is None:
            if self.state.failure:
                self._print(f"Error: {_redact(self.state.failure.message)}")
            return
        if finished.outcome == "cancelled":
            self._print("Run cancelled.")
            return
        if finished.outcome == "failed":
            for line in self.state.failed_output():
                self._print(line.line)
            code = f" (exit code {finished.exit_code})" if finished.exit_code is not None else ""
            where = finished.stage_id or "pipeline"
            self._print(f"[ERROR] {finished.error_code} at {where}{code}: {_redact(finished.message)}")
            return
        self._print("[SUCCESS] === Installation Complete! ===")
        for line in self.state.summary:
            self._print(f"[INFO] {line}")

    def _print(self, text: str) -> None:
        self.console.print(text, markup=False, highlight=False, soft_wrap=True)


class StatusRichRenderer(Renderer):
    def __init__(self, console: Console):
        self.console = console
        self._checks: list[ev.StageChecked] = []
        self._prereqs: list[ev.PrerequisiteChecked] = []
        self._failure: ev.StageFailed | None = None

    def handle(self, event: ev.ProvisorEvent) -> None:
        if isinstance(event, ev.CommandStarted):
            _print_header(self.console, event)
            return
        if isinstance(event, ev.PrerequisiteChecked):
            self._prereqs.append(event)
            return
        if isinstance(event, ev.StageChecked):
            self._checks.append(event)
            return
        if isinstance(event, ev.StageFailed):
            self._failure = event
            return
        if isinstance(event, ev.CommandCompleted):
            if self._failure:
                self.console.print(_stage_failure_panel(self._failure, "Status failed"))
                return
            self._render_summary()

    def _render_summary(self) -> None:
        tools = Table(show_header=True, box=box.MINIMAL)
        tools.add_column("Tool", style="bold")
        tools.add_column("Status")
        tools.add_column("Path", style="dim")
        for item in self._prereqs:
            if item.found:
                status = Text("found", style="green")
            elif item.required:
                status = Text("missing", style="red")
            else:
                status = Text("missing (optional)", style="dark_orange")
            tools.add_row(item.name, status, item.path or "")
        self.console.print(Panel(tools, title="Prerequisites", box=box.ROUNDED, title_align="left"))

        table = Table(show_header=True, box=box.MINIMAL)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Stage", style="bold")
        table.add_column("Status")
        table.add_column("Checks", style="dim")
        total = len(self._checks)
        for index, item in enumerate(self._checks, start=1):
            status = Text("satisfied", style="green") if item.satisfied else Text("pending", style="dark_orange")
            table.add_row(f"{index}/{total}", item.label, status, item.check)
        self.console.print(Panel(table, title="Stages", box=box.ROUNDED, title_align="left"))
        pending = sum(1 for item in self._checks if not item.satisfied)
        if pending:
            self.console.print(f"{pending} of {total} stages pending. Run `provisor run` to provision.")
        else:
            self.console.print("[green]All stages satisfied.[/green]")


class StatusPlainRenderer(Renderer):
    def __init__(self, console: Console):
        self.console = console
        self._failure: ev.StageFailed | None = None
        self._pending = 0
        self._total = 0

    def handle(self, event: ev.ProvisorEvent) -> None:
        if isinstance(event, ev.CommandStarted):
            _print_header(self.console, event)
            return
        if isinstance(event, ev.PrerequisiteChecked):
            state = "found" if event.found else "missing" if event.required else "missing (optional)"
            self._print(f"TOOL {event.name} {state}")
            return
        if isinstance(event, ev.StageChecked):
            self._total += 1
            if not event.satisfied:
                self._pending += 1
            state = "SATISFIED" if event.satisfied else "PENDING"
            self._print(f"STAGE {event.stage_id} {state} ({event.check})")
            return
        if isinstance(event, ev.StageFailed):
            self._failure = event
            self._print(f"Error: {_redact(event.message)}")
            return
        if isinstance(event, ev.CommandCompleted) and self._failure is None:
            self._print(f"{self._total - self._pending}/{self._total} stages satisfied")

    def _print(self, text: str) -> None:
        self.console.print(text, markup=False, highlight=False, soft_wrap=True)


class ListRecipesRichRenderer(Renderer):
    def __init__(self, console: Console):
        self.console = console

    def handle(self, event: ev.ProvisorEvent) -> None:
        if isinstance(event, ev.RecipesDiscovered):
            table = Table(show_header=True, box=box.MINIMAL)
            table.add_column("Recipe", style="bold")
            table.add_column("Implementation", style="dim")
            for item in event.recipes:
                table.add_row(item["name"], item["impl"])
            self.console.print(Panel(table, title="Recipes", box=box.ROUNDED, title_align="left"))


class ListRecipesPlainRenderer(Renderer):
    def __init__(self, console: Console):
        self.console = console

    def handle(self, event: ev.ProvisorEvent) -> None:
        if isinstance(event, ev.RecipesDiscovered):
            for item in event.recipes:
                self.console.print(f"{item['name']} {item['impl']}", markup=False, highlight=False)


class ListRecipesJsonRenderer(Renderer):
    def __init__(self, console: Console):
        self.console = console
        self._recipes: list[dict[str, str]] = []

    def handle(self, event: ev.ProvisorEvent) -> None:
        if isinstance(event, ev.RecipesDiscovered):
            self._recipes = event.recipes
        if isinstance(event, ev.CommandCompleted):
            payload = json.dumps({"ok": event.ok, "recipes": self._recipes}, indent=2, sort_keys=True)
            self.console.print(payload, markup=False, highlight=False)


def _output_text(event: ev.OutputLine) -> Text:
    return Text(_redact(event.line), style=SEVERITY_STYLES.get(event.severity, ""))


def _format_duration(elapsed_ms: float) -> str:
    if elapsed_ms < 1000:
        return f"{elapsed_ms:.0f}ms"
    seconds = elapsed_ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, seconds = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m{seconds:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes:02d}m"


def _print_header(console: Console, event: ev.CommandStarted) -> None:
    root = event.install_root or Path("~")
    recipe = event.recipe or "?"
    console.print(
        f"provisor v{__version__} | recipe: {recipe} | install root: {root}\n{RULE_LINE}",
        markup=False,
        highlight=False,
    )


_REDACT_PATTERN = re.compile(
    r"(?i)\b(authorization|token|secret|password|api_key)\b\s*[:=]\s*[^\s]+"
)


def _redact(text: str) -> str:
    if not text:
        return text
    return _REDACT_PATTERN.sub(r"\1: <redacted>", text)


def _format_stage_line(
    index: int,
    label: str,
    status: str,
    elapsed_ms: float | None,
    total: int,
) -> str:
    glyph = STATUS_GLYPHS.get(status, "?")
    duration = f"  {_format_duration(elapsed_ms)}" if elapsed_ms is not None else ""
    padding = "." * max(2, 44 - len(label))
    return f"[{index}/{total}] {label} {padding} {glyph} {_status_word(status)}{duration}"


def _format_stage_start_line(index: int, label: str, total: int) -> str:
    padding = "." * max(2, 44 - len(label))
    return f"[{index}/{total}] {label} {padding} START"


def _stage_label(stage_id: str, mapping: list[tuple[str, str]]) -> str:
    for key, label in mapping:
        if key == stage_id:
            return label
    return stage_id


def _stage_index(stage_id: str, mapping: list[tuple[str, str]]) -> int:
    for index, (key, _label) in enumerate(mapping, start=1):
        if key == stage_id:
            return index
    return 0


def _status_word(status: str) -> str:
    return {
        "success": "OK",
        "satisfied": "ALREADY SATISFIED",
        "failed": "FAIL",
        "cancelled": "CANCELLED",
    }.get(status, status.upper())


def _failure_panel(finished: ev.RunFinished, state: _RunState) -> Panel:
    lines = [f"error: {finished.error_code}"]
    if finished.stage_id:
        lines.insert(0, f"stage: {_stage_label(finished.stage_id, state.stages)} ({finished.stage_id})")
    if finished.exit_code is not None:
        lines.append(f"exit code: {finished.exit_code}")
    lines.append(f"message: {_redact(finished.message)}")
    if state.missing:
        lines.append("")
        for item in state.missing:
            hint = f": {item.hint}" if item.hint else ""
            lines.append(f"- {item.name}{hint}")
    lines.append("")
    lines.append("hint: fix the cause and re-run; satisfied stages are skipped")
    return Panel("\n".join(lines), title="Run failed", box=box.ROUNDED, title_align="left")


def _stage_failure_panel(event: ev.StageFailed, title: str) -> Panel:
    body = "\n".join(
        [
            f"stage: {event.stage_id}",
            f"error: {_redact(event.message)}",
        ]
    )
    if event.hint:
        body = "\n".join([body, f"hint: {_redact(event.hint)}"])
    return Panel(body, title=title, box=box.ROUNDED, title_align="left")
