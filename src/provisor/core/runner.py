from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generator, Iterator, Sequence

import httpx

from provisor.core import events as ev
from provisor.core.classify import OutputClassifier, ProgressEstimator
from provisor.core.lock import RunLock, RunLockError
from provisor.core.prereq import Prerequisite, check_prerequisites, missing_required
from provisor.core.process import ExternalProcess
from provisor.core.stages import Command, Download, Stage, StageRegistry, Step, WriteFile, describe_check

PREREQUISITE_MISSING = "prerequisite_missing"
RUN_LOCKED = "run_locked"
ACTION_FAILED = "action_failed"
ACTION_ERROR = "action_error"
COMMAND_TIMEOUT = "command_timeout"
POSTCONDITION_FAILED = "postcondition_failed"

DOWNLOAD_CHUNK = 1 << 16


@dataclass
class RunState:
    current_stage_index: int = 0
    cumulative_progress: int = 0
    cancelled: bool = False


@dataclass(frozen=True)
class Completed:
    progress: int = 100


@dataclass(frozen=True)
class Failed:
    stage_id: str
    exit_code: int | None
    error_code: str = ACTION_FAILED
    message: str = ""


@dataclass(frozen=True)
class Cancelled:
    stage_id: str | None = None


RunResult = Completed | Failed | Cancelled


@dataclass(frozen=True)
class _StepOutcome:
    exit_code: int | None = 0
    error_code: str | None = None
    message: str = ""
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error_code is None and not self.cancelled


def pipeline_events(
    stages: StageRegistry | Sequence[Stage],
    *,
    classifier: OutputClassifier | None = None,
    estimator: ProgressEstimator | None = None,
    cancel_token: threading.Event | None = None,
    prerequisites: Sequence[Prerequisite] = (),
    lock_path: Path | None = None,
    timeout_s: float | None = None,
    command: str = "run",
) -> Iterator[ev.ProvisorEvent]:
    stage_list = stages.stages() if isinstance(stages, StageRegistry) else tuple(stages)
    classifier = classifier or OutputClassifier()
    estimator = estimator or ProgressEstimator()
    state = RunState()
    runner = _Runner(
        command=command,
        classifier=classifier,
        estimator=estimator,
        state=state,
        cancel_token=cancel_token,
        timeout_s=timeout_s,
    )

    yield ev.StagesPlanned(
        command=command,
        stages=[{"stage_id": stage.stage_id, "label": stage.label} for stage in stage_list],
    )

    if prerequisites:
        yield from runner.progress("Checking prerequisites")
        statuses = check_prerequisites(prerequisites)
        for status in statuses:
            item = status.prerequisite
            yield ev.PrerequisiteChecked(
                command=command,
                name=item.name,
                found=status.found,
                required=item.required,
                path=status.path,
                hint=item.hint,
            )
            if not status.found and not item.required:
                yield ev.Warning(
                    command=command,
                    code="optional_tool_missing",
                    message=f"Optional tool not found: {item.name}",
                    hint=item.hint,
                )
        missing = missing_required(statuses)
        if missing:
            names = ", ".join(item.name for item in missing)
            hints = "; ".join(item.hint for item in missing if item.hint)
            yield from runner.finish(
                "failed",
                stage_id="",
                error_code=PREREQUISITE_MISSING,
                message=f"Missing required tools: {names}" + (f" ({hints})" if hints else ""),
            )
            return

    lock = RunLock(lock_path) if lock_path is not None else None
    if lock is not None:
        try:
            lock.acquire()
        except RunLockError as exc:
            yield from runner.finish("failed", stage_id="", error_code=RUN_LOCKED, message=str(exc))
            return
        yield ev.LockAcquired(command=command, path=lock.path)

    try:
        yield from runner.run_stages(stage_list)
    finally:
        if lock is not None:
            lock.release()


def run(
    stages: StageRegistry | Sequence[Stage],
    on_event: Callable[[ev.ProvisorEvent], None] | None = None,
    on_progress: Callable[[int], None] | None = None,
    cancel_token: threading.Event | None = None,
    **options,
) -> RunResult:
    """Run a pipeline and return its terminal result.

    Callbacks are invoked on the calling thread, in event order.
    """
    result: RunResult | None = None
    for event in pipeline_events(stages, cancel_token=cancel_token, **options):
        if on_event is not None:
            on_event(event)
        if isinstance(event, ev.ProgressChanged) and on_progress is not None:
            on_progress(event.percent)
        if isinstance(event, ev.RunFinished):
            result = result_from_event(event)
    if result is None:
        raise RuntimeError("Pipeline ended without a result")
    return result


def result_from_event(event: ev.RunFinished) -> RunResult:
    if event.outcome == "completed":
        return Completed(progress=event.progress)
    if event.outcome == "cancelled":
        return Cancelled(stage_id=event.stage_id)
    return Failed(
        stage_id=event.stage_id or "",
        exit_code=event.exit_code,
        error_code=event.error_code or ACTION_FAILED,
        message=event.message,
    )


class _Runner:
    def __init__(
        self,
        *,
        command: str,
        classifier: OutputClassifier,
        estimator: ProgressEstimator,
        state: RunState,
        cancel_token: threading.Event | None,
        timeout_s: float | None,
    ):
        self.command = command
        self.classifier = classifier
        self.estimator = estimator
        self.state = state
        self.cancel_token = cancel_token
        self.timeout_s = timeout_s

    def run_stages(self, stages: Sequence[Stage]) -> Iterator[ev.ProvisorEvent]:
        total = len(stages)
        for index, stage in enumerate(stages):
            self.state.current_stage_index = index
            if self._cancel_requested():
                yield from self.finish("cancelled", stage_id=None)
                return

            satisfied = stage.check()
            yield ev.StageChecked(
                command=self.command,
                stage_id=stage.stage_id,
                label=stage.label,
                satisfied=satisfied,
                check=describe_check(stage.check),
            )
            if satisfied:
                yield ev.StageCompleted(command=self.command, stage_id=stage.stage_id, status="satisfied")
                continue

            started = time.perf_counter()
            yield ev.StageStarted(
                command=self.command,
                stage_id=stage.stage_id,
                label=stage.label,
                index=index + 1,
                total=total,
            )
            yield from self.progress(stage.label)

            for step in stage.steps:
                if self._cancel_requested():
                    yield from self.finish("cancelled", stage_id=stage.stage_id)
                    return
                outcome = yield from self._run_step(stage, step)
                if outcome.cancelled:
                    yield from self.finish("cancelled", stage_id=stage.stage_id)
                    return
                if not outcome.ok:
                    yield ev.StageFailed(
                        command=self.command,
                        stage_id=stage.stage_id,
                        duration_ms=_elapsed_ms(started),
                        error_code=outcome.error_code or ACTION_FAILED,
                        exit_code=outcome.exit_code,
                        message=outcome.message,
                    )
                    yield from self.finish(
                        "failed",
                        stage_id=stage.stage_id,
                        exit_code=outcome.exit_code,
                        error_code=outcome.error_code,
                        message=outcome.message,
                    )
                    return

            if not stage.check():
                message = (
                    f"{stage.label}: actions finished but {describe_check(stage.check)} is still missing"
                )
                yield ev.StageFailed(
                    command=self.command,
                    stage_id=stage.stage_id,
                    duration_ms=_elapsed_ms(started),
                    error_code=POSTCONDITION_FAILED,
                    exit_code=0,
                    message=message,
                )
                yield from self.finish(
                    "failed",
                    stage_id=stage.stage_id,
                    exit_code=0,
                    error_code=POSTCONDITION_FAILED,
                    message=message,
                )
                return

            yield ev.StageCompleted(
                command=self.command,
                stage_id=stage.stage_id,
                duration_ms=_elapsed_ms(started),
                status="success",
            )

        if self.state.cumulative_progress < 100:
            self.state.cumulative_progress = 100
            yield ev.ProgressChanged(command=self.command, percent=100)
        yield from self.finish("completed")

    def progress(self, text: str) -> Iterator[ev.ProvisorEvent]:
        prior = self.state.cumulative_progress
        updated = self.estimator.estimate(text, prior)
        if updated > prior:
            self.state.cumulative_progress = updated
            yield ev.ProgressChanged(command=self.command, percent=updated)

    def output(self, stage: Stage, stream: str, line: str) -> Iterator[ev.ProvisorEvent]:
        severity = self.classifier.classify(line)
        yield ev.OutputLine(
            command=self.command,
            level="ERROR" if severity == "error" else "INFO",
            stage_id=stage.stage_id,
            stream=stream,
            line=line,
            severity=severity,
        )
        yield from self.progress(line)

    def finish(
        self,
        outcome: str,
        *,
        stage_id: str | None = None,
        exit_code: int | None = None,
        error_code: str | None = None,
        message: str = "",
    ) -> Iterator[ev.ProvisorEvent]:
        if outcome == "cancelled":
            self.state.cancelled = True
        yield ev.RunFinished(
            command=self.command,
            level="ERROR" if outcome == "failed" else "INFO",
            outcome=outcome,
            stage_id=stage_id,
            exit_code=exit_code,
            error_code=error_code,
            message=message,
            progress=self.state.cumulative_progress,
        )

    def _run_step(self, stage: Stage, step: Step) -> Generator[ev.ProvisorEvent, None, _StepOutcome]:
        label = step.label or step.describe()
        yield ev.StepStarted(
            command=self.command,
            stage_id=stage.stage_id,
            kind=step.kind,
            label=label,
            detail=step.describe(),
        )
        yield from self.progress(label)
        if isinstance(step, Command):
            return (yield from self._run_command(stage, step))
        if isinstance(step, WriteFile):
            return (yield from self._write_file(stage, step))
        if isinstance(step, Download):
            return (yield from self._download(stage, step))
        return _StepOutcome(exit_code=None, error_code=ACTION_ERROR, message=f"Unsupported step: {step!r}")

    def _run_command(self, stage: Stage, step: Command) -> Generator[ev.ProvisorEvent, None, _StepOutcome]:
        if step.env:
            yield ev.Debug(
                command=self.command,
                message="Command environment overrides",
                data={"stage_id": stage.stage_id, "env": dict(step.env)},
            )
        process = ExternalProcess(step, cancel_token=self.cancel_token, timeout_s=self.timeout_s)
        try:
            pid = process.start()
        except OSError as exc:
            return _StepOutcome(
                exit_code=None,
                error_code=ACTION_ERROR,
                message=f"Failed to start {step.argv[0]}: {exc}",
            )
        yield ev.ProcessStarted(command=self.command, stage_id=stage.stage_id, pid=pid)

        finished = False
        try:
            for stream, line in process.lines():
                yield from self.output(stage, stream, line)
            exit_code = process.wait()
            finished = True
        finally:
            if not finished:
                process.terminate()
                process.wait()

        terminated = process.cancelled or process.timed_out
        yield ev.ProcessExited(
            command=self.command,
            stage_id=stage.stage_id,
            exit_code=exit_code,
            terminated=terminated,
        )
        if process.cancelled:
            return _StepOutcome(exit_code=exit_code, cancelled=True)
        if process.timed_out:
            return _StepOutcome(
                exit_code=exit_code,
                error_code=COMMAND_TIMEOUT,
                message=f"{step.argv[0]} exceeded the {self.timeout_s}s timeout and was terminated",
            )
        if exit_code != 0:
            return _StepOutcome(
                exit_code=exit_code,
                error_code=ACTION_FAILED,
                message=f"{step.describe()} exited with code {exit_code}",
            )
        return _StepOutcome(exit_code=0)

    def _write_file(self, stage: Stage, step: WriteFile) -> Generator[ev.ProvisorEvent, None, _StepOutcome]:
        path = Path(step.path)
        partial = path.with_name(f"{path.name}.part")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            partial.write_text(step.content, encoding="utf-8")
            partial.replace(path)
        except OSError as exc:
            return _StepOutcome(exit_code=None, error_code=ACTION_ERROR, message=f"Failed to write {path}: {exc}")
        yield from self.output(stage, "stdout", f"Wrote {path}")
        return _StepOutcome(exit_code=0)

    def _download(self, stage: Stage, step: Download) -> Generator[ev.ProvisorEvent, None, _StepOutcome]:
        dest = Path(step.dest)
        if step.reuse and dest.is_file() and dest.stat().st_size > 0:
            yield from self.output(stage, "stdout", f"Using cached archive: {dest}")
            return _StepOutcome(exit_code=0)
        partial = dest.with_name(f"{dest.name}.part")
        received = 0
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            with httpx.stream("GET", step.url, follow_redirects=True, timeout=None) as response:
                response.raise_for_status()
                with partial.open("wb") as handle:
                    for chunk in response.iter_bytes(DOWNLOAD_CHUNK):
                        if self._cancel_requested():
                            break
                        handle.write(chunk)
                        received += len(chunk)
            if self._cancel_requested():
                partial.unlink(missing_ok=True)
                return _StepOutcome(exit_code=None, cancelled=True)
            partial.replace(dest)
        except (httpx.HTTPError, OSError) as exc:
            partial.unlink(missing_ok=True)
            return _StepOutcome(
                exit_code=None,
                error_code=ACTION_ERROR,
                message=f"Download failed for {step.url}: {exc}",
            )
        yield from self.output(stage, "stdout", f"Downloaded {received} bytes to {dest}")
        return _StepOutcome(exit_code=0)

    def _cancel_requested(self) -> bool:
        return self.cancel_token is not None and self.cancel_token.is_set()


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
