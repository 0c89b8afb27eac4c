from __future__ import annotations

import os
import queue
import signal
import subprocess
import threading
import time
from typing import IO, Iterator

from provisor.core.stages import Command

KILL_GRACE_S = 5.0
DRAIN_GRACE_S = 2.0
POLL_INTERVAL_S = 0.1


class ExternalProcess:
    """One running external command.

    The command runs in its own session so that cancel and timeout reach
    every process it spawned. stdout and stderr are drained on two threads
    into a queue while the caller iterates :meth:`lines`. Iteration ends once
    the process has exited and the queue is empty and either both drain
    threads have finished or ``DRAIN_GRACE_S`` has passed. A descendant that
    inherited the pipes can keep them open after the command itself exits.
    """

    def __init__(
        self,
        command: Command,
        *,
        cancel_token: threading.Event | None = None,
        timeout_s: float | None = None,
    ):
        self.command = command
        self.cancel_token = cancel_token
        self.timeout_s = timeout_s
        self.cancelled = False
        self.timed_out = False
        self._process: subprocess.Popen[str] | None = None
        self._queue: queue.Queue[tuple[str, str]] = queue.Queue()
        self._threads: list[threading.Thread] = []
        self._started = 0.0
        self._exited_at: float | None = None

    @property
    def pid(self) -> int:
        return self._process.pid if self._process else 0

    def start(self) -> int:
        if self.command.cwd is not None:
            self.command.cwd.mkdir(parents=True, exist_ok=True)
        env = None
        if self.command.env:
            env = {**os.environ, **self.command.env}
        self._process = subprocess.Popen(  # noqa: S603
            list(self.command.argv),
            cwd=self.command.cwd,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            bufsize=1,
            start_new_session=True,
        )
        self._started = time.monotonic()
        for pipe, label in ((self._process.stdout, "stdout"), (self._process.stderr, "stderr")):
            thread = threading.Thread(target=self._drain, args=(pipe, label), daemon=True)
            thread.start()
            self._threads.append(thread)
        return self._process.pid

    def lines(self) -> Iterator[tuple[str, str]]:
        process = self._require_process()
        while True:
            try:
                yield self._queue.get(timeout=POLL_INTERVAL_S)
            except queue.Empty:
                pass
            running = process.poll() is None
            if not (self.cancelled or self.timed_out):
                if self.cancel_token is not None and self.cancel_token.is_set():
                    self.cancelled = True
                    self.terminate()
                elif running and self._expired():
                    self.timed_out = True
                    self.terminate()
            if running and process.poll() is None:
                continue
            if self._exited_at is None:
                self._exited_at = time.monotonic()
            if not self._queue.empty():
                continue
            if not any(thread.is_alive() for thread in self._threads):
                break
            if self.cancelled or self.timed_out:
                break
            if time.monotonic() - self._exited_at > DRAIN_GRACE_S:
                break

    def wait(self) -> int:
        process = self._require_process()
        exit_code = process.wait()
        deadline = time.monotonic() + DRAIN_GRACE_S
        for thread in self._threads:
            thread.join(max(0.0, deadline - time.monotonic()))
        if (self.cancelled or self.timed_out) and any(thread.is_alive() for thread in self._threads):
            self._signal_group(force=True)
        return exit_code

    def terminate(self) -> None:
        """Stop the whole process group: SIGTERM, then SIGKILL after the grace period."""
        process = self._require_process()
        self._signal_group(force=False)
        try:
            process.wait(timeout=KILL_GRACE_S)
        except subprocess.TimeoutExpired:
            self._signal_group(force=True)
            process.wait()

    def _signal_group(self, *, force: bool) -> None:
        process = self._require_process()
        if os.name != "posix":
            if process.poll() is None and force:
                process.kill()
            elif process.poll() is None:
                process.terminate()
            return
        try:
            os.killpg(process.pid, signal.SIGKILL if force else signal.SIGTERM)
        except (ProcessLookupError, PermissionError):
            # group already gone
            pass

    def _drain(self, pipe: IO[str] | None, label: str) -> None:
        if pipe is None:
            return
        for line in iter(pipe.readline, ""):
            self._queue.put((label, line.rstrip("\r\n")))
        pipe.close()

    def _expired(self) -> bool:
        if self.timeout_s is None:
            return False
        return time.monotonic() - self._started > self.timeout_s

    def _require_process(self) -> subprocess.Popen[str]:
        if self._process is None:
            raise RuntimeError("Process has not been started")
        return self._process
