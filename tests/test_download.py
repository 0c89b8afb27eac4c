from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable

import httpx
import pytest

from provisor.core import events as ev
from provisor.core.runner import ACTION_ERROR, Cancelled, Completed, Failed, run
from provisor.core.stages import Download, FileExists, Stage, StageRegistry

ARCHIVE_URL = "https://example.invalid/releases/llvm-mingw.tar.xz"


@pytest.fixture
def serve(monkeypatch: pytest.MonkeyPatch) -> Callable[[Callable[[httpx.Request], httpx.Response]], list[str]]:
    def _serve(handler: Callable[[httpx.Request], httpx.Response]) -> list[str]:
        requested: list[str] = []

        def _record(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return handler(request)

        client = httpx.Client(transport=httpx.MockTransport(_record))
        monkeypatch.setattr(httpx, "stream", client.stream)
        return requested

    return _serve


def _registry(dest: Path, *, reuse: bool = True) -> StageRegistry:
    return StageRegistry(
        [
            Stage(
                "fetch",
                "Fetching archive",
                FileExists(dest),
                (Download(ARCHIVE_URL, dest, label="Downloading archive", reuse=reuse),),
            )
        ]
    )


def test_download_writes_archive_and_leaves_no_partial_file(tmp_path: Path, serve) -> None:
    payload = b"\xfd7zXZ" + b"a" * 200_000
    requested = serve(lambda request: httpx.Response(200, content=payload))
    dest = tmp_path / "cache" / "llvm-mingw.tar.xz"
    events: list[ev.ProvisorEvent] = []

    result = run(_registry(dest), on_event=events.append)

    assert result == Completed(progress=100)
    assert requested == [ARCHIVE_URL]
    assert dest.read_bytes() == payload
    assert not dest.with_name("llvm-mingw.tar.xz.part").exists()
    lines = [event.line for event in events if isinstance(event, ev.OutputLine)]
    assert lines == [f"Downloaded {len(payload)} bytes to {dest}"]


def test_cached_archive_is_reused(tmp_path: Path, serve) -> None:
    requested = serve(lambda request: httpx.Response(200, content=b"fresh"))
    dest = tmp_path / "llvm-mingw.tar.xz"
    dest.write_bytes(b"cached")
    checks: list[int] = []

    def extracted() -> bool:
        # pending before the step, satisfied after it
        checks.append(1)
        return len(checks) > 1

    registry = StageRegistry(
        [Stage("fetch", "Fetching archive", extracted, (Download(ARCHIVE_URL, dest),))]
    )
    events: list[ev.ProvisorEvent] = []

    result = run(registry, on_event=events.append)

    assert result == Completed(progress=100)
    assert requested == []
    assert dest.read_bytes() == b"cached"
    assert any(isinstance(event, ev.OutputLine) and event.line.startswith("Using cached archive") for event in events)


def test_reuse_disabled_downloads_again(tmp_path: Path, serve) -> None:
    requested = serve(lambda request: httpx.Response(200, content=b"fresh"))
    dest = tmp_path / "llvm-mingw.tar.xz"

    assert run(_registry(dest, reuse=False)) == Completed(progress=100)
    dest.write_bytes(b"")
    assert run(_registry(dest, reuse=False)) == Completed(progress=100)

    assert requested == [ARCHIVE_URL, ARCHIVE_URL]
    assert dest.read_bytes() == b"fresh"


def test_http_error_is_action_error_without_partial_file(tmp_path: Path, serve) -> None:
    serve(lambda request: httpx.Response(404, content=b"not found"))
    dest = tmp_path / "llvm-mingw.tar.xz"

    result = run(_registry(dest))

    assert isinstance(result, Failed)
    assert result.stage_id == "fetch"
    assert result.error_code == ACTION_ERROR
    assert result.exit_code is None
    assert ARCHIVE_URL in result.message
    assert not dest.exists()
    assert list(tmp_path.iterdir()) == []


def test_cancel_mid_stream_discards_partial_download(tmp_path: Path, serve) -> None:
    token = threading.Event()

    def _chunks():
        yield b"a" * 100_000
        token.set()
        yield b"b" * 100_000

    serve(lambda request: httpx.Response(200, content=_chunks()))
    dest = tmp_path / "llvm-mingw.tar.xz"

    result = run(_registry(dest), cancel_token=token)

    assert result == Cancelled(stage_id="fetch")
    assert not dest.exists()
    assert list(tmp_path.iterdir()) == []
