from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from provisor import __version__
from provisor.cli.app import app

runner = CliRunner()


def test_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"provisor v{__version__}" in result.output


def test_status_exits_pending_on_fresh_root(toy_project: Path, use_toy_recipe) -> None:
    result = runner.invoke(app, ["status", "--base-dir", str(toy_project)])

    assert result.exit_code == 1
    assert "STAGE fetch PENDING" in result.output
    assert "0/2 stages satisfied" in result.output


@pytest.mark.integration
def test_run_json_emits_one_event_per_line(toy_project: Path, install_root: Path, use_toy_recipe) -> None:
    result = runner.invoke(app, ["run", "--base-dir", str(toy_project), "--json"])

    assert result.exit_code == 0
    payloads = [json.loads(line) for line in result.output.splitlines() if line.strip()]
    types = [payload["type"] for payload in payloads]
    assert types[0] == "CommandStarted"
    assert types[-1] == "CommandCompleted"
    assert "Debug" not in types
    assert payloads[0]["install_root"] == str(install_root.resolve())

    rerun = runner.invoke(app, ["run", "--base-dir", str(toy_project), "--json", "--debug"])
    assert rerun.exit_code == 0
    payloads = [json.loads(line) for line in rerun.output.splitlines() if line.strip()]
    statuses = [payload["status"] for payload in payloads if payload["type"] == "StageCompleted"]
    assert statuses == ["satisfied", "satisfied"]
    assert any(payload["type"] == "Debug" for payload in payloads)


@pytest.mark.integration
def test_run_plain_output(toy_project: Path, install_root: Path, use_toy_recipe) -> None:
    other_root = install_root.parent / "elsewhere"

    result = runner.invoke(app, ["run", "--base-dir", str(toy_project), "--install-root", str(other_root)])

    assert result.exit_code == 0
    assert "[1/2] Fetching sources" in result.output
    assert "PROGRESS 100%" in result.output
    assert "=== Installation Complete! ===" in result.output
    assert (other_root / "artifact.bin").exists()


def test_run_reports_config_error(tmp_path: Path) -> None:
    (tmp_path / "provisor.yaml").write_text("parallelism: -1\n", encoding="utf-8")

    result = runner.invoke(app, ["run", "--base-dir", str(tmp_path)])

    assert result.exit_code == 2
    assert "Error:" in result.output


def test_list_recipes_json(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "provisor.core.list_recipes.discover_recipes",
        lambda: [{"name": "qt-cross", "impl": "provisor.recipes.qt_cross:qt_cross"}],
    )

    result = runner.invoke(app, ["list-recipes", "--json"])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload == {"ok": True, "recipes": [{"name": "qt-cross", "impl": "provisor.recipes.qt_cross:qt_cross"}]}
