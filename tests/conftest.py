from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from provisor.config.model import Config  # noqa: E402
from provisor.core.stages import Command, FileExists, Stage, StageRegistry  # noqa: E402
from provisor.recipes.base import Recipe  # noqa: E402


def python_command(code: str, **kwargs) -> Command:
    return Command((sys.executable, "-c", code), **kwargs)


def touch_command(path: Path, text: str = "ok") -> Command:
    return python_command(
        f"import pathlib; pathlib.Path({str(path)!r}).write_text({text!r}); print('Building {path.name}')"
    )


@pytest.fixture
def install_root(tmp_path: Path) -> Path:
    root = tmp_path / "root"
    root.mkdir()
    return root


def toy_recipe(config: Config) -> Recipe:
    root = config.root_path()
    registry = StageRegistry(
        [
            Stage(
                stage_id="fetch",
                label="Fetching sources",
                check=FileExists(root / "sources.txt"),
                steps=(touch_command(root / "sources.txt"),),
            ),
            Stage(
                stage_id="build",
                label="Building artifact",
                check=FileExists(root / "artifact.bin"),
                steps=(touch_command(root / "artifact.bin"),),
            ),
        ]
    )
    return Recipe(
        name="toy",
        description="Two-stage test recipe",
        registry=registry,
        milestones=(("Fetching", 40), ("Building artifact", 80)),
        summary=(f"Artifact: {root / 'artifact.bin'}",),
    )


@pytest.fixture
def use_toy_recipe(monkeypatch: pytest.MonkeyPatch) -> Callable[[Config], Recipe]:
    def _load(name: str):
        if name != "toy":
            raise ValueError(f"Unknown recipe: {name}")
        return toy_recipe

    monkeypatch.setattr("provisor.core.provision.load_recipe", _load)
    return toy_recipe


@pytest.fixture
def toy_project(tmp_path: Path, install_root: Path) -> Path:
    project_dir = tmp_path / "project"
    project_dir.mkdir()
    (project_dir / "provisor.yaml").write_text(
        f"""
version: v1
recipe: toy
install_root: {install_root}
verbose: true
""".strip()
        + "\n",
        encoding="utf-8",
    )
    return project_dir
