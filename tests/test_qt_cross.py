from __future__ import annotations

from pathlib import Path

from provisor.config.model import Config
from provisor.core.stages import Command, Download, WriteFile
from provisor.recipes.qt_cross import MILESTONES, qt_cross


def _no_tools(name: str) -> str | None:
    return None


def _all_tools(name: str) -> str | None:
    return f"/usr/bin/{name}"


def _commands(recipe, stage_id: str) -> list[Command]:
    stage = next(stage for stage in recipe.registry if stage.stage_id == stage_id)
    return [step for step in stage.steps if isinstance(step, Command)]


def test_default_stage_order(tmp_path: Path) -> None:
    recipe = qt_cross(Config(install_root=str(tmp_path)), which=_no_tools)

    assert [stage.stage_id for stage in recipe.registry] == [
        "llvm_mingw",
        "toolchain_file",
        "qt_clone",
        "qt_source",
        "qt_host",
        "qt_windows_base",
        "test_app",
        "test_app_macos",
        "test_app_windows",
    ]
    assert recipe.milestones == MILESTONES
    assert [item.name for item in recipe.prerequisites if not item.required] == ["ninja"]


def test_optional_module_adds_qml_stages(tmp_path: Path) -> None:
    recipe = qt_cross(Config(install_root=str(tmp_path), enable_optional_module=True), which=_no_tools)
    stage_ids = [stage.stage_id for stage in recipe.registry]

    assert stage_ids.index("qt_host_qml") == stage_ids.index("qt_windows_base") + 1
    assert stage_ids.index("qt_windows_qml") == stage_ids.index("qt_host_qml") + 1

    init = _commands(recipe, "qt_source")[-1]
    assert "--module-subset=qtbase,qtdeclarative,qtshadertools,qtsvg,qtimageformats" in init.argv


def test_parallelism_and_generator(tmp_path: Path) -> None:
    config = Config(install_root=str(tmp_path), parallelism=12)

    with_ninja = _commands(qt_cross(config, which=_all_tools), "qt_host")
    without_ninja = _commands(qt_cross(config, which=_no_tools), "qt_host")

    assert with_ninja[1].argv[-2:] == ("--parallel", "12")
    assert "-GNinja" in with_ninja[0].argv
    assert "-GNinja" not in without_ninja[0].argv
    assert [step.label for step in with_ninja] == [
        "Configuring Qt6 host",
        "Building Qt6 host",
        "Installing Qt6 host",
    ]
    assert with_ninja[0].cwd == tmp_path / "qt6-build-host-macos"


def test_cross_build_uses_toolchain_file_and_host_path(tmp_path: Path) -> None:
    recipe = qt_cross(Config(install_root=str(tmp_path)), which=_no_tools)
    configure = _commands(recipe, "qt_windows_base")[0]

    assert f"-DCMAKE_TOOLCHAIN_FILE={tmp_path / 'llvm-mingw-toolchain.cmake'}" in configure.argv
    assert f"-DQT_HOST_PATH={tmp_path / 'qt6-host-macos'}" in configure.argv
    assert f"-DCMAKE_INSTALL_PREFIX={tmp_path / 'qt6-winarm64'}" in configure.argv


def test_llvm_mingw_download_and_toolchain_file(tmp_path: Path) -> None:
    recipe = qt_cross(Config(install_root=str(tmp_path)), which=_no_tools)
    stages = {stage.stage_id: stage for stage in recipe.registry}

    download = stages["llvm_mingw"].steps[0]
    assert isinstance(download, Download)
    assert download.url.endswith("/20231128/llvm-mingw-20231128-ucrt-macos-universal.tar.xz")
    assert download.dest == tmp_path / "llvm-mingw-20231128-ucrt-macos-universal.tar.xz"

    write = stages["toolchain_file"].steps[0]
    assert isinstance(write, WriteFile)
    assert "set(CMAKE_SYSTEM_PROCESSOR ARM64)" in write.content
    assert f"{tmp_path / 'llvm-mingw' / 'bin'}/aarch64-w64-mingw32-clang++" in write.content


def test_checks_follow_artifacts(tmp_path: Path) -> None:
    recipe = qt_cross(Config(install_root=str(tmp_path)), which=_no_tools)
    stages = {stage.stage_id: stage for stage in recipe.registry}
    assert stages["qt_source"].check() is False

    qtbase = tmp_path / "qt6-src" / "qtbase"
    qtbase.mkdir(parents=True)
    assert stages["qt_source"].check() is False
    (qtbase / "CMakeLists.txt").write_text("project(QtBase)", encoding="utf-8")
    assert stages["qt_source"].check() is True

    moc = tmp_path / "qt6-host-macos" / "libexec" / "moc"
    moc.parent.mkdir(parents=True)
    moc.write_text("", encoding="utf-8")
    assert stages["qt_host"].check() is False
    moc.write_text("binary", encoding="utf-8")
    assert stages["qt_host"].check() is True


def test_milestones_cover_stage_labels(tmp_path: Path) -> None:
    recipe = qt_cross(Config(install_root=str(tmp_path)), which=_no_tools)
    keywords = [keyword for keyword, _percent in MILESTONES]
    percents = [percent for _keyword, percent in MILESTONES]

    assert percents == sorted(percents)
    assert recipe.summary[0] == f"Qt6 Host (macOS): {tmp_path / 'qt6-host-macos'}"
    assert any("test application" in stage.label for stage in recipe.registry)
    assert "Installation Complete" in keywords


def test_clone_stage_recovers_from_partial_clone(tmp_path: Path) -> None:
    recipe = qt_cross(Config(install_root=str(tmp_path)), which=_no_tools)
    stages = {stage.stage_id: stage for stage in recipe.registry}
    clone = _commands(recipe, "qt_clone")

    assert [step.argv[0] for step in clone] == ["rm", "git", "mv"]
    assert clone[0].argv[-1] == "qt6-src.clone"
    assert clone[1].argv[-1] == "qt6-src.clone"
    assert clone[2].argv[1:] == ("qt6-src.clone", "qt6-src")

    (tmp_path / "qt6-src.clone" / ".git").mkdir(parents=True)
    assert stages["qt_clone"].check() is False
    (tmp_path / "qt6-src" / ".git").mkdir(parents=True)
    assert stages["qt_clone"].check() is True


def test_empty_submodule_dir_does_not_satisfy_source_stage(tmp_path: Path) -> None:
    recipe = qt_cross(Config(install_root=str(tmp_path)), which=_no_tools)
    stages = {stage.stage_id: stage for stage in recipe.registry}
    (tmp_path / "qt6-src" / ".git").mkdir(parents=True)
    (tmp_path / "qt6-src" / "qtbase").mkdir()

    assert stages["qt_clone"].check() is True
    assert stages["qt_source"].check() is False
    assert [step.argv[:2] for step in _commands(recipe, "qt_source")] == [
        ("git", "checkout"),
        ("perl", "init-repository"),
    ]
