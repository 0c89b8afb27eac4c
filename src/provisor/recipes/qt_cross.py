"""Qt 6 host build on macOS plus a Windows ARM64 cross build via llvm-mingw."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Callable

from provisor.config.model import Config
from provisor.core.prereq import Prerequisite
from provisor.core.stages import AllOf, Command, DirExists, Download, FileExists, Stage, StageRegistry, WriteFile
from provisor.recipes.base import Recipe

BASE_MODULES = ("qtbase", "qtsvg", "qtimageformats")
QML_MODULES = ("qtbase", "qtdeclarative", "qtshadertools", "qtsvg", "qtimageformats")

MILESTONES: tuple[tuple[str, int], ...] = (
    ("Checking prerequisites", 5),
    ("llvm-mingw", 10),
    ("Qt6 source", 15),
    ("Configuring Qt6 host", 20),
    ("Building Qt6 host", 30),
    ("Installing Qt6 host", 50),
    ("Configuring Qt6 Windows", 55),
    ("Building Qt6 Windows", 70),
    ("Installing Qt6 Windows", 85),
    ("test application", 95),
    ("Installation Complete", 100),
)

PREREQUISITES = (
    Prerequisite("cmake", hint="Install with: brew install cmake"),
    Prerequisite("git", hint="Install Xcode Command Line Tools"),
    Prerequisite("perl", hint="Required by Qt init-repository"),
    Prerequisite("tar", hint="Required to extract llvm-mingw"),
    Prerequisite("ninja", required=False, hint="Falling back to make (slower)"),
)

RELEASE_FLAGS = (
    "-DCMAKE_BUILD_TYPE=Release",
    "-DQT_BUILD_EXAMPLES=OFF",
    "-DQT_BUILD_TESTS=OFF",
)

TOOLCHAIN_TEMPLATE = """\
set(CMAKE_SYSTEM_NAME Windows)
set(CMAKE_SYSTEM_PROCESSOR ARM64)

set(CMAKE_C_COMPILER {bin}/{triple}-clang)
set(CMAKE_CXX_COMPILER {bin}/{triple}-clang++)
set(CMAKE_RC_COMPILER {bin}/{triple}-windres)

set(CMAKE_FIND_ROOT_PATH {sysroot})
set(CMAKE_FIND_ROOT_PATH_MODE_PROGRAM NEVER)
set(CMAKE_FIND_ROOT_PATH_MODE_LIBRARY ONLY)
set(CMAKE_FIND_ROOT_PATH_MODE_INCLUDE ONLY)
set(CMAKE_FIND_ROOT_PATH_MODE_PACKAGE ONLY)
"""

TEST_MAIN_CPP = """\
#include <QApplication>
#include <QPushButton>
#include <QVBoxLayout>
#include <QLabel>
#include <QWidget>

int main(int argc, char *argv[])
{
    QApplication app(argc, argv);

    QWidget window;
    window.setWindowTitle("Qt6 Hello World");
    window.resize(400, 200);

    QVBoxLayout *layout = new QVBoxLayout(&window);

    QLabel *label = new QLabel("Hello from Qt6!");
    label->setAlignment(Qt::AlignCenter);

    QPushButton *button = new QPushButton("Click Me!");

    QObject::connect(button, &QPushButton::clicked, [label]() {
        static int count = 0;
        count++;
        label->setText(QString("Button clicked %1 times!").arg(count));
    });

    layout->addWidget(label);
    layout->addWidget(button);

    window.show();

    return app.exec();
}
"""

TEST_CMAKELISTS = """\
cmake_minimum_required(VERSION 3.16)

project(Qt6HelloWorld VERSION 1.0 LANGUAGES CXX)

set(CMAKE_CXX_STANDARD 17)
set(CMAKE_CXX_STANDARD_REQUIRED ON)

find_package(Qt6 REQUIRED COMPONENTS Core Widgets)

set(CMAKE_AUTOMOC ON)

add_executable(qt6hello
    main.cpp
)

target_link_libraries(qt6hello
    Qt6::Core
    Qt6::Widgets
)

if(WIN32)
    set_target_properties(qt6hello PROPERTIES
        WIN32_EXECUTABLE TRUE
    )
endif()
"""


class QtCrossLayout:
    """Every path the recipe reads or writes, relative to the install root."""

    def __init__(self, root: Path, config: Config):
        toolchain = config.toolchain
        self.root = root
        self.archive_stem = f"llvm-mingw-{toolchain.llvm_mingw_version}-{toolchain.llvm_mingw_flavor}"
        self.archive = root / f"{self.archive_stem}.tar.xz"
        self.llvm_mingw = root / "llvm-mingw"
        self.toolchain_file = root / "llvm-mingw-toolchain.cmake"
        self.qt_src = root / "qt6-src"
        self.qt_clone = root / "qt6-src.clone"
        self.build_host = root / "qt6-build-host-macos"
        self.install_host = root / "qt6-host-macos"
        self.build_win = root / "qt6-build-winarm64"
        self.install_win = root / "qt6-winarm64"
        self.test_dir = root / "qt6-hello-test"

    def compiler(self, triple: str) -> Path:
        return self.llvm_mingw / "bin" / f"{triple}-clang++"


def qt_cross(config: Config, *, which: Callable[[str], str | None] = shutil.which) -> Recipe:
    root = config.root_path()
    layout = QtCrossLayout(root, config)
    toolchain = config.toolchain
    jobs = str(config.parallelism)
    generator = ("-GNinja",) if which("ninja") else ()
    cross_flags = (
        f"-DCMAKE_TOOLCHAIN_FILE={layout.toolchain_file}",
        f"-DQT_HOST_PATH={layout.install_host}",
    )

    registry = StageRegistry()

    registry.register(
        Stage(
            stage_id="llvm_mingw",
            label="Setting up llvm-mingw",
            check=FileExists(layout.compiler(toolchain.target_triple), executable=True),
            steps=(
                Download(
                    url=(
                        "https://github.com/mstorsjo/llvm-mingw/releases/download/"
                        f"{toolchain.llvm_mingw_version}/{layout.archive.name}"
                    ),
                    dest=layout.archive,
                    label="Downloading llvm-mingw",
                ),
                Command(("tar", "xf", str(layout.archive)), cwd=root, label="Extracting llvm-mingw"),
                Command(
                    ("mv", layout.archive_stem, layout.llvm_mingw.name),
                    cwd=root,
                    label="Moving llvm-mingw into place",
                ),
                Command(
                    (str(layout.compiler(toolchain.target_triple)), "--version"),
                    label="Testing llvm-mingw compiler",
                ),
            ),
        )
    )

    registry.register(
        Stage(
            stage_id="toolchain_file",
            label="Creating CMake toolchain file",
            check=FileExists(layout.toolchain_file),
            steps=(
                WriteFile(
                    path=layout.toolchain_file,
                    content=TOOLCHAIN_TEMPLATE.format(
                        bin=layout.llvm_mingw / "bin",
                        triple=toolchain.target_triple,
                        sysroot=layout.llvm_mingw / toolchain.target_triple,
                    ),
                    label="Writing toolchain file",
                ),
            ),
        )
    )

    modules = QML_MODULES if config.enable_optional_module else BASE_MODULES
    # clone into a scratch dir so an interrupted clone never leaves qt6-src behind
    registry.register(
        Stage(
            stage_id="qt_clone",
            label="Cloning Qt6 source repository",
            check=DirExists(layout.qt_src, marker=".git"),
            steps=(
                Command(("rm", "-rf", layout.qt_clone.name), cwd=root, label="Removing partial Qt6 clone"),
                Command(
                    ("git", "clone", toolchain.qt_repository, layout.qt_clone.name),
                    cwd=root,
                    label="Cloning Qt6 source repository",
                ),
                Command(
                    ("mv", layout.qt_clone.name, layout.qt_src.name),
                    cwd=root,
                    label="Moving Qt6 source into place",
                ),
            ),
        )
    )

    # git clone leaves an empty qtbase/ for every uninitialised submodule
    registry.register(
        Stage(
            stage_id="qt_source",
            label="Initializing Qt6 source",
            check=FileExists(layout.qt_src / "qtbase" / "CMakeLists.txt"),
            steps=(
                Command(
                    ("git", "checkout", toolchain.qt_version),
                    cwd=layout.qt_src,
                    label=f"Checking out Qt6 source branch {toolchain.qt_version}",
                ),
                Command(
                    ("perl", "init-repository", f"--module-subset={','.join(modules)}", "-f"),
                    cwd=layout.qt_src,
                    label="Initializing Qt6 source submodules",
                ),
            ),
        )
    )

    registry.register(
        Stage(
            stage_id="qt_host",
            label="Build Qt6 host tools for macOS",
            check=FileExists(layout.install_host / "libexec" / "moc"),
            steps=_cmake_steps(
                source=layout.qt_src,
                build_dir=layout.build_host,
                flags=(
                    *RELEASE_FLAGS,
                    f"-DCMAKE_INSTALL_PREFIX={layout.install_host}",
                    "-DQT_FORCE_BUILD_TOOLS=ON",
                    *generator,
                ),
                jobs=jobs,
                name="Qt6 host",
            ),
        )
    )

    registry.register(
        Stage(
            stage_id="qt_windows_base",
            label="Build Qt6 base (qtbase) for Windows ARM64",
            check=FileExists(layout.install_win / "lib" / "cmake" / "Qt6" / "Qt6Config.cmake"),
            steps=_cmake_steps(
                source=layout.qt_src / "qtbase",
                build_dir=layout.build_win,
                flags=(
                    *cross_flags,
                    f"-DCMAKE_INSTALL_PREFIX={layout.install_win}",
                    *RELEASE_FLAGS,
                ),
                jobs=jobs,
                name="Qt6 Windows base",
            ),
        )
    )

    if config.enable_optional_module:
        host_prefix = (
            f"-DCMAKE_PREFIX_PATH={layout.install_host}",
            f"-DCMAKE_INSTALL_PREFIX={layout.install_host}",
        )
        win_prefix = (
            *cross_flags,
            f"-DCMAKE_PREFIX_PATH={layout.install_win}",
            f"-DCMAKE_INSTALL_PREFIX={layout.install_win}",
        )
        registry.register(
            Stage(
                stage_id="qt_host_qml",
                label="Build Qt6 QML tools for host",
                check=FileExists(layout.install_host / "libexec" / "qmlcachegen"),
                steps=(
                    *_cmake_steps(
                        source=layout.qt_src / "qtshadertools",
                        build_dir=root / "qt6-build-host-macos-shadertools",
                        flags=(*host_prefix, *RELEASE_FLAGS),
                        jobs=jobs,
                        name="qtshadertools (host)",
                    ),
                    *_cmake_steps(
                        source=layout.qt_src / "qtdeclarative",
                        build_dir=root / "qt6-build-host-macos-declarative",
                        flags=(*host_prefix, *RELEASE_FLAGS, "-DQT_FORCE_BUILD_TOOLS=ON"),
                        jobs=jobs,
                        name="qtdeclarative (host)",
                    ),
                ),
            )
        )
        registry.register(
            Stage(
                stage_id="qt_windows_qml",
                label="Build Qt6 QML modules for Windows ARM64",
                check=FileExists(layout.install_win / "lib" / "cmake" / "Qt6Qml" / "Qt6QmlConfig.cmake"),
                steps=(
                    *_cmake_steps(
                        source=layout.qt_src / "qtshadertools",
                        build_dir=root / "qt6-build-winarm64-shadertools",
                        flags=(*win_prefix, *RELEASE_FLAGS),
                        jobs=jobs,
                        name="qtshadertools (Windows)",
                    ),
                    *_cmake_steps(
                        source=layout.qt_src / "qtdeclarative",
                        build_dir=root / "qt6-build-winarm64-declarative",
                        flags=(*win_prefix, *RELEASE_FLAGS),
                        jobs=jobs,
                        name="qtdeclarative (Windows)",
                    ),
                ),
            )
        )

    registry.register(
        Stage(
            stage_id="test_app",
            label="Creating test application",
            check=AllOf((FileExists(layout.test_dir / "main.cpp"), FileExists(layout.test_dir / "CMakeLists.txt"))),
            steps=(
                WriteFile(path=layout.test_dir / "main.cpp", content=TEST_MAIN_CPP, label="Creating main.cpp"),
                WriteFile(
                    path=layout.test_dir / "CMakeLists.txt",
                    content=TEST_CMAKELISTS,
                    label="Creating CMakeLists.txt",
                ),
            ),
        )
    )

    macos_build = layout.test_dir / "build-macos"
    registry.register(
        Stage(
            stage_id="test_app_macos",
            label="Building test application for macOS",
            check=FileExists(macos_build / "qt6hello"),
            steps=(
                Command(
                    ("cmake", "..", f"-DCMAKE_PREFIX_PATH={layout.install_host}", "-DCMAKE_BUILD_TYPE=Release"),
                    cwd=macos_build,
                    label="Configuring test application for macOS",
                ),
                Command(("cmake", "--build", "."), cwd=macos_build, label="Building test application for macOS"),
            ),
        )
    )

    windows_build = layout.test_dir / "build-windows"
    registry.register(
        Stage(
            stage_id="test_app_windows",
            label="Building test application for Windows ARM64",
            check=FileExists(windows_build / "qt6hello.exe"),
            steps=(
                Command(
                    (
                        "cmake",
                        "..",
                        *cross_flags,
                        f"-DCMAKE_PREFIX_PATH={layout.install_win}",
                        "-DCMAKE_BUILD_TYPE=Release",
                    ),
                    cwd=windows_build,
                    label="Configuring test application for Windows",
                ),
                Command(("cmake", "--build", "."), cwd=windows_build, label="Building test application for Windows"),
            ),
        )
    )

    summary = (
        f"Qt6 Host (macOS): {layout.install_host}",
        f"Qt6 Windows: {layout.install_win}",
        f"Test app: {layout.test_dir}",
        f"Next: run {macos_build / 'qt6hello'}",
        f"Next: copy {windows_build / 'qt6hello.exe'} to a Windows ARM64 device",
    )

    return Recipe(
        name="qt-cross",
        description="Qt6 for macOS plus a Windows ARM64 cross build (llvm-mingw)",
        registry=registry,
        prerequisites=PREREQUISITES,
        milestones=MILESTONES,
        summary=summary,
    )


def _cmake_steps(
    *,
    source: Path,
    build_dir: Path,
    flags: tuple[str, ...],
    jobs: str,
    name: str,
) -> tuple[Command, ...]:
    return (
        Command(("cmake", str(source), *flags), cwd=build_dir, label=f"Configuring {name}"),
        Command(("cmake", "--build", ".", "--parallel", jobs), cwd=build_dir, label=f"Building {name}"),
        Command(("cmake", "--install", "."), cwd=build_dir, label=f"Installing {name}"),
    )
