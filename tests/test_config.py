from __future__ import annotations

from pathlib import Path

import pytest

from provisor.config.load import ConfigError, load_config


def test_missing_default_config_uses_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path)

    assert config.recipe == "qt-cross"
    assert config.parallelism == 4
    assert config.verbose is True
    assert config.enable_optional_module is False
    assert config.command_timeout_s is None
    assert config.root_path() == Path.home().resolve()


def test_missing_explicit_config_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Missing config"):
        load_config(tmp_path, Path("custom.yaml"))


def test_loads_yaml_and_applies_overrides(tmp_path: Path) -> None:
    (tmp_path / "provisor.yaml").write_text(
        """
version: v1
install_root: /opt/qt
parallelism: 8
toolchain:
  qt_version: "6.7"
output:
  rules:
    warning: ["deprecated"]
  milestones:
    - keyword: Linking
      percent: 60
""".strip()
        + "\n",
        encoding="utf-8",
    )

    config = load_config(tmp_path, overrides={"parallelism": 2, "verbose": None})

    assert config.install_root == "/opt/qt"
    assert config.parallelism == 2
    assert config.verbose is True
    assert config.toolchain.qt_version == "6.7"
    assert config.output.rules == {"warning": ["deprecated"]}
    assert config.output.milestones[0].keyword == "Linking"


def test_tilde_install_root_means_home(tmp_path: Path) -> None:
    (tmp_path / "provisor.yaml").write_text("install_root: ~\n", encoding="utf-8")
    assert load_config(tmp_path).install_root == "~"


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ("version: v2\n", "Only version v1"),
        ("unknown_key: 1\n", "unknown_key"),
        ("parallelism: 0\n", "parallelism"),
        ("output:\n  rules:\n    fatal: [boom]\n", "Unknown severity"),
        ("output:\n  milestones:\n    - keyword: x\n      percent: 150\n", "percent"),
        ("- just\n- a list\n", "YAML mapping"),
        ("key: [unclosed\n", "Failed to parse YAML"),
    ],
)
def test_invalid_config_raises(tmp_path: Path, text: str, message: str) -> None:
    (tmp_path / "provisor.yaml").write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError, match=message):
        load_config(tmp_path)
