from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import ValidationError
from ruamel.yaml import YAML

from .model import Config


class ConfigError(RuntimeError):
    pass


DEFAULT_CONFIG = Path("provisor.yaml")

_yaml = YAML(typ="safe")


def load_config(
    base_dir: Path,
    config_path: Path | None = None,
    *,
    overrides: dict[str, Any] | None = None,
) -> Config:
    """Load ``provisor.yaml`` and apply CLI overrides.

    A missing default file means "use defaults"; a missing file that was named
    explicitly is an error.
    """
    explicit = config_path is not None and config_path != DEFAULT_CONFIG
    config_path = config_path or DEFAULT_CONFIG
    if not config_path.is_absolute():
        config_path = base_dir / config_path
    data: dict[str, Any] = {}
    if config_path.exists():
        loaded = _load_yaml(config_path)
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError("Config must be a YAML mapping at the top level.")
        data = loaded
    elif explicit:
        raise ConfigError(f"Missing config: {config_path}")
    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value
    try:
        return Config.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


def _load_yaml(path: Path) -> Any:
    try:
        return _yaml.load(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        raise ConfigError(f"Failed to parse YAML: {path}") from exc
