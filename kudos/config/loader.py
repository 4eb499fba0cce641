"""TOML configuration loader with deep merge support."""

import os
import tomllib
from pathlib import Path
from typing import Any

CONFIG_DIR_ENV = "KUDOS_CONFIG_DIR"
ENVIRONMENT_ENV = "KUDOS_ENV"

# Parent directories searched for config/ when KUDOS_CONFIG_DIR is unset
_SEARCH_DEPTH = 5


def get_config_dir() -> Path:
    """Locate the configuration directory.

    KUDOS_CONFIG_DIR wins and must exist. Otherwise the nearest config/
    directory in the working directory or its parents is used, falling
    back to a relative config/ path.
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        path = Path(override)
        if not path.exists():
            raise FileNotFoundError(f"Config directory not found: {override}")
        return path

    search = [Path.cwd(), *Path.cwd().parents][:_SEARCH_DEPTH]
    for directory in search:
        candidate = directory / "config"
        if candidate.is_dir():
            return candidate
    return Path("config")


def get_environment() -> str:
    """Name of the active environment overlay (KUDOS_ENV, default development)."""
    return os.environ.get(ENVIRONMENT_ENV, "development")


def load_toml(file_path: Path) -> dict[str, Any]:
    """Parse one TOML file.

    A missing file raises FileNotFoundError and bad syntax raises
    tomllib.TOMLDecodeError.
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    with file_path.open("rb") as f:
        return tomllib.load(f)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge override into a copy of base, recursing into nested tables."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def load_config() -> dict[str, Any]:
    """Merge config/default.toml with the config/{KUDOS_ENV}.toml overlay.

    Both files are optional; whatever is missing falls back to the
    defaults declared on the settings models.
    """
    config_dir = get_config_dir()
    config: dict[str, Any] = {}
    for name in ("default", get_environment()):
        path = config_dir / f"{name}.toml"
        if path.exists():
            config = deep_merge(config, load_toml(path))
    return config
