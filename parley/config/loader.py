"""Locate and merge parley's TOML configuration files.

`default.toml` is overlaid with `{PARLEY_ENV}.toml` (`development` when
unset). Without any config directory the result is empty and every
setting keeps its model default.
"""

import os
import tomllib
from pathlib import Path
from typing import Any

SEARCH_DEPTH = 5


def find_config_dir(start: Path | None = None) -> Path | None:
    """Return PARLEY_CONFIG_DIR, or the nearest `config/` holding default.toml.

    Raises:
        FileNotFoundError: If PARLEY_CONFIG_DIR names a missing directory
    """
    override = os.environ.get("PARLEY_CONFIG_DIR")
    if override:
        path = Path(override)
        if not path.is_dir():
            raise FileNotFoundError(f"Config directory not found: {override}")
        return path

    current = start or Path.cwd()
    for directory in [current, *current.parents][:SEARCH_DEPTH]:
        candidate = directory / "config"
        if (candidate / "default.toml").is_file():
            return candidate
    return None


def merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge `override` into a copy of `base`; nested tables merge key by key."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_dir: Path | None = None) -> dict[str, Any]:
    """Read the merged TOML configuration.

    Raises:
        FileNotFoundError: If the directory exists but has no default.toml
        tomllib.TOMLDecodeError: If a file is not valid TOML
    """
    config_dir = config_dir or find_config_dir()
    if config_dir is None:
        return {}

    default_path = config_dir / "default.toml"
    if not default_path.is_file():
        raise FileNotFoundError(f"Default configuration file not found: {default_path}")
    config = tomllib.loads(default_path.read_text())

    env_path = config_dir / f"{os.environ.get('PARLEY_ENV', 'development')}.toml"
    if env_path.is_file():
        config = merge(config, tomllib.loads(env_path.read_text()))
    return config
