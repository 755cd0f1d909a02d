"""Configuration loading and management."""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from ..core.exceptions import ConfigurationError
from .models import PhasegateConfig, resolve_env_vars

STATE_DIR_NAME = ".phasegate"
CONFIG_FILE_NAME = "config.yaml"

CONFIG_HEADER = """# phasegate configuration
# Values may reference environment variables as ${VAR} or ${VAR:default}.
"""


def load_config(
    project_config_path: Optional[Path] = None,
    global_config_path: Optional[Path] = None,
) -> PhasegateConfig:
    """Build the effective configuration.

    Sources, lowest priority first: model defaults, the global file
    (``$XDG_CONFIG_HOME/phasegate/config.yaml``), the project file
    (``.phasegate/config.yaml`` in the current directory or a parent).
    Nested sections are merged key by key. Environment references are
    substituted before validation, so they may appear in numeric fields too.

    Args:
        project_config_path: Project file to use instead of searching for one
        global_config_path: Global file to use instead of the XDG location

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If a file cannot be read or the result is invalid
    """
    sources: List[Optional[Path]] = [
        global_config_path or default_global_config_path(),
        project_config_path or find_project_config(),
    ]

    merged: Dict[str, Any] = {}
    for source in sources:
        if source is not None and source.exists():
            merged = _deep_merge(merged, _read_config_file(source))

    try:
        return PhasegateConfig(**resolve_env_vars(merged))
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e
    except TypeError as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e


def save_config(config: PhasegateConfig, config_path: Path) -> None:
    """Write a configuration as YAML, omitting unset values.

    Raises:
        ConfigurationError: If the file cannot be written
    """
    body = yaml.safe_dump(
        config.model_dump(exclude_none=True, mode="json"),
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(CONFIG_HEADER + body, encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Failed to save configuration to {config_path}: {e}") from e


def create_default_config() -> PhasegateConfig:
    """Create a default configuration."""
    return PhasegateConfig()


def default_global_config_path() -> Path:
    """Per-user configuration file."""
    base = os.getenv("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / "phasegate" / CONFIG_FILE_NAME


def find_project_config(start: Optional[Path] = None) -> Optional[Path]:
    """Config file of the nearest ``.phasegate`` directory at or above ``start``."""
    start = start or Path.cwd()
    for directory in (start, *start.parents):
        if (directory / STATE_DIR_NAME).is_dir():
            return directory / STATE_DIR_NAME / CONFIG_FILE_NAME
    return None


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"{path} must contain a YAML object, got {type(data).__name__}"
        )
    return data


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; nested mappings merge recursively."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged
