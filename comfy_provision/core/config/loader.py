"""
Configuration loader — reads provision.yml into a ProvisionConfig.

The file is optional: a server provisioned with the built-in defaults
needs none. When present it is validated against the Pydantic models
and then the environment overrides are applied on top, so a container
image can bake one config and still point it at a different venv.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from comfy_provision.core.models.config import ProvisionConfig

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "provision.yml"

# Environment variable naming an explicit config file
ENV_CONFIG = "PROVISION_CONFIG"

# env var → (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "VENV_PATH": ("environment", "venv_path"),
    "WORKSPACE": ("environment", "workspace"),
    "COMFYUI_PATH": ("environment", "comfyui_path"),
    "COMFYUI_VENV_PYTHON": ("environment", "python"),
    "COMFYUI_VENV_PIP": ("environment", "pip"),
    "COMFYUI_SERVICE": ("service", "name"),
}


class ConfigError(Exception):
    """Raised when provisioning configuration is invalid or unreadable."""


def find_config_file(
    start_dir: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Path | None:
    """Locate provision.yml.

    ``PROVISION_CONFIG`` wins if set. Otherwise the search starts at
    ``start_dir`` (default: cwd) and walks up to the filesystem root.

    Returns:
        Path to the config file, or None if there isn't one.
    """
    env = os.environ if env is None else env
    explicit = env.get(ENV_CONFIG)
    if explicit:
        return Path(explicit)

    current = (start_dir or Path.cwd()).resolve()
    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
    search: bool = True,
) -> ProvisionConfig:
    """Load, validate and env-override the provisioning config.

    Args:
        path: Explicit path to provision.yml. If None and ``search`` is
            set, looks it up via :func:`find_config_file`.
        env: Environment mapping for overrides (default: os.environ).
        search: Whether to look for a config file when ``path`` is None.

    Returns:
        Validated ProvisionConfig. Built-in defaults when no file exists.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    env = os.environ if env is None else env

    if path is None and search:
        path = find_config_file(env=env)

    data: dict[str, Any] = {}
    if path is not None:
        data = _read_yaml(path)
    else:
        logger.debug("No %s found, using built-in defaults", CONFIG_FILE)

    _apply_env_overrides(data, env)

    try:
        config = ProvisionConfig.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid provisioning configuration: {e}") from e

    logger.debug(
        "Config: venv=%s comfyui=%s plugins=%d dependencies=%d",
        config.environment.venv_path,
        config.environment.comfyui_root,
        len(config.plugins),
        len(config.all_dependencies),
    )
    return config


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading provisioning config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under a "provision" key or be flat
    if isinstance(data.get("provision"), dict):
        data = data["provision"]

    return data


def _apply_env_overrides(data: dict[str, Any], env: Mapping[str, str]) -> None:
    for var, (section, field) in ENV_OVERRIDES.items():
        value = env.get(var)
        if not value:
            continue
        block = data.get(section)
        if not isinstance(block, dict):
            block = {}
            data[section] = block
        logger.debug("Override %s.%s from $%s", section, field, var)
        block[field] = value
