"""
Provider configuration file loading.

Search order:
1. Explicit path (--config flag)
2. .otcprovider/config.yaml (current directory)
3. ~/.otcprovider/config.yaml (user home)
4. Environment-only settings
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from otcprovider.config.settings import Settings
from otcprovider.core.errors import ConfigurationError

logger = structlog.get_logger()


def get_config_path(explicit_path: str | Path | None = None) -> Path | None:
    """
    Find the configuration file to use.

    Returns:
        Path to config file or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        return None

    cwd_config = Path.cwd() / ".otcprovider" / "config.yaml"
    if cwd_config.exists():
        return cwd_config

    home_config = Path.home() / ".otcprovider" / "config.yaml"
    if home_config.exists():
        return home_config

    return None


def read_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML provider block into a flat mapping of settings fields."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in provider config: {e}", details={"path": str(path)}
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            "Provider config must be a mapping", details={"path": str(path)}
        )

    # Accept either a bare mapping or one nested under "provider"
    block = data.get("provider", data)
    if not isinstance(block, dict):
        raise ConfigurationError(
            "'provider' section must be a mapping", details={"path": str(path)}
        )

    known = set(Settings.model_fields)
    unknown = sorted(set(block) - known)
    if unknown:
        logger.warning("unknown_config_keys", path=str(path), keys=unknown)
    return {k: v for k, v in block.items() if k in known}


def load_settings(path: str | Path | None = None) -> Settings:
    """Build Settings from the environment overlaid with the config file, if any."""
    config_path = get_config_path(path)
    if path and config_path is None:
        raise ConfigurationError(f"Config file not found: {path}")

    if config_path is None:
        return Settings()

    values = read_config_file(config_path)
    logger.debug("loaded_config", path=str(config_path), keys=sorted(values))
    try:
        return Settings(**values)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid provider config: {e}", details={"path": str(config_path)}
        ) from e
