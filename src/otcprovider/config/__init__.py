"""
Provider configuration.

Environment variables with the OTC_ prefix, an optional .env file and an
optional YAML file feed one Settings object.
"""

from otcprovider.config.loader import get_config_path, load_settings
from otcprovider.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_config_path",
    "get_settings",
    "load_settings",
]
