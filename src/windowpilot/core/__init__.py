"""Core daemon components."""

from windowpilot.core.config import Config, ConfigStore, get_config

__all__ = ["Config", "ConfigStore", "get_config"]
