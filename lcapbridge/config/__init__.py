"""Configuration module for lcapbridge."""

from lcapbridge.config.loader import load_config, get_config_path, save_config
from lcapbridge.config.schema import BridgeConfig
from lcapbridge.config.access import clear_config_cache, get_config, set_config

__all__ = ["BridgeConfig", "load_config", "save_config", "get_config_path", "get_config", "set_config", "clear_config_cache"]
