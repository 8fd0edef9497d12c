"""Process-wide configuration used when a ``from_config`` constructor gets none."""

from __future__ import annotations

from lcapbridge.config.loader import load_config
from lcapbridge.config.schema import BridgeConfig

_active: BridgeConfig | None = None


def get_config(*, force_reload: bool = False) -> BridgeConfig:
    """The config from ~/.lcapbridge/config.json, read on first use."""
    global _active
    if force_reload or _active is None:
        _active = load_config()
    return _active


def set_config(config: BridgeConfig) -> None:
    """Use ``config`` instead of the file, e.g. when embedding without a home directory."""
    global _active
    _active = config


def clear_config_cache() -> None:
    global _active
    _active = None
