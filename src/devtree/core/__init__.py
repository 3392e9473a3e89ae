"""Core configuration."""

from .config import (
    DevtreeConfig,
    PortsConfig,
    clear_config_cache,
    find_config_dir,
    load_config,
    update_config,
)

__all__ = [
    "DevtreeConfig",
    "PortsConfig",
    "clear_config_cache",
    "find_config_dir",
    "load_config",
    "update_config",
]
