"""Configuration loading for the submission tracker.

Configuration is loaded from ``config/config.yaml``; environment variables
override individual settings and ``${VAR}`` placeholders in the YAML are
expanded at load time.

Usage:
    >>> from config import get_config
    >>> config = get_config()
    >>> config.supported_carriers
    ['encova', 'guard', 'columbia']
"""

from config.config import (
    LoggingConfig,
    PollerConfig,
    ServerConfig,
    StoreConfig,
    TrackerConfig,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
    "TrackerConfig",
    "ServerConfig",
    "StoreConfig",
    "PollerConfig",
    "LoggingConfig",
]
