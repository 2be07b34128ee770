"""
Configuration system for opsdeck.

This package provides typed configuration classes with:
- Dataclass-based settings with validation
- Environment variable loading
- YAML/TOML file loading
- An explicit ServerConfig in place of a global base-URL singleton
"""

from .base import BASE_URL_KEY, LogFormat, LogLevel
from .cache import JobCacheConfig
from .logging import LoggingConfig
from .server import PreferenceStore, ServerConfig, normalize_base_url
from .settings import Settings, configure, get_settings, load_env
from .sync import PollingConfig, StoreConfig, StreamConfig, TransportConfig

__all__ = [
    # Types
    "LogLevel",
    "LogFormat",
    "BASE_URL_KEY",
    # Sections
    "TransportConfig",
    "StreamConfig",
    "PollingConfig",
    "StoreConfig",
    "JobCacheConfig",
    "LoggingConfig",
    # Server address
    "PreferenceStore",
    "ServerConfig",
    "normalize_base_url",
    # Master config
    "Settings",
    "get_settings",
    "configure",
    "load_env",
]
