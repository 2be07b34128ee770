"""
Settings master configuration and global helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
from dotenv import find_dotenv, load_dotenv

from ..config_schema import CONFIG_SCHEMA
from ..errors import InvalidConfigError
from .cache import JobCacheConfig
from .logging import LoggingConfig
from .server import PreferenceStore, ServerConfig
from .sync import PollingConfig, StoreConfig, StreamConfig, TransportConfig


def _default_preferences_path() -> Path:
    return Path(os.getenv("OPSDECK_HOME", Path.home() / ".opsdeck")) / "preferences.json"


@dataclass
class Settings:
    """
    Master configuration for the job event pipeline.

    Aggregates every configuration section into one object that can be loaded
    from environment variables, files, or constructed programmatically.
    """

    # Initial server address; the persisted preference wins when unset
    base_url: str | None = None
    preferences_path: Path = field(default_factory=_default_preferences_path)

    transport: TransportConfig = field(default_factory=TransportConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    cache: JobCacheConfig = field(default_factory=JobCacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self):
        if isinstance(self.preferences_path, str):
            self.preferences_path = Path(self.preferences_path)

    @classmethod
    def from_env(cls, prefix: str = "OPSDECK_") -> Settings:
        """
        Load settings from environment variables.

        Example:
            OPSDECK_BASE_URL=http://localhost:8080
            OPSDECK_POLL_INTERVAL=15
            OPSDECK_LOG_LEVEL=DEBUG
        """
        settings = cls()

        if url := os.getenv(f"{prefix}BASE_URL"):
            settings.base_url = url
        if prefs := os.getenv(f"{prefix}PREFERENCES_PATH"):
            settings.preferences_path = Path(prefs)

        # Transport
        if timeout := os.getenv(f"{prefix}TIMEOUT"):
            settings.transport.timeout = float(timeout)
        if retries := os.getenv(f"{prefix}MAX_RETRIES"):
            settings.transport.max_retries = int(retries)
        if delay := os.getenv(f"{prefix}RETRY_DELAY"):
            settings.transport.retry_delay = float(delay)

        # Stream
        if reconnect := os.getenv(f"{prefix}RECONNECT_DELAY"):
            settings.stream.reconnect_delay = float(reconnect)
        if heartbeat := os.getenv(f"{prefix}HEARTBEAT_INTERVAL"):
            settings.stream.heartbeat_interval = float(heartbeat)

        # Polling
        if interval := os.getenv(f"{prefix}POLL_INTERVAL"):
            settings.polling.interval = float(interval)
        if backstop := os.getenv(f"{prefix}POLL_BACKSTOP_INTERVAL"):
            settings.polling.backstop_interval = float(backstop)

        # Cache
        if cache_dir := os.getenv(f"{prefix}CACHE_DIR"):
            settings.cache = JobCacheConfig(cache_dir=Path(cache_dir))
        if enabled := os.getenv(f"{prefix}CACHE_ENABLED"):
            settings.cache.enabled = enabled.lower() == "true"

        # Logging
        if level := os.getenv(f"{prefix}LOG_LEVEL"):
            settings.logging.level = level.upper()  # type: ignore
        if log_format := os.getenv(f"{prefix}LOG_FORMAT"):
            settings.logging.format = log_format.lower()  # type: ignore

        return settings

    @classmethod
    def from_file(cls, path: str | Path) -> Settings:
        """
        Load settings from a YAML or TOML file.

        Args:
            path: Path to configuration file (.yaml, .yml, or .toml)
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        suffix = path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            try:
                import yaml  # type: ignore[import-untyped]
            except ImportError as exc:
                raise ImportError("PyYAML is required for YAML config files: pip install pyyaml") from exc
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        elif suffix == ".toml":
            try:
                import tomllib
            except ImportError:
                try:
                    import tomli as tomllib
                except ImportError as exc:
                    raise ImportError("tomli is required for TOML config files: pip install tomli") from exc
            with open(path, "rb") as f:
                data = tomllib.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {suffix}")

        return cls._from_dict(data)

    @classmethod
    def default(cls) -> Settings:
        return cls()

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> Settings:
        """Validate ``data`` against the schema and build Settings from it."""
        try:
            jsonschema.validate(instance=data, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            raise InvalidConfigError(f"Configuration validation failed: {e.message}", cause=e) from e

        settings = cls()

        if "base_url" in data:
            settings.base_url = data["base_url"]
        if "preferences_path" in data:
            settings.preferences_path = Path(data["preferences_path"])

        sections = {
            "transport": TransportConfig,
            "stream": StreamConfig,
            "polling": PollingConfig,
            "store": StoreConfig,
            "cache": JobCacheConfig,
            "logging": LoggingConfig,
        }
        for name, config_cls in sections.items():
            if name in data:
                # Rebuild so __post_init__ validation runs on the merged values
                current = getattr(settings, name).__dict__.copy()
                current.update(data[name])
                try:
                    setattr(settings, name, config_cls(**current))
                except ValueError as e:
                    raise InvalidConfigError(f"Invalid {name} configuration: {e}", cause=e) from e

        return settings

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary."""
        import dataclasses

        def convert(obj):
            if dataclasses.is_dataclass(obj):
                return convert(dataclasses.asdict(obj))
            elif isinstance(obj, dict):
                return {k: convert(v) for k, v in obj.items()}
            elif isinstance(obj, Path):
                return str(obj)
            return obj

        return convert(self)

    def server_config(self) -> ServerConfig:
        """Build the ServerConfig backed by this settings' preference file."""
        return ServerConfig(PreferenceStore(self.preferences_path), base_url=self.base_url)


# =============================================================================
# Global Settings & Helpers
# =============================================================================

_global_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance, creating with defaults if needed."""
    global _global_settings
    if _global_settings is None:
        _global_settings = Settings.from_env()
    return _global_settings


def configure(settings: Settings | None = None, **kwargs) -> Settings:
    """
    Configure global settings.

    Args:
        settings: Settings object to use globally
        **kwargs: Override specific settings

    Returns:
        The configured Settings object
    """
    global _global_settings

    if settings is not None:
        _global_settings = settings
    elif _global_settings is None:
        _global_settings = Settings.from_env()

    for key, value in kwargs.items():
        if hasattr(_global_settings, key):
            setattr(_global_settings, key, value)

    return _global_settings


def load_env(path: str | None = None, *, override: bool = False) -> bool:
    """
    Load environment variables from a .env file.

    Returns:
        True if a .env file was found and loaded, False otherwise.
    """
    env_path = path or find_dotenv(usecwd=True)
    if not env_path:
        return False
    return load_dotenv(env_path, override=override)


__all__ = ["Settings", "get_settings", "configure", "load_env"]
