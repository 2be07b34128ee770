"""
Transport, stream, polling and store configuration.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class TransportConfig:
    """Configuration for the HTTP transport client."""

    # Request settings
    timeout: float = 30.0
    max_retries: int = 2
    retry_delay: float = 0.5

    # AI-backed endpoints (issue create/enhance) are slow
    long_timeout: float = 60.0
    connect_test_timeout: float = 5.0

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.long_timeout <= 0:
            raise ValueError("long_timeout must be positive")
        if self.connect_test_timeout <= 0:
            raise ValueError("connect_test_timeout must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.retry_delay < 0:
            raise ValueError("retry_delay cannot be negative")


@dataclass
class StreamConfig:
    """Configuration for the event stream connection."""

    reconnect_delay: float = 5.0
    heartbeat_interval: float = 30.0
    events_path: str = "/ws/events"

    def __post_init__(self):
        if self.reconnect_delay < 0:
            raise ValueError("reconnect_delay cannot be negative")
        if self.heartbeat_interval <= 0:
            raise ValueError("heartbeat_interval must be positive")
        if not self.events_path.startswith("/"):
            raise ValueError("events_path must start with '/'")


@dataclass
class PollingConfig:
    """Configuration for the polling fallback."""

    # While the stream is down
    interval: float = 15.0
    # While the stream is connected; catches dropped events
    backstop_interval: float = 60.0

    def __post_init__(self):
        if self.interval <= 0:
            raise ValueError("interval must be positive")
        if self.backstop_interval <= 0:
            raise ValueError("backstop_interval must be positive")


@dataclass
class StoreConfig:
    """Configuration for the reconciliation store."""

    error_ttl: float = 30.0

    def __post_init__(self):
        if self.error_ttl <= 0:
            raise ValueError("error_ttl must be positive")


__all__ = ["TransportConfig", "StreamConfig", "PollingConfig", "StoreConfig"]
