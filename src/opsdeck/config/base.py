"""
Base types for configuration.
"""

from __future__ import annotations

from typing import Literal

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["text", "json"]

# Preference key the dashboard has always used for the server address.
BASE_URL_KEY = "server_base_url"


__all__ = ["LogLevel", "LogFormat", "BASE_URL_KEY"]
