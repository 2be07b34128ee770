"""
Server address configuration.

``ServerConfig`` is passed explicitly to the transport client and the stream
connection. The base URL is read from the preference store once, cached, and
only replaced through :meth:`ServerConfig.update_base_url`, which notifies
subscribers so dependent connections can be rebuilt.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from ..concurrency import run_sync
from ..files import read_json, write_json_atomic
from ..pubsub import Broadcaster
from .base import BASE_URL_KEY


class PreferenceStore:
    """String preferences persisted as one JSON object."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def _read_all(self) -> dict[str, Any]:
        data = await run_sync(read_json, self.path)
        return data if isinstance(data, dict) else {}

    async def get_string(self, key: str) -> str | None:
        value = (await self._read_all()).get(key)
        return value if isinstance(value, str) else None

    async def set_string(self, key: str, value: str | None) -> None:
        async with self._lock:
            data = await self._read_all()
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
            await run_sync(write_json_atomic, self.path, data)


def normalize_base_url(url: str | None) -> str | None:
    if url is None:
        return None
    url = url.strip()
    while url.endswith("/"):
        url = url[:-1]
    return url or None


class ServerConfig:
    """
    Where the job server lives.

    Example:
        ```python
        config = ServerConfig(PreferenceStore("~/.opsdeck/prefs.json"))
        await config.update_base_url("http://10.0.0.5:8080/")
        config.ws_url("/ws/events")  # ws://10.0.0.5:8080/ws/events
        ```
    """

    def __init__(
        self,
        preferences: PreferenceStore | None = None,
        *,
        base_url: str | None = None,
    ) -> None:
        self.preferences = preferences
        self._base_url = normalize_base_url(base_url)
        self._loaded = base_url is not None or preferences is None
        self.changes: Broadcaster[str | None] = Broadcaster("server_config")

    async def load(self) -> str | None:
        """Read the persisted base URL once; later calls use the cached copy."""
        if not self._loaded and self.preferences is not None:
            self._base_url = normalize_base_url(await self.preferences.get_string(BASE_URL_KEY))
            self._loaded = True
        return self._base_url

    async def get_base_url(self) -> str | None:
        return await self.load()

    @property
    def base_url(self) -> str | None:
        return self._base_url

    @property
    def is_configured(self) -> bool:
        return bool(self._base_url)

    async def update_base_url(self, url: str | None) -> str | None:
        clean = normalize_base_url(url)
        if self.preferences is not None:
            await self.preferences.set_string(BASE_URL_KEY, clean)
        changed = clean != self._base_url
        self._base_url = clean
        self._loaded = True
        if changed:
            self.changes.emit(clean)
        return clean

    def http_url(self, path: str) -> str | None:
        if not self._base_url:
            return None
        return f"{self._base_url}{path}"

    def ws_url(self, path: str) -> str | None:
        if not self._base_url:
            return None
        base = self._base_url
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}{path}"


__all__ = ["PreferenceStore", "ServerConfig", "normalize_base_url"]
