"""
HTTP transport for the job server.

This module provides:
- Typed error translation for every non-success response
- Bounded linear-backoff retry on timeouts and connection failures
- No retry for mutating calls unless the caller opts in
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any

import aiohttp

from .config import ServerConfig, TransportConfig
from .config.server import normalize_base_url
from .errors import (
    ApiError,
    ErrorContext,
    InvalidJsonError,
    NetworkError,
    NotConfiguredError,
    TimeoutError_,
    error_from_status,
)
from .logging import RequestLog, ResponseLog, Timer, get_logger, truncate_for_log

logger = get_logger("transport")


@dataclass(frozen=True)
class TransportResponse:
    """Status and raw body of a completed request."""

    status: int
    text: str
    method: str = "GET"
    path: str = ""
    # Body bytes were not valid in the declared charset; ``text`` holds a lossy decode
    undecodable: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """Decode the body; an empty body decodes to ``None``."""
        if self.undecodable:
            raise InvalidJsonError(
                context=ErrorContext(method=self.method, path=self.path),
                http_status=self.status,
            )
        if not self.text.strip():
            return None
        try:
            return json.loads(self.text)
        except json.JSONDecodeError as exc:
            raise InvalidJsonError(
                context=ErrorContext(method=self.method, path=self.path),
                cause=exc,
                http_status=self.status,
            ) from exc

    def error(self) -> ApiError:
        """Map this response to the matching :class:`ApiError`."""
        message = None
        try:
            data = json.loads(self.text) if self.text else None
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            reason = data.get("reason") or data.get("error")
            if reason:
                message = str(reason)
        return error_from_status(
            self.status,
            message,
            context=ErrorContext(method=self.method, path=self.path),
        )


class TransportClient:
    """
    Async HTTP client bound to the configured server.

    GET requests retry ``max_retries`` times (default from settings); POST
    requests never retry unless ``max_retries`` is passed explicitly. The wait
    before retry ``n`` is ``retry_delay * n``.

    Example:
        ```python
        transport = TransportClient(ServerConfig(base_url="http://localhost:8080"))
        payload = await transport.get_json("/api/status")
        await transport.close()
        ```
    """

    def __init__(
        self,
        config: ServerConfig,
        settings: TransportConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.config = config
        self.settings = settings or TransportConfig()
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> TransportClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Release the session if this client created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    # =========================================================================
    # Requests
    # =========================================================================

    async def request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        timeout: float | None = None,
        max_retries: int = 0,
    ) -> TransportResponse:
        """
        Send one request, retrying transient failures.

        Raises:
            NotConfiguredError: No base URL; nothing is sent.
            TimeoutError_: Every attempt timed out.
            NetworkError: Every attempt failed to connect.
        """
        base_url = await self.config.get_base_url()
        if not base_url:
            raise NotConfiguredError(context=ErrorContext(method=method, path=path))

        url = f"{base_url}{path}"
        timeout = timeout if timeout is not None else self.settings.timeout
        session = self._get_session()

        attempt = 0
        while True:
            attempt += 1
            context = ErrorContext(method=method, path=path, attempt=attempt)
            logger.log_request(RequestLog(method=method, path=path, attempt=attempt, timeout=timeout))
            timer = Timer()
            try:
                async with session.request(
                    method,
                    url,
                    json=body,
                    timeout=aiohttp.ClientTimeout(total=timeout),
                ) as response:
                    status = response.status
                    undecodable = False
                    try:
                        text = await response.text()
                    except UnicodeDecodeError:
                        undecodable = True
                        text = await response.text(errors="replace")
            except asyncio.TimeoutError as exc:
                logger.log_response(
                    ResponseLog(method, path, success=False, error="timeout", attempt=attempt, duration_ms=timer.stop())
                )
                if attempt > max_retries:
                    raise TimeoutError_(context=context, cause=exc) from exc
            except (aiohttp.ClientError, OSError) as exc:
                logger.log_response(
                    ResponseLog(method, path, success=False, error=type(exc).__name__, attempt=attempt, duration_ms=timer.stop())
                )
                if attempt > max_retries:
                    raise NetworkError(context=context, cause=exc) from exc
            else:
                logger.log_response(
                    ResponseLog(method, path, status_code=status, attempt=attempt, duration_ms=timer.stop())
                )
                return TransportResponse(
                    status=status, text=text, method=method, path=path, undecodable=undecodable
                )

            await asyncio.sleep(self.settings.retry_delay * attempt)

    async def get(
        self,
        path: str,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
    ) -> TransportResponse:
        if max_retries is None:
            max_retries = self.settings.max_retries
        return await self.request("GET", path, timeout=timeout, max_retries=max_retries)

    async def post(
        self,
        path: str,
        body: Any = None,
        *,
        timeout: float | None = None,
        max_retries: int = 0,
    ) -> TransportResponse:
        return await self.request("POST", path, body=body, timeout=timeout, max_retries=max_retries)

    async def get_json(
        self,
        path: str,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        expected_status: tuple[int, ...] = (200,),
    ) -> Any:
        response = await self.get(path, timeout=timeout, max_retries=max_retries)
        return self._decode(response, expected_status)

    async def post_json(
        self,
        path: str,
        body: Any = None,
        *,
        timeout: float | None = None,
        max_retries: int = 0,
        expected_status: tuple[int, ...] = (200,),
    ) -> Any:
        response = await self.post(path, body, timeout=timeout, max_retries=max_retries)
        return self._decode(response, expected_status)

    @staticmethod
    def _decode(response: TransportResponse, expected_status: tuple[int, ...]) -> Any:
        if response.status not in expected_status:
            error = response.error()
            logger.debug(
                "Request rejected",
                path=response.path,
                status=response.status,
                body=truncate_for_log(response.text),
            )
            raise error
        return response.json()

    async def test_connection(self, url: str | None = None) -> bool:
        """Request ``/api/status`` once; any failure means ``False``."""
        base_url = normalize_base_url(url) if url is not None else await self.config.get_base_url()
        if not base_url:
            return False
        session = self._get_session()
        try:
            async with session.request(
                "GET",
                f"{base_url}/api/status",
                timeout=aiohttp.ClientTimeout(total=self.settings.connect_test_timeout),
            ) as response:
                return response.status == 200
        except (asyncio.TimeoutError, aiohttp.ClientError, OSError, ValueError) as exc:
            logger.info("Connection test failed", error=type(exc).__name__)
            return False


__all__ = ["TransportClient", "TransportResponse"]
