"""Async HTTP client shared by the metadata cache and the fetch pipeline.

Wraps a single aiohttp session with the tool's User-Agent, consistent
timeout handling and DEBUG traces. Transport, status and decoding failures
are raised as :class:`errors.RegistryError`; callers never see aiohttp
exceptions.
"""
from __future__ import annotations

import asyncio
import json
import logging
import urllib.parse
from typing import Any, Dict, Optional

import aiohttp

from constants import Constants
from errors import RegistryError
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)


class RegistryClient:
    """Client for registry documents and package archives."""

    def __init__(
        self,
        registry_url: str = Constants.REGISTRY_URL_NPM,
        timeout: int = Constants.REQUEST_TIMEOUT,
        user_agent: str = Constants.USER_AGENT,
    ):
        """Initialize the registry client.

        Args:
            registry_url: Registry base URL; package names are appended to it.
            timeout: Total request timeout in seconds.
            user_agent: Value of the User-Agent header sent on every request.
        """
        self._registry_url = registry_url if registry_url.endswith("/") else f"{registry_url}/"
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._headers = {"User-Agent": user_agent}
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def registry_url(self) -> str:
        """Registry base URL, always ending with a slash."""
        return self._registry_url

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers=self._headers,
            )

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    def document_url(self, name: str) -> str:
        """Build the registry URL for a package document.

        Scoped names keep their leading ``@`` and escape the slash, the form
        npm registries expect (``@scope%2fname``).
        """
        return f"{self._registry_url}{urllib.parse.quote(name, safe='@')}"

    async def get_json(self, name: str) -> Dict[str, Any]:
        """Fetch and decode the registry document for ``name``.

        Args:
            name: Package name.

        Returns:
            Decoded JSON document.

        Raises:
            RegistryError: On transport failure, non-200 status or invalid JSON.
        """
        url = self.document_url(name)
        text = await self._get_text(url, context="metadata")
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.debug(
                "JSON decode error",
                extra=extra_context(
                    event="parse",
                    component="http_client",
                    action="get_json",
                    outcome="json_decode_error",
                    target=safe_url(url),
                ),
            )
            raise RegistryError(f"Invalid JSON from registry for {name}", url=url) from exc
        if not isinstance(data, dict):
            raise RegistryError(f"Unexpected registry document for {name}", url=url)
        return data

    async def download(self, url: str, destination: str) -> int:
        """Stream ``url`` into the file at ``destination``.

        Args:
            url: Archive URL.
            destination: File path to (over)write.

        Returns:
            Number of bytes written.

        Raises:
            RegistryError: On transport failure or non-200 status.
        """
        session = await self._ensure_session()
        safe_target = safe_url(url)
        written = 0
        with Timer() as t:
            try:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise RegistryError(
                            f"Download failed with HTTP {response.status}", url=url
                        )
                    # File work runs in worker threads; the loop only awaits.
                    out = await asyncio.to_thread(open, destination, "wb")
                    try:
                        async for chunk in response.content.iter_chunked(
                            Constants.DOWNLOAD_CHUNK_BYTES
                        ):
                            await asyncio.to_thread(out.write, chunk)
                            written += len(chunk)
                    finally:
                        await asyncio.to_thread(out.close)
            except asyncio.TimeoutError as exc:
                logger.error(
                    "download request timed out after %s seconds",
                    self._timeout.total,
                )
                raise RegistryError("Download timed out", url=url) from exc
            except aiohttp.ClientError as exc:
                logger.error("download connection error: %s", exc)
                raise RegistryError(f"Download failed: {exc}", url=url) from exc
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP download ok",
                extra=extra_context(
                    event="http_response",
                    component="http_client",
                    action="GET",
                    outcome="success",
                    bytes=written,
                    duration_ms=t.duration_ms(),
                    target=safe_target,
                ),
            )
        return written

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            await self.start()
        assert self._session is not None
        return self._session

    async def _get_text(self, url: str, *, context: str) -> str:
        """Perform a GET request with consistent error handling and DEBUG traces."""
        session = await self._ensure_session()
        safe_target = safe_url(url)
        with Timer() as t:
            if is_debug_enabled(logger):
                logger.debug(
                    "HTTP request",
                    extra=extra_context(
                        event="http_request",
                        component="http_client",
                        action="GET",
                        target=safe_target,
                        context=context,
                    ),
                )
            try:
                async with session.get(url) as response:
                    body = await response.read()
                    status = response.status
            except asyncio.TimeoutError as exc:
                logger.error(
                    "%s request timed out after %s seconds",
                    context,
                    self._timeout.total,
                )
                raise RegistryError(f"{context} request timed out", url=url) from exc
            except aiohttp.ClientError as exc:
                logger.error("%s connection error: %s", context, exc)
                raise RegistryError(f"{context} request failed: {exc}", url=url) from exc

        if status != 200:
            logger.warning(
                "HTTP non-200 received",
                extra=extra_context(
                    event="http_response",
                    component="http_client",
                    outcome="non_200",
                    status_code=status,
                    duration_ms=t.duration_ms(),
                    target=safe_target,
                ),
            )
            raise RegistryError(f"Registry returned HTTP {status} for {safe_target}", url=url)

        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            logger.debug(
                "Undecodable response body",
                extra=extra_context(
                    event="parse",
                    component="http_client",
                    outcome="decode_error",
                    target=safe_target,
                ),
            )
            raise RegistryError(f"{context} response is not valid UTF-8", url=url) from exc

        if is_debug_enabled(logger):
            logger.debug(
                "HTTP response ok",
                extra=extra_context(
                    event="http_response",
                    component="http_client",
                    action="GET",
                    outcome="success",
                    status_code=status,
                    duration_ms=t.duration_ms(),
                    target=safe_target,
                    context=context,
                ),
            )
        return text

    async def __aenter__(self) -> "RegistryClient":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.stop()
