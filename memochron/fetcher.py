"""Feed retrieval: remote HTTP(S) and local files, returned as raw text."""

import asyncio
import logging
import random
from pathlib import Path
from typing import Any, Optional

import httpx

from .diagnostics import get_system_diagnostics
from .exceptions import FetchError
from .http_client import DEFAULT_HEADERS, build_timeout, get_shared_client
from .models import CalendarSource, FetchResponse
from .path_utils import PathInfo, get_path_info, resolve_local_path

logger = logging.getLogger(__name__)

# Backoff calculation constants
MAX_BACKOFF_SECONDS = 30.0
JITTER_MIN_FACTOR = 0.1
JITTER_MAX_FACTOR = 0.3


class FeedFetcher:
    """Read calendar feeds from remote URLs or the local filesystem.

    fetch_remote/read_local return the raw {status, text} shape; fetch_text
    turns anything but a 200 into FetchError.
    """

    def __init__(self, settings: Any = None, client: Optional[httpx.AsyncClient] = None) -> None:
        """Initialize fetcher.

        Args:
            settings: Object exposing request_timeout, max_retries, retry_backoff_factor
                and vault_root (all optional)
            client: HTTP client to use instead of the shared one
        """
        self.settings = settings
        self.client = client
        self.request_timeout = float(getattr(settings, "request_timeout", 30))
        self.max_retries = int(getattr(settings, "max_retries", 2))
        self.backoff_factor = float(getattr(settings, "retry_backoff_factor", 1.0))
        self.vault_root = getattr(settings, "vault_root", None)

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = await get_shared_client(
                "feed_fetcher", timeout=build_timeout(self.request_timeout)
            )
        return self.client

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with jitter for the given zero-based attempt."""
        delay = min(MAX_BACKOFF_SECONDS, self.backoff_factor * (2**attempt))
        return delay + delay * random.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR)

    async def fetch_remote(self, url: str) -> FetchResponse:
        """GET a remote feed with retries on network errors and 5xx responses.

        Raises:
            httpx.TimeoutException, httpx.NetworkError: When every attempt failed
        """
        client = await self._get_client()
        attempt = 0
        while True:
            try:
                response = await client.get(url, headers=DEFAULT_HEADERS, follow_redirects=True)
                if response.status_code >= 500 and attempt < self.max_retries:
                    logger.debug(
                        "Server error %d from %s (attempt %d)", response.status_code, url, attempt + 1
                    )
                else:
                    logger.debug(
                        "Fetched %s: status %d, %d bytes",
                        url,
                        response.status_code,
                        len(response.content),
                    )
                    return FetchResponse(status=response.status_code, text=response.text)
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if attempt >= self.max_retries:
                    raise
                logger.debug("Network error fetching %s (attempt %d): %s", url, attempt + 1, e)

            await asyncio.sleep(self._backoff_delay(attempt))
            attempt += 1

    async def read_local(self, info: PathInfo) -> FetchResponse:
        """Read a local feed off the event loop; a missing file reports status 404."""
        path = resolve_local_path(info, self.vault_root)

        def _read(target: Path) -> FetchResponse:
            if not target.is_file():
                return FetchResponse(status=404, text="")
            return FetchResponse(status=200, text=target.read_text(encoding="utf-8", errors="replace"))

        return await asyncio.to_thread(_read, path)

    async def fetch_text(self, source: CalendarSource) -> str:
        """Return the feed text for a source.

        Raises:
            FetchError: Non-200 status, transport failure or unreadable file
        """
        info = get_path_info(source.url)

        if info.is_local:
            try:
                response = await self.read_local(info)
            except OSError as e:
                raise FetchError(
                    f"Cannot read local calendar file {info.normalized_path}: {e}", source=source.url
                ) from e
            if not response.ok:
                raise FetchError(
                    f"Local calendar file not found: {info.normalized_path}",
                    source=source.url,
                    status_code=response.status,
                )
            return response.text

        try:
            response = await self.fetch_remote(info.normalized_path)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            raise FetchError(
                f"Network error fetching {source.name!r}: {e}",
                source=source.url,
                diagnostics=get_system_diagnostics(info.normalized_path, e).as_dict(),
            ) from e

        if not response.ok:
            raise FetchError(
                f"HTTP {response.status} fetching {source.name!r}",
                source=source.url,
                status_code=response.status,
                diagnostics=get_system_diagnostics(info.normalized_path).as_dict(),
            )
        return response.text
