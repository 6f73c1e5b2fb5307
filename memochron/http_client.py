"""Shared HTTP client for feed downloads.

One httpx.AsyncClient is reused across fetch cycles so connections are pooled.
Call close_all_clients() on shutdown.
"""

import asyncio
import logging
from typing import Optional

import httpx

from . import __version__

logger = logging.getLogger(__name__)

USER_AGENT = f"MemoChron/{__version__} (+https://github.com/formax68/memochron)"
DEFAULT_HEADERS = {
    "Accept": "text/calendar",
    "User-Agent": USER_AGENT,
}

DEFAULT_LIMITS = httpx.Limits(max_connections=8, max_keepalive_connections=4)

_shared_clients: dict[str, httpx.AsyncClient] = {}
_client_lock: Optional[asyncio.Lock] = None


def _get_lock() -> asyncio.Lock:
    global _client_lock
    if _client_lock is None:
        _client_lock = asyncio.Lock()
    return _client_lock


def build_timeout(request_timeout: float = 30.0) -> httpx.Timeout:
    return httpx.Timeout(connect=10.0, read=request_timeout, write=10.0, pool=30.0)


async def get_shared_client(
    client_id: str = "default",
    timeout: Optional[httpx.Timeout] = None,
) -> httpx.AsyncClient:
    """Get or create a shared HTTP client with connection pooling.

    Args:
        client_id: Identifier for the client
        timeout: Timeout configuration used when the client is created

    Returns:
        Shared httpx.AsyncClient that follows redirects and sends DEFAULT_HEADERS
    """
    async with _get_lock():
        client = _shared_clients.get(client_id)
        if client is None or client.is_closed:
            client = httpx.AsyncClient(
                limits=DEFAULT_LIMITS,
                timeout=timeout or build_timeout(),
                follow_redirects=True,
                headers=DEFAULT_HEADERS,
            )
            _shared_clients[client_id] = client
            logger.debug("Created shared HTTP client '%s'", client_id)
        return client


async def close_all_clients() -> None:
    """Close all shared HTTP clients."""
    async with _get_lock():
        for client_id, client in list(_shared_clients.items()):
            if not client.is_closed:
                await client.aclose()
                logger.debug("Closed shared HTTP client '%s'", client_id)
        _shared_clients.clear()
