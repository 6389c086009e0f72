"""Shared HTTP client pool for outbound feed requests.

One ``httpx.AsyncClient`` per pool key is created lazily and reused across
fetches so subscriptions pointing at the same host share connections.
"""

import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

_pool: dict[str, httpx.AsyncClient] = {}
_pool_lock = asyncio.Lock()

FEED_LIMITS = httpx.Limits(max_connections=10, max_keepalive_connections=5)
FEED_TIMEOUT = httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=30.0)

USER_AGENT = "FlowCal/1.0"

DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": USER_AGENT,
    "Accept": "text/calendar, text/plain, application/octet-stream, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}


def get_headers_with_correlation_id() -> dict[str, str]:
    """Default feed request headers plus ``X-Request-ID`` inside a request."""
    from ..api.middleware.correlation_id import NO_REQUEST_ID, get_request_id

    headers = dict(DEFAULT_HEADERS)
    request_id = get_request_id()
    if request_id != NO_REQUEST_ID:
        headers["X-Request-ID"] = request_id
    return headers


def _new_client(limits: httpx.Limits, timeout: httpx.Timeout) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        limits=limits,
        timeout=timeout,
        follow_redirects=True,
        headers=DEFAULT_HEADERS,
    )


async def get_shared_client(
    client_id: str = "default",
    limits: Optional[httpx.Limits] = None,
    timeout: Optional[httpx.Timeout] = None,
) -> httpx.AsyncClient:
    """Return the pooled client for ``client_id``, creating it on first use.

    A client that was closed (for example by ``close_all_clients`` between
    requests) is replaced transparently.

    Args:
        client_id: Pool key
        limits: Connection limits for a newly created client
        timeout: Timeouts for a newly created client

    Raises:
        RuntimeError: If the client cannot be constructed
    """
    async with _pool_lock:
        client = _pool.get(client_id)
        if client is not None and not client.is_closed:
            return client

        effective_limits = limits or FEED_LIMITS
        logger.debug(
            "Opening pooled HTTP client '%s' (max_connections=%s, max_keepalive=%s)",
            client_id,
            effective_limits.max_connections,
            effective_limits.max_keepalive_connections,
        )
        try:
            client = _new_client(effective_limits, timeout or FEED_TIMEOUT)
        except Exception as e:
            logger.exception("Could not open pooled HTTP client '%s'", client_id)
            raise RuntimeError(f"Failed to create shared HTTP client: {e}") from e

        _pool[client_id] = client
        return client


async def close_all_clients() -> None:
    """Close every pooled client; used on application cleanup and between tests."""
    async with _pool_lock:
        for client_id, client in list(_pool.items()):
            if client.is_closed:
                continue
            try:
                await client.aclose()
            except Exception as e:
                logger.warning("Error closing pooled HTTP client '%s': %s", client_id, e)
        closed = len(_pool)
        _pool.clear()
    if closed:
        logger.debug("Closed %d pooled HTTP client(s)", closed)
