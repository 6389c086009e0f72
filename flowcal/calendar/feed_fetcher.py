"""HTTP client for downloading external iCalendar feeds."""

import asyncio
import logging
import random
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from ..core.config_manager import get_config_value
from ..core.http_client import get_headers_with_correlation_id, get_shared_client
from .exceptions import (
    FeedFetchError,
    FeedHTTPError,
    FeedNetworkError,
    FeedParseError,
    FeedTimeoutError,
    FeedURLError,
)
from .models import FeedResponse

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 30.0
JITTER_MIN_FACTOR = 0.1
JITTER_MAX_FACTOR = 0.3

CALENDAR_CONTENT_TYPES = ("text/calendar", "text/plain", "application/octet-stream")


def fetch_deadline_seconds(settings: Any) -> float:
    """Longest time one ``FeedFetcher.fetch`` call can take with all retries.

    Every attempt may run for the full request timeout and every retry waits
    for the largest jittered backoff.
    """
    timeout = float(get_config_value(settings, "fetch_timeout_seconds", 15.0))
    max_retries = int(get_config_value(settings, "max_retries", 2))
    backoff_factor = float(get_config_value(settings, "retry_backoff_factor", 1.5))

    backoff_total = sum(
        min(backoff_factor**attempt, MAX_BACKOFF_SECONDS) * (1 + JITTER_MAX_FACTOR)
        for attempt in range(max_retries)
    )
    return timeout * (max_retries + 1) + backoff_total


def validate_feed_scheme(url: str) -> None:
    """Check that ``url`` is an absolute http(s) URL.

    Args:
        url: Candidate feed URL

    Raises:
        FeedURLError: If the scheme is not http/https or the host is missing
    """
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https"):
        raise FeedURLError("URL must use HTTP or HTTPS protocol", url)
    if not parsed.hostname:
        raise FeedURLError("URL must include a host name", url)


class FeedFetcher:
    """Async HTTP client for downloading external calendar feeds."""

    def __init__(
        self,
        settings: Any = None,
        client: Optional[httpx.AsyncClient] = None,
        client_id: str = "feed_fetcher",
    ) -> None:
        """Initialize feed fetcher.

        Args:
            settings: Application settings (max_retries, retry_backoff_factor, fetch_timeout_seconds)
            client: Explicit HTTP client; the shared pool client is used when omitted
            client_id: Shared pool key
        """
        self.settings = settings
        self.client = client
        self._client_id = client_id

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is not None:
            return self.client
        return await get_shared_client(self._client_id)

    async def fetch(self, url: str) -> FeedResponse:
        """Download a feed body.

        Args:
            url: http(s) feed URL

        Returns:
            FeedResponse with the decoded text body

        Raises:
            FeedURLError: Unsupported scheme or missing host
            FeedTimeoutError: The server did not answer in time
            FeedHTTPError: Non-2xx response
            FeedNetworkError: DNS/connection/TLS failure
            FeedParseError: Empty body
            FeedFetchError: Any other transport failure
        """
        validate_feed_scheme(url)
        client = await self._get_client()
        timeout = float(get_config_value(self.settings, "fetch_timeout_seconds", 15.0))

        try:
            logger.debug("Fetching feed from %s", url)
            response = await self._request_with_retry(client, url, timeout)
        except httpx.TimeoutException as e:
            logger.warning("Timeout fetching feed from %s", url)
            raise FeedTimeoutError(f"Request timeout after {timeout:g}s", url) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("HTTP error fetching feed from %s: %s", url, status)
            raise FeedHTTPError(
                f"HTTP {status}: {e.response.reason_phrase}", status_code=status, url=url
            ) from e
        except httpx.NetworkError as e:
            logger.warning("Network error fetching feed from %s: %s", url, e)
            raise FeedNetworkError(f"Network error: {e}", url) from e
        except httpx.HTTPError as e:
            logger.warning("Unexpected HTTP failure fetching feed from %s: %s", url, e)
            raise FeedFetchError(f"Unexpected error: {e}", url) from e

        return self._create_response(url, response)

    def _calculate_backoff(self, attempt: int, backoff_factor: float) -> float:
        """Calculate exponential backoff time with jitter.

        Args:
            attempt: Current retry attempt number (0-indexed)
            backoff_factor: Base factor for exponential backoff calculation

        Returns:
            Backoff time in seconds including jitter
        """
        base_backoff = min(backoff_factor**attempt, MAX_BACKOFF_SECONDS)
        jitter = random.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR) * base_backoff  # nosec B311 - jitter not cryptographic
        return base_backoff + jitter

    async def _request_with_retry(
        self, client: httpx.AsyncClient, url: str, timeout: float
    ) -> httpx.Response:
        """GET ``url``, retrying network errors and timeouts with jittered backoff.

        HTTP status errors are not retried.
        """
        max_retries = int(get_config_value(self.settings, "max_retries", 2))
        backoff_factor = float(get_config_value(self.settings, "retry_backoff_factor", 1.5))

        attempt = 0
        while True:
            try:
                response = await client.get(
                    url,
                    headers=get_headers_with_correlation_id(),
                    timeout=timeout,
                    follow_redirects=True,
                )
                response.raise_for_status()
                logger.debug(
                    "Fetched feed from %s (attempt %d) - %d bytes",
                    url,
                    attempt + 1,
                    len(response.content),
                )
                return response

            except httpx.HTTPStatusError:
                raise

            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if attempt >= max_retries:
                    logger.warning("All %d fetch attempts failed for %s", attempt + 1, url)
                    raise
                backoff_time = self._calculate_backoff(attempt, backoff_factor)
                logger.warning(
                    "Request failed (attempt %s/%s), retrying in %.1fs: %s",
                    attempt + 1,
                    max_retries + 1,
                    backoff_time,
                    e,
                )
                await asyncio.sleep(backoff_time)
                attempt += 1

    def _create_response(self, url: str, http_response: httpx.Response) -> FeedResponse:
        headers = dict(http_response.headers)
        content = http_response.text
        content_type = headers.get("content-type", "").lower()

        if content_type and not any(ct in content_type for ct in CALENDAR_CONTENT_TYPES):
            logger.warning("Unexpected content type for %s: %s", url, content_type)

        if not content or not content.strip():
            logger.warning("Empty feed content received from %s", url)
            raise FeedParseError("Empty content received", url)

        return FeedResponse(
            url=url,
            content=content,
            status_code=http_response.status_code,
            headers=headers,
            etag=headers.get("etag"),
            last_modified=headers.get("last-modified"),
        )
