"""
Async client for the Grow a Garden stock API.
Issues the stock, egg and weather reads concurrently with retry logic and bounded timeouts.
"""

import asyncio
import time
from typing import Any, Dict, Optional

import httpx
import structlog

from pipeline.exceptions import FetchError
from pipeline.models import RawPayload
from utilities.config import NotifierConfig
from utilities.logger import CycleLogger

logger = structlog.get_logger(__name__)

SOURCES = ("stock", "egg", "weather")


class StockFetcher:
    """
    Upstream fetch collaborator. Every call may time out, return non-2xx or
    return malformed JSON; all of those surface as FetchError.
    """

    def __init__(
        self,
        config: NotifierConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the fetcher.

        Args:
            config: Notifier configuration
            transport: Optional httpx transport (used by tests)
        """
        self.config = config
        self.base_url = config.upstream_base_url.rstrip("/")
        self.cycle_logger = CycleLogger("stock_fetcher")

        # HTTP client configuration
        self.client_config = {
            "timeout": config.request_timeout,
            "headers": config.get_headers(),
            "follow_redirects": True,
        }
        if transport is not None:
            self.client_config["transport"] = transport

    def build_request(self, source: str, ts: Optional[int] = None) -> tuple:
        """
        Build the (url, params) pair for a source, with a cache-busting timestamp.

        Args:
            source: One of "stock", "egg", "weather"
            ts: Millisecond timestamp, defaults to now
        """
        ts = ts if ts is not None else int(time.time() * 1000)

        if source == "stock":
            return f"{self.base_url}/api/stock", {"type": "gear-seeds", "ts": ts}
        if source == "egg":
            return f"{self.base_url}/api/stock", {"type": "egg", "ts": ts}
        if source == "weather":
            return f"{self.base_url}/api/stock/weather", {"ts": ts, "_": ts}
        raise ValueError(f"Unknown upstream source: {source}")

    async def fetch(self, source: str) -> Any:
        """
        Fetch a single upstream source.

        Args:
            source: One of "stock", "egg", "weather"

        Returns:
            Decoded JSON response
        """
        async with httpx.AsyncClient(**self.client_config) as client:
            return await self._fetch_with_client(client, source)

    async def fetch_all(self) -> RawPayload:
        """
        Fetch every source concurrently and wait for all of them.

        Returns:
            Mapping of source name to decoded JSON

        Raises:
            FetchError: if any single read failed
        """
        ts = int(time.time() * 1000)

        async with httpx.AsyncClient(**self.client_config) as client:
            results = await asyncio.gather(
                *(self._fetch_with_client(client, source, ts) for source in SOURCES),
                return_exceptions=True
            )

        payload: Dict[str, Any] = {}
        for source, result in zip(SOURCES, results):
            if isinstance(result, FetchError):
                raise result
            if isinstance(result, BaseException):
                raise FetchError(f"Unexpected error fetching {source}: {result}", source=source) from result
            payload[source] = result

        return payload

    async def _fetch_with_client(
        self,
        client: httpx.AsyncClient,
        source: str,
        ts: Optional[int] = None
    ) -> Any:
        url, params = self.build_request(source, ts)
        response = await self._make_request_with_retry(client, url, params, source)

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"Malformed JSON from {source}: {e}", source=source) from e

    async def _make_request_with_retry(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Dict[str, Any],
        source: str
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic and exponential backoff.

        Args:
            client: HTTP client instance
            url: URL to request
            params: Query parameters
            source: Upstream source name for error reporting

        Returns:
            HTTP response
        """
        last_exception: Optional[httpx.HTTPError] = None

        for attempt in range(self.config.retry_attempts + 1):
            try:
                response = await client.get(url, params=params)
                response.raise_for_status()
                return response

            except httpx.HTTPError as e:
                last_exception = e

                if attempt < self.config.retry_attempts:
                    delay = self.config.retry_delay * (2 ** attempt)  # Exponential backoff
                    self.cycle_logger.log_retry(url, attempt + 1, self.config.retry_attempts, delay)
                    await asyncio.sleep(delay)

        status_code = None
        if isinstance(last_exception, httpx.HTTPStatusError):
            status_code = last_exception.response.status_code

        logger.error(
            "Upstream request failed",
            source=source,
            url=url,
            status_code=status_code,
            error=str(last_exception)
        )
        raise FetchError(
            f"Failed to fetch {source}: {last_exception}",
            source=source,
            status_code=status_code
        ) from last_exception
