"""
Ticketmaster Discovery API integration.

Rate limit: 5 requests/second, 5000 requests/day per key
Deep paging: size * page must stay below 1000

This is the upstream the adaptive importer partitions its queries for.
"""

from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import httpx
import structlog

from ..config import ImportSettings
from ..errors import EventImportError, RateLimitedError, UpstreamError
from ..models import QueryPartition, SearchPage
from ..resilience import retry_async

logger = structlog.get_logger()


class SearchClient(Protocol):
    """What the pipeline needs from an upstream search API."""

    async def search(self, partition: QueryPartition, page: int, size: int) -> SearchPage:
        ...


def format_api_datetime(value: datetime) -> str:
    """Format a datetime the way the Discovery API expects (second resolution, UTC)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def build_search_params(partition: QueryPartition, page: int, size: int) -> dict[str, Any]:
    """Query parameters for one page of a partition."""
    params: dict[str, Any] = {
        "countryCode": partition.country_code,
        "startDateTime": format_api_datetime(partition.window_start),
        "endDateTime": format_api_datetime(partition.window_end),
        "size": size,
        "page": page,
        "sort": "date,asc",
    }
    if partition.category:
        params["segmentName"] = partition.category
    if partition.city:
        params["city"] = partition.city
    return params


def parse_search_response(data: dict[str, Any]) -> SearchPage:
    """Parse a Discovery API search response into a SearchPage."""
    page_info = data.get("page") or {}
    records = (data.get("_embedded") or {}).get("events") or []
    return SearchPage(
        records=records,
        total_elements=page_info.get("totalElements", 0),
        total_pages=page_info.get("totalPages", 0),
        page_number=page_info.get("number", 0),
        page_size=page_info.get("size", 0),
    )


def _retry_after(response: httpx.Response) -> Optional[float]:
    raw = response.headers.get("Retry-After")
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


class TicketmasterClient:
    """Async client for the Discovery API event search."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://app.ticketmaster.com/discovery/v2/events.json",
        timeout: float = 30.0,
        rate_limit_retries: int = 3,
        backoff_base_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            api_key: Discovery API key
            base_url: Event search endpoint
            timeout: Per-request timeout in seconds
            rate_limit_retries: Attempts made on HTTP 429 before giving up
            backoff_base_delay: Initial backoff delay for 429 retries
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key
        self.base_url = base_url
        self.rate_limit_retries = rate_limit_retries
        self.backoff_base_delay = backoff_base_delay
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(
        cls,
        settings: ImportSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "TicketmasterClient":
        if not settings.api_key:
            raise EventImportError("TICKETMASTER_API_KEY not configured")
        return cls(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            rate_limit_retries=settings.rate_limit_retries,
            backoff_base_delay=settings.backoff_base_delay,
            transport=transport,
        )

    async def __aenter__(self) -> "TicketmasterClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def search(self, partition: QueryPartition, page: int, size: int) -> SearchPage:
        """Fetch one page of a partition's results."""
        return await self.search_events(build_search_params(partition, page, size))

    async def search_events(self, params: dict[str, Any]) -> SearchPage:
        """Run an event search, retrying rate-limit rejections with backoff.

        Raises:
            RateLimitedError: If every attempt was rejected with HTTP 429
            UpstreamError: On transport errors, other non-2xx responses or
                an unparseable body
        """
        return await retry_async(
            self._request,
            params,
            max_attempts=self.rate_limit_retries,
            base_delay=self.backoff_base_delay,
            retryable_exceptions=(RateLimitedError,),
        )

    async def _request(self, params: dict[str, Any]) -> SearchPage:
        try:
            response = await self._client.get(
                self.base_url,
                params={**params, "apikey": self.api_key},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429:
                raise RateLimitedError(
                    "Discovery API rate limit exceeded",
                    retry_after=_retry_after(e.response),
                ) from e
            raise UpstreamError(
                f"HTTP {status}: {e.response.text[:200]}",
                status_code=status,
            ) from e
        except httpx.RequestError as e:
            raise UpstreamError(f"Request failed: {e}") from e
        except ValueError as e:
            raise UpstreamError(f"Invalid JSON in search response: {e}") from e

        page = parse_search_response(data)
        logger.debug(
            "search_page_fetched",
            page=page.page_number,
            records=len(page.records),
            total_elements=page.total_elements,
        )
        return page
