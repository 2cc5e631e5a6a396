"""
Page fetcher.

Walks the pages of one partition in ascending order:
- at most ceil(min(discovered, ceiling) / page_size) pages
- stops early on an empty page or when the upstream's totalPages is reached
- sleeps a fixed delay between pages (rate limiting)
- checks the cancellation token before starting each page

Any upstream error propagates and fails the whole attempt.
"""

import asyncio
import math
from typing import Optional

import structlog

from .cancellation import CancellationToken
from .importer import DedupImporter
from .models import FetchOutcome, QueryPartition
from .sources import SearchClient

logger = structlog.get_logger()


def max_pages_for(total_elements: int, paging_ceiling: int, page_size: int) -> int:
    """Number of pages reachable for a partition."""
    return math.ceil(min(total_elements, paging_ceiling) / page_size)


def _apply(partition: QueryPartition, outcome: FetchOutcome) -> None:
    partition.pages_fetched = outcome.pages_fetched
    partition.events_found = outcome.found
    partition.events_imported = outcome.imported
    partition.events_skipped = outcome.skipped
    partition.events_errored = outcome.errors
    partition.category_breakdown = dict(outcome.category_breakdown)


class PageFetcher:
    """Fetches and imports the pages of a partition."""

    def __init__(
        self,
        client: SearchClient,
        importer: DedupImporter,
        page_size: int,
        paging_ceiling: int,
        rate_limit_delay: float,
        token: Optional[CancellationToken] = None,
    ):
        self.client = client
        self.importer = importer
        self.page_size = page_size
        self.paging_ceiling = paging_ceiling
        self.rate_limit_delay = rate_limit_delay
        self.token = token or CancellationToken()

    async def fetch_partition(self, partition: QueryPartition, total_elements: int) -> FetchOutcome:
        """Fetch every reachable page of ``partition`` and import it.

        Args:
            partition: Partition in importing state
            total_elements: Count reported by the size probe

        Returns:
            FetchOutcome with the accumulated counters

        Raises:
            UpstreamError: If any page fetch fails
        """
        outcome = FetchOutcome()
        max_pages = max_pages_for(total_elements, self.paging_ceiling, self.page_size)

        for page in range(max_pages):
            if self.token.cancelled:
                logger.info(
                    "partition_fetch_interrupted",
                    partition=partition.id,
                    pages_fetched=outcome.pages_fetched,
                )
                break

            result = await self.client.search(partition, page=page, size=self.page_size)
            if not result.records:
                break

            batch = await self.importer.import_batch(result.records)
            outcome.add_batch(len(result.records), batch)
            _apply(partition, outcome)

            logger.debug(
                "page_imported",
                partition=partition.id,
                page=page,
                max_pages=max_pages,
                found=len(result.records),
                imported=batch.imported,
                skipped=batch.skipped,
                errors=batch.errors,
            )

            if result.total_pages and page + 1 >= result.total_pages:
                break
            if page + 1 < max_pages:
                await asyncio.sleep(self.rate_limit_delay)

        return outcome
