"""Size discovery: a one-record probe to learn a partition's total result count."""

import structlog

from .models import DiscoveryResult, QueryPartition
from .sources import SearchClient

logger = structlog.get_logger()

PROBE_PAGE_SIZE = 1


class SizeDiscoverer:
    """Probes partitions without fetching their payload."""

    def __init__(self, client: SearchClient, paging_ceiling: int):
        self.client = client
        self.paging_ceiling = paging_ceiling

    async def discover(self, partition: QueryPartition) -> DiscoveryResult:
        """Ask the upstream how many results the partition's filters match.

        Does not touch the partition's counters.

        Raises:
            UpstreamError: If the probe fails
        """
        page = await self.client.search(partition, page=0, size=PROBE_PAGE_SIZE)
        total = page.total_elements

        logger.debug(
            "partition_discovered",
            partition=partition.id,
            label=partition.label,
            total_elements=total,
        )
        return DiscoveryResult(
            total_elements=total,
            needs_split=total > self.paging_ceiling,
        )
