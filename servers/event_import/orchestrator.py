"""
Adaptive import orchestrator.

Drives one import run end to end:
1. Plan prioritized partitions and record them in the run ledger
2. Pop partitions one at a time from the execution queue
3. Probe each partition's size and bisect it while it exceeds the paging ceiling
4. Fetch, map and deduplicate the pages of every fetchable partition
5. Retry failed partitions at the back of the queue, then finalize the run

A single partition failing never fails the run. The run only ends up failed
when something outside partition handling breaks.
"""

import asyncio
from datetime import datetime
from typing import Optional

import structlog

from .cancellation import CancellationToken
from .config import ImportSettings
from .discovery import SizeDiscoverer
from .errors import IllegalTransitionError, LedgerError
from .execution_queue import ExecutionQueue
from .fetcher import PageFetcher
from .importer import DedupImporter
from .ledger import RunLedger
from .models import ImportRequest, ImportRun, PartitionStatus, QueryPartition, RunStatus
from .partitioning import PartitionPlan, plan_partitions
from .progress import ProgressCallback, ProgressReporter
from .sources import SearchClient
from .splitter import bisect_partition, can_bisect
from .store import EventStore

logger = structlog.get_logger()

CAPPED_MESSAGE = "Dropped by max_partitions limit"


class AdaptiveImportOrchestrator:
    """Runs one import request against the upstream search API."""

    def __init__(
        self,
        request: ImportRequest,
        client: SearchClient,
        store: EventStore,
        ledger: RunLedger,
        settings: Optional[ImportSettings] = None,
        on_progress: Optional[ProgressCallback] = None,
        token: Optional[CancellationToken] = None,
        now: Optional[datetime] = None,
    ):
        self.request = request
        self.settings = settings or ImportSettings()
        self.ledger = ledger
        self.on_progress = on_progress
        self.token = token or CancellationToken()
        self.now = now

        self.import_run = ImportRun(request=request)
        self.discoverer = SizeDiscoverer(client, self.settings.paging_ceiling)
        self.importer = DedupImporter(store, self.settings.external_source)
        self.fetcher = PageFetcher(
            client,
            self.importer,
            page_size=self.settings.page_size,
            paging_ceiling=self.settings.paging_ceiling,
            rate_limit_delay=self.settings.rate_limit_delay,
            token=self.token,
        )

        self.plan: Optional[PartitionPlan] = None
        self.queue: Optional[ExecutionQueue] = None
        self.reporter: Optional[ProgressReporter] = None
        self._finalized: Optional[ImportRun] = None

    @property
    def run_id(self) -> str:
        return self.import_run.id

    async def prepare(self) -> PartitionPlan:
        """Plan the partitions and create the run in the ledger.

        Returns:
            The partition plan

        Raises:
            InvalidImportRequest: If the request cannot be planned
            LedgerError: If the run record cannot be created
        """
        if self.plan is not None:
            return self.plan

        plan = plan_partitions(self.request, self.settings, self.now)
        await self.ledger.create_run(self.import_run)

        for partition in plan.partitions:
            await self._record(partition)
        for partition in plan.dropped:
            partition.transition(PartitionStatus.SKIPPED)
            partition.error_message = CAPPED_MESSAGE
            await self._record(partition)

        self.plan = plan
        self.queue = ExecutionQueue(plan.partitions)
        self.reporter = ProgressReporter(self.run_id, len(plan.partitions), self.on_progress)

        logger.info(
            "import_run_prepared",
            run_id=self.run_id,
            mode=self.request.mode.value,
            partitions=len(plan.partitions),
            dropped=len(plan.dropped),
        )
        return plan

    async def run(self) -> ImportRun:
        """Process the whole queue and return the finalized run.

        Raises:
            InvalidImportRequest: If the request cannot be planned
            LedgerError: If the run record cannot be created
        """
        await self.prepare()

        try:
            await self._process_queue()
        except asyncio.CancelledError:
            await self._finalize(RunStatus.STOPPED, "Import task cancelled")
            raise
        except Exception as e:
            logger.error("import_run_failed", run_id=self.run_id, error=str(e))
            await self._finalize(RunStatus.FAILED, str(e))
            raise

        if self.token.cancelled:
            return await self._finalize(RunStatus.STOPPED, self.token.reason)
        return await self._finalize(RunStatus.COMPLETED)

    def stop(self, reason: str = "stop requested") -> None:
        self.token.cancel(reason)

    async def _process_queue(self) -> None:
        while self.queue and not self.token.cancelled:
            partition = self.queue.pop()
            await self.reporter.emit(active=partition, remaining=len(self.queue))
            if self.token.cancelled:
                # Stopped by the observer; the partition stays pending
                break
            await self._process_partition(partition)

            if self.queue and not self.token.cancelled:
                await asyncio.sleep(self.settings.rate_limit_delay)

        if self.token.cancelled:
            logger.info(
                "import_run_stopping",
                run_id=self.run_id,
                reason=self.token.reason,
                remaining=len(self.queue),
            )
        await self.reporter.emit(remaining=len(self.queue))

    async def _process_partition(self, partition: QueryPartition) -> None:
        try:
            partition.transition(PartitionStatus.DISCOVERING)
            await self._record(partition)

            discovery = await self.discoverer.discover(partition)
            partition.discovered_count = discovery.total_elements

            if discovery.needs_split and can_bisect(partition):
                await self._split(partition)
                return
            if discovery.needs_split:
                logger.warning(
                    "partition_unsplittable",
                    run_id=self.run_id,
                    partition=partition.id,
                    label=partition.label,
                    discovered=discovery.total_elements,
                    ceiling=self.settings.paging_ceiling,
                )

            partition.transition(PartitionStatus.IMPORTING)
            partition.reset_counters()
            await self._record(partition)

            await self.fetcher.fetch_partition(partition, discovery.total_elements)

            partition.transition(PartitionStatus.COMPLETED)
            partition.error_message = None
            await self._record(partition)
            self.reporter.record_completed(partition)

            logger.info(
                "partition_completed",
                run_id=self.run_id,
                partition=partition.id,
                label=partition.label,
                pages=partition.pages_fetched,
                found=partition.events_found,
                imported=partition.events_imported,
                skipped=partition.events_skipped,
                errors=partition.events_errored,
            )
        except IllegalTransitionError:
            raise
        except Exception as e:
            await self._handle_failure(partition, e)

    async def _split(self, partition: QueryPartition) -> None:
        partition.transition(PartitionStatus.SPLIT_NEEDED)
        await self._record(partition)

        children = bisect_partition(partition)
        self.queue.push_children(children)
        self.reporter.record_split()
        for child in children:
            await self._record(child)

        logger.info(
            "partition_split",
            run_id=self.run_id,
            partition=partition.id,
            label=partition.label,
            discovered=partition.discovered_count,
            children=[child.id for child in children],
        )

    async def _handle_failure(self, partition: QueryPartition, error: Exception) -> None:
        partition.retry_count += 1
        partition.error_message = str(error) or type(error).__name__

        if partition.retry_count < self.settings.max_retry_attempts:
            self.queue.requeue(partition)
            logger.warning(
                "partition_retry_scheduled",
                run_id=self.run_id,
                partition=partition.id,
                label=partition.label,
                retry_count=partition.retry_count,
                error=partition.error_message,
            )
        else:
            partition.transition(PartitionStatus.FAILED)
            self.reporter.record_failed(partition)
            logger.error(
                "partition_failed",
                run_id=self.run_id,
                partition=partition.id,
                label=partition.label,
                retry_count=partition.retry_count,
                error=partition.error_message,
            )
        await self._record(partition)

    async def _record(self, partition: QueryPartition) -> None:
        try:
            await self.ledger.save_partition(self.run_id, partition)
        except LedgerError as e:
            logger.error(
                "ledger_write_failed",
                run_id=self.run_id,
                partition=partition.id,
                status=partition.status.value,
                error=str(e),
            )

    async def _finalize(
        self,
        status: RunStatus,
        error_message: Optional[str] = None,
    ) -> ImportRun:
        if self._finalized is None:
            self._finalized = await self.ledger.finalize_run(self.run_id, status, error_message)
            self.import_run = self._finalized
        return self._finalized
