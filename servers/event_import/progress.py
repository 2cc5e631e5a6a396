"""Run-level progress counters and snapshot delivery."""

import inspect
from typing import Any, Callable, Optional

import structlog

from .models import ProgressSnapshot, QueryPartition

logger = structlog.get_logger()

ProgressCallback = Callable[[ProgressSnapshot], Any]


class ProgressReporter:
    """Aggregates counters for one run and pushes snapshots to an observer.

    The observer may be a plain function or a coroutine function. It is
    invoked in the worker loop, so a slow observer slows the run down.
    """

    def __init__(
        self,
        run_id: str,
        total_partitions: int,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.run_id = run_id
        self.on_progress = on_progress
        self.total_partitions = total_partitions
        self.completed_partitions = 0
        self.failed_partitions = 0
        self.total_events_found = 0
        self.total_events_imported = 0
        self.total_events_skipped = 0
        self.total_errors = 0
        self.emitted = 0

    def record_split(self) -> None:
        # One partition replaced by two
        self.total_partitions += 1

    def record_completed(self, partition: QueryPartition) -> None:
        self.completed_partitions += 1
        self.total_events_found += partition.events_found
        self.total_events_imported += partition.events_imported
        self.total_events_skipped += partition.events_skipped
        self.total_errors += partition.events_errored

    def record_failed(self, partition: QueryPartition) -> None:
        self.failed_partitions += 1
        self.total_events_found += partition.events_found
        self.total_events_imported += partition.events_imported
        self.total_events_skipped += partition.events_skipped
        self.total_errors += partition.events_errored

    def snapshot(
        self,
        active: Optional[QueryPartition] = None,
        remaining: Optional[int] = None,
    ) -> ProgressSnapshot:
        return ProgressSnapshot(
            run_id=self.run_id,
            total_partitions=self.total_partitions,
            completed_partitions=self.completed_partitions,
            failed_partitions=self.failed_partitions,
            active_partition=active.model_copy(deep=True) if active else None,
            total_events_found=self.total_events_found,
            total_events_imported=self.total_events_imported,
            total_events_skipped=self.total_events_skipped,
            total_errors=self.total_errors,
            estimated_remaining=remaining,
        )

    async def emit(
        self,
        active: Optional[QueryPartition] = None,
        remaining: Optional[int] = None,
    ) -> ProgressSnapshot:
        """Build a snapshot and hand it to the observer."""
        snapshot = self.snapshot(active, remaining)
        self.emitted += 1

        if self.on_progress is None:
            return snapshot

        try:
            result = self.on_progress(snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(
                "progress_callback_failed",
                run_id=self.run_id,
                error=str(e),
            )
        return snapshot
