"""
Adaptive splitter.

A partition whose discovered count exceeds the paging ceiling is bisected on
its time window. Children inherit category, city and priority and point back
to their parent. Splitting recurses until every leaf fits under the ceiling
or its window can no longer be bisected at second resolution; such leaves are
imported up to the ceiling and the remainder is knowingly lost.
"""

from datetime import datetime

from .models import SPLIT_REASON_TIME_RANGE, QueryPartition


def window_midpoint(start: datetime, end: datetime) -> datetime:
    """Midpoint of [start, end), truncated to whole seconds."""
    mid = start + (end - start) / 2
    return mid.replace(microsecond=0)


def can_bisect(partition: QueryPartition) -> bool:
    """True when both halves of the window would be non-empty."""
    mid = window_midpoint(partition.window_start, partition.window_end)
    return partition.window_start < mid < partition.window_end


def bisect_partition(partition: QueryPartition) -> tuple[QueryPartition, QueryPartition]:
    """Split a partition's time window in two at its midpoint.

    Raises:
        ValueError: If the window is too narrow to split
    """
    start, end = partition.window_start, partition.window_end
    mid = window_midpoint(start, end)
    if not start < mid < end:
        raise ValueError(f"window of partition '{partition.id}' is too narrow to split")

    def child(child_start: datetime, child_end: datetime, part: int) -> QueryPartition:
        return QueryPartition.create(
            window_start=child_start,
            window_end=child_end,
            country_code=partition.country_code,
            category=partition.category,
            city=partition.city,
            priority=partition.priority,
            label=f"{partition.label} (Part {part})",
            parent_partition_id=partition.id,
            split_reason=SPLIT_REASON_TIME_RANGE,
        )

    return child(start, mid, 1), child(mid, end, 2)
