"""Ordered work list of partitions for one import run."""

from collections import deque
from typing import Iterable, Iterator

from .models import PartitionStatus, QueryPartition


class ExecutionQueue:
    """Priority-ordered partition queue with depth-first split handling.

    Only the run's worker loop touches the queue, so it needs no locking.
    """

    def __init__(self, partitions: Iterable[QueryPartition] = ()):
        self._items: deque[QueryPartition] = deque(
            sorted(partitions, key=lambda p: p.priority)
        )

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __iter__(self) -> Iterator[QueryPartition]:
        return iter(self._items)

    def pop(self) -> QueryPartition:
        """Dequeue the next partition to work on."""
        return self._items.popleft()

    def push_children(self, children: Iterable[QueryPartition]) -> None:
        """Put split children at the front, keeping their order.

        The children are processed (and split further if needed) before any
        remaining sibling partition.
        """
        self._items.extendleft(reversed(list(children)))

    def requeue(self, partition: QueryPartition) -> None:
        """Send a failed partition to the back for another attempt."""
        if partition.status != PartitionStatus.PENDING:
            partition.transition(PartitionStatus.PENDING)
        self._items.append(partition)

    def pending(self) -> list[QueryPartition]:
        return list(self._items)
