"""
Deduplicating batch importer.

For each fetched page:
1. Collect the external ids of the records
2. One existence check against the store for the whole id set
3. Records already stored (or repeated within the batch) are skipped
4. The rest are mapped to the store schema and written in one bulk insert

A failed existence check or bulk insert counts the whole batch as errors;
there is no partial-success accounting inside a batch.
"""

from typing import Any

import structlog

from .errors import StoreError
from .mapping import category_label, map_event_record
from .models import BatchResult, StoredEvent
from .store import EventStore

logger = structlog.get_logger()


class DedupImporter:
    """Imports record batches, skipping ids the store already holds."""

    def __init__(self, store: EventStore, external_source: str = "ticketmaster"):
        self.store = store
        self.external_source = external_source

    async def import_batch(self, records: list[dict[str, Any]]) -> BatchResult:
        """Import one batch of raw upstream records.

        Args:
            records: Raw event records from one search page

        Returns:
            BatchResult with imported/skipped/errors counts and a
            category breakdown of the imported records
        """
        if not records:
            return BatchResult()

        ids = [str(r["id"]) for r in records if r.get("id")]

        try:
            existing = await self.store.existing_external_ids(self.external_source, ids)
        except StoreError as e:
            logger.error(
                "existence_check_failed",
                batch_size=len(records),
                error=str(e),
            )
            return BatchResult(errors=len(records))

        skipped = 0
        errors = 0
        seen: set[str] = set()
        to_insert: list[StoredEvent] = []
        breakdown: dict[str, int] = {}

        for record in records:
            external_id = record.get("id")
            if not external_id:
                errors += 1
                continue
            external_id = str(external_id)

            if external_id in existing or external_id in seen:
                skipped += 1
                continue
            seen.add(external_id)

            event = map_event_record(record, self.external_source)
            if event is None:
                errors += 1
                continue

            to_insert.append(event)
            label = category_label(record)
            breakdown[label] = breakdown.get(label, 0) + 1

        if not to_insert:
            return BatchResult(skipped=skipped, errors=errors)

        try:
            await self.store.bulk_insert(to_insert)
        except StoreError as e:
            logger.error(
                "bulk_insert_failed",
                batch_size=len(records),
                attempted=len(to_insert),
                error=str(e),
            )
            return BatchResult(errors=len(records))

        logger.debug(
            "batch_imported",
            imported=len(to_insert),
            skipped=skipped,
            errors=errors,
        )
        return BatchResult(
            imported=len(to_insert),
            skipped=skipped,
            errors=errors,
            category_breakdown=breakdown,
        )
