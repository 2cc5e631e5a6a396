"""
Run ledger: persisted lifecycle of import runs and their partitions.

Layout (logical):
- one run record: status, timestamps, aggregate counters
- one record per generated or split partition, inserted on first write and
  updated on every status change

Finalization sums the partition counters into the run record and happens at
most once per run id.
"""

import json
import os
from pathlib import Path
from typing import Optional, Protocol

import structlog

from .errors import LedgerError
from .models import (
    ImportRun,
    PartitionStatus,
    ProgressSnapshot,
    QueryPartition,
    RunProgress,
    RunStatus,
    utc_now,
)

logger = structlog.get_logger()


class RunLedger(Protocol):
    async def create_run(self, run: ImportRun) -> None:
        ...

    async def save_partition(self, run_id: str, partition: QueryPartition) -> None:
        ...

    async def finalize_run(
        self, run_id: str, status: RunStatus, error_message: Optional[str] = None
    ) -> ImportRun:
        ...

    async def get_run(self, run_id: str) -> ImportRun:
        ...

    async def get_partitions(self, run_id: str) -> list[QueryPartition]:
        ...

    async def get_progress(self, run_id: str) -> RunProgress:
        ...


def build_run_progress(run: ImportRun, partitions: list[QueryPartition]) -> RunProgress:
    """Reconstruct a progress view from ledger records."""
    by_status: dict[str, int] = {}
    for partition in partitions:
        by_status[partition.status.value] = by_status.get(partition.status.value, 0) + 1

    # Split parents were replaced by their children; skipped ones never ran
    work_items = [
        p for p in partitions
        if p.status not in (PartitionStatus.SPLIT_NEEDED, PartitionStatus.SKIPPED)
    ]
    active = next(
        (
            p for p in work_items
            if p.status in (PartitionStatus.DISCOVERING, PartitionStatus.IMPORTING)
        ),
        None,
    )

    snapshot = ProgressSnapshot(
        run_id=run.id,
        total_partitions=len(work_items),
        completed_partitions=by_status.get(PartitionStatus.COMPLETED.value, 0),
        failed_partitions=by_status.get(PartitionStatus.FAILED.value, 0),
        active_partition=active,
        total_events_found=sum(p.events_found for p in partitions),
        total_events_imported=sum(p.events_imported for p in partitions),
        total_events_skipped=sum(p.events_skipped for p in partitions),
        total_errors=sum(p.events_errored for p in partitions),
        estimated_remaining=by_status.get(PartitionStatus.PENDING.value, 0),
    )
    return RunProgress(run=run, snapshot=snapshot, partitions_by_status=by_status)


class InMemoryRunLedger:
    """Ledger kept in process memory."""

    def __init__(self):
        self._runs: dict[str, ImportRun] = {}
        self._partitions: dict[str, dict[str, QueryPartition]] = {}

    async def create_run(self, run: ImportRun) -> None:
        self._refresh(run.id)
        if run.id in self._runs:
            raise LedgerError(f"Import run '{run.id}' already exists")
        self._runs[run.id] = run.model_copy(deep=True)
        self._partitions[run.id] = {}
        self._persist(run.id)
        logger.info("import_run_created", run_id=run.id, mode=run.request.mode.value)

    async def save_partition(self, run_id: str, partition: QueryPartition) -> None:
        """Insert the partition on first write, update it afterwards."""
        self._refresh(run_id)
        if run_id not in self._runs:
            raise LedgerError(f"Unknown import run '{run_id}'")
        self._partitions[run_id][partition.id] = partition.model_copy(deep=True)
        self._persist(run_id)

    async def finalize_run(
        self,
        run_id: str,
        status: RunStatus,
        error_message: Optional[str] = None,
    ) -> ImportRun:
        """Write the run's terminal status and totals, once.

        A second call returns the already finalized run unchanged.
        """
        run = await self.get_run(run_id)
        if run.is_finalized:
            logger.warning(
                "import_run_already_finalized",
                run_id=run_id,
                status=run.status.value,
                requested=status.value,
            )
            return run

        partitions = list(self._partitions[run_id].values())
        run.status = status
        run.completed_at = utc_now()
        run.total_found = sum(p.events_found for p in partitions)
        run.total_imported = sum(p.events_imported for p in partitions)
        run.total_skipped = sum(p.events_skipped for p in partitions)
        run.total_errors = sum(p.events_errored for p in partitions)
        run.partitions_completed = sum(
            1 for p in partitions if p.status == PartitionStatus.COMPLETED
        )
        run.partitions_failed = sum(
            1 for p in partitions if p.status == PartitionStatus.FAILED
        )
        breakdown: dict[str, int] = {}
        for p in partitions:
            for label, count in p.category_breakdown.items():
                breakdown[label] = breakdown.get(label, 0) + count
        run.category_breakdown = breakdown
        run.error_message = error_message
        self._runs[run_id] = run
        self._persist(run_id)

        logger.info(
            "import_run_finalized",
            run_id=run_id,
            status=status.value,
            found=run.total_found,
            imported=run.total_imported,
            skipped=run.total_skipped,
            errors=run.total_errors,
            failed_partitions=run.partitions_failed,
        )
        return run.model_copy(deep=True)

    async def get_run(self, run_id: str) -> ImportRun:
        self._refresh(run_id)
        run = self._runs.get(run_id)
        if run is None:
            raise LedgerError(f"Unknown import run '{run_id}'")
        return run.model_copy(deep=True)

    async def get_partitions(self, run_id: str) -> list[QueryPartition]:
        self._refresh(run_id)
        if run_id not in self._runs:
            raise LedgerError(f"Unknown import run '{run_id}'")
        return [p.model_copy(deep=True) for p in self._partitions[run_id].values()]

    async def get_progress(self, run_id: str) -> RunProgress:
        run = await self.get_run(run_id)
        partitions = await self.get_partitions(run_id)
        return build_run_progress(run, partitions)

    def _refresh(self, run_id: str) -> None:
        """Hook for backends that reload state written by other processes."""

    def _persist(self, run_id: str) -> None:
        """Hook for backends that write state out."""


class JsonFileRunLedger(InMemoryRunLedger):
    """Ledger with one JSON document per run, readable from other processes.

    A document is only read back when it changed on disk since this instance
    last wrote or read it.
    """

    def __init__(self, directory: str | Path):
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._stamps: dict[str, tuple[int, int, int]] = {}

    def _path(self, run_id: str) -> Path:
        return self.directory / f"{run_id}.json"

    @staticmethod
    def _stamp(path: Path) -> tuple[int, int, int]:
        stat = path.stat()
        return stat.st_ino, stat.st_mtime_ns, stat.st_size

    def _refresh(self, run_id: str) -> None:
        path = self._path(run_id)
        try:
            stamp = self._stamp(path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise LedgerError(f"Cannot read ledger file {path}: {e}") from e
        if self._stamps.get(run_id) == stamp:
            return

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            run = ImportRun.model_validate(data["run"])
            partitions = {
                p["id"]: QueryPartition.model_validate(p)
                for p in data.get("partitions", [])
            }
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise LedgerError(f"Cannot read ledger file {path}: {e!r}") from e

        self._runs[run_id] = run
        self._partitions[run_id] = partitions
        self._stamps[run_id] = stamp

    def _persist(self, run_id: str) -> None:
        path = self._path(run_id)
        document = {
            "run": self._runs[run_id].model_dump(mode="json"),
            "partitions": [
                p.model_dump(mode="json") for p in self._partitions[run_id].values()
            ],
        }
        tmp_path = path.with_suffix(".json.tmp")
        try:
            tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
            self._stamps[run_id] = self._stamp(path)
        except OSError as e:
            raise LedgerError(f"Cannot write ledger file {path}: {e}") from e

    def list_runs(self) -> list[str]:
        return sorted(p.stem for p in self.directory.glob("*.json"))


def latest_run_id(ledger: JsonFileRunLedger) -> Optional[str]:
    """Most recently written run in a ledger directory."""
    paths = sorted(ledger.directory.glob("*.json"), key=lambda p: p.stat().st_mtime)
    return paths[-1].stem if paths else None
