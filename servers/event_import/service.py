"""
Import service: the caller-facing entry points.

- start_import: validate, plan and start a run in the background
- stop_import: set the cooperative stop flag of one run (or all runs)
- get_import_progress: read a run's progress back from the ledger

Every run gets its own orchestrator, queue and stop token, so several runs can
share one process without touching each other's state.
"""

import asyncio
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from .cancellation import CancellationToken
from .config import ImportSettings
from .errors import InvalidImportRequest, LedgerError
from .ledger import RunLedger
from .models import ImportRequest, ImportRun, RunProgress, StartResult
from .orchestrator import AdaptiveImportOrchestrator
from .progress import ProgressCallback
from .sources import SearchClient
from .store import EventStore

logger = structlog.get_logger()


def _validation_message(error: ValidationError) -> str:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        text = item.get("msg", "invalid value")
        messages.append(f"{location}: {text}" if location else text)
    return "; ".join(messages)


class ImportService:
    """Starts, stops and observes adaptive import runs."""

    def __init__(
        self,
        client: SearchClient,
        store: EventStore,
        ledger: RunLedger,
        settings: Optional[ImportSettings] = None,
    ):
        self.client = client
        self.store = store
        self.ledger = ledger
        self.settings = settings or ImportSettings()
        self._orchestrators: dict[str, AdaptiveImportOrchestrator] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    async def start_import(
        self,
        request: ImportRequest | dict[str, Any],
        on_progress: Optional[ProgressCallback] = None,
    ) -> StartResult:
        """
        Validate a request and start its run in the background.

        Bad requests and a failing ledger are answered synchronously with
        success=False; nothing is started in that case.

        Args:
            request: ImportRequest or its dict form; a dict without
                country_code gets the configured default country
            on_progress: Optional observer receiving ProgressSnapshots

        Returns:
            StartResult with the new run id on success
        """
        try:
            if not isinstance(request, ImportRequest):
                if request.get("country_code") is None:
                    request = {**request, "country_code": self.settings.default_country}
                request = ImportRequest.model_validate(request)
        except ValidationError as e:
            message = _validation_message(e)
            logger.warning("import_request_rejected", error=message)
            return StartResult(success=False, message=f"Invalid import request: {message}")

        orchestrator = AdaptiveImportOrchestrator(
            request,
            client=self.client,
            store=self.store,
            ledger=self.ledger,
            settings=self.settings,
            on_progress=on_progress,
            token=CancellationToken(),
        )

        try:
            plan = await orchestrator.prepare()
        except InvalidImportRequest as e:
            logger.warning("import_request_rejected", error=str(e))
            return StartResult(success=False, message=f"Invalid import request: {e}")
        except LedgerError as e:
            logger.error("import_run_create_failed", error=str(e))
            return StartResult(success=False, message=f"Could not create import run: {e}")

        run_id = orchestrator.run_id
        self._orchestrators[run_id] = orchestrator
        self._tasks[run_id] = asyncio.create_task(self._run(orchestrator))

        logger.info(
            "import_started",
            run_id=run_id,
            partitions=len(plan.partitions),
            dropped=len(plan.dropped),
        )
        return StartResult(
            success=True,
            message=f"Import started with {len(plan.partitions)} partitions",
            run_id=run_id,
        )

    def stop_import(self, run_id: Optional[str] = None) -> bool:
        """Ask a run (or every active run) to stop after the current page.

        Returns:
            True if at least one active run was signalled
        """
        if run_id is not None:
            targets = [self._orchestrators[run_id]] if run_id in self.active_runs() else []
        else:
            targets = [self._orchestrators[rid] for rid in self.active_runs()]

        for orchestrator in targets:
            orchestrator.stop()
            logger.info("import_stop_requested", run_id=orchestrator.run_id)
        return bool(targets)

    async def get_import_progress(self, run_id: str) -> RunProgress:
        """Progress of a run as recorded in the ledger.

        Raises:
            LedgerError: If the run is unknown
        """
        return await self.ledger.get_progress(run_id)

    async def wait(self, run_id: str) -> ImportRun:
        """Wait for a started run to finish and return its final record.

        Runs that already finished are read back from the ledger.
        """
        task = self._tasks.get(run_id)
        if task is None:
            return await self.ledger.get_run(run_id)
        return await task

    def active_runs(self) -> list[str]:
        return [run_id for run_id, task in self._tasks.items() if not task.done()]
    async def _run(self, orchestrator: AdaptiveImportOrchestrator) -> ImportRun:
        try:
            return await orchestrator.run()
        except Exception as e:
            logger.error("import_run_crashed", run_id=orchestrator.run_id, error=str(e))
            return await self.ledger.get_run(orchestrator.run_id)
        finally:
            # The ledger holds the final record from here on
            self._orchestrators.pop(orchestrator.run_id, None)
            self._tasks.pop(orchestrator.run_id, None)
