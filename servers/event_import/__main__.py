"""
Command line entry point for the adaptive event importer.

Commands:
- plan: show the partitions and the rough estimate for a request
- start: run an import and print progress as partitions complete
- progress: read a run's progress back from the ledger directory

Run with: python -m servers.event_import <command> [options]
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import structlog
from dateutil.parser import isoparse

from .config import ImportSettings
from .errors import EventImportError
from .ledger import JsonFileRunLedger, latest_run_id
from .models import ImportMode, ImportRequest, ProgressSnapshot
from .partitioning import estimate_import, plan_partitions
from .report import ReportRenderer
from .service import ImportService
from .sources import TicketmasterClient
from .store import SqliteEventStore

DEFAULT_DB = "events.db"
DEFAULT_LEDGER_DIR = ".import_runs"


def _stderr_logger(*args: Any) -> structlog.PrintLogger:
    # Looked up per logger: sys.stderr may be replaced after configuration
    return structlog.PrintLogger(file=sys.stderr)


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        logger_factory=_stderr_logger,
    )


class EventImportServer:
    """Plan, start and inspect imports for the command line."""

    def __init__(self, settings: ImportSettings, db_path: str, ledger_dir: str):
        self.settings = settings
        self.db_path = db_path
        self.ledger = JsonFileRunLedger(ledger_dir)

    async def plan_import(self, request: dict) -> dict:
        """Partitions and estimate for a request, without touching the upstream."""
        import_request = ImportRequest.model_validate(request)
        plan = plan_partitions(import_request, self.settings)
        estimate = estimate_import(plan, import_request.mode)
        return {
            "partitions": [
                {"id": p.id, "label": p.label, "priority": p.priority}
                for p in plan.partitions
            ],
            "dropped": [p.label for p in plan.dropped],
            "estimate": estimate.model_dump(),
        }

    async def start_import(self, request: dict, report_path: Optional[str] = None) -> dict:
        """Run an import to the end, printing one line per progress snapshot."""
        store = SqliteEventStore(self.db_path)
        try:
            async with TicketmasterClient.from_settings(self.settings) as client:
                service = ImportService(client, store, self.ledger, self.settings)
                started = await service.start_import(request, on_progress=print_snapshot)
                if not started.success:
                    return started.model_dump()

                print(f"{started.message} (run {started.run_id})")
                run = await service.wait(started.run_id)
        finally:
            store.close()

        if report_path:
            partitions = await self.ledger.get_partitions(run.id)
            Path(report_path).write_text(
                ReportRenderer().render_run(run, partitions), encoding="utf-8"
            )
            print(f"Report saved to: {report_path}")

        return {"success": True, "run": run.model_dump(mode="json")}

    async def get_import_progress(self, run_id: Optional[str] = None) -> dict:
        """Ledger view of a run; defaults to the most recent one."""
        run_id = run_id or latest_run_id(self.ledger)
        if run_id is None:
            raise EventImportError(f"No import runs in {self.ledger.directory}")
        progress = await self.ledger.get_progress(run_id)
        return progress.model_dump(mode="json")


def print_snapshot(snapshot: ProgressSnapshot) -> None:
    active = snapshot.active_partition.label if snapshot.active_partition else "-"
    print(
        f"[{snapshot.percent_complete:5.1f}%] "
        f"{snapshot.completed_partitions + snapshot.failed_partitions}/{snapshot.total_partitions} partitions | "
        f"imported {snapshot.total_events_imported}, skipped {snapshot.total_events_skipped}, "
        f"errors {snapshot.total_errors} | {active}"
    )


def _request_from_args(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "country_code": args.country,
        "start_date": isoparse(args.start),
        "end_date": isoparse(args.end),
        "categories": args.category,
        "cities": args.city,
        "mode": args.mode,
        "max_partitions": args.max_partitions,
    }


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Adaptive event import from the Discovery API")
    parser.add_argument("--log-level", default="INFO", help="Log level (default: INFO)")
    parser.add_argument("--db", default=DEFAULT_DB, help="SQLite event store path")
    parser.add_argument("--ledger-dir", default=DEFAULT_LEDGER_DIR, help="Run ledger directory")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (("plan", "Show partitions and estimate"), ("start", "Run an import")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--country", default=None, help="Two-letter country code")
        sub.add_argument("--start", required=True, help="Start date (ISO 8601)")
        sub.add_argument("--end", required=True, help="End date (ISO 8601, exclusive)")
        sub.add_argument("--category", action="append", help="Category filter, repeatable")
        sub.add_argument("--city", action="append", help="City filter, repeatable")
        sub.add_argument(
            "--mode",
            choices=[mode.value for mode in ImportMode],
            default=ImportMode.STANDARD.value,
        )
        sub.add_argument("--max-partitions", type=int, default=None)
        if name == "start":
            sub.add_argument("--report", default=None, help="Write a Markdown run report here")

    progress = subparsers.add_parser("progress", help="Show progress of a run")
    progress.add_argument("run_id", nargs="?", default=None, help="Run id (default: latest)")
    return parser


async def main(argv: Optional[list[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    configure_logging(args.log_level)

    settings = ImportSettings.from_env()
    server = EventImportServer(settings, args.db, args.ledger_dir)

    try:
        if args.command == "progress":
            result = await server.get_import_progress(args.run_id)
            snapshot = ProgressSnapshot.model_validate(result["snapshot"])
            print(f"Run {result['run']['id']}: {result['run']['status']}")
            print_snapshot(snapshot)
            for status, count in sorted(result["partitions_by_status"].items()):
                print(f"  {status}: {count}")
            return 0

        args.country = args.country or settings.default_country
        request = _request_from_args(args)

        if args.command == "plan":
            result = await server.plan_import(request)
            for partition in result["partitions"]:
                print(f"  [{partition['priority']:>4}] {partition['label']}")
            for label in result["dropped"]:
                print(f"  [drop] {label}")
            estimate = result["estimate"]
            print(
                f"\n{estimate['partition_count']} partitions, "
                f"~{estimate['minutes_min']}-{estimate['minutes_max']} minutes, "
                f"~{estimate['events_min']}-{estimate['events_max']} events"
            )
            return 0

        result = await server.start_import(request, report_path=args.report)
        if not result["success"]:
            print(result["message"], file=sys.stderr)
            return 1

        run = result["run"]
        print("\n" + "=" * 60)
        print(f"Run {run['id']} {run['status']}")
        print("=" * 60)
        print(f"Found:    {run['total_found']}")
        print(f"Imported: {run['total_imported']}")
        print(f"Skipped:  {run['total_skipped']}")
        print(f"Errors:   {run['total_errors']}")
        print(f"Failed partitions: {run['partitions_failed']}")
        return 0 if run["status"] != "failed" else 1
    except (EventImportError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
