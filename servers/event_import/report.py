"""Jinja2 rendering of import run reports."""

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

from .models import ImportRun, PartitionStatus, QueryPartition

DEFAULT_TEMPLATE = "run_report.md"


def _duration(run: ImportRun) -> str:
    if run.completed_at is None:
        return "still running"
    seconds = int((run.completed_at - run.started_at).total_seconds())
    minutes, seconds = divmod(seconds, 60)
    return f"{minutes}m {seconds:02d}s"


class ReportRenderer:
    """Render run reports using Jinja2."""

    def __init__(self, template_dir: Path | None = None):
        """Initialize the renderer with a template directory.

        Args:
            template_dir: Path to templates directory.
                         Defaults to the package's templates/ folder.
        """
        if template_dir is None:
            template_dir = Path(__file__).parent / "templates"

        self.template_dir = template_dir
        self.env = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(self, template_name: str, context: dict[str, Any]) -> str:
        """Render a template with the given context.

        Raises:
            TemplateNotFound: If template doesn't exist
        """
        template = self.env.get_template(template_name)
        return template.render(**context)

    def build_context(self, run: ImportRun, partitions: list[QueryPartition]) -> dict[str, Any]:
        """Template variables for one run."""
        # Split parents are represented by their children
        rows = sorted(
            (p for p in partitions if p.status != PartitionStatus.SPLIT_NEEDED),
            key=lambda p: (p.window_start, p.category or "", p.city or ""),
        )
        return {
            "run": run,
            "request": run.request,
            "duration": _duration(run),
            "partitions": rows,
            "failures": [p for p in rows if p.status == PartitionStatus.FAILED],
            "skipped": [p for p in rows if p.status == PartitionStatus.SKIPPED],
            "split_count": sum(1 for p in partitions if p.status == PartitionStatus.SPLIT_NEEDED),
            "categories": sorted(
                run.category_breakdown.items(), key=lambda item: item[1], reverse=True
            ),
        }

    def render_run(
        self,
        run: ImportRun,
        partitions: list[QueryPartition],
        template_name: str = DEFAULT_TEMPLATE,
    ) -> str:
        """Render the Markdown summary of a run."""
        return self.render(template_name, self.build_context(run, partitions))

    def template_exists(self, template_name: str) -> bool:
        try:
            self.env.get_template(template_name)
            return True
        except TemplateNotFound:
            return False
