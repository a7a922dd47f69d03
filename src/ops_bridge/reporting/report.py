"""Migration report generation.

This module renders a finished task (and optionally a post-migration
comparison) as JSON or Markdown reports.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ops_bridge.migration.comparator import ComparisonResult
from ops_bridge.migration.task import MigrationTask, TaskStatus
from ops_bridge.utils.logging import get_logger, sanitize_payload

logger = get_logger(__name__)

MAX_LISTED_FAILURES = 20


class MigrationReport:
    """Generates migration reports for one task.

    Creates reports of a task's status, per-unit outcomes, row totals and,
    when a verification pass ran, the comparison of source and target.
    """

    def __init__(
        self,
        task: MigrationTask,
        comparisons: dict[str, ComparisonResult] | None = None,
    ):
        """Initialize migration report.

        Args:
            task: Task snapshot including outcomes
            comparisons: Optional comparison results keyed by collection
        """
        self.task = task
        self.comparisons = comparisons or {}
        self.generated_at = datetime.now(timezone.utc)

    def generate_json(self, output_path: str | None = None) -> str:
        """Generate JSON report.

        Args:
            output_path: Optional path to save report

        Returns:
            JSON report as string
        """
        report = {
            "report_version": "1.0",
            "generated_at": self.generated_at.isoformat(),
            "task": self.task.summary(),
            "progress": self.task.progress_document(),
            "source": sanitize_payload(self.task.source.model_dump(mode="json")),
            "target": sanitize_payload(self.task.target.model_dump(mode="json")),
            "statistics": self._generate_statistics(),
            "outcomes": [outcome.to_dict() for outcome in self.task.outcomes],
            "comparisons": {name: result.to_dict() for name, result in self.comparisons.items()},
            "recommendations": self._generate_recommendations(),
        }

        json_str = json.dumps(report, indent=2, default=str)

        if output_path:
            Path(output_path).write_text(json_str)
            logger.info("json_report_saved", path=output_path)

        return json_str

    def generate_markdown(self, output_path: str | None = None) -> str:
        """Generate Markdown report.

        Args:
            output_path: Optional path to save report

        Returns:
            Markdown report as string
        """
        task = self.task
        stats = self._generate_statistics()
        lines = [
            "# Migration Report",
            "",
            f"**Task ID:** `{task.task_id}`  ",
            f"**Generated:** {self.generated_at.strftime('%Y-%m-%d %H:%M:%S UTC')}  ",
            f"**Status:** {task.status.value}  ",
            f"**Source:** {task.source.display_name} ({task.source.system_type.value})  ",
            f"**Target:** {task.target.display_name} ({task.target.system_type.value})  ",
            "",
            "## Summary",
            "",
            f"- **Started:** {task.started_at or 'N/A'}",
            f"- **Finished:** {task.finished_at or 'N/A'}",
            f"- **Duration:** {self._format_duration(stats['duration_seconds'])}",
        ]
        if task.error_message:
            lines.append(f"- **Error:** {task.error_message}")

        lines.extend(
            [
                "",
                "## Statistics",
                "",
                "| Metric | Count |",
                "|--------|------:|",
                f"| Units Resolved | {stats['units_total']:,} |",
                f"| Units Succeeded | {stats['units_succeeded']:,} |",
                f"| Units Failed | {stats['units_failed']:,} |",
                f"| Rows Total | {stats['rows_total']:,} |",
                f"| Rows Migrated | {stats['rows_migrated']:,} |",
                f"| Rows Failed | {stats['rows_failed']:,} |",
                f"| Success Rate | {stats['success_rate']:.1f}% |",
                "",
            ]
        )

        failures = [outcome for outcome in task.outcomes if not outcome.success]
        if failures:
            lines.extend(["## Failed Units", ""])
            for outcome in failures[:MAX_LISTED_FAILURES]:
                lines.append(f"- `{outcome.unit.key}`: {outcome.error_message or 'rows failed'}")
            if len(failures) > MAX_LISTED_FAILURES:
                lines.append(f"- *... and {len(failures) - MAX_LISTED_FAILURES} more*")
            lines.append("")

        for collection, result in self.comparisons.items():
            lines.extend(
                [
                    f"## Verification: {collection}",
                    "",
                    f"Units in source: {result.source_count}, in target: {result.target_count}",
                    "",
                    "| Unit | Source | Target | Divergent |",
                    "|------|-------:|-------:|:---------:|",
                ]
            )
            for comparison in result.units:
                source = comparison.row_count_source if comparison.exists_in_source else "missing"
                target = comparison.row_count_target if comparison.exists_in_target else "missing"
                mark = "yes" if comparison.divergent else ""
                lines.append(f"| {comparison.unit.name} | {source} | {target} | {mark} |")
            lines.append("")

        recommendations = self._generate_recommendations()
        if recommendations:
            lines.extend(["## Recommendations", ""])
            lines.extend(f"- {rec}" for rec in recommendations)
            lines.append("")

        markdown = "\n".join(lines)

        if output_path:
            Path(output_path).write_text(markdown)
            logger.info("markdown_report_saved", path=output_path)

        return markdown

    def _generate_statistics(self) -> dict[str, Any]:
        task = self.task
        processed = len(task.outcomes)
        duration = None
        if task.started_at and task.finished_at:
            duration = (task.finished_at - task.started_at).total_seconds()
        return {
            "units_total": len(task.units),
            "units_processed": processed,
            "units_succeeded": task.succeeded,
            "units_failed": task.failed,
            "rows_total": task.total_rows,
            "rows_migrated": task.migrated_rows,
            "rows_failed": task.failed_rows,
            "success_rate": (task.succeeded / processed * 100) if processed else 0.0,
            "duration_seconds": duration,
        }

    def _generate_recommendations(self) -> list[str]:
        task = self.task
        recommendations = []

        if task.failed:
            recommendations.append(
                f"{task.failed} unit(s) failed. Review the failed units and re-run the task for them."
            )
        if task.status == TaskStatus.CANCELLED:
            unprocessed = len(task.units) - len(task.outcomes)
            recommendations.append(
                f"Task was cancelled with {unprocessed} unit(s) not processed."
            )
        if task.status == TaskStatus.FAILED and not task.outcomes:
            recommendations.append(
                "Task failed before any unit was processed. Check connectivity and the selection."
            )
        for collection, result in self.comparisons.items():
            if result.divergent:
                recommendations.append(
                    f"{len(result.divergent)} unit(s) in '{collection}' differ between source "
                    "and target."
                )
        return recommendations

    @staticmethod
    def _format_duration(seconds: float | None) -> str:
        if seconds is None:
            return "N/A"

        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = int(seconds % 60)

        if hours > 0:
            return f"{hours}h {minutes}m {secs}s"
        elif minutes > 0:
            return f"{minutes}m {secs}s"
        else:
            return f"{secs}s"


def generate_migration_report(
    task: MigrationTask,
    output_dir: str = "./reports",
    formats: list[str] | None = None,
    comparisons: dict[str, ComparisonResult] | None = None,
) -> dict[str, str]:
    """Generate migration reports in multiple formats.

    Args:
        task: Task snapshot including outcomes
        output_dir: Directory to save reports
        formats: Formats to generate (json, markdown). Default: both
        comparisons: Optional verification results keyed by collection

    Returns:
        Dictionary mapping format to file path
    """
    if formats is None:
        formats = ["json", "markdown"]

    report = MigrationReport(task, comparisons)
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    generated_files = {}

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    base_filename = f"migration_report_{task.task_id}_{timestamp}"

    if "json" in formats:
        json_path = output_path / f"{base_filename}.json"
        report.generate_json(str(json_path))
        generated_files["json"] = str(json_path)

    if "markdown" in formats:
        md_path = output_path / f"{base_filename}.md"
        report.generate_markdown(str(md_path))
        generated_files["markdown"] = str(md_path)

    logger.info("migration_reports_generated", task_id=task.task_id, files=generated_files)

    return generated_files
