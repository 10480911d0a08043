"""
Report generator.
Renders run results as Markdown for humans and JSON for automation.

Accepted payloads: DeploymentReport, ProvisionResult, MigrationOutcome,
OptimizationSummary, or a list of any of these.
"""
import json
from pathlib import Path
from typing import Any, List, Optional, Union

from pydantic import BaseModel

from pool_orchestrator.config.settings import settings
from pool_orchestrator.core.context import RunContext
from pool_orchestrator.models.infrastructure import ProvisionResult
from pool_orchestrator.models.maintenance import OptimizationSummary
from pool_orchestrator.models.migration import MigrationOutcome
from pool_orchestrator.models.pipeline import DeploymentReport

Reportable = Union[BaseModel, List[BaseModel]]


def _items(payload: Reportable) -> List[BaseModel]:
    return list(payload) if isinstance(payload, (list, tuple)) else [payload]


def render_json(payload: Reportable) -> str:
    """Serialize a payload (or list of payloads) to indented JSON."""
    items = [item.model_dump(mode="json") for item in _items(payload)]
    data: Any = items if isinstance(payload, (list, tuple)) else items[0]
    return json.dumps(data, indent=2, sort_keys=False)


def _table(headers: List[str], rows: List[List[Any]]) -> List[str]:
    lines = [
        "| " + " | ".join(headers) + " |",
        "| " + " | ".join("---" for _ in headers) + " |",
    ]
    for row in rows:
        lines.append("| " + " | ".join(str(cell).replace("|", "\\|") for cell in row) + " |")
    return lines


def _render_deployment(report: DeploymentReport) -> List[str]:
    lines = [
        f"## Deployment {report.run_id}",
        "",
        f"- Status: **{report.status.value}**",
        f"- Started: {report.started_at.isoformat()}",
        f"- Duration: {report.total_duration_seconds:.1f}s",
    ]
    if report.aborted_at_stage:
        lines.append(f"- Aborted at: `{report.aborted_at_stage}`")
    lines.append("")
    lines.extend(
        _table(
            ["Stage", "Status", "Critical", "Duration (s)", "Detail"],
            [
                [
                    step.name,
                    step.status.value,
                    "yes" if step.critical else "no",
                    f"{step.duration_seconds:.1f}",
                    step.detail,
                ]
                for step in report.steps
            ],
        )
    )
    if report.errors:
        lines.extend(["", "### Errors", ""])
        lines.extend(f"- {error}" for error in report.errors)
    return lines


def _render_provision(result: ProvisionResult) -> List[str]:
    title = f"## Provisioning {result.resource_group}" + (" (dry run)" if result.dry_run else "")
    lines = [title, ""]
    for label, refs in (
        ("Created", result.created),
        ("Already present", result.existing),
        ("Planned", result.planned),
        ("Updated", result.updated),
    ):
        if refs:
            lines.append(f"**{label}** ({len(refs)})")
            lines.extend(f"- `{ref}`" for ref in refs)
            lines.append("")
    for outcome in result.migrations:
        lines.extend(_render_migration(outcome))
        lines.append("")
    return lines


def _render_migration(outcome: MigrationOutcome) -> List[str]:
    lines = [
        f"## Migration {outcome.database_id}",
        "",
        f"- Status: **{outcome.status.value}**",
        f"- Duration: {outcome.duration_seconds:.1f}s",
    ]
    if outcome.final_placement is not None:
        placement = outcome.final_placement
        where = f"pool `{placement.pool_name}`" if placement.pool_name else (
            f"standalone {placement.edition}/{placement.service_objective}"
        )
        lines.append(f"- Final placement: {where} ({placement.status or 'unknown'})")
    if outcome.reason:
        lines.append(f"- Reason: {outcome.reason}")
    if outcome.states:
        lines.append("- States: " + " -> ".join(state.value for state in outcome.states))
    return lines


def _render_optimization(summary: OptimizationSummary) -> List[str]:
    title = f"## Optimization {summary.database_name}" + (" (dry run)" if summary.dry_run else "")
    lines = [title, "", f"- Indexes analyzed: {summary.records_analyzed}"]
    if summary.apply_result is not None:
        result = summary.apply_result
        lines.append(
            f"- Maintained: {result.optimized_count}, skipped: {result.skipped_count}, "
            f"failed: {len(result.failures)}"
        )
    lines.append("")
    if summary.actions:
        lines.extend(
            _table(
                ["Index", "Fragmentation %", "Pages", "Action"],
                [
                    [
                        item.record.qualified_name,
                        f"{item.record.fragmentation_percent:.1f}",
                        item.record.page_count,
                        item.action.value,
                    ]
                    for item in summary.actions
                ],
            )
        )
    if summary.top_queries:
        lines.extend(["", "### Most expensive queries", ""])
        lines.extend(
            _table(
                ["Avg elapsed (ms)", "Executions", "Query"],
                [
                    [f"{query.avg_elapsed_ms:.1f}", query.execution_count, query.query_text[:120]]
                    for query in summary.top_queries
                ],
            )
        )
    if summary.recommendations:
        lines.extend(["", "### Missing index suggestions", ""])
        lines.extend(f"- `{item.create_statement}`" for item in summary.recommendations)
    return lines


def render_markdown(payload: Reportable, title: Optional[str] = None) -> str:
    """Render a payload (or list of payloads) as a Markdown document."""
    lines: List[str] = [f"# {title}", ""] if title else []
    for item in _items(payload):
        if isinstance(item, DeploymentReport):
            lines.extend(_render_deployment(item))
        elif isinstance(item, ProvisionResult):
            lines.extend(_render_provision(item))
        elif isinstance(item, MigrationOutcome):
            lines.extend(_render_migration(item))
        elif isinstance(item, OptimizationSummary):
            lines.extend(_render_optimization(item))
        else:
            lines.extend(["```json", render_json(item), "```"])
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def write_report(name: str, payload: Reportable, ctx: RunContext, report_dir: Optional[Path] = None) -> Path:
    """
    Write ``<name>-<run_id>.md`` and ``.json`` into the report directory.

    Returns:
        Path of the Markdown file
    """
    directory = Path(report_dir or settings.report_dir)
    directory.mkdir(parents=True, exist_ok=True)
    stem = f"{name}-{ctx.run_id}"

    markdown_path = directory / f"{stem}.md"
    markdown_path.write_text(render_markdown(payload, title=f"{name} run {ctx.run_id}"), encoding="utf-8")
    (directory / f"{stem}.json").write_text(render_json(payload), encoding="utf-8")

    ctx.logger.info("report_written", path=str(markdown_path))
    return markdown_path
