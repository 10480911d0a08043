"""
Tests for the report generator.
"""
import json
from datetime import datetime, timezone

from pool_orchestrator.models.infrastructure import ProvisionResult
from pool_orchestrator.models.maintenance import (
    FragmentationRecord,
    MaintenanceAction,
    MaintenanceActionType,
    OptimizationSummary,
)
from pool_orchestrator.models.migration import MigrationOutcome, MigrationState, MigrationStatus
from pool_orchestrator.models.pipeline import DeploymentReport, PipelineStep, RunStatus, StepStatus
from pool_orchestrator.models.placement import ResourceKind, ResourceRef
from pool_orchestrator.services.report_service import render_json, render_markdown, write_report

STARTED = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _deployment_report() -> DeploymentReport:
    return DeploymentReport(
        run_id="run-report",
        status=RunStatus.COMPLETED_WITH_ERRORS,
        steps=[
            PipelineStep(
                name="create-resource-groups",
                status=StepStatus.COMPLETED,
                detail="1 created",
                critical=True,
                started_at=STARTED,
                duration_seconds=2.5,
            ),
            PipelineStep(
                name="optimize-databases",
                status=StepStatus.FAILED,
                detail="orders: a|b",
                started_at=STARTED,
            ),
        ],
        errors=["optimize-databases: orders: a|b"],
        started_at=STARTED,
        total_duration_seconds=4.0,
    )


def test_deployment_markdown():
    text = render_markdown(_deployment_report(), title="deploy-all")

    assert text.startswith("# deploy-all\n")
    assert "- Status: **completed_with_errors**" in text
    assert "| create-resource-groups | completed | yes | 2.5 | 1 created |" in text
    assert "orders: a\\|b" in text
    assert "### Errors" in text


def test_provision_and_migration_markdown():
    result = ProvisionResult(
        resource_group="rg-report",
        created=[ResourceRef(kind=ResourceKind.RESOURCE_GROUP, id="rg-report")],
        migrations=[
            MigrationOutcome(
                database_id="rg-report/sql/orders",
                status=MigrationStatus.TIMED_OUT,
                reason="online_in_previous_placement",
                states=[MigrationState.VALIDATING, MigrationState.TIMED_OUT],
            )
        ],
    )

    text = render_markdown(result)

    assert "## Provisioning rg-report" in text
    assert "- `resource_group:rg-report`" in text
    assert "## Migration rg-report/sql/orders" in text
    assert "- Reason: online_in_previous_placement" in text
    assert "validating -> timed_out" in text


def test_optimization_markdown():
    record = FragmentationRecord(
        schema_name="dbo", table_name="Orders", index_name="IX_Date", fragmentation_percent=42.0, page_count=5000
    )
    summary = OptimizationSummary(
        database_name="orders",
        records_analyzed=1,
        actions=[MaintenanceAction(record=record, action=MaintenanceActionType.REBUILD)],
        dry_run=True,
    )

    text = render_markdown(summary)

    assert "## Optimization orders (dry run)" in text
    assert "| dbo.Orders.IX_Date | 42.0 | 5000 | rebuild |" in text


def test_json_rendering_of_a_list():
    data = json.loads(render_json([_deployment_report(), _deployment_report()]))

    assert isinstance(data, list)
    assert data[0]["status"] == "completed_with_errors"
    assert data[0]["steps"][0]["started_at"].startswith("2024-01-01")


def test_write_report(tmp_path, ctx):
    path = write_report("deploy-all", _deployment_report(), ctx, report_dir=tmp_path / "reports")

    assert path == tmp_path / "reports" / "deploy-all-run-test.md"
    assert "# deploy-all run run-test" in path.read_text(encoding="utf-8")
    data = json.loads((tmp_path / "reports" / "deploy-all-run-test.json").read_text(encoding="utf-8"))
    assert data["run_id"] == "run-report"
