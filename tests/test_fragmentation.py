"""
Tests for the fragmentation decision engine.
"""
import pytest

from pool_orchestrator.exceptions import QueryExecutionError
from pool_orchestrator.models.maintenance import FragmentationRecord, MaintenanceActionType, QueryTarget
from pool_orchestrator.services.fragmentation_service import FragmentationService, classify, classify_record

TARGET = QueryTarget(server_address="sql-test.database.example.net", database_name="orders")


def _record(fragmentation: float, index_name: str = "IX_A", table_name: str = "Orders") -> FragmentationRecord:
    return FragmentationRecord(
        schema_name="dbo",
        table_name=table_name,
        index_name=index_name,
        fragmentation_percent=fragmentation,
        page_count=2000,
    )


def _row(fragmentation: float, index_name: str, table_name: str = "Orders") -> dict:
    return {
        "schema_name": "dbo",
        "table_name": table_name,
        "index_name": index_name,
        "fragmentation_percent": fragmentation,
        "page_count": 2000,
    }


@pytest.mark.parametrize(
    "fragmentation,expected",
    [
        (0.0, MaintenanceActionType.NO_ACTION),
        (10.0, MaintenanceActionType.NO_ACTION),
        (10.01, MaintenanceActionType.REORGANIZE),
        (30.0, MaintenanceActionType.REORGANIZE),
        (30.01, MaintenanceActionType.REBUILD),
        (31.0, MaintenanceActionType.REBUILD),
        (100.0, MaintenanceActionType.REBUILD),
    ],
)
def test_classification_thresholds(fragmentation, expected):
    assert classify_record(_record(fragmentation)) == expected


def test_classify_preserves_input_order():
    records = [_record(50, "IX_1"), _record(5, "IX_2"), _record(20, "IX_3")]
    actions = classify(records)
    assert [action.record.index_name for action in actions] == ["IX_1", "IX_2", "IX_3"]
    assert [action.action for action in actions] == [
        MaintenanceActionType.REBUILD,
        MaintenanceActionType.NO_ACTION,
        MaintenanceActionType.REORGANIZE,
    ]


@pytest.mark.asyncio
async def test_analyze_reads_rows_above_floor(channel, ctx):
    channel.respond("dm_db_index_physical_stats", [_row(45.0, "IX_1"), _row(12.5, "IX_2")])
    service = FragmentationService(channel, page_count_floor=500)

    records = await service.analyze(TARGET, ctx)

    assert [record.index_name for record in records] == ["IX_1", "IX_2"]
    database, statement = channel.statements[0]
    assert database == "orders"
    assert "ips.page_count > 500" in statement


@pytest.mark.asyncio
async def test_apply_continues_after_a_failing_index(channel, ctx):
    channel.respond("ALTER INDEX [IX_2]", QueryExecutionError("lock timeout"))
    service = FragmentationService(channel)
    actions = classify([_record(50, "IX_1"), _record(40, "IX_2"), _record(20, "IX_3"), _record(2, "IX_4")])

    result = await service.apply(actions, TARGET, ctx)

    assert result.optimized_count == 2
    assert result.skipped_count == 1
    assert len(result.failures) == 1
    failure = result.failures[0]
    assert failure.record.index_name == "IX_2"
    assert failure.action == MaintenanceActionType.REBUILD
    assert "lock timeout" in failure.error
    executed = [statement for _, statement in channel.statements]
    assert any("[IX_3]" in statement and "REORGANIZE" in statement for statement in executed)
    assert not any("[IX_4]" in statement for statement in executed)
    assert any("IX_2" in warning for warning in ctx.warnings)


@pytest.mark.asyncio
async def test_apply_continues_after_an_invalid_identifier(channel, ctx):
    service = FragmentationService(channel)
    actions = classify([_record(50, "x" * 129), _record(50, "IX_ok")])

    result = await service.apply(actions, TARGET, ctx)

    assert result.optimized_count == 1
    assert len(result.failures) == 1


@pytest.mark.asyncio
async def test_apply_updates_statistics_once_per_table(channel, ctx):
    service = FragmentationService(channel)
    actions = classify([_record(50, "IX_1"), _record(20, "IX_2"), _record(40, "IX_3", table_name="Customers")])

    result = await service.apply(actions, TARGET, ctx, update_statistics=True)

    statistics = [statement for _, statement in channel.statements if statement.startswith("UPDATE STATISTICS")]
    assert statistics == ["UPDATE STATISTICS [dbo].[Orders];", "UPDATE STATISTICS [dbo].[Customers];"]
    assert result.statistics_updated == ["dbo.Orders", "dbo.Customers"]


@pytest.mark.asyncio
async def test_statistics_failure_is_a_warning(channel, ctx):
    channel.respond("UPDATE STATISTICS", QueryExecutionError("permission denied"))
    service = FragmentationService(channel)

    result = await service.apply(classify([_record(50, "IX_1")]), TARGET, ctx, update_statistics=True)

    assert result.optimized_count == 1
    assert result.statistics_updated == []
    assert any("update_statistics" in warning for warning in ctx.warnings)


@pytest.mark.asyncio
async def test_optimize_dry_run_executes_no_maintenance(channel, ctx):
    channel.respond("dm_db_index_physical_stats", [_row(45.0, "IX_1"), _row(15.0, "IX_2")])
    service = FragmentationService(channel)

    summary = await service.optimize(TARGET, ctx, dry_run=True)

    assert summary.dry_run is True
    assert summary.records_analyzed == 2
    assert summary.apply_result is None
    assert len(channel.statements) == 1


@pytest.mark.asyncio
async def test_optimize_applies_actions(channel, ctx):
    channel.respond("dm_db_index_physical_stats", [_row(45.0, "IX_1"), _row(5.0, "IX_2")])
    service = FragmentationService(channel)

    summary = await service.optimize(TARGET, ctx, update_statistics=False)

    assert summary.apply_result.optimized_count == 1
    assert summary.apply_result.skipped_count == 1
