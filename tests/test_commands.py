"""
Tests for the command entry points.
"""
from pathlib import Path

import httpx
import pytest

from pool_orchestrator.core.locks import MigrationLockRegistry
from pool_orchestrator.exceptions import QueryExecutionError
from pool_orchestrator.models.commands import CommandStatus
from pool_orchestrator.models.placement import ResourceKind
from pool_orchestrator.providers.http import HttpResourceStore
from pool_orchestrator.providers.memory import InMemoryQueryChannel
from pool_orchestrator.services.command_service import Backend, CommandService, build_backend

DATABASE_ID = "rg-pools-test/sql-pools-test/orders"
SERVER_ADDRESS = "sql-pools-test.database.example.net"


def _fragmentation_rows():
    return [
        {
            "schema_name": "dbo",
            "table_name": "Orders",
            "index_name": "IX_Orders_Date",
            "fragmentation_percent": 45.0,
            "page_count": 4000,
        },
        {
            "schema_name": "dbo",
            "table_name": "Orders",
            "index_name": "IX_Orders_Customer",
            "fragmentation_percent": 3.0,
            "page_count": 4000,
        },
    ]


def test_build_backend():
    assert build_backend("memory").store is not None
    with pytest.raises(ValueError):
        build_backend("carrier-pigeon")


@pytest.mark.asyncio
async def test_provision(commands, store, infra_config):
    result = await commands.provision({"infrastructure": [infra_config]})

    assert result.status == CommandStatus.SUCCEEDED
    assert result.exit_code == 0
    assert result.command == "provision"
    assert len(store.ids(ResourceKind.DATABASE)) == 3
    assert result.details["results"][0]["resource_group"] == "rg-pools-test"
    assert Path(result.report_path).exists()
    assert result.report_path.endswith(f"provision-{result.run_id}.md")


@pytest.mark.asyncio
async def test_reprovision_updates_resized_pools(commands, store, infra_config):
    await commands.provision({"infrastructure": [infra_config]})
    infra_config["pools"][0]["total_capacity_units"] = 200

    result = await commands.reprovision({"infrastructure": [infra_config]})

    assert result.status == CommandStatus.SUCCEEDED
    assert result.command == "reprovision"
    provisioned = result.details["results"][0]
    assert [ref["id"] for ref in provisioned["updated"]] == ["rg-pools-test/sql-pools-test/pool-std"]
    assert [ref["id"] for ref in provisioned["existing"]] == ["rg-pools-test/sql-pools-test/pool-prem"]
    assert (await store.get(ResourceKind.ELASTIC_POOL, "rg-pools-test/sql-pools-test/pool-std"))["capacity"] == 200
    assert "**Updated** (1)" in Path(result.report_path).read_text()


@pytest.mark.asyncio
async def test_provision_dry_run(commands, store, infra_config):
    result = await commands.provision({"infrastructure": [infra_config], "dry_run": True})

    assert result.status == CommandStatus.DRY_RUN
    assert result.exit_code == 0
    assert store.mutations == []
    assert result.details["results"][0]["planned"]


@pytest.mark.asyncio
async def test_provision_invalid_config(commands, store, infra_config):
    infra_config["pools"][0]["per_database_max"] = 500

    result = await commands.provision({"infrastructure": [infra_config]})

    assert result.status == CommandStatus.FAILED
    assert result.exit_code == 1
    assert result.error["code"] == "invalid_config"
    assert result.report_path is None
    assert store.calls == []


@pytest.mark.asyncio
async def test_provision_provider_failure(commands, store, infra_config):
    store.fail("create", ResourceKind.ELASTIC_POOL)

    result = await commands.provision({"infrastructure": [infra_config]})

    assert result.status == CommandStatus.FAILED
    assert result.error["type"] == "ProviderError"
    assert result.details["results"] == []


@pytest.mark.asyncio
async def test_migrate(commands, infra_config):
    await commands.provision({"infrastructure": [infra_config]})

    result = await commands.migrate({"database_id": DATABASE_ID, "target": {"pool_name": "pool-prem"}})

    assert result.status == CommandStatus.SUCCEEDED
    assert result.details["outcome"]["final_placement"]["pool_name"] == "pool-prem"
    assert not commands.locks.is_locked(DATABASE_ID)


@pytest.mark.asyncio
async def test_migrate_validate_only(commands, store, infra_config):
    await commands.provision({"infrastructure": [infra_config]})
    mutations = len(store.mutations)

    result = await commands.migrate(
        {"database_id": DATABASE_ID, "target": {"pool_name": "pool-prem"}, "validate_only": True}
    )

    assert result.status == CommandStatus.VALIDATED_ONLY
    assert result.exit_code == 0
    assert len(store.mutations) == mutations


@pytest.mark.asyncio
async def test_migrate_missing_database(commands):
    result = await commands.migrate({"database_id": DATABASE_ID, "target": {"pool_name": "pool-prem"}})

    assert result.status == CommandStatus.FAILED
    assert result.exit_code == 1
    assert result.error["code"] == "database_not_found"


@pytest.mark.asyncio
async def test_migrate_times_out(commands, store, clock, infra_config):
    await commands.provision({"infrastructure": [infra_config]})
    store.settle_after_reads = None

    result = await commands.migrate(
        {"database_id": DATABASE_ID, "target": {"pool_name": "pool-prem"}, "timeout_seconds": 60}
    )

    assert result.status == CommandStatus.TIMED_OUT
    assert result.exit_code == 3
    assert sum(clock.sleeps) == 60


@pytest.mark.asyncio
async def test_migrate_refused_while_locked(commands, infra_config):
    await commands.provision({"infrastructure": [infra_config]})
    commands.locks.acquire_lock(DATABASE_ID, "run-other")

    result = await commands.migrate({"database_id": DATABASE_ID, "target": {"pool_name": "pool-prem"}})

    assert result.status == CommandStatus.FAILED
    assert result.error["type"] == "MigrationLockedError"
    assert result.error["status_code"] == 409


@pytest.mark.asyncio
async def test_provision_does_not_move_a_locked_database(commands, store, infra_config):
    await commands.provision({"infrastructure": [infra_config]})
    await store.update(ResourceKind.DATABASE, DATABASE_ID, {"pool_name": "pool-prem"})
    commands.locks.acquire_lock(DATABASE_ID, "run-other")
    mutations_before = len(store.mutations)

    result = await commands.provision({"infrastructure": [infra_config]})

    assert result.status == CommandStatus.SUCCEEDED
    assert store.mutations[mutations_before:] == []
    assert any("already migrating" in warning for warning in result.warnings)


@pytest.mark.asyncio
async def test_migrate_rejects_invalid_request(commands):
    result = await commands.migrate({"database_id": DATABASE_ID})

    assert result.status == CommandStatus.FAILED
    assert result.error["code"] == "invalid_config"


@pytest.mark.asyncio
async def test_optimize(commands, channel):
    channel.respond("dm_db_index_physical_stats", _fragmentation_rows())

    result = await commands.optimize({"server_address": SERVER_ADDRESS, "databases": ["orders", "billing"]})

    assert result.status == CommandStatus.SUCCEEDED
    summaries = result.details["summaries"]
    assert [summary["database_name"] for summary in summaries] == ["orders", "billing"]
    assert summaries[0]["apply_result"]["optimized_count"] == 1
    assert summaries[0]["apply_result"]["skipped_count"] == 1


@pytest.mark.asyncio
async def test_optimize_dry_run_runs_no_maintenance(commands, channel):
    channel.respond("dm_db_index_physical_stats", _fragmentation_rows())

    result = await commands.optimize(
        {"server_address": SERVER_ADDRESS, "databases": ["orders"], "dry_run": True}
    )

    assert result.status == CommandStatus.DRY_RUN
    assert not any("ALTER INDEX" in statement for _, statement in channel.statements)


@pytest.mark.asyncio
async def test_optimize_with_failing_maintenance(commands, channel):
    channel.respond("dm_db_index_physical_stats", _fragmentation_rows())
    channel.respond("ALTER INDEX", QueryExecutionError("lock timeout"))

    result = await commands.optimize({"server_address": SERVER_ADDRESS, "databases": ["orders"]})

    assert result.status == CommandStatus.COMPLETED_WITH_ERRORS
    assert result.exit_code == 2
    assert any("IX_Orders_Date" in warning for warning in result.warnings)


@pytest.mark.asyncio
async def test_optimize_every_database_failing(commands, channel):
    channel.respond("dm_db_index_physical_stats", QueryExecutionError("login failed"))

    result = await commands.optimize({"server_address": SERVER_ADDRESS, "databases": ["orders", "billing"]})

    assert result.status == CommandStatus.FAILED
    assert set(result.details["failed_databases"]) == {"orders", "billing"}
    assert result.error["type"] == "OptimizationFailed"


@pytest.mark.asyncio
async def test_deploy_all(commands, store, infra_config):
    result = await commands.deploy_all({"infrastructure": [infra_config], "automation": True})

    assert result.status == CommandStatus.SUCCEEDED
    steps = result.details["report"]["steps"]
    assert steps[-1]["name"] == "register-automation"
    assert steps[-1]["status"] == "completed"
    assert store.ids(ResourceKind.AUTOMATION_SCHEDULE) == ["rg-pools-test/nightly-index-maintenance"]


@pytest.mark.asyncio
async def test_deploy_all_aborted(commands, store, infra_config):
    store.fail("create", ResourceKind.SERVER)

    result = await commands.deploy_all({"infrastructure": [infra_config]})

    assert result.status == CommandStatus.FAILED
    assert result.error["type"] == "PipelineAbortedError"
    assert result.details["report"]["aborted_at_stage"] == "deploy-primary-infrastructure"
    assert Path(result.report_path).exists()


@pytest.mark.asyncio
async def test_cleanup(commands, store, infra_config):
    await commands.provision({"infrastructure": [infra_config]})

    result = await commands.cleanup("rg-pools-test")

    assert result.status == CommandStatus.SUCCEEDED
    assert result.details["deleted"] is True
    assert store.ids(ResourceKind.SERVER) == []


@pytest.mark.asyncio
async def test_migrate_over_http_with_undecodable_reply(clock, tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="upstream maintenance page")

    store = HttpResourceStore(base_url="http://control.test", backoff_seconds=0, transport=httpx.MockTransport(handler))
    service = CommandService(
        Backend(store, InMemoryQueryChannel()),
        clock=clock,
        sleeper=clock,
        locks=MigrationLockRegistry(),
        report_dir=tmp_path,
    )

    result = await service.migrate({"database_id": DATABASE_ID, "target": {"pool_name": "pool-prem"}})
    await store.aclose()

    assert result.status == CommandStatus.FAILED
    assert result.error["code"] == "provider_error"
    assert "not JSON" in result.error["message"]


@pytest.mark.asyncio
async def test_unexpected_error_becomes_a_failed_result(commands, store, infra_config):
    await commands.provision({"infrastructure": [infra_config]})
    store.fail("get", ResourceKind.DATABASE, error=RuntimeError("store corrupted"))

    result = await commands.migrate({"database_id": DATABASE_ID, "target": {"pool_name": "pool-prem"}})

    assert result.status == CommandStatus.FAILED
    assert result.exit_code == 1
    assert result.error == {"type": "RuntimeError", "message": "store corrupted", "status_code": 500}
    assert not commands.locks.is_locked(DATABASE_ID)


@pytest.mark.asyncio
async def test_unexpected_error_during_provision(commands, store, infra_config):
    store.fail("create", ResourceKind.ELASTIC_POOL, error=KeyError("sku"))

    result = await commands.provision({"infrastructure": [infra_config]})

    assert result.status == CommandStatus.FAILED
    assert result.error["type"] == "KeyError"
