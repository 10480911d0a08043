"""
Tests for the orchestration API endpoints.
"""
import pytest
import pytest_asyncio

from pool_orchestrator.api.v1.orchestration import get_command_service
from pool_orchestrator.main import app
from pool_orchestrator.models.placement import ResourceKind

PREFIX = "/api/v1/orchestration"


@pytest_asyncio.fixture
async def client(test_client, commands):
    app.dependency_overrides[get_command_service] = lambda: commands
    yield test_client
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_root(test_client):
    response = await test_client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "running"


@pytest.mark.asyncio
async def test_provision_endpoint(client, store, infra_config):
    response = await client.post(f"{PREFIX}/provision", json={"infrastructure": [infra_config]})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "succeeded"
    assert data["command"] == "provision"
    assert "S3cret!pass" not in response.text
    assert len(store.ids(ResourceKind.DATABASE)) == 3


@pytest.mark.asyncio
async def test_reprovision_endpoint_dry_run(client, store, infra_config):
    await client.post(f"{PREFIX}/provision", json={"infrastructure": [infra_config]})
    infra_config["pools"][1]["per_database_max"] = 100
    mutations_before = len(store.mutations)

    response = await client.post(f"{PREFIX}/reprovision", json={"infrastructure": [infra_config], "dry_run": True})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "dry_run"
    assert [ref["id"] for ref in data["details"]["results"][0]["planned"]] == ["rg-pools-test/sql-pools-test/pool-prem"]
    assert len(store.mutations) == mutations_before


@pytest.mark.asyncio
async def test_provision_endpoint_rejects_invalid_body(client, infra_config):
    infra_config["databases"][0]["pool_name"] = "pool-missing"

    response = await client.post(f"{PREFIX}/provision", json={"infrastructure": [infra_config]})

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["message"] == "Validation error"
    assert error["code"] == "invalid_config"
    assert all("input" not in detail for detail in error["details"])


@pytest.mark.asyncio
async def test_migrate_endpoint(client, infra_config):
    await client.post(f"{PREFIX}/provision", json={"infrastructure": [infra_config]})

    response = await client.post(
        f"{PREFIX}/migrate",
        json={"database_id": "rg-pools-test/sql-pools-test/billing", "target": {"pool_name": "pool-prem"}},
    )

    assert response.status_code == 200
    assert response.json()["details"]["outcome"]["status"] == "succeeded"


@pytest.mark.asyncio
async def test_migrate_endpoint_missing_database(client):
    response = await client.post(
        f"{PREFIX}/migrate",
        json={"database_id": "rg-none/sql-none/orders", "target": {"pool_name": "pool-prem"}},
    )

    assert response.status_code == 400
    data = response.json()
    assert data["status"] == "failed"
    assert data["error"]["code"] == "database_not_found"


@pytest.mark.asyncio
async def test_optimize_endpoint_partial_failure(client, channel):
    from pool_orchestrator.exceptions import QueryExecutionError

    channel.respond(
        "dm_db_index_physical_stats",
        [
            {
                "schema_name": "dbo",
                "table_name": "Orders",
                "index_name": "IX_Orders_Date",
                "fragmentation_percent": 55.0,
                "page_count": 9000,
            }
        ],
    )
    channel.respond("ALTER INDEX", QueryExecutionError("deadlock victim"))

    response = await client.post(
        f"{PREFIX}/optimize",
        json={"server_address": "sql-pools-test.database.example.net", "databases": ["orders"]},
    )

    assert response.status_code == 207
    assert response.json()["status"] == "completed_with_errors"


@pytest.mark.asyncio
async def test_deploy_endpoint_abort(client, store, infra_config):
    store.fail("create", ResourceKind.RESOURCE_GROUP)

    response = await client.post(f"{PREFIX}/deploy", json={"infrastructure": [infra_config]})

    assert response.status_code == 500
    data = response.json()
    assert data["status"] == "failed"
    assert data["details"]["report"]["aborted_at_stage"] == "create-resource-groups"


@pytest.mark.asyncio
async def test_unexpected_error_is_a_500_result(client, store, infra_config):
    await client.post(f"{PREFIX}/provision", json={"infrastructure": [infra_config]})
    store.fail("get", ResourceKind.DATABASE, error=RuntimeError("store corrupted"))

    response = await client.post(
        f"{PREFIX}/migrate",
        json={"database_id": "rg-pools-test/sql-pools-test/orders", "target": {"pool_name": "pool-prem"}},
    )

    assert response.status_code == 500
    assert response.json()["error"]["type"] == "RuntimeError"


@pytest.mark.asyncio
async def test_request_id_is_echoed(test_client):
    response = await test_client.get("/health/live", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"
    assert (await test_client.get("/health/live")).headers["X-Request-ID"]
