"""
Tests for resource models, placement matching and the existence probe.
"""
import pytest
from pydantic import ValidationError

from pool_orchestrator.exceptions import ProviderError
from pool_orchestrator.models.infrastructure import DatabaseSpec, ElasticPoolSpec, InfrastructureSpec
from pool_orchestrator.models.migration import PlacementSpec
from pool_orchestrator.models.placement import ResourceKind, ResourcePlacement, child_id, server_id
from pool_orchestrator.services.probe import ResourceProbe


def test_resource_ids():
    srv = server_id("rg-a", "sql-a")
    assert srv == "rg-a/sql-a"
    assert child_id(srv, "pool-1") == "rg-a/sql-a/pool-1"


def test_pool_capacity_bounds():
    with pytest.raises(ValidationError, match="per_database_max"):
        ElasticPoolSpec(name="pool", total_capacity_units=50, per_database_max=100)
    with pytest.raises(ValidationError, match="per_database_min"):
        ElasticPoolSpec(name="pool", total_capacity_units=50, per_database_min=20, per_database_max=10)


def test_pool_spec_is_immutable():
    pool = ElasticPoolSpec(name="pool", total_capacity_units=50, per_database_max=10)
    with pytest.raises(ValidationError):
        pool.total_capacity_units = 500


def test_database_placement_rules():
    with pytest.raises(ValidationError, match="both a pool and a standalone tier"):
        DatabaseSpec(name="db", pool_name="pool", edition="Standard")
    with pytest.raises(ValidationError, match="needs both edition and service_objective"):
        DatabaseSpec(name="db", edition="Standard")


def test_infrastructure_rejects_undeclared_pool(infra_config):
    infra_config["databases"].append({"name": "audit", "pool_name": "pool-missing"})
    with pytest.raises(ValidationError, match="undeclared pool"):
        InfrastructureSpec.model_validate(infra_config)


def test_infrastructure_rejects_duplicate_pools(infra_config):
    infra_config["pools"].append(dict(infra_config["pools"][0]))
    with pytest.raises(ValidationError, match="unique"):
        InfrastructureSpec.model_validate(infra_config)


def test_placement_matching():
    pooled = ResourcePlacement(server_id="rg/srv", pool_name="pool-a", status="Online")
    standalone = ResourcePlacement(server_id="rg/srv", edition="Premium", service_objective="P1")

    assert PlacementSpec(pool_name="pool-a").matches(pooled)
    assert not PlacementSpec(pool_name="pool-b").matches(pooled)
    assert PlacementSpec(edition="Premium", service_objective="P1").matches(standalone)
    assert not PlacementSpec(edition="Premium", service_objective="P2").matches(standalone)
    assert not PlacementSpec(edition="Premium", service_objective="P1").matches(pooled)
    assert pooled.is_online and not standalone.is_online


def test_placement_from_snapshot():
    placement = ResourcePlacement.from_snapshot(
        {"server_id": "rg/srv", "pool_name": "", "edition": "Standard", "service_objective": "S1", "status": "Online"}
    )
    assert placement.is_standalone
    assert placement.service_objective == "S1"


@pytest.mark.asyncio
async def test_probe(store):
    store.seed(ResourceKind.RESOURCE_GROUP, "rg-a", {"name": "rg-a"})
    probe = ResourceProbe(store)

    assert await probe.exists(ResourceKind.RESOURCE_GROUP, "rg-a")
    assert not await probe.exists(ResourceKind.RESOURCE_GROUP, "rg-b")
    assert await probe.get_or_none(ResourceKind.RESOURCE_GROUP, "rg-b") is None
    assert (await probe.get_or_none(ResourceKind.RESOURCE_GROUP, "rg-a"))["name"] == "rg-a"


@pytest.mark.asyncio
async def test_failed_probe_is_not_absence(store):
    store.fail("exists")
    probe = ResourceProbe(store)

    with pytest.raises(ProviderError):
        await probe.exists(ResourceKind.SERVER, "rg-a/sql-a")
