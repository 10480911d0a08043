"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Dict, List

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from pool_orchestrator.config.logging import configure_logging
from pool_orchestrator.config.settings import settings
from pool_orchestrator.core.context import RunContext
from pool_orchestrator.core.locks import MigrationLockRegistry
from pool_orchestrator.models.infrastructure import InfrastructureSpec
from pool_orchestrator.providers.memory import (
    InMemoryNotificationSink,
    InMemoryQueryChannel,
    InMemoryResourceStore,
)
from pool_orchestrator.services.command_service import Backend, CommandService


class FakeClock:
    """Clock and sleeper in one: sleeping advances the clock instantly."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self.current = start
        self.sleeps: List[float] = []

    def now(self) -> datetime:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += timedelta(seconds=seconds)


@pytest.fixture(scope="session", autouse=True)
def test_settings():
    """Override settings for testing."""
    settings.environment = "testing"
    settings.debug = True
    settings.resource_backend = "memory"
    configure_logging()
    return settings


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ctx(clock: FakeClock) -> RunContext:
    return RunContext("test", clock=clock, sleeper=clock, run_id="run-test")


@pytest.fixture
def store() -> InMemoryResourceStore:
    return InMemoryResourceStore()


@pytest.fixture
def channel() -> InMemoryQueryChannel:
    return InMemoryQueryChannel()


@pytest.fixture
def sink() -> InMemoryNotificationSink:
    return InMemoryNotificationSink()


async def fixed_ip() -> str:
    return "203.0.113.7"


@pytest.fixture
def ip_resolver():
    """Public address lookup that never leaves the process."""
    return fixed_ip


@pytest.fixture
def infra_config() -> Dict[str, Any]:
    """One resource group with a server, two pools and three databases, as plain config."""
    return {
        "resource_group": "rg-pools-test",
        "location": "westeurope",
        "server": {"name": "sql-pools-test", "admin_login": "pooladmin", "admin_password": "S3cret!pass"},
        "pools": [
            {"name": "pool-std", "total_capacity_units": 100, "per_database_max": 50},
            {"name": "pool-prem", "edition": "Premium", "total_capacity_units": 250, "per_database_max": 125},
        ],
        "databases": [
            {"name": "orders", "pool_name": "pool-std"},
            {"name": "billing", "pool_name": "pool-std"},
            {"name": "reporting", "edition": "Standard", "service_objective": "S1"},
        ],
        "tags": {"project": "pools"},
    }


@pytest.fixture
def infra_spec(infra_config: Dict[str, Any]) -> InfrastructureSpec:
    return InfrastructureSpec.model_validate(infra_config)


@pytest.fixture
def commands(store, channel, sink, clock, tmp_path) -> CommandService:
    """Command service on the in-memory backend, writing reports under tmp_path."""
    return CommandService(
        Backend(store, channel, sink),
        clock=clock,
        sleeper=clock,
        locks=MigrationLockRegistry(),
        report_dir=tmp_path / "reports",
        ip_resolver=fixed_ip,
    )


@pytest_asyncio.fixture
async def test_client() -> AsyncGenerator[AsyncClient, None]:
    """Create test client."""
    from pool_orchestrator.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
