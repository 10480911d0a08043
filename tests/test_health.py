"""
Probe endpoints: liveness, readiness checks and startup.
"""
import pytest
from fastapi import status

from pool_orchestrator.config.settings import settings
from pool_orchestrator.main import app


@pytest.mark.asyncio
async def test_health_reports_version_and_environment(test_client):
    data = (await test_client.get("/health/")).json()

    assert data["status"] == "healthy"
    assert data["version"] == settings.app_version
    assert data["environment"] == "testing"


@pytest.mark.asyncio
async def test_liveness_probe(test_client):
    response = await test_client.get("/health/live")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "alive"


@pytest.mark.asyncio
async def test_ready_with_sandbox_backend(test_client, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "report_dir", str(tmp_path / "reports"))

    response = await test_client.get("/health/ready")

    assert response.status_code == status.HTTP_200_OK
    checks = response.json()["checks"]
    assert checks["backend"] == {"ok": True, "backend": "memory"}
    assert checks["report_dir"]["ok"] is True


@pytest.mark.asyncio
async def test_not_ready_without_control_plane_url(test_client, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "report_dir", str(tmp_path))
    monkeypatch.setattr(settings, "resource_backend", "http")
    monkeypatch.setattr(settings, "provider_base_url", None)

    response = await test_client.get("/health/ready")

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    data = response.json()
    assert data["status"] == "not_ready"
    assert data["checks"]["backend"]["reason"] == "provider_base_url is not configured"
    assert data["checks"]["report_dir"]["ok"] is True


@pytest.mark.asyncio
async def test_startup_follows_command_service(test_client, commands, monkeypatch):
    monkeypatch.delattr(app.state, "commands", raising=False)
    assert (await test_client.get("/health/startup")).json()["status"] == "starting"

    monkeypatch.setattr(app.state, "commands", commands, raising=False)
    assert (await test_client.get("/health/startup")).json()["status"] == "started"
