"""
Health check endpoints for monitoring and orchestration.
Provides liveness, readiness, and startup probes.
"""
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from pool_orchestrator.config.settings import settings

router = APIRouter()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/")
async def health_check():
    """
    Basic health check endpoint.
    Returns current status and version.
    """
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": _now(),
    }


@router.get("/live")
async def liveness():
    """
    Liveness probe.
    Indicates whether the application should be restarted.
    """
    return {"status": "alive", "timestamp": _now()}


def _backend_check() -> Dict[str, Any]:
    if settings.resource_backend == "http" and not settings.provider_base_url:
        return {"ok": False, "reason": "provider_base_url is not configured"}
    return {"ok": True, "backend": settings.resource_backend}


def _report_dir_check() -> Dict[str, Any]:
    path = Path(settings.report_dir)
    target = path if path.exists() else path.parent
    if os.access(target, os.W_OK):
        return {"ok": True, "path": str(path)}
    return {"ok": False, "path": str(path), "reason": "report directory is not writable"}


@router.get("/ready")
async def readiness():
    """
    Readiness probe.
    Ready when the resource backend is configured and reports can be written.
    """
    checks = {"backend": _backend_check(), "report_dir": _report_dir_check()}
    ready = all(check["ok"] for check in checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "not_ready",
            "backend": settings.resource_backend,
            "checks": checks,
            "timestamp": _now(),
        },
    )


@router.get("/startup")
async def startup(request: Request):
    """
    Startup probe.
    Indicates whether the application has finished starting.
    """
    started = getattr(request.app.state, "commands", None) is not None
    return {
        "status": "started" if started else "starting",
        "backend": settings.resource_backend,
        "timestamp": _now(),
    }
