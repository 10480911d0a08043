"""
Main FastAPI application entry point.
HTTP surface of the elastic pool orchestrator.
"""
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from pool_orchestrator.api.v1 import health, orchestration
from pool_orchestrator.config.logging import configure_logging, get_logger
from pool_orchestrator.config.settings import settings
from pool_orchestrator.exceptions import OrchestratorException
from pool_orchestrator.services.command_service import CommandService, build_backend

# Configure logging
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.
    Builds the backend bindings on startup and closes them on shutdown.
    """
    logger.info(
        "application_starting",
        version=settings.app_version,
        environment=settings.environment,
        backend=settings.resource_backend,
    )

    try:
        backend = build_backend()
    except Exception as e:
        logger.error("application_startup_failed", error=str(e))
        raise
    app.state.commands = CommandService(backend)
    logger.info("application_started", version=settings.app_version)

    yield

    logger.info("application_shutting_down")
    try:
        await backend.aclose()
    except Exception as e:
        logger.error("backend_close_error", error=str(e))
    logger.info("application_shutdown_complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Provisioning, migration and maintenance of elastic database pools",
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
    openapi_url="/openapi.json" if not settings.is_production else None,
    debug=settings.debug,
    lifespan=lifespan,
)

REQUEST_ID_HEADER = "X-Request-ID"


def _error_body(status_code: int, message: str, details: Any, error_type: str, code: Optional[str] = None) -> Dict[str, Any]:
    return {
        "error": {
            "type": error_type,
            "code": code,
            "message": message,
            "details": details,
            "status_code": status_code,
        }
    }


@app.exception_handler(OrchestratorException)
async def orchestrator_exception_handler(request: Request, exc: OrchestratorException) -> JSONResponse:
    """Map orchestrator errors to their own status code."""
    logger.error(
        "orchestrator_exception",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=exc.message,
        status_code=exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(
            exc.status_code, exc.message, exc.details, type(exc).__name__, getattr(exc, "code", None)
        ),
    )


def _sanitize_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Make validation errors JSON-safe.

    Request bodies carry admin passwords and credential tokens, so the
    offending ``input`` is never echoed back.
    """
    sanitized = []
    for error in errors:
        entry: Dict[str, Any] = {}
        for key, value in error.items():
            if key == "input":
                continue
            if key == "ctx" and isinstance(value, dict):
                entry[key] = {k: str(v) for k, v in value.items()}
            elif isinstance(value, (list, tuple)):
                entry[key] = list(value)
            elif value is None or isinstance(value, (str, int, float, bool)):
                entry[key] = value
            else:
                entry[key] = str(value)
        sanitized.append(entry)
    return sanitized


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Reject malformed command configs before any command runs."""
    errors = _sanitize_errors(exc.errors())
    logger.warning("invalid_command_config", path=request.url.path, error_count=len(errors))
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(422, "Validation error", errors, "ValidationError", "invalid_config"),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all other exceptions."""
    logger.error("unhandled_exception", path=request.url.path, error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            500,
            "Internal server error",
            {} if settings.is_production else {"error": str(exc)},
            type(exc).__name__,
        ),
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Bind a request id to every log line of the request and echo it back."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
    structlog.contextvars.bind_contextvars(request_id=request_id)
    started = time.perf_counter()
    try:
        response = await call_next(request)
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
    finally:
        structlog.contextvars.unbind_contextvars("request_id")


app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(orchestration.router, prefix="/api/v1/orchestration", tags=["Orchestration"])


@app.get("/", include_in_schema=False)
async def root():
    """Service identity and the command endpoints it serves."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "backend": settings.resource_backend,
        "status": "running",
        "commands": [
            f"/api/v1/orchestration/{name}" for name in ("provision", "reprovision", "migrate", "optimize", "deploy")
        ],
        "docs": "/docs" if not settings.is_production else "disabled",
    }


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "pool_orchestrator.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
