"""
Orchestration endpoints.
Thin wrappers around the command service; the CommandResult is the response body.
"""
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from pool_orchestrator.models.commands import (
    CommandResult,
    CommandStatus,
    DeploymentConfig,
    OptimizeConfig,
    ProvisionConfig,
)
from pool_orchestrator.models.migration import MigrationRequest
from pool_orchestrator.services.command_service import CommandService, build_backend

router = APIRouter()

# HTTP status per command status; failures use the error's own status code when it has one
HTTP_STATUS = {
    CommandStatus.SUCCEEDED: status.HTTP_200_OK,
    CommandStatus.VALIDATED_ONLY: status.HTTP_200_OK,
    CommandStatus.DRY_RUN: status.HTTP_200_OK,
    CommandStatus.COMPLETED_WITH_ERRORS: status.HTTP_207_MULTI_STATUS,
    CommandStatus.TIMED_OUT: status.HTTP_202_ACCEPTED,
    CommandStatus.FAILED: status.HTTP_400_BAD_REQUEST,
}


def get_command_service(request: Request) -> CommandService:
    """Command service bound to the application's backend."""
    commands = getattr(request.app.state, "commands", None)
    if commands is None:
        commands = CommandService(build_backend())
        request.app.state.commands = commands
    return commands


def _respond(result: CommandResult) -> JSONResponse:
    code = HTTP_STATUS[result.status]
    if result.status == CommandStatus.FAILED and result.error and result.error.get("status_code"):
        code = result.error["status_code"]
    return JSONResponse(status_code=code, content=result.model_dump(mode="json"))


@router.post("/provision", response_model=CommandResult)
async def provision(config: ProvisionConfig, commands: CommandService = Depends(get_command_service)):
    """Provision infrastructure idempotently."""
    return _respond(await commands.provision(config))


@router.post("/reprovision", response_model=CommandResult)
async def reprovision(config: ProvisionConfig, commands: CommandService = Depends(get_command_service)):
    """Reapply pool settings to pools that already exist."""
    return _respond(await commands.reprovision(config))


@router.post("/migrate", response_model=CommandResult)
async def migrate(request: MigrationRequest, commands: CommandService = Depends(get_command_service)):
    """Move a database to another pool or a standalone tier and wait for it to settle."""
    return _respond(await commands.migrate(request))


@router.post("/optimize", response_model=CommandResult)
async def optimize(config: OptimizeConfig, commands: CommandService = Depends(get_command_service)):
    """Analyze and maintain indexes."""
    return _respond(await commands.optimize(config))


@router.post("/deploy", response_model=CommandResult)
async def deploy(config: DeploymentConfig, commands: CommandService = Depends(get_command_service)):
    """Run the full deployment pipeline."""
    return _respond(await commands.deploy_all(config))
