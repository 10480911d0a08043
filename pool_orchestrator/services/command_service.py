"""
Command entry points shared by the CLI and the HTTP API.

Each command takes a config record (model or plain dict), runs under its own
RunContext, and returns a CommandResult. Nothing here raises for an expected
failure: exceptions are mapped to a non-zero result with error detail.
"""
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from pool_orchestrator.config.settings import settings
from pool_orchestrator.core.context import RunContext
from pool_orchestrator.core.locks import MigrationLockRegistry, migration_locks
from pool_orchestrator.core.protocols import Clock, NotificationSink, QueryChannel, ResourceStore, Sleeper
from pool_orchestrator.exceptions import OrchestratorException, PipelineAbortedError
from pool_orchestrator.models.commands import (
    CommandResult,
    CommandStatus,
    DeploymentConfig,
    OptimizeConfig,
    ProvisionConfig,
)
from pool_orchestrator.models.infrastructure import InfrastructureSpec, ProvisionResult
from pool_orchestrator.models.maintenance import OptimizationSummary, QueryTarget
from pool_orchestrator.models.migration import MigrationRequest, MigrationStatus
from pool_orchestrator.models.pipeline import RunStatus
from pool_orchestrator.providers.http import HttpQueryChannel, HttpResourceStore, WebhookNotificationSink
from pool_orchestrator.providers.memory import (
    InMemoryNotificationSink,
    InMemoryQueryChannel,
    InMemoryResourceStore,
)
from pool_orchestrator.services.deployment_service import DeploymentService
from pool_orchestrator.services.fragmentation_service import FragmentationService
from pool_orchestrator.services.migration_service import MigrationEngine
from pool_orchestrator.services.notification_service import NotificationService
from pool_orchestrator.services.provisioning_service import ProvisioningCoordinator
from pool_orchestrator.services.query_analyzer import QueryAnalyzer
from pool_orchestrator.services.report_service import write_report

M = TypeVar("M", bound=BaseModel)

MIGRATION_STATUS_MAP = {
    MigrationStatus.SUCCEEDED: CommandStatus.SUCCEEDED,
    MigrationStatus.VALIDATED_ONLY: CommandStatus.VALIDATED_ONLY,
    MigrationStatus.TIMED_OUT: CommandStatus.TIMED_OUT,
    MigrationStatus.FAILED: CommandStatus.FAILED,
}

RUN_STATUS_MAP = {
    RunStatus.SUCCESS: CommandStatus.SUCCEEDED,
    RunStatus.COMPLETED_WITH_ERRORS: CommandStatus.COMPLETED_WITH_ERRORS,
    RunStatus.FAILED: CommandStatus.FAILED,
}


class Backend:
    """The collaborator bindings one process talks to."""

    def __init__(self, store: ResourceStore, channel: QueryChannel, sink: Optional[NotificationSink] = None):
        self.store = store
        self.channel = channel
        self.sink = sink

    async def aclose(self) -> None:
        for binding in (self.store, self.channel):
            close = getattr(binding, "aclose", None)
            if close is not None:
                await close()


def build_backend(name: Optional[str] = None) -> Backend:
    """
    Build the bindings for ``name`` (default: settings.resource_backend).

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = (name or settings.resource_backend).lower()
    if backend == "memory":
        return Backend(InMemoryResourceStore(), InMemoryQueryChannel(), InMemoryNotificationSink())
    if backend == "http":
        return Backend(HttpResourceStore(), HttpQueryChannel(), WebhookNotificationSink())
    raise ValueError(f"Unknown resource backend '{name}'; expected 'memory' or 'http'")


def _error(e: Exception) -> Dict[str, Any]:
    if isinstance(e, ValidationError):
        return {
            "type": "ValidationError",
            "code": "invalid_config",
            "message": f"Invalid configuration: {e.error_count()} error(s)",
            "details": {"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        }
    if isinstance(e, OrchestratorException):
        return {
            "type": type(e).__name__,
            "code": getattr(e, "code", None),
            "message": e.message,
            "status_code": e.status_code,
            "details": e.details,
        }
    return {"type": type(e).__name__, "message": str(e), "status_code": 500}


class CommandService:
    """Runs commands against one backend."""

    def __init__(
        self,
        backend: Backend,
        clock: Optional[Clock] = None,
        sleeper: Optional[Sleeper] = None,
        locks: Optional[MigrationLockRegistry] = None,
        report_dir: Optional[Path] = None,
        write_reports: bool = True,
        ip_resolver: Optional[Callable[[], Awaitable[str]]] = None,
    ):
        self.backend = backend
        self.clock = clock
        self.sleeper = sleeper
        self.locks = locks or migration_locks
        self.report_dir = report_dir
        self.write_reports = write_reports
        self.notifications = NotificationService(backend.sink)
        self.migration_engine = MigrationEngine(backend.store)
        self.coordinator = ProvisioningCoordinator(
            backend.store, migration_engine=self.migration_engine, ip_resolver=ip_resolver, locks=self.locks
        )

    def _context(self, command: str) -> RunContext:
        return RunContext(command, clock=self.clock, sleeper=self.sleeper)

    @staticmethod
    def _load(model: Type[M], config: Union[M, Dict[str, Any]]) -> M:
        if isinstance(config, model):
            return config
        return model.model_validate(config)

    def _result(
        self,
        ctx: RunContext,
        status: CommandStatus,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[Exception] = None,
        payload: Any = None,
    ) -> CommandResult:
        report_path = None
        if payload is not None and self.write_reports:
            try:
                report_path = str(write_report(ctx.command, payload, ctx, report_dir=self.report_dir))
            except OSError as e:
                ctx.warn(f"report: {e}", operation="report")

        result = CommandResult(
            command=ctx.command,
            run_id=ctx.run_id,
            status=status,
            details=details or {},
            error=_error(error) if error is not None else None,
            warnings=list(ctx.warnings),
            report_path=report_path,
        )
        log = ctx.logger.error if result.exit_code == 1 else ctx.logger.info
        log(
            "command_finished",
            status=status.value,
            exit_code=result.exit_code,
            warnings=len(result.warnings),
            duration_seconds=ctx.elapsed_seconds(),
        )
        return result

    async def _provision_each(
        self,
        ctx: RunContext,
        config: Union[ProvisionConfig, Dict[str, Any]],
        step: Callable[[InfrastructureSpec, RunContext, bool], Awaitable[ProvisionResult]],
    ) -> CommandResult:
        try:
            config = self._load(ProvisionConfig, config)
        except ValidationError as e:
            return self._result(ctx, CommandStatus.FAILED, error=e)

        results: List[ProvisionResult] = []
        try:
            for spec in config.infrastructure:
                results.append(await step(spec, ctx, config.dry_run))
        except OrchestratorException as e:
            details = {"results": [result.model_dump(mode="json") for result in results]}
            return self._result(ctx, CommandStatus.FAILED, details, error=e, payload=results or None)
        except Exception as e:
            ctx.logger.exception("command_crashed", error_type=type(e).__name__)
            details = {"results": [result.model_dump(mode="json") for result in results]}
            return self._result(ctx, CommandStatus.FAILED, details, error=e)

        status = CommandStatus.DRY_RUN if config.dry_run else CommandStatus.SUCCEEDED
        details = {"results": [result.model_dump(mode="json") for result in results]}
        return self._result(ctx, status, details, payload=results)

    async def provision(self, config: Union[ProvisionConfig, Dict[str, Any]]) -> CommandResult:
        """Provision every resource group of the config, in order."""
        return await self._provision_each(
            self._context("provision"),
            config,
            lambda spec, ctx, dry_run: self.coordinator.ensure_infrastructure(spec, ctx, dry_run=dry_run),
        )

    async def reprovision(self, config: Union[ProvisionConfig, Dict[str, Any]]) -> CommandResult:
        """Reapply the pool settings of the config to pools that already exist."""
        return await self._provision_each(
            self._context("reprovision"),
            config,
            lambda spec, ctx, dry_run: self.coordinator.reprovision_pools(spec, ctx, dry_run=dry_run),
        )

    async def migrate(self, request: Union[MigrationRequest, Dict[str, Any]]) -> CommandResult:
        """Move one database, holding its migration lock for the duration."""
        ctx = self._context("migrate")
        try:
            request = self._load(MigrationRequest, request)
        except ValidationError as e:
            return self._result(ctx, CommandStatus.FAILED, error=e)

        try:
            async with self.locks.hold(request.database_id, ctx.run_id):
                outcome = await self.migration_engine.migrate(request, ctx)
        except OrchestratorException as e:
            return self._result(ctx, CommandStatus.FAILED, {"database_id": request.database_id}, error=e)
        except Exception as e:
            ctx.logger.exception("command_crashed", error_type=type(e).__name__)
            return self._result(ctx, CommandStatus.FAILED, {"database_id": request.database_id}, error=e)

        result = self._result(
            ctx,
            MIGRATION_STATUS_MAP[outcome.status],
            {"outcome": outcome.model_dump(mode="json")},
            payload=outcome,
        )
        if outcome.status == MigrationStatus.FAILED:
            result.error = {
                "type": "MigrationFailed",
                "code": outcome.error_code,
                "message": outcome.reason,
            }
        return result

    async def optimize(self, config: Union[OptimizeConfig, Dict[str, Any]]) -> CommandResult:
        """Analyze and maintain indexes of each listed database."""
        ctx = self._context("optimize")
        try:
            config = self._load(OptimizeConfig, config)
        except ValidationError as e:
            return self._result(ctx, CommandStatus.FAILED, error=e)

        fragmentation = FragmentationService(self.backend.channel, page_count_floor=config.page_count_floor)
        analyzer = QueryAnalyzer(self.backend.channel)
        token = config.credential_token.get_secret_value() if config.credential_token else None
        top_n = config.top_queries or settings.top_queries_limit

        summaries: List[OptimizationSummary] = []
        failed: Dict[str, Dict[str, Any]] = {}
        for database in config.databases:
            target = QueryTarget(
                server_address=config.server_address, database_name=database, credential_token=token
            )
            try:
                summary = await fragmentation.optimize(
                    target, ctx, dry_run=config.dry_run, update_statistics=config.update_statistics
                )
                summary.top_queries = await analyzer.top_expensive_queries(target, top_n, ctx)
                summary.recommendations = await analyzer.missing_index_recommendations(target, ctx)
            except OrchestratorException as e:
                ctx.logger.error("database_optimization_failed", database=database, error=e.message)
                failed[database] = _error(e)
                continue
            except Exception as e:
                ctx.logger.exception("database_optimization_crashed", database=database)
                failed[database] = _error(e)
                continue
            summaries.append(summary)

        maintenance_failures = sum(
            len(summary.apply_result.failures) for summary in summaries if summary.apply_result
        )
        if not summaries:
            status = CommandStatus.FAILED
        elif failed or maintenance_failures:
            status = CommandStatus.COMPLETED_WITH_ERRORS
        elif config.dry_run:
            status = CommandStatus.DRY_RUN
        else:
            status = CommandStatus.SUCCEEDED

        details = {
            "summaries": [summary.model_dump(mode="json") for summary in summaries],
            "failed_databases": failed,
        }
        result = self._result(ctx, status, details, payload=summaries or None)
        if failed:
            result.error = {
                "type": "OptimizationFailed",
                "message": f"{len(failed)} of {len(config.databases)} database(s) failed",
                "details": failed,
            }
        return result

    async def deploy_all(self, config: Union[DeploymentConfig, Dict[str, Any]]) -> CommandResult:
        """Run the standard deployment pipeline."""
        ctx = self._context("deploy-all")
        try:
            config = self._load(DeploymentConfig, config)
        except ValidationError as e:
            return self._result(ctx, CommandStatus.FAILED, error=e)

        service = DeploymentService(
            self.backend.store,
            self.backend.channel,
            coordinator=self.coordinator,
            notifications=self.notifications,
        )
        try:
            report = await service.deploy(config, ctx)
        except PipelineAbortedError as e:
            details = {"report": e.report.model_dump(mode="json")} if e.report is not None else {}
            return self._result(ctx, CommandStatus.FAILED, details, error=e, payload=e.report)
        except Exception as e:
            ctx.logger.exception("command_crashed", error_type=type(e).__name__)
            return self._result(ctx, CommandStatus.FAILED, error=e)

        result = self._result(
            ctx, RUN_STATUS_MAP[report.status], {"report": report.model_dump(mode="json")}, payload=report
        )
        if report.errors:
            result.error = {"type": "StageFailures", "message": "; ".join(report.errors)}
        return result

    async def cleanup(self, resource_group: str) -> CommandResult:
        """Delete a resource group and everything in it."""
        ctx = self._context("cleanup")
        try:
            deleted = await self.coordinator.cleanup(resource_group, ctx)
        except OrchestratorException as e:
            return self._result(ctx, CommandStatus.FAILED, {"resource_group": resource_group}, error=e)
        except Exception as e:
            ctx.logger.exception("command_crashed", error_type=type(e).__name__)
            return self._result(ctx, CommandStatus.FAILED, {"resource_group": resource_group}, error=e)
        return self._result(
            ctx, CommandStatus.SUCCEEDED, {"resource_group": resource_group, "deleted": deleted}
        )
