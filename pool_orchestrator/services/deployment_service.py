"""
Deployment service.
The standard from-scratch rollout, expressed as pipeline stages.

Stages (in order):
1. create-resource-groups         critical
2. deploy-primary-infrastructure  critical
3. deploy-secondary-region        optional (secondary_location)
4. load-sample-data               optional (sample_data)
5. optimize-databases             optional (optimize)
6. configure-monitoring           optional (monitoring.enabled)
7. register-automation            optional (automation)
"""
from typing import List, Optional

from pool_orchestrator.core.context import RunContext
from pool_orchestrator.core.protocols import QueryChannel, ResourceStore
from pool_orchestrator.core.statements import SAMPLE_DATA_STATEMENTS
from pool_orchestrator.config.settings import settings
from pool_orchestrator.exceptions import OrchestratorException, PipelineAbortedError, StageFailedError
from pool_orchestrator.models.commands import DeploymentConfig
from pool_orchestrator.models.infrastructure import InfrastructureSpec, ProvisionResult
from pool_orchestrator.models.maintenance import OptimizationSummary, QueryTarget
from pool_orchestrator.models.pipeline import DeploymentReport
from pool_orchestrator.models.placement import ResourceKind, child_id, server_id
from pool_orchestrator.services.fragmentation_service import FragmentationService
from pool_orchestrator.services.notification_service import NotificationService
from pool_orchestrator.services.pipeline_service import PipelineOrchestrator, Stage
from pool_orchestrator.services.provisioning_service import ProvisioningCoordinator
from pool_orchestrator.services.query_analyzer import QueryAnalyzer


class _DeploymentRun:
    """Results handed from one stage to the next within a single run."""

    def __init__(self):
        self.provision_results: List[ProvisionResult] = []
        self.secondary_results: List[ProvisionResult] = []
        self.optimizations: List[OptimizationSummary] = []


class DeploymentService:
    """Builds and runs the deploy-all pipeline."""

    def __init__(
        self,
        store: ResourceStore,
        channel: QueryChannel,
        coordinator: Optional[ProvisioningCoordinator] = None,
        notifications: Optional[NotificationService] = None,
        pipeline: Optional[PipelineOrchestrator] = None,
    ):
        self.store = store
        self.channel = channel
        self.coordinator = coordinator or ProvisioningCoordinator(store)
        self.notifications = notifications or NotificationService()
        self.pipeline = pipeline or PipelineOrchestrator()

    def build_stages(self, config: DeploymentConfig, run: Optional[_DeploymentRun] = None) -> List[Stage]:
        """Standard stage list for ``config``."""
        run = run or _DeploymentRun()
        specs = config.infrastructure
        token = config.credential_token.get_secret_value() if config.credential_token else None

        async def create_resource_groups(ctx: RunContext) -> str:
            created = 0
            for spec in specs:
                if await self.coordinator.ensure_resource_group(spec, ctx):
                    created += 1
            return f"{created} created, {len(specs) - created} already present"

        async def deploy_primary(ctx: RunContext) -> str:
            run.provision_results = await self.coordinator.ensure_many(specs, ctx)
            created = sum(len(result.created) for result in run.provision_results)
            migrated = sum(len(result.migrations) for result in run.provision_results)
            return f"{created} objects created, {migrated} databases moved"

        async def deploy_secondary(ctx: RunContext) -> str:
            links = 0
            for spec in specs:
                secondary = self._secondary_spec(spec, config)
                run.secondary_results.append(
                    await self.coordinator.ensure_infrastructure(secondary, ctx)
                )
                primary_server = server_id(spec.resource_group, spec.server.name)
                partner_server = server_id(secondary.resource_group, secondary.server.name)
                for database in spec.databases:
                    created = await self.coordinator.ensure_resource(
                        ResourceKind.REPLICATION_LINK,
                        child_id(primary_server, f"{database.name}-geo"),
                        {
                            "database_id": child_id(primary_server, database.name),
                            "partner_server_id": partner_server,
                            "partner_location": config.secondary_location,
                            "partner_pool_name": (
                                f"{database.pool_name}{config.secondary_suffix}"
                                if database.pool_name else None
                            ),
                        },
                        ctx,
                    )
                    links += int(created)
            return f"secondary region {config.secondary_location}: {links} replication links created"

        async def load_sample_data(ctx: RunContext) -> str:
            loaded = 0
            for spec in specs:
                address = await self._server_address(spec)
                for database in spec.databases:
                    for statement in SAMPLE_DATA_STATEMENTS:
                        await self.channel.execute(
                            address, database.name, statement, token, settings.query_timeout_seconds
                        )
                    loaded += 1
            return f"sample data loaded into {loaded} databases"

        async def optimize_databases(ctx: RunContext) -> str:
            fragmentation = FragmentationService(self.channel)
            analyzer = QueryAnalyzer(self.channel)
            failures = []
            for spec in specs:
                address = await self._server_address(spec)
                for database in spec.databases:
                    target = QueryTarget(
                        server_address=address, database_name=database.name, credential_token=token
                    )
                    try:
                        summary = await fragmentation.optimize(target, ctx)
                        summary.top_queries = await analyzer.top_expensive_queries(
                            target, settings.top_queries_limit, ctx
                        )
                        summary.recommendations = await analyzer.missing_index_recommendations(target, ctx)
                    except OrchestratorException as e:
                        failures.append(f"{database.name}: {e.message}")
                        continue
                    run.optimizations.append(summary)
            if failures:
                raise StageFailedError("optimize-databases", failures)
            optimized = sum(
                summary.apply_result.optimized_count
                for summary in run.optimizations
                if summary.apply_result
            )
            return f"{len(run.optimizations)} databases analyzed, {optimized} indexes maintained"

        async def configure_monitoring(ctx: RunContext) -> str:
            monitoring = config.monitoring
            created = 0
            for spec in specs:
                srv_id = server_id(spec.resource_group, spec.server.name)
                for pool in spec.pools:
                    pool_id = child_id(srv_id, pool.name)
                    for metric, threshold in (
                        ("capacity_percent", monitoring.capacity_alert_threshold_percent),
                        ("storage_percent", monitoring.storage_alert_threshold_percent),
                    ):
                        created += int(
                            await self.coordinator.ensure_resource(
                                ResourceKind.ALERT_RULE,
                                child_id(srv_id, f"{pool.name}-{metric}-alert"),
                                {
                                    "target_id": pool_id,
                                    "metric": metric,
                                    "operator": "GreaterThan",
                                    "threshold": threshold,
                                    "channel": monitoring.notification_channel,
                                },
                                ctx,
                            )
                        )
            await self.notifications.notify(
                ctx,
                f"Monitoring configured for run {ctx.run_id}: {created} alert rules created",
                channel=monitoring.notification_channel,
            )
            return f"{created} alert rules created"

        async def register_automation(ctx: RunContext) -> str:
            created = 0
            for spec in specs:
                created += int(
                    await self.coordinator.ensure_resource(
                        ResourceKind.AUTOMATION_SCHEDULE,
                        child_id(spec.resource_group, "nightly-index-maintenance"),
                        {
                            "schedule": config.automation_schedule,
                            "command": "optimize",
                            "server_id": server_id(spec.resource_group, spec.server.name),
                            "databases": [database.name for database in spec.databases],
                        },
                        ctx,
                    )
                )
            return f"{created} maintenance schedules registered"

        return [
            Stage("create-resource-groups", create_resource_groups, critical=True),
            Stage("deploy-primary-infrastructure", deploy_primary, critical=True),
            Stage(
                "deploy-secondary-region",
                deploy_secondary,
                enabled=config.secondary_location is not None,
                skip_reason="no secondary location configured",
            ),
            Stage(
                "load-sample-data",
                load_sample_data,
                enabled=config.sample_data,
                skip_reason="sample data disabled",
            ),
            Stage(
                "optimize-databases",
                optimize_databases,
                enabled=config.optimize,
                skip_reason="optimization disabled",
            ),
            Stage(
                "configure-monitoring",
                configure_monitoring,
                enabled=config.monitoring.enabled,
                skip_reason="monitoring disabled",
            ),
            Stage(
                "register-automation",
                register_automation,
                enabled=config.automation,
                skip_reason="automation disabled",
            ),
        ]

    @staticmethod
    def _secondary_spec(spec: InfrastructureSpec, config: DeploymentConfig) -> InfrastructureSpec:
        """Server and pools mirrored into the secondary region; databases arrive by replication."""
        suffix = config.secondary_suffix
        pools = [
            pool.model_copy(update={"name": f"{pool.name}{suffix}"})
            for pool in spec.pools
        ]
        return InfrastructureSpec(
            resource_group=f"{spec.resource_group}{suffix}",
            location=config.secondary_location,
            server=spec.server.model_copy(update={"name": f"{spec.server.name}{suffix}"}),
            firewall=spec.firewall,
            pools=pools,
            databases=[],
            tags={**spec.tags, "role": "secondary"},
            enable_auditing=spec.enable_auditing,
        )

    async def _server_address(self, spec: InfrastructureSpec) -> str:
        snapshot = await self.store.get(
            ResourceKind.SERVER, server_id(spec.resource_group, spec.server.name)
        )
        return snapshot.get("fully_qualified_domain_name") or spec.server.name

    async def deploy(self, config: DeploymentConfig, ctx: RunContext) -> DeploymentReport:
        """
        Run the pipeline and send a summary notification.

        Raises:
            PipelineAbortedError: If a critical stage failed
        """
        run = _DeploymentRun()
        stages = self.build_stages(config, run)
        try:
            report = await self.pipeline.run(stages, ctx)
        except PipelineAbortedError as e:
            await self.notifications.notify(
                ctx, f"Deployment {ctx.run_id} aborted at stage '{e.stage}': {e.details['reason']}"
            )
            raise

        await self.notifications.notify(
            ctx,
            f"Deployment {ctx.run_id} finished with status {report.status.value}"
            + (f" ({len(report.errors)} errors)" if report.errors else ""),
        )
        return report
