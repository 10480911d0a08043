"""
Provisioning service.
Creates missing infrastructure in dependency order, idempotently.

Order: resource group -> server (+ firewall rules, auditing) -> pools -> databases.
Existing objects are left alone; a database sitting in the wrong pool is
handed to the migration engine instead of being patched in place. Nothing is
rolled back if a later step fails; ``cleanup`` is a separate call.
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pool_orchestrator.config.settings import settings
from pool_orchestrator.core.context import RunContext
from pool_orchestrator.core.locks import MigrationLockRegistry, migration_locks
from pool_orchestrator.core.protocols import DeletableResourceStore, ResourceStore
from pool_orchestrator.exceptions import MigrationLockedError, PreconditionError
from pool_orchestrator.models.infrastructure import (
    DatabaseSpec,
    ElasticPoolSpec,
    FirewallRuleSpec,
    InfrastructureSpec,
    ProvisionResult,
)
from pool_orchestrator.models.migration import MigrationRequest, MigrationStatus, PlacementSpec
from pool_orchestrator.models.pipeline import Severity
from pool_orchestrator.models.placement import (
    ResourceKind,
    ResourcePlacement,
    ResourceRef,
    child_id,
    resource_group_id,
    server_id,
)
from pool_orchestrator.services.migration_service import MigrationEngine
from pool_orchestrator.services.probe import ResourceProbe
from pool_orchestrator.utils.network import resolve_public_ip

CLOUD_SERVICES_RULE = FirewallRuleSpec(name="AllowCloudServices", start_ip="0.0.0.0", end_ip="0.0.0.0")
CLIENT_IP_RULE_NAME = "AllowClientIP"
MANAGED_BY = "pool-orchestrator"


class ProvisioningCoordinator:
    """Idempotent creation of the objects described by an InfrastructureSpec."""

    def __init__(
        self,
        store: ResourceStore,
        migration_engine: Optional[MigrationEngine] = None,
        ip_resolver: Optional[Callable[[], Awaitable[str]]] = None,
        locks: Optional[MigrationLockRegistry] = None,
    ):
        self.store = store
        self.locks = locks or migration_locks
        self.probe = ResourceProbe(store)
        self.migration_engine = migration_engine or MigrationEngine(store)
        self.ip_resolver = ip_resolver or resolve_public_ip

    def _tags(self, spec: InfrastructureSpec, ctx: RunContext, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Ownership tags merged with the spec's own tags."""
        tags = {
            "managed-by": MANAGED_BY,
            "environment": settings.environment,
            "owner": settings.owner_tag,
            "created-by-run": ctx.run_id,
        }
        tags.update(spec.tags)
        tags.update(extra or {})
        return tags

    async def _ensure(
        self,
        result: ProvisionResult,
        ctx: RunContext,
        kind: ResourceKind,
        resource_id: str,
        properties: Dict[str, Any],
        dry_run: bool,
    ) -> bool:
        """Create the object if it is absent. Returns True if it was created."""
        ref = ResourceRef(kind=kind, id=resource_id)

        if await self.probe.exists(kind, resource_id):
            result.existing.append(ref)
            ctx.logger.debug("resource_exists", kind=kind.value, resource_id=resource_id)
            return False

        if dry_run:
            result.planned.append(ref)
            ctx.logger.info("resource_planned", kind=kind.value, resource_id=resource_id)
            return False

        await self.store.create(kind, resource_id, properties)
        result.created.append(ref)
        ctx.logger.info("resource_created", kind=kind.value, resource_id=resource_id)
        return True

    async def ensure_infrastructure(
        self,
        spec: InfrastructureSpec,
        ctx: RunContext,
        dry_run: bool = False,
    ) -> ProvisionResult:
        """
        Bring one resource group to the state described by ``spec``.

        Calling it twice with the same spec creates nothing the second time.

        Args:
            spec: Desired infrastructure
            ctx: Run context
            dry_run: Only probe; list what would be created in ``planned``

        Returns:
            ProvisionResult with created/existing/planned objects and drift migrations

        Raises:
            ProviderError: If a fatal provider call fails
            MigrationFailedError: If a drifted database could not be moved
        """
        result = ProvisionResult(resource_group=spec.resource_group, dry_run=dry_run)
        warning_mark = len(ctx.warnings)

        ctx.logger.info(
            "provisioning_started",
            resource_group=spec.resource_group,
            location=spec.location,
            pools=len(spec.pools),
            databases=len(spec.databases),
            dry_run=dry_run,
        )

        # 1. Resource group
        rg_id = resource_group_id(spec.resource_group)
        await self._ensure(
            result, ctx, ResourceKind.RESOURCE_GROUP, rg_id,
            {"name": spec.resource_group, "location": spec.location, "tags": self._tags(spec, ctx)},
            dry_run,
        )

        # 2. Server, firewall, auditing
        srv_id = server_id(spec.resource_group, spec.server.name)
        server_created = await self._ensure(
            result, ctx, ResourceKind.SERVER, srv_id,
            {
                "name": spec.server.name,
                "resource_group": spec.resource_group,
                "location": spec.location,
                "version": spec.server.version,
                "admin_login": spec.server.admin_login,
                "admin_password": (
                    spec.server.admin_password.get_secret_value()
                    if spec.server.admin_password else None
                ),
                "tags": self._tags(spec, ctx),
            },
            dry_run,
        )
        await self._ensure_firewall(spec, srv_id, result, ctx, dry_run)

        if server_created and spec.enable_auditing:
            await ctx.guard(
                "enable_auditing",
                Severity.BEST_EFFORT,
                self.store.update,
                ResourceKind.SERVER,
                srv_id,
                {"auditing": {"enabled": True, "retention_days": 90}},
            )

        # 3. Pools
        for pool in spec.pools:
            await self._ensure(
                result, ctx, ResourceKind.ELASTIC_POOL, child_id(srv_id, pool.name),
                {
                    "name": pool.name,
                    "server_id": srv_id,
                    "location": spec.location,
                    **pool.to_properties(),
                    "tags": self._tags(spec, ctx, pool.tags),
                },
                dry_run,
            )

        # 4. Databases
        for database in spec.databases:
            await self._ensure_database(spec, database, srv_id, result, ctx, dry_run)

        result.warnings = ctx.warnings[warning_mark:]
        ctx.logger.info(
            "provisioning_completed",
            resource_group=spec.resource_group,
            created=len(result.created),
            existing=len(result.existing),
            planned=len(result.planned),
            migrations=len(result.migrations),
            warnings=len(result.warnings),
        )
        return result

    async def ensure_resource(
        self,
        kind: ResourceKind,
        resource_id: str,
        properties: Dict[str, Any],
        ctx: RunContext,
    ) -> bool:
        """Create a single object if it is absent. Returns True if it was created."""
        if await self.probe.exists(kind, resource_id):
            ctx.logger.debug("resource_exists", kind=kind.value, resource_id=resource_id)
            return False
        await self.store.create(kind, resource_id, properties)
        ctx.logger.info("resource_created", kind=kind.value, resource_id=resource_id)
        return True

    async def ensure_resource_group(self, spec: InfrastructureSpec, ctx: RunContext) -> bool:
        """Create only the resource group of ``spec``. Returns True if it was created."""
        return await self.ensure_resource(
            ResourceKind.RESOURCE_GROUP,
            resource_group_id(spec.resource_group),
            {"name": spec.resource_group, "location": spec.location, "tags": self._tags(spec, ctx)},
            ctx,
        )

    async def ensure_many(
        self, specs: List[InfrastructureSpec], ctx: RunContext, dry_run: bool = False
    ) -> List[ProvisionResult]:
        """Provision several resource groups in order; the first fatal error propagates."""
        results = []
        for spec in specs:
            results.append(await self.ensure_infrastructure(spec, ctx, dry_run=dry_run))
        return results

    async def _ensure_firewall(
        self,
        spec: InfrastructureSpec,
        srv_id: str,
        result: ProvisionResult,
        ctx: RunContext,
        dry_run: bool,
    ) -> None:
        rules = list(spec.firewall.rules)
        if spec.firewall.allow_cloud_services:
            rules.insert(0, CLOUD_SERVICES_RULE)

        for rule in rules:
            await self._ensure(
                result, ctx, ResourceKind.FIREWALL_RULE, child_id(srv_id, rule.name),
                {"name": rule.name, "server_id": srv_id, "start_ip": rule.start_ip, "end_ip": rule.end_ip},
                dry_run,
            )

        if spec.firewall.allow_client_ip:
            await ctx.guard(
                "client_ip_firewall_rule",
                Severity.BEST_EFFORT,
                self._ensure_client_ip_rule,
                srv_id,
                result,
                ctx,
                dry_run,
            )

    async def _ensure_client_ip_rule(
        self, srv_id: str, result: ProvisionResult, ctx: RunContext, dry_run: bool
    ) -> None:
        rule_id = child_id(srv_id, CLIENT_IP_RULE_NAME)
        ref = ResourceRef(kind=ResourceKind.FIREWALL_RULE, id=rule_id)
        if await self.probe.exists(ResourceKind.FIREWALL_RULE, rule_id):
            result.existing.append(ref)
            return
        if dry_run:
            result.planned.append(ref)
            return

        address = await self.ip_resolver()
        await self._ensure(
            result, ctx, ResourceKind.FIREWALL_RULE, rule_id,
            {"name": CLIENT_IP_RULE_NAME, "server_id": srv_id, "start_ip": address, "end_ip": address},
            dry_run,
        )

    async def _ensure_database(
        self,
        spec: InfrastructureSpec,
        database: DatabaseSpec,
        srv_id: str,
        result: ProvisionResult,
        ctx: RunContext,
        dry_run: bool,
    ) -> None:
        db_id = child_id(srv_id, database.name)
        snapshot = await self.probe.get_or_none(ResourceKind.DATABASE, db_id)

        if snapshot is None:
            await self._ensure(
                result, ctx, ResourceKind.DATABASE, db_id,
                {
                    "name": database.name,
                    "server_id": srv_id,
                    "location": spec.location,
                    "pool_name": database.pool_name,
                    "edition": database.edition,
                    "service_objective": database.service_objective,
                    "max_size_gb": database.max_size_gb,
                    "collation": database.collation,
                    "tags": self._tags(spec, ctx),
                },
                dry_run,
            )
            return

        result.existing.append(ResourceRef(kind=ResourceKind.DATABASE, id=db_id))
        current = ResourcePlacement.from_snapshot(snapshot)
        if current.pool_name == database.pool_name:
            return

        target = PlacementSpec(
            pool_name=database.pool_name,
            edition=database.edition,
            service_objective=database.service_objective,
        )
        if dry_run:
            ctx.warn(
                f"Database '{db_id}' is in pool '{current.pool_name or 'standalone'}'; "
                f"a real run would move it to {target.describe()}",
                database_id=db_id,
            )
            return

        ctx.logger.info(
            "database_pool_drift_detected",
            database_id=db_id,
            current_pool=current.pool_name,
            desired=target.describe(),
        )
        try:
            async with self.locks.hold(db_id, ctx.run_id):
                outcome = await self.migration_engine.migrate(
                    MigrationRequest(database_id=db_id, target=target), ctx
                )
        except MigrationLockedError as e:
            ctx.warn(
                f"Database '{db_id}' was not moved to {target.describe()}: "
                f"run '{e.held_by.get('owner')}' is already migrating it",
                database_id=db_id,
            )
            return
        result.migrations.append(outcome)
        outcome.raise_for_failure()
        if outcome.status == MigrationStatus.TIMED_OUT:
            ctx.warn(
                f"Move of '{db_id}' to {target.describe()} did not finish in time: {outcome.reason}",
                database_id=db_id,
            )

    async def reprovision_pool(
        self,
        resource_group: str,
        server_name: str,
        pool: ElasticPoolSpec,
        ctx: RunContext,
        dry_run: bool = False,
    ) -> str:
        """
        Explicit upsert of an existing pool's configuration.

        Returns:
            "created", "updated", "unchanged", or "planned" when a dry run
            found a change it did not apply
        """
        srv_id = server_id(resource_group, server_name)
        pool_id = child_id(srv_id, pool.name)
        desired = pool.to_properties()

        snapshot = await self.probe.get_or_none(ResourceKind.ELASTIC_POOL, pool_id)
        if snapshot is None:
            if not await self.probe.exists(ResourceKind.SERVER, srv_id):
                raise PreconditionError(
                    f"Server '{srv_id}' does not exist", code="server_not_found",
                    details={"server_id": srv_id},
                )
            if dry_run:
                ctx.logger.info("pool_reprovision_planned", pool_id=pool_id, change="create")
                return "planned"
            await self.store.create(
                ResourceKind.ELASTIC_POOL, pool_id,
                {"name": pool.name, "server_id": srv_id, **desired, "tags": dict(pool.tags)},
            )
            ctx.logger.info("pool_reprovisioned", pool_id=pool_id, change="created")
            return "created"

        delta = {key: value for key, value in desired.items() if snapshot.get(key) != value}
        if not delta:
            ctx.logger.info("pool_reprovisioned", pool_id=pool_id, change="unchanged")
            return "unchanged"
        if dry_run:
            ctx.logger.info("pool_reprovision_planned", pool_id=pool_id, change="update", delta=delta)
            return "planned"

        await self.store.update(ResourceKind.ELASTIC_POOL, pool_id, delta)
        ctx.logger.info("pool_reprovisioned", pool_id=pool_id, change="updated", delta=delta)
        return "updated"

    async def reprovision_pools(
        self, spec: InfrastructureSpec, ctx: RunContext, dry_run: bool = False
    ) -> ProvisionResult:
        """
        Reapply the configuration of every pool in ``spec``.

        Unlike ``ensure_infrastructure`` this changes pools that already exist.
        Resource group, server and databases are not touched.
        """
        result = ProvisionResult(resource_group=spec.resource_group, dry_run=dry_run)
        warning_mark = len(ctx.warnings)
        buckets = {
            "created": result.created,
            "updated": result.updated,
            "unchanged": result.existing,
            "planned": result.planned,
        }
        srv_id = server_id(spec.resource_group, spec.server.name)
        for pool in spec.pools:
            change = await self.reprovision_pool(spec.resource_group, spec.server.name, pool, ctx, dry_run=dry_run)
            buckets[change].append(ResourceRef(kind=ResourceKind.ELASTIC_POOL, id=child_id(srv_id, pool.name)))

        result.warnings = ctx.warnings[warning_mark:]
        return result

    async def cleanup(self, resource_group: str, ctx: RunContext) -> bool:
        """
        Delete a resource group and everything in it. Never called automatically.

        Returns:
            True if something was deleted, False if the group did not exist

        Raises:
            PreconditionError: If the store cannot delete
        """
        if not isinstance(self.store, DeletableResourceStore):
            raise PreconditionError(
                "The configured resource store does not support deletion",
                code="cleanup_unsupported",
            )
        rg_id = resource_group_id(resource_group)
        if not await self.probe.exists(ResourceKind.RESOURCE_GROUP, rg_id):
            ctx.logger.info("cleanup_nothing_to_delete", resource_group=resource_group)
            return False

        deleted = await self.store.delete(ResourceKind.RESOURCE_GROUP, rg_id)
        ctx.logger.warning("resource_group_deleted", resource_group=resource_group)
        return deleted
