"""
Migration service.
Moves a database between pools, or between a pool and a standalone tier,
and waits for it to settle.

Flow:
    VALIDATING -> (VALIDATED_ONLY | PREPARING) -> MOVING -> POLLING
    -> {SUCCEEDED, TIMED_OUT}; any state -> FAILED

A run always reads the database back before reporting, so the outcome
reflects the provider's view rather than what was requested. Running two
migrations of one database at once is undefined; callers serialize them
(see ``pool_orchestrator.core.locks``).
"""
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from pool_orchestrator.config.settings import settings
from pool_orchestrator.core.context import RunContext
from pool_orchestrator.core.protocols import ResourceStore
from pool_orchestrator.core.state_machine import MigrationStateMachine
from pool_orchestrator.exceptions import OrchestratorException, ProviderError, ResourceNotFoundError
from pool_orchestrator.models.migration import (
    MigrationOutcome,
    MigrationRequest,
    MigrationState,
    PlacementSpec,
)
from pool_orchestrator.models.pipeline import Severity
from pool_orchestrator.models.placement import ResourceKind, ResourcePlacement, child_id
from pool_orchestrator.services.probe import ResourceProbe


class _MigrationRun:
    """Mutable bookkeeping of one migration: current state and trail."""

    def __init__(self, database_id: str, ctx: RunContext):
        self.database_id = database_id
        self.ctx = ctx
        self.started_at: datetime = ctx.clock.now()
        self.state = MigrationState.VALIDATING
        self.states: List[MigrationState] = [MigrationState.VALIDATING]
        self.warning_mark = len(ctx.warnings)
        self.logger = ctx.logger.bind(database_id=database_id)

    def transition(self, to_state: MigrationState) -> None:
        MigrationStateMachine.validate_transition(self.state, to_state, self.database_id)
        self.logger.info(
            "migration_state_changed",
            from_state=self.state.value,
            to_state=to_state.value,
        )
        self.state = to_state
        self.states.append(to_state)

    @property
    def warnings(self) -> List[str]:
        return self.ctx.warnings[self.warning_mark:]


class MigrationEngine:
    """Drives one migration request through the state machine."""

    def __init__(self, store: ResourceStore, poll_interval_seconds: Optional[float] = None):
        self.store = store
        self.probe = ResourceProbe(store)
        self.poll_interval_seconds = poll_interval_seconds or settings.migration_poll_interval_seconds

    @staticmethod
    def _server_of(database_id: str) -> str:
        server, _, _ = database_id.rpartition("/")
        return server

    @staticmethod
    def _target_error(target: PlacementSpec) -> Optional[Tuple[str, str]]:
        """Return (code, reason) if the target is not exactly one usable form."""
        if target.targets_pool and target.targets_tier:
            return (
                "mutually_exclusive_target",
                "Target declares both a pool and a standalone tier; choose one",
            )
        if not target.targets_pool and not target.targets_tier:
            return ("missing_target", "Target declares neither a pool nor a standalone tier")
        if target.targets_tier and (target.edition is None or target.service_objective is None):
            return (
                "incomplete_target",
                "A standalone target needs both edition and service_objective",
            )
        return None

    async def migrate(self, request: MigrationRequest, ctx: RunContext) -> MigrationOutcome:
        """
        Run a migration to a terminal state.

        Args:
            request: What to move and where
            ctx: Run context (clock, sleeper, logger, warnings)

        Returns:
            MigrationOutcome; failures are reported, not raised
        """
        run = _MigrationRun(request.database_id, ctx)
        timeout = request.timeout_seconds or settings.migration_timeout_seconds

        run.logger.info(
            "migration_started",
            target=request.target.describe(),
            validate_only=request.validate_only,
            timeout_seconds=timeout,
        )

        # The request never reaches the provider if its target is malformed
        target_error = self._target_error(request.target)
        if target_error is not None:
            code, reason = target_error
            return await self._fail(run, code, reason, read_back=False)

        # VALIDATING
        try:
            snapshot = await self.probe.get_or_none(ResourceKind.DATABASE, request.database_id)
        except OrchestratorException as e:
            return await self._fail(run, "provider_error", e.message)

        if snapshot is None:
            return await self._fail(
                run, "database_not_found", f"Database '{request.database_id}' does not exist"
            )

        current = ResourcePlacement.from_snapshot(snapshot)
        source = request.source_placement
        if source is not None and not source.matches(current):
            return await self._fail(
                run,
                "source_mismatch",
                f"Database is not in the declared source {source.describe()} "
                f"(actual pool: {current.pool_name or 'standalone'})",
            )

        if request.target.targets_pool:
            pool_id = child_id(self._server_of(request.database_id), request.target.pool_name)
            try:
                pool_exists = await self.probe.exists(ResourceKind.ELASTIC_POOL, pool_id)
            except OrchestratorException as e:
                return await self._fail(run, "provider_error", e.message)
            if not pool_exists:
                return await self._fail(
                    run, "target_pool_not_found", f"Target pool '{pool_id}' does not exist"
                )

        if request.validate_only:
            run.transition(MigrationState.VALIDATED_ONLY)
            return await self._finish(run)

        # PREPARING
        run.transition(MigrationState.PREPARING)
        await ctx.guard(
            "backup_acknowledgement",
            Severity.BEST_EFFORT,
            self._acknowledge_backup,
            request.database_id,
        )

        # MOVING
        run.transition(MigrationState.MOVING)
        try:
            await self.store.update(
                ResourceKind.DATABASE, request.database_id, self._move_delta(request.target)
            )
        except OrchestratorException as e:
            return await self._fail(run, "provider_error", e.message)

        # POLLING
        run.transition(MigrationState.POLLING)
        deadline = run.started_at + timedelta(seconds=timeout)
        return await self._poll(run, request.target, deadline, current)

    async def _acknowledge_backup(self, database_id: str) -> None:
        """The store backs databases up on its own; confirm a restore point exists."""
        snapshot = await self.store.get(ResourceKind.DATABASE, database_id)
        restore_point = snapshot.get("earliest_restore_point")
        if not restore_point:
            raise ProviderError(
                "no restore point reported; continuing without backup confirmation",
                details={"database_id": database_id},
            )

    @staticmethod
    def _move_delta(target: PlacementSpec) -> dict:
        if target.targets_pool:
            return {"pool_name": target.pool_name}
        return {
            "pool_name": None,
            "edition": target.edition,
            "service_objective": target.service_objective,
        }

    @staticmethod
    def _same_placement(a: ResourcePlacement, b: ResourcePlacement) -> bool:
        if a.pool_name or b.pool_name:
            return a.pool_name == b.pool_name
        return (a.edition, a.service_objective) == (b.edition, b.service_objective)

    async def _poll(
        self,
        run: _MigrationRun,
        target: PlacementSpec,
        deadline: datetime,
        previous: ResourcePlacement,
    ) -> MigrationOutcome:
        ctx = run.ctx
        checks = 0
        while True:
            checks += 1
            try:
                snapshot = await self.store.get(ResourceKind.DATABASE, run.database_id)
            except ResourceNotFoundError:
                return await self._fail(run, "database_not_found", "Database disappeared while moving")
            except OrchestratorException as e:
                return await self._fail(run, "provider_error", e.message)

            placement = ResourcePlacement.from_snapshot(snapshot)
            remaining = (deadline - ctx.clock.now()).total_seconds()

            run.logger.info(
                "migration_status_check",
                check=checks,
                status=placement.status,
                pool_name=placement.pool_name,
                remaining_seconds=max(int(remaining), 0),
            )

            if placement.is_online and target.matches(placement):
                run.transition(MigrationState.SUCCEEDED)
                return await self._finish(run)

            if remaining <= 0:
                if placement.is_online and self._same_placement(placement, previous):
                    reason = "online_in_previous_placement"
                elif placement.is_online:
                    reason = "online_outside_target"
                else:
                    reason = f"status '{placement.status}' did not become stable"
                run.transition(MigrationState.TIMED_OUT)
                return await self._finish(run, reason=reason)

            await ctx.sleeper.sleep(min(self.poll_interval_seconds, remaining))

    async def _read_placement(self, database_id: str) -> Optional[ResourcePlacement]:
        snapshot = await self.probe.get_or_none(ResourceKind.DATABASE, database_id)
        if snapshot is None:
            return None
        return ResourcePlacement.from_snapshot(snapshot)

    async def _fail(
        self, run: _MigrationRun, code: str, reason: str, read_back: bool = True
    ) -> MigrationOutcome:
        run.logger.error("migration_failed", state=run.state.value, error_code=code, reason=reason)
        run.transition(MigrationState.FAILED)
        return await self._finish(run, reason=reason, error_code=code, read_back=read_back)

    async def _finish(
        self,
        run: _MigrationRun,
        reason: Optional[str] = None,
        error_code: Optional[str] = None,
        read_back: bool = True,
    ) -> MigrationOutcome:
        final_placement = None
        if read_back:
            final_placement = await run.ctx.guard(
                "final_placement_read",
                Severity.BEST_EFFORT,
                self._read_placement,
                run.database_id,
            )

        outcome = MigrationOutcome(
            database_id=run.database_id,
            status=MigrationStateMachine.status_for(run.state),
            final_placement=final_placement,
            duration_seconds=run.ctx.elapsed_seconds(run.started_at),
            reason=reason,
            error_code=error_code,
            states=list(run.states),
            warnings=list(run.warnings),
        )
        run.logger.info(
            "migration_completed",
            status=outcome.status.value,
            duration_seconds=outcome.duration_seconds,
            final_pool=final_placement.pool_name if final_placement else None,
        )
        return outcome
