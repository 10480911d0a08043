"""
Fragmentation decision engine.
Reads index fragmentation, picks a maintenance action per index and runs it.

Thresholds (fixed):
- fragmentation > 30%        -> REBUILD
- 10% < fragmentation <= 30% -> REORGANIZE
- otherwise                  -> NO_ACTION

Indexes at or below the page-count floor are filtered out when the
statistics are read; ``classify`` sees only what the caller hands it.
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pool_orchestrator.config.settings import settings
from pool_orchestrator.core.context import RunContext
from pool_orchestrator.core.protocols import QueryChannel
from pool_orchestrator.core.statements import (
    IndexMaintenanceStatement,
    UpdateStatisticsStatement,
    fragmentation_query,
)
from pool_orchestrator.exceptions import OrchestratorException
from pool_orchestrator.models.maintenance import (
    ApplyResult,
    FragmentationRecord,
    MaintenanceAction,
    MaintenanceActionType,
    MaintenanceFailure,
    OptimizationSummary,
    QueryTarget,
)
from pool_orchestrator.models.pipeline import Severity

REORGANIZE_THRESHOLD_PERCENT = 10.0
REBUILD_THRESHOLD_PERCENT = 30.0


def classify_record(record: FragmentationRecord) -> MaintenanceActionType:
    """Pick the maintenance action for one index."""
    if record.fragmentation_percent > REBUILD_THRESHOLD_PERCENT:
        return MaintenanceActionType.REBUILD
    if record.fragmentation_percent > REORGANIZE_THRESHOLD_PERCENT:
        return MaintenanceActionType.REORGANIZE
    return MaintenanceActionType.NO_ACTION


def classify(records: Iterable[FragmentationRecord]) -> List[MaintenanceAction]:
    """Classify records, preserving input order."""
    return [MaintenanceAction(record=record, action=classify_record(record)) for record in records]


class FragmentationService:
    """Analyze, classify and maintain indexes through the query channel."""

    def __init__(
        self,
        channel: QueryChannel,
        page_count_floor: Optional[int] = None,
        rebuild_online: Optional[bool] = None,
        query_timeout: Optional[float] = None,
    ):
        self.channel = channel
        self.page_count_floor = (
            page_count_floor if page_count_floor is not None else settings.fragmentation_page_count_floor
        )
        self.rebuild_online = rebuild_online if rebuild_online is not None else settings.rebuild_online
        self.query_timeout = query_timeout or settings.query_timeout_seconds

    async def _execute(self, target: QueryTarget, statement: str) -> List[Dict[str, Any]]:
        return await self.channel.execute(
            target.server_address,
            target.database_name,
            statement,
            target.credential_token,
            self.query_timeout,
        )

    async def analyze(self, target: QueryTarget, ctx: RunContext) -> List[FragmentationRecord]:
        """
        Read fragmentation of every index above the page-count floor.

        Raises:
            QueryExecutionError: If the statistics cannot be read
        """
        rows = await self._execute(target, fragmentation_query(self.page_count_floor))
        records = [
            FragmentationRecord(
                schema_name=row["schema_name"],
                table_name=row["table_name"],
                index_name=row["index_name"],
                fragmentation_percent=float(row["fragmentation_percent"]),
                page_count=int(row["page_count"]),
            )
            for row in rows
        ]
        ctx.logger.info(
            "fragmentation_analyzed",
            database=target.database_name,
            indexes=len(records),
            page_count_floor=self.page_count_floor,
        )
        return records

    async def apply(
        self,
        actions: List[MaintenanceAction],
        target: QueryTarget,
        ctx: RunContext,
        update_statistics: bool = False,
    ) -> ApplyResult:
        """
        Run one maintenance statement per action, in order.

        A failing index is recorded and the batch moves on; nothing here
        raises for a single statement failure.

        Args:
            actions: Output of ``classify``
            target: Database to maintain
            ctx: Run context; failures are also added as warnings
            update_statistics: Refresh statistics of each maintained table afterwards

        Returns:
            ApplyResult with counts and per-action failures
        """
        result = ApplyResult()
        maintained_tables: List[Tuple[str, str]] = []

        for item in actions:
            if item.action == MaintenanceActionType.NO_ACTION:
                result.skipped_count += 1
                continue

            try:
                statement = IndexMaintenanceStatement.for_action(item, online=self.rebuild_online)
                await self._execute(target, statement.render())
            except OrchestratorException as e:
                result.failures.append(
                    MaintenanceFailure(record=item.record, action=item.action, error=e.message)
                )
                ctx.warn(
                    f"{item.action.value} of {item.record.qualified_name} failed: {e.message}",
                    database=target.database_name,
                    index=item.record.qualified_name,
                )
                continue

            result.optimized_count += 1
            ctx.logger.info(
                "index_maintained",
                database=target.database_name,
                index=item.record.qualified_name,
                action=item.action.value,
                fragmentation_percent=item.record.fragmentation_percent,
            )
            table = (item.record.schema_name, item.record.table_name)
            if table not in maintained_tables:
                maintained_tables.append(table)

        if update_statistics:
            for schema_name, table_name in maintained_tables:
                statement = UpdateStatisticsStatement(schema_name=schema_name, table_name=table_name)
                rows = await ctx.guard(
                    "update_statistics",
                    Severity.BEST_EFFORT,
                    self._execute,
                    target,
                    statement.render(),
                )
                if rows is not None:
                    result.statistics_updated.append(f"{schema_name}.{table_name}")

        ctx.logger.info(
            "maintenance_applied",
            database=target.database_name,
            optimized=result.optimized_count,
            skipped=result.skipped_count,
            failed=len(result.failures),
        )
        return result

    async def optimize(
        self,
        target: QueryTarget,
        ctx: RunContext,
        dry_run: bool = False,
        update_statistics: bool = True,
    ) -> OptimizationSummary:
        """Analyze, classify and (unless dry_run) apply for one database."""
        records = await self.analyze(target, ctx)
        actions = classify(records)
        summary = OptimizationSummary(
            database_name=target.database_name,
            records_analyzed=len(records),
            actions=actions,
            dry_run=dry_run,
        )
        if not dry_run:
            summary.apply_result = await self.apply(
                actions, target, ctx, update_statistics=update_statistics
            )
        return summary
