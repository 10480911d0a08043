"""
Query-performance analyzer.
Read-only: ranks expensive cached queries and missing-index recommendations.
"""
from typing import Any, Dict, List, Optional

from pool_orchestrator.config.settings import settings
from pool_orchestrator.core.context import RunContext
from pool_orchestrator.core.protocols import QueryChannel
from pool_orchestrator.core.statements import (
    MISSING_INDEX_QUERY,
    CreateIndexStatement,
    parse_column_list,
    top_queries_query,
)
from pool_orchestrator.exceptions import PreconditionError
from pool_orchestrator.models.maintenance import (
    MissingIndexRecommendation,
    QueryStatistic,
    QueryTarget,
)


class QueryAnalyzer:
    """Reads query-store style statistics through the query channel."""

    def __init__(self, channel: QueryChannel, query_timeout: Optional[float] = None):
        self.channel = channel
        self.query_timeout = query_timeout or settings.query_timeout_seconds

    async def _execute(self, target: QueryTarget, statement: str) -> List[Dict[str, Any]]:
        return await self.channel.execute(
            target.server_address,
            target.database_name,
            statement,
            target.credential_token,
            self.query_timeout,
        )

    async def top_expensive_queries(
        self, target: QueryTarget, n: int, ctx: RunContext
    ) -> List[QueryStatistic]:
        """
        Return up to ``n`` queries ranked by average elapsed time per execution, descending.

        Raises:
            PreconditionError: If n < 1
        """
        if n < 1:
            raise PreconditionError("n must be at least 1", code="invalid_parameter", details={"n": n})

        rows = await self._execute(target, top_queries_query(n))
        stats = [
            QueryStatistic(
                query_hash=str(row["query_hash"]),
                query_text=(row.get("query_text") or "").strip(),
                execution_count=int(row["execution_count"]),
                total_elapsed_ms=float(row["total_elapsed_ms"]),
                total_cpu_ms=float(row.get("total_cpu_ms") or 0.0),
                total_logical_reads=int(row.get("total_logical_reads") or 0),
            )
            for row in rows
            if int(row["execution_count"]) > 0
        ]
        stats.sort(key=lambda stat: stat.avg_elapsed_ms, reverse=True)
        stats = stats[:n]

        ctx.logger.info("top_queries_collected", database=target.database_name, count=len(stats))
        return stats

    async def missing_index_recommendations(
        self, target: QueryTarget, ctx: RunContext
    ) -> List[MissingIndexRecommendation]:
        """Return missing-index recommendations ranked by improvement measure, descending."""
        rows = await self._execute(target, MISSING_INDEX_QUERY)

        recommendations = []
        for position, row in enumerate(rows, start=1):
            equality = parse_column_list(row.get("equality_columns"))
            inequality = parse_column_list(row.get("inequality_columns"))
            included = parse_column_list(row.get("included_columns"))
            key_columns = equality + inequality

            create_statement = None
            if key_columns:
                create_statement = CreateIndexStatement(
                    schema_name=row["schema_name"],
                    table_name=row["table_name"],
                    index_name=f"IX_{row['table_name']}_missing_{position}",
                    key_columns=key_columns,
                    included_columns=included,
                ).render()

            recommendations.append(
                MissingIndexRecommendation(
                    schema_name=row["schema_name"],
                    table_name=row["table_name"],
                    equality_columns=equality,
                    inequality_columns=inequality,
                    included_columns=included,
                    avg_total_user_cost=float(row["avg_total_user_cost"]),
                    avg_user_impact=float(row["avg_user_impact"]),
                    user_seeks=int(row.get("user_seeks") or 0),
                    user_scans=int(row.get("user_scans") or 0),
                    create_statement=create_statement,
                )
            )

        recommendations.sort(key=lambda rec: rec.improvement_measure, reverse=True)
        ctx.logger.info(
            "missing_index_recommendations_collected",
            database=target.database_name,
            count=len(recommendations),
        )
        return recommendations
