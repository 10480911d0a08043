"""
Pydantic models for index maintenance and query-performance diagnostics.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class MaintenanceActionType(str, Enum):
    """Maintenance chosen for one index."""

    NO_ACTION = "no_action"
    REORGANIZE = "reorganize"
    REBUILD = "rebuild"


class QueryTarget(BaseModel):
    """Database reached through the query channel."""

    server_address: str = Field(..., description="Fully qualified server address")
    database_name: str = Field(..., description="Database name")
    credential_token: Optional[str] = Field(
        default=None, description="Access token or credential acquired by the caller"
    )


class FragmentationRecord(BaseModel):
    """Fragmentation snapshot of one index from a single analysis pass."""

    model_config = ConfigDict(frozen=True)

    schema_name: str = Field(..., description="Schema")
    table_name: str = Field(..., description="Table")
    index_name: str = Field(..., description="Index")
    fragmentation_percent: float = Field(..., ge=0, le=100, description="Average fragmentation in percent")
    page_count: int = Field(..., ge=0, description="Pages in the index")

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}.{self.index_name}"


class MaintenanceAction(BaseModel):
    """Action derived for a record; never stored."""

    model_config = ConfigDict(frozen=True)

    record: FragmentationRecord
    action: MaintenanceActionType


class MaintenanceFailure(BaseModel):
    """A maintenance statement that failed; collected, never raised."""

    record: FragmentationRecord
    action: MaintenanceActionType
    error: str


class ApplyResult(BaseModel):
    """Outcome of a maintenance batch."""

    optimized_count: int = Field(default=0, description="Statements that succeeded")
    skipped_count: int = Field(default=0, description="Records classified as no_action")
    failures: List[MaintenanceFailure] = Field(default_factory=list, description="Per-action failures")
    statistics_updated: List[str] = Field(default_factory=list, description="Tables whose statistics were refreshed")


class QueryStatistic(BaseModel):
    """Aggregate execution statistics of one cached query."""

    query_hash: str = Field(..., description="Query hash")
    query_text: str = Field(default="", description="Statement text")
    execution_count: int = Field(..., ge=0, description="Number of executions")
    total_elapsed_ms: float = Field(..., ge=0, description="Total elapsed time in milliseconds")
    total_cpu_ms: float = Field(default=0.0, ge=0, description="Total worker time in milliseconds")
    total_logical_reads: int = Field(default=0, ge=0, description="Total logical reads")

    @computed_field  # type: ignore[misc]
    @property
    def avg_elapsed_ms(self) -> float:
        """Average elapsed time per execution."""
        if self.execution_count == 0:
            return 0.0
        return self.total_elapsed_ms / self.execution_count


class MissingIndexRecommendation(BaseModel):
    """An index the engine believes is missing, with its estimated benefit."""

    schema_name: str = Field(..., description="Schema")
    table_name: str = Field(..., description="Table")
    equality_columns: List[str] = Field(default_factory=list, description="Equality predicate columns")
    inequality_columns: List[str] = Field(default_factory=list, description="Inequality predicate columns")
    included_columns: List[str] = Field(default_factory=list, description="Covering columns")
    avg_total_user_cost: float = Field(..., ge=0, description="Average cost of the affected queries")
    avg_user_impact: float = Field(..., ge=0, le=100, description="Estimated percent improvement")
    user_seeks: int = Field(default=0, ge=0, description="Seeks that would have used the index")
    user_scans: int = Field(default=0, ge=0, description="Scans that would have used the index")
    create_statement: Optional[str] = Field(default=None, description="Suggested CREATE INDEX statement")

    @computed_field  # type: ignore[misc]
    @property
    def improvement_measure(self) -> float:
        """estimated cost * (impact / 100) * (seeks + scans)"""
        return self.avg_total_user_cost * (self.avg_user_impact / 100.0) * (self.user_seeks + self.user_scans)


class OptimizationSummary(BaseModel):
    """Everything one optimization pass found and did for a database."""

    database_name: str
    records_analyzed: int = 0
    actions: List[MaintenanceAction] = Field(default_factory=list)
    apply_result: Optional[ApplyResult] = None
    top_queries: List[QueryStatistic] = Field(default_factory=list)
    recommendations: List[MissingIndexRecommendation] = Field(default_factory=list)
    dry_run: bool = False
