"""
Typed builder for the statements sent through the query channel.

Identifiers are always bracket-quoted and validated; numeric parameters are
validated as integers before they are rendered. Nothing here concatenates
caller-supplied text into SQL unquoted.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pool_orchestrator.exceptions import PreconditionError
from pool_orchestrator.models.maintenance import MaintenanceAction, MaintenanceActionType

MAX_IDENTIFIER_LENGTH = 128


def quote_identifier(name: str) -> str:
    """
    Bracket-quote a T-SQL identifier.

    Raises:
        PreconditionError: If the identifier is empty, too long or contains NUL
    """
    if not name or len(name) > MAX_IDENTIFIER_LENGTH or "\x00" in name:
        raise PreconditionError(
            f"Invalid identifier {name!r}",
            code="invalid_identifier",
            details={"identifier": name},
        )
    return "[" + name.replace("]", "]]") + "]"


def _non_negative_int(value: int, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise PreconditionError(
            f"{name} must be a non-negative integer, got {value!r}",
            code="invalid_parameter",
            details={name: value},
        )
    return value


def parse_column_list(columns: Optional[str]) -> List[str]:
    """Split a DMV column list like ``[a], [b]]c]`` into plain names."""
    if not columns:
        return []
    names = []
    for part in columns.split(","):
        part = part.strip()
        if part.startswith("[") and part.endswith("]"):
            part = part[1:-1].replace("]]", "]")
        if part:
            names.append(part)
    return names


class IndexMaintenanceStatement(BaseModel):
    """ALTER INDEX ... REBUILD | REORGANIZE for one index."""

    model_config = ConfigDict(frozen=True)

    schema_name: str
    table_name: str
    index_name: str
    action: MaintenanceActionType
    online: bool = False

    @model_validator(mode="after")
    def validate_action(self) -> "IndexMaintenanceStatement":
        if self.action == MaintenanceActionType.NO_ACTION:
            raise ValueError("no_action has no maintenance statement")
        return self

    @classmethod
    def for_action(cls, action: MaintenanceAction, online: bool = False) -> "IndexMaintenanceStatement":
        record = action.record
        return cls(
            schema_name=record.schema_name,
            table_name=record.table_name,
            index_name=record.index_name,
            action=action.action,
            online=online,
        )

    def render(self) -> str:
        target = (
            f"ALTER INDEX {quote_identifier(self.index_name)} ON "
            f"{quote_identifier(self.schema_name)}.{quote_identifier(self.table_name)}"
        )
        if self.action == MaintenanceActionType.REBUILD:
            if self.online:
                return f"{target} REBUILD WITH (ONLINE = ON);"
            return f"{target} REBUILD;"
        return f"{target} REORGANIZE;"


class UpdateStatisticsStatement(BaseModel):
    """UPDATE STATISTICS for one table."""

    model_config = ConfigDict(frozen=True)

    schema_name: str
    table_name: str

    def render(self) -> str:
        return (
            f"UPDATE STATISTICS {quote_identifier(self.schema_name)}."
            f"{quote_identifier(self.table_name)};"
        )


class CreateIndexStatement(BaseModel):
    """CREATE NONCLUSTERED INDEX suggested by a missing-index recommendation."""

    model_config = ConfigDict(frozen=True)

    schema_name: str
    table_name: str
    index_name: str
    key_columns: List[str] = Field(..., min_length=1)
    included_columns: List[str] = Field(default_factory=list)

    def render(self) -> str:
        keys = ", ".join(quote_identifier(column) for column in self.key_columns)
        statement = (
            f"CREATE NONCLUSTERED INDEX {quote_identifier(self.index_name)} ON "
            f"{quote_identifier(self.schema_name)}.{quote_identifier(self.table_name)} ({keys})"
        )
        if self.included_columns:
            included = ", ".join(quote_identifier(column) for column in self.included_columns)
            statement += f" INCLUDE ({included})"
        return statement + ";"


def fragmentation_query(page_count_floor: int) -> str:
    """Index fragmentation of the current database, above the page-count floor."""
    floor = _non_negative_int(page_count_floor, "page_count_floor")
    return (
        "SELECT s.name AS schema_name, t.name AS table_name, i.name AS index_name, "
        "ips.avg_fragmentation_in_percent AS fragmentation_percent, "
        "ips.page_count AS page_count "
        "FROM sys.dm_db_index_physical_stats(DB_ID(), NULL, NULL, NULL, 'LIMITED') AS ips "
        "JOIN sys.indexes AS i ON ips.object_id = i.object_id AND ips.index_id = i.index_id "
        "JOIN sys.tables AS t ON i.object_id = t.object_id "
        "JOIN sys.schemas AS s ON t.schema_id = s.schema_id "
        f"WHERE ips.page_count > {floor} AND i.name IS NOT NULL "
        "ORDER BY ips.avg_fragmentation_in_percent DESC;"
    )


def top_queries_query(limit: int) -> str:
    """Cached queries ordered by average elapsed time per execution."""
    n = _non_negative_int(limit, "limit")
    if n < 1:
        raise PreconditionError("limit must be at least 1", code="invalid_parameter", details={"limit": limit})
    return (
        f"SELECT TOP ({n}) CONVERT(VARCHAR(64), qs.query_hash, 1) AS query_hash, "
        "SUBSTRING(st.text, (qs.statement_start_offset / 2) + 1, "
        "((CASE qs.statement_end_offset WHEN -1 THEN DATALENGTH(st.text) "
        "ELSE qs.statement_end_offset END - qs.statement_start_offset) / 2) + 1) AS query_text, "
        "qs.execution_count AS execution_count, "
        "qs.total_elapsed_time / 1000.0 AS total_elapsed_ms, "
        "qs.total_worker_time / 1000.0 AS total_cpu_ms, "
        "qs.total_logical_reads AS total_logical_reads "
        "FROM sys.dm_exec_query_stats AS qs "
        "CROSS APPLY sys.dm_exec_sql_text(qs.sql_handle) AS st "
        "WHERE qs.execution_count > 0 "
        "ORDER BY qs.total_elapsed_time / qs.execution_count DESC;"
    )


MISSING_INDEX_QUERY = (
    "SELECT s.name AS schema_name, t.name AS table_name, "
    "mid.equality_columns, mid.inequality_columns, mid.included_columns, "
    "migs.avg_total_user_cost, migs.avg_user_impact, migs.user_seeks, migs.user_scans "
    "FROM sys.dm_db_missing_index_groups AS mig "
    "JOIN sys.dm_db_missing_index_group_stats AS migs ON migs.group_handle = mig.index_group_handle "
    "JOIN sys.dm_db_missing_index_details AS mid ON mig.index_handle = mid.index_handle "
    "JOIN sys.tables AS t ON mid.object_id = t.object_id "
    "JOIN sys.schemas AS s ON t.schema_id = s.schema_id "
    "WHERE mid.database_id = DB_ID() "
    "ORDER BY migs.avg_total_user_cost * (migs.avg_user_impact / 100.0) "
    "* (migs.user_seeks + migs.user_scans) DESC;"
)


SAMPLE_DATA_STATEMENTS = (
    "IF OBJECT_ID(N'dbo.SampleCustomers', N'U') IS NULL "
    "CREATE TABLE dbo.SampleCustomers ("
    "CustomerId INT IDENTITY(1,1) PRIMARY KEY, "
    "Name NVARCHAR(100) NOT NULL, "
    "Email NVARCHAR(256) NOT NULL, "
    "CreatedAt DATETIME2 NOT NULL DEFAULT SYSUTCDATETIME());",
    "IF OBJECT_ID(N'dbo.SampleOrders', N'U') IS NULL "
    "CREATE TABLE dbo.SampleOrders ("
    "OrderId INT IDENTITY(1,1) PRIMARY KEY, "
    "CustomerId INT NOT NULL REFERENCES dbo.SampleCustomers(CustomerId), "
    "Amount DECIMAL(12, 2) NOT NULL, "
    "OrderedAt DATETIME2 NOT NULL DEFAULT SYSUTCDATETIME());",
    "IF NOT EXISTS (SELECT 1 FROM dbo.SampleCustomers) "
    "INSERT INTO dbo.SampleCustomers (Name, Email) VALUES "
    "(N'Contoso', N'ops@contoso.example'), "
    "(N'Fabrikam', N'ops@fabrikam.example'), "
    "(N'Northwind', N'ops@northwind.example');",
    "IF NOT EXISTS (SELECT 1 FROM dbo.SampleOrders) "
    "INSERT INTO dbo.SampleOrders (CustomerId, Amount) "
    "SELECT CustomerId, 100.00 * CustomerId FROM dbo.SampleCustomers;",
)
