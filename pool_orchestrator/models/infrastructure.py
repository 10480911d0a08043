"""
Pydantic models for desired infrastructure state and provisioning results.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

from pool_orchestrator.models.migration import MigrationOutcome
from pool_orchestrator.models.placement import ResourceRef


NAME_PATTERN = r"^[A-Za-z0-9]([-A-Za-z0-9_.]*[A-Za-z0-9])?$"


class ElasticPoolSpec(BaseModel):
    """
    Desired configuration for an elastic pool.

    Immutable once built; change it through an explicit re-provisioning call.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=128, pattern=NAME_PATTERN, description="Pool name")
    edition: str = Field(default="Standard", description="Pool edition (Basic/Standard/Premium)")
    total_capacity_units: int = Field(..., gt=0, description="Total capacity units (eDTU/vCore) of the pool")
    per_database_min: int = Field(default=0, ge=0, description="Minimum capacity units per database")
    per_database_max: int = Field(..., gt=0, description="Maximum capacity units per database")
    max_size_gb: Optional[int] = Field(default=None, gt=0, description="Pool storage limit in GB")
    tags: Dict[str, str] = Field(default_factory=dict, description="Extra tags")

    @model_validator(mode="after")
    def validate_capacity_bounds(self) -> "ElasticPoolSpec":
        """Enforce per_database_min <= per_database_max <= total_capacity_units."""
        if self.per_database_min > self.per_database_max:
            raise ValueError(
                f"per_database_min ({self.per_database_min}) exceeds "
                f"per_database_max ({self.per_database_max})"
            )
        if self.per_database_max > self.total_capacity_units:
            raise ValueError(
                f"per_database_max ({self.per_database_max}) exceeds "
                f"total_capacity_units ({self.total_capacity_units})"
            )
        return self

    def to_properties(self) -> Dict[str, object]:
        """Provider-facing configuration of the pool (tags excluded)."""
        properties: Dict[str, object] = {
            "edition": self.edition,
            "capacity": self.total_capacity_units,
            "per_database_min": self.per_database_min,
            "per_database_max": self.per_database_max,
        }
        if self.max_size_gb is not None:
            properties["max_size_gb"] = self.max_size_gb
        return properties


class ServerSpec(BaseModel):
    """Desired logical server."""

    name: str = Field(..., min_length=1, max_length=63, pattern=NAME_PATTERN, description="Server name")
    admin_login: str = Field(default="pooladmin", min_length=1, description="Administrator login")
    admin_password: Optional[SecretStr] = Field(default=None, description="Administrator password")
    version: str = Field(default="12.0", description="Server version")


class FirewallRuleSpec(BaseModel):
    """A single IPv4 firewall rule."""

    name: str = Field(..., min_length=1, description="Rule name")
    start_ip: str = Field(..., description="First address of the range")
    end_ip: str = Field(..., description="Last address of the range")


class FirewallSpec(BaseModel):
    """Firewall rules applied to a newly created server."""

    allow_cloud_services: bool = Field(
        default=True, description="Create the 0.0.0.0 rule letting platform services connect"
    )
    allow_client_ip: bool = Field(
        default=True, description="Resolve the caller's public address and allow it (best-effort)"
    )
    rules: List[FirewallRuleSpec] = Field(default_factory=list, description="Explicit rules")


class DatabaseSpec(BaseModel):
    """Desired database: either a pool member or a standalone tier."""

    name: str = Field(..., min_length=1, max_length=128, pattern=NAME_PATTERN, description="Database name")
    pool_name: Optional[str] = Field(default=None, description="Pool the database belongs to")
    edition: Optional[str] = Field(default=None, description="Standalone edition")
    service_objective: Optional[str] = Field(default=None, description="Standalone service objective")
    max_size_gb: Optional[int] = Field(default=None, gt=0, description="Maximum size in GB")
    collation: str = Field(default="SQL_Latin1_General_CP1_CI_AS", description="Database collation")

    @model_validator(mode="after")
    def validate_placement(self) -> "DatabaseSpec":
        """A database is either pooled or standalone with a full tier."""
        has_tier = self.edition is not None or self.service_objective is not None
        if self.pool_name is not None and has_tier:
            raise ValueError(
                f"Database '{self.name}' declares both a pool and a standalone tier"
            )
        if self.pool_name is None and (self.edition is None or self.service_objective is None):
            raise ValueError(
                f"Standalone database '{self.name}' needs both edition and service_objective"
            )
        return self


class InfrastructureSpec(BaseModel):
    """Everything that lives in one resource group: server, rules, pools, databases."""

    resource_group: str = Field(..., min_length=1, max_length=90, pattern=NAME_PATTERN, description="Resource group")
    location: str = Field(..., min_length=1, description="Region")
    server: ServerSpec = Field(..., description="Logical server")
    firewall: FirewallSpec = Field(default_factory=FirewallSpec, description="Firewall rules")
    pools: List[ElasticPoolSpec] = Field(default_factory=list, description="Elastic pools")
    databases: List[DatabaseSpec] = Field(default_factory=list, description="Databases")
    tags: Dict[str, str] = Field(default_factory=dict, description="Tags applied to every created object")
    enable_auditing: bool = Field(default=False, description="Enable server auditing (best-effort)")

    @field_validator("pools")
    @classmethod
    def validate_unique_pools(cls, v: List[ElasticPoolSpec]) -> List[ElasticPoolSpec]:
        names = [pool.name for pool in v]
        if len(names) != len(set(names)):
            raise ValueError("Pool names must be unique")
        return v

    @model_validator(mode="after")
    def validate_pool_references(self) -> "InfrastructureSpec":
        """Every pooled database must reference a pool declared in this spec."""
        declared = {pool.name for pool in self.pools}
        for database in self.databases:
            if database.pool_name is not None and database.pool_name not in declared:
                raise ValueError(
                    f"Database '{database.name}' references undeclared pool '{database.pool_name}'"
                )
        return self


class ProvisionResult(BaseModel):
    """What a provisioning pass created, found, planned and migrated."""

    resource_group: str = Field(..., description="Resource group provisioned")
    created: List[ResourceRef] = Field(default_factory=list, description="Objects created in this pass")
    existing: List[ResourceRef] = Field(default_factory=list, description="Objects that already existed")
    planned: List[ResourceRef] = Field(default_factory=list, description="Objects a dry run would create")
    updated: List[ResourceRef] = Field(default_factory=list, description="Objects reconfigured in place")
    migrations: List[MigrationOutcome] = Field(default_factory=list, description="Drift migrations")
    warnings: List[str] = Field(default_factory=list, description="Best-effort step warnings")
    dry_run: bool = Field(default=False, description="True when nothing was mutated")
