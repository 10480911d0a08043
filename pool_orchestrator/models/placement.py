"""
Resource identity and database placement models.
"""
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


# Status the provider reports for a database that is serving traffic
DATABASE_ONLINE = "Online"


class ResourceKind(str, Enum):
    """Kinds of infrastructure objects managed through the resource store."""

    RESOURCE_GROUP = "resource_group"
    SERVER = "server"
    FIREWALL_RULE = "firewall_rule"
    ELASTIC_POOL = "elastic_pool"
    DATABASE = "database"
    ALERT_RULE = "alert_rule"
    AUTOMATION_SCHEDULE = "automation_schedule"
    REPLICATION_LINK = "replication_link"


def resource_group_id(resource_group: str) -> str:
    """Build the id of a resource group."""
    return resource_group


def server_id(resource_group: str, server: str) -> str:
    """Build the id of a server inside a resource group."""
    return f"{resource_group}/{server}"


def child_id(parent_server_id: str, name: str) -> str:
    """Build the id of a server child (pool, database, firewall rule, alert)."""
    return f"{parent_server_id}/{name}"


class ResourceRef(BaseModel):
    """Reference to an object in the resource store."""

    model_config = ConfigDict(frozen=True)

    kind: ResourceKind = Field(..., description="Resource kind")
    id: str = Field(..., description="Hierarchical resource id")

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


class ResourcePlacement(BaseModel):
    """Where a database currently lives: its server, pool or standalone tier, and status."""

    model_config = ConfigDict(frozen=True)

    server_id: str = Field(..., description="Id of the hosting server")
    pool_name: Optional[str] = Field(default=None, description="Elastic pool name, None when standalone")
    edition: Optional[str] = Field(default=None, description="Edition (e.g. Standard, Premium)")
    service_objective: Optional[str] = Field(default=None, description="Service objective (e.g. S0, P1)")
    status: Optional[str] = Field(default=None, description="Operational status reported by the provider")

    @property
    def is_standalone(self) -> bool:
        """Check if the database sits outside any pool."""
        return self.pool_name is None

    @property
    def is_online(self) -> bool:
        """Check if the provider reports the database as online."""
        return self.status == DATABASE_ONLINE

    @classmethod
    def from_snapshot(cls, snapshot: Dict[str, Any]) -> "ResourcePlacement":
        """Build a placement from a database snapshot returned by the resource store."""
        return cls(
            server_id=snapshot.get("server_id", ""),
            pool_name=snapshot.get("pool_name") or None,
            edition=snapshot.get("edition"),
            service_objective=snapshot.get("service_objective"),
            status=snapshot.get("status"),
        )
