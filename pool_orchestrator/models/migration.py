"""
Pydantic models for moving a database between pools and standalone tiers.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pool_orchestrator.exceptions import MigrationFailedError
from pool_orchestrator.models.placement import ResourcePlacement


class MigrationState(str, Enum):
    """States visited by a migration run."""

    VALIDATING = "validating"
    VALIDATED_ONLY = "validated_only"
    PREPARING = "preparing"
    MOVING = "moving"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class MigrationStatus(str, Enum):
    """Terminal result of a migration run."""

    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    VALIDATED_ONLY = "validated_only"


class PlacementSpec(BaseModel):
    """
    Declared placement of a database.

    Either a pool (``pool_name``) or a standalone tier
    (``edition`` + ``service_objective``).
    """

    model_config = ConfigDict(frozen=True)

    pool_name: Optional[str] = Field(default=None, description="Elastic pool name")
    edition: Optional[str] = Field(default=None, description="Standalone edition")
    service_objective: Optional[str] = Field(default=None, description="Standalone service objective")

    @property
    def targets_pool(self) -> bool:
        return self.pool_name is not None

    @property
    def targets_tier(self) -> bool:
        return self.edition is not None or self.service_objective is not None

    def matches(self, placement: ResourcePlacement) -> bool:
        """Check whether an actual placement satisfies this declaration."""
        if self.pool_name is not None:
            return placement.pool_name == self.pool_name
        if not placement.is_standalone:
            return False
        if self.edition is not None and placement.edition != self.edition:
            return False
        if self.service_objective is not None and placement.service_objective != self.service_objective:
            return False
        return True

    def describe(self) -> str:
        if self.pool_name is not None:
            return f"pool '{self.pool_name}'"
        return f"standalone {self.edition or '?'}/{self.service_objective or '?'}"


class MigrationRequest(BaseModel):
    """Request to move one database to a new placement."""

    database_id: str = Field(..., description="Database id (resource_group/server/database)")
    source_placement: Optional[PlacementSpec] = Field(
        default=None, description="Where the caller believes the database currently is"
    )
    target: PlacementSpec = Field(..., description="Desired placement")
    timeout_seconds: Optional[float] = Field(
        default=None, gt=0, description="Maximum time to wait for the move (default from settings)"
    )
    validate_only: bool = Field(default=False, description="Only run precondition checks")


class MigrationOutcome(BaseModel):
    """Terminal result of a migration run."""

    database_id: str = Field(..., description="Database id")
    status: MigrationStatus = Field(..., description="Terminal status")
    final_placement: Optional[ResourcePlacement] = Field(
        default=None, description="Placement read back after the run"
    )
    duration_seconds: float = Field(default=0.0, description="Elapsed time of the run")
    reason: Optional[str] = Field(default=None, description="Human-readable failure or timeout reason")
    error_code: Optional[str] = Field(default=None, description="Machine-readable failure code")
    states: List[MigrationState] = Field(default_factory=list, description="States visited, in order")
    warnings: List[str] = Field(default_factory=list, description="Best-effort step warnings")

    @property
    def succeeded(self) -> bool:
        return self.status == MigrationStatus.SUCCEEDED

    def raise_for_failure(self) -> None:
        """Raise MigrationFailedError if the run ended in FAILED."""
        if self.status == MigrationStatus.FAILED:
            raise MigrationFailedError(
                self.database_id,
                self.reason or "unknown",
                details={
                    "database_id": self.database_id,
                    "error_code": self.error_code,
                    "reason": self.reason,
                },
            )
