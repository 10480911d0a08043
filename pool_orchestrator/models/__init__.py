from pool_orchestrator.models.placement import ResourceKind, ResourcePlacement, ResourceRef
from pool_orchestrator.models.migration import (
    MigrationOutcome,
    MigrationRequest,
    MigrationState,
    MigrationStatus,
    PlacementSpec,
)
from pool_orchestrator.models.maintenance import FragmentationRecord, MaintenanceAction, MaintenanceActionType
from pool_orchestrator.models.pipeline import DeploymentReport, PipelineStep, RunStatus, Severity, StepStatus

__all__ = [
    "ResourceKind",
    "ResourcePlacement",
    "ResourceRef",
    "MigrationOutcome",
    "MigrationRequest",
    "MigrationState",
    "MigrationStatus",
    "PlacementSpec",
    "FragmentationRecord",
    "MaintenanceAction",
    "MaintenanceActionType",
    "DeploymentReport",
    "PipelineStep",
    "RunStatus",
    "Severity",
    "StepStatus",
]
