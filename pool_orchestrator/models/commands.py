"""
Configuration records accepted by the command entry points, and their results.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, SecretStr

from pool_orchestrator.models.infrastructure import InfrastructureSpec


class CommandStatus(str, Enum):
    """Result status of a command."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    VALIDATED_ONLY = "validated_only"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    DRY_RUN = "dry_run"


# Exit codes handed back to shells and automation
EXIT_CODES: Dict[CommandStatus, int] = {
    CommandStatus.SUCCEEDED: 0,
    CommandStatus.VALIDATED_ONLY: 0,
    CommandStatus.DRY_RUN: 0,
    CommandStatus.FAILED: 1,
    CommandStatus.COMPLETED_WITH_ERRORS: 2,
    CommandStatus.TIMED_OUT: 3,
}


class CommandResult(BaseModel):
    """Structured result of a command run."""

    command: str = Field(..., description="Command name")
    run_id: str = Field(..., description="Run identifier")
    status: CommandStatus = Field(..., description="Result status")
    details: Dict[str, Any] = Field(default_factory=dict, description="Command-specific result fields")
    error: Optional[Dict[str, Any]] = Field(default=None, description="Error detail when the command failed")
    warnings: List[str] = Field(default_factory=list, description="Best-effort warnings")
    report_path: Optional[str] = Field(default=None, description="Generated report artifact")

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.status]


class ProvisionConfig(BaseModel):
    """Configuration for the provision command."""

    infrastructure: List[InfrastructureSpec] = Field(..., min_length=1, description="One spec per resource group")
    dry_run: bool = Field(default=False, description="Only report what would be created")


class OptimizeConfig(BaseModel):
    """Configuration for the optimize command."""

    server_address: str = Field(..., description="Fully qualified server address")
    databases: List[str] = Field(..., min_length=1, description="Databases to optimize")
    credential_token: Optional[SecretStr] = Field(default=None, description="Query channel credential")
    page_count_floor: Optional[int] = Field(
        default=None, ge=0, description="Override of the fragmentation page-count floor"
    )
    top_queries: Optional[int] = Field(default=None, ge=1, le=100, description="Expensive queries to report")
    update_statistics: bool = Field(default=True, description="Refresh statistics of maintained tables")
    dry_run: bool = Field(default=False, description="Analyze and classify without running maintenance")


class MonitoringConfig(BaseModel):
    """Alerting set up by the deployment pipeline."""

    enabled: bool = Field(default=False, description="Create alert rules")
    capacity_alert_threshold_percent: float = Field(
        default=80.0, gt=0, le=100, description="Pool capacity usage that raises an alert"
    )
    storage_alert_threshold_percent: float = Field(
        default=90.0, gt=0, le=100, description="Pool storage usage that raises an alert"
    )
    notification_channel: Optional[str] = Field(default=None, description="Where alerts are delivered")


class DeploymentConfig(BaseModel):
    """Configuration for the deploy-all pipeline."""

    infrastructure: List[InfrastructureSpec] = Field(..., min_length=1, description="One spec per resource group")
    secondary_location: Optional[str] = Field(
        default=None, description="Region for geo-replicated secondaries; disabled when unset"
    )
    secondary_suffix: str = Field(default="-secondary", description="Suffix for secondary resource names")
    sample_data: bool = Field(default=False, description="Load sample schema and rows")
    optimize: bool = Field(default=False, description="Run an optimization pass after deployment")
    credential_token: Optional[SecretStr] = Field(default=None, description="Query channel credential")
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig, description="Alerting")
    automation: bool = Field(default=False, description="Register the nightly maintenance schedule")
    automation_schedule: str = Field(default="0 2 * * *", description="Cron expression for maintenance")
