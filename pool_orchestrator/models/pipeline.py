"""
Pydantic models for deployment pipeline runs.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    """Whether a failing step stops the operation or only warns."""

    FATAL = "fatal"
    BEST_EFFORT = "best_effort"


class StepStatus(str, Enum):
    """Status of one pipeline stage."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    """Overall status of a pipeline run."""

    SUCCESS = "success"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


class PipelineStep(BaseModel):
    """A closed stage record. Appended to the run's audit trail, never changed."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Stage name")
    status: StepStatus = Field(..., description="Terminal stage status")
    detail: str = Field(default="", description="Result summary, error detail or skip reason")
    critical: bool = Field(default=False, description="Whether failure aborts the pipeline")
    started_at: datetime = Field(..., description="When the stage started (or was skipped)")
    duration_seconds: float = Field(default=0.0, ge=0, description="Stage duration")


class DeploymentReport(BaseModel):
    """Aggregate of one pipeline run, built once the run ends."""

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(..., description="Run identifier")
    status: RunStatus = Field(..., description="Overall status")
    steps: List[PipelineStep] = Field(default_factory=list, description="Stage records in execution order")
    errors: List[str] = Field(default_factory=list, description="Errors from failed stages")
    warnings: List[str] = Field(default_factory=list, description="Best-effort warnings")
    started_at: datetime = Field(..., description="Run start")
    total_duration_seconds: float = Field(default=0.0, ge=0, description="Run duration")
    aborted_at_stage: Optional[str] = Field(default=None, description="Critical stage that aborted the run")

    def steps_with_status(self, status: StepStatus) -> List[PipelineStep]:
        return [step for step in self.steps if step.status == status]
