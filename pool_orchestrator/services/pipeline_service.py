"""
Deployment pipeline orchestrator.
Runs an ordered list of named stages and records each one.

Failure policy:
- critical stage fails -> the run aborts; remaining stages are recorded as
  SKIPPED and PipelineAbortedError (carrying the report) is raised
- any other stage fails -> recorded as FAILED, error appended, run continues
- disabled stage -> recorded as SKIPPED with its reason, never attempted

The report always holds exactly one step per configured stage.
"""
from typing import Awaitable, Callable, List, Optional

from pool_orchestrator.core.context import RunContext
from pool_orchestrator.exceptions import OrchestratorException, PipelineAbortedError
from pool_orchestrator.models.pipeline import DeploymentReport, PipelineStep, RunStatus, StepStatus

StageAction = Callable[[RunContext], Awaitable[Optional[str]]]


class Stage:
    """One named unit of pipeline work."""

    def __init__(
        self,
        name: str,
        action: StageAction,
        critical: bool = False,
        enabled: bool = True,
        skip_reason: Optional[str] = None,
    ):
        self.name = name
        self.action = action
        self.critical = critical
        self.enabled = enabled
        self.skip_reason = skip_reason

    def __repr__(self) -> str:
        return f"Stage(name={self.name!r}, critical={self.critical}, enabled={self.enabled})"


def _error_text(error: Exception) -> str:
    if isinstance(error, OrchestratorException):
        return error.message
    return str(error) or type(error).__name__


class PipelineOrchestrator:
    """Runs stages in order under the two-tier failure policy."""

    async def run(self, stages: List[Stage], ctx: RunContext) -> DeploymentReport:
        """
        Execute a pipeline.

        Args:
            stages: Stages in execution order
            ctx: Run context

        Returns:
            DeploymentReport with one step per stage

        Raises:
            PipelineAbortedError: If a critical stage failed; ``report`` is attached
        """
        steps: List[PipelineStep] = []
        errors: List[str] = []
        warning_mark = len(ctx.warnings)
        aborted_at: Optional[str] = None
        abort_reason = ""

        ctx.logger.info("pipeline_started", stages=[stage.name for stage in stages])

        for stage in stages:
            started_at = ctx.clock.now()

            if aborted_at is not None:
                steps.append(
                    PipelineStep(
                        name=stage.name,
                        status=StepStatus.SKIPPED,
                        detail=f"aborted after critical stage '{aborted_at}' failed",
                        critical=stage.critical,
                        started_at=started_at,
                    )
                )
                continue

            if not stage.enabled:
                reason = stage.skip_reason or "disabled"
                ctx.logger.info("stage_skipped", stage=stage.name, reason=reason)
                steps.append(
                    PipelineStep(
                        name=stage.name,
                        status=StepStatus.SKIPPED,
                        detail=reason,
                        critical=stage.critical,
                        started_at=started_at,
                    )
                )
                continue

            ctx.logger.info("stage_started", stage=stage.name, critical=stage.critical)
            try:
                detail = await stage.action(ctx)
            except Exception as e:
                message = _error_text(e)
                duration = ctx.elapsed_seconds(started_at)
                ctx.logger.error(
                    "stage_failed",
                    stage=stage.name,
                    critical=stage.critical,
                    error_type=type(e).__name__,
                    error=message,
                    duration_seconds=duration,
                )
                steps.append(
                    PipelineStep(
                        name=stage.name,
                        status=StepStatus.FAILED,
                        detail=message,
                        critical=stage.critical,
                        started_at=started_at,
                        duration_seconds=duration,
                    )
                )
                errors.append(f"{stage.name}: {message}")
                if stage.critical:
                    aborted_at = stage.name
                    abort_reason = message
                continue

            duration = ctx.elapsed_seconds(started_at)
            ctx.logger.info("stage_completed", stage=stage.name, duration_seconds=duration)
            steps.append(
                PipelineStep(
                    name=stage.name,
                    status=StepStatus.COMPLETED,
                    detail=detail or "",
                    critical=stage.critical,
                    started_at=started_at,
                    duration_seconds=duration,
                )
            )

        if aborted_at is not None:
            status = RunStatus.FAILED
        elif errors:
            status = RunStatus.COMPLETED_WITH_ERRORS
        else:
            status = RunStatus.SUCCESS

        report = DeploymentReport(
            run_id=ctx.run_id,
            status=status,
            steps=steps,
            errors=errors,
            warnings=ctx.warnings[warning_mark:],
            started_at=ctx.started_at,
            total_duration_seconds=ctx.elapsed_seconds(),
            aborted_at_stage=aborted_at,
        )
        ctx.logger.info(
            "pipeline_finished",
            status=status.value,
            completed=len(report.steps_with_status(StepStatus.COMPLETED)),
            failed=len(report.steps_with_status(StepStatus.FAILED)),
            skipped=len(report.steps_with_status(StepStatus.SKIPPED)),
            duration_seconds=report.total_duration_seconds,
        )

        if aborted_at is not None:
            raise PipelineAbortedError(aborted_at, abort_reason, report=report)
        return report
