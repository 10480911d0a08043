"""
Tests for the pipeline orchestrator.
"""
import pytest

from pool_orchestrator.exceptions import PipelineAbortedError, ProviderError
from pool_orchestrator.models.pipeline import RunStatus, StepStatus
from pool_orchestrator.services.pipeline_service import PipelineOrchestrator, Stage


def _stages(calls, fail=(), critical=(), disabled=()):
    def make(name):
        async def action(ctx):
            calls.append(name)
            if name in fail:
                raise ProviderError(f"{name} broke")
            return f"{name} done"
        return action

    return [
        Stage(
            name,
            make(name),
            critical=name in critical,
            enabled=name not in disabled,
            skip_reason=f"{name} disabled" if name in disabled else None,
        )
        for name in ["one", "two", "three", "four", "five"]
    ]


@pytest.mark.asyncio
async def test_all_stages_succeed(ctx):
    calls = []
    report = await PipelineOrchestrator().run(_stages(calls), ctx)

    assert report.status == RunStatus.SUCCESS
    assert calls == ["one", "two", "three", "four", "five"]
    assert [step.status for step in report.steps] == [StepStatus.COMPLETED] * 5
    assert report.steps[0].detail == "one done"
    assert report.errors == []
    assert report.run_id == "run-test"


@pytest.mark.asyncio
async def test_non_critical_failure_continues(ctx):
    calls = []
    report = await PipelineOrchestrator().run(_stages(calls, fail={"three"}), ctx)

    assert report.status == RunStatus.COMPLETED_WITH_ERRORS
    assert calls == ["one", "two", "three", "four", "five"]
    assert [step.status for step in report.steps] == [
        StepStatus.COMPLETED,
        StepStatus.COMPLETED,
        StepStatus.FAILED,
        StepStatus.COMPLETED,
        StepStatus.COMPLETED,
    ]
    assert len(report.errors) == 1
    assert report.errors[0].startswith("three:")
    assert "three broke" in report.steps[2].detail


@pytest.mark.asyncio
async def test_critical_failure_aborts_and_records_every_stage(ctx):
    calls = []
    stages = _stages(calls, fail={"one"}, critical={"one", "two"})

    with pytest.raises(PipelineAbortedError) as exc_info:
        await PipelineOrchestrator().run(stages, ctx)

    assert calls == ["one"]
    error = exc_info.value
    assert error.stage == "one"
    report = error.report
    assert report.status == RunStatus.FAILED
    assert report.aborted_at_stage == "one"
    assert len(report.steps) == len(stages)
    assert report.steps[0].status == StepStatus.FAILED
    assert all(step.status == StepStatus.SKIPPED for step in report.steps[1:])
    assert "aborted after critical stage 'one' failed" in report.steps[1].detail


@pytest.mark.asyncio
async def test_disabled_stage_is_skipped_without_running(ctx):
    calls = []
    report = await PipelineOrchestrator().run(_stages(calls, disabled={"two"}), ctx)

    assert "two" not in calls
    assert report.steps[1].status == StepStatus.SKIPPED
    assert report.steps[1].detail == "two disabled"
    assert report.status == RunStatus.SUCCESS


@pytest.mark.asyncio
async def test_report_collects_run_warnings(ctx):
    async def warns(run_ctx):
        run_ctx.warn("monitoring channel unreachable")
        return None

    report = await PipelineOrchestrator().run([Stage("warns", warns)], ctx)

    assert report.warnings == ["monitoring channel unreachable"]
    assert report.steps[0].detail == ""


@pytest.mark.asyncio
async def test_stage_durations_follow_the_clock(ctx, clock):
    async def slow(run_ctx):
        await run_ctx.sleeper.sleep(12)
        return "slept"

    report = await PipelineOrchestrator().run([Stage("slow", slow)], ctx)

    assert report.steps[0].duration_seconds == pytest.approx(12)
    assert report.total_duration_seconds == pytest.approx(12)
