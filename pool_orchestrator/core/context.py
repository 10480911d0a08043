"""
Run-scoped context shared by every component of one orchestration run.

Replaces process-wide logging and warning accumulation: each run creates its
own context, passes it down, and hands it back with the result.

Usage:
    >>> ctx = RunContext("provision")
    >>> await ctx.guard("resolve_client_ip", Severity.BEST_EFFORT, resolve)
    >>> ctx.warnings
    ['resolve_client_ip: connection refused']
"""
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, TypeVar
from uuid import uuid4

from pool_orchestrator.config.logging import get_logger
from pool_orchestrator.core.protocols import AsyncioSleeper, Clock, Sleeper, SystemClock
from pool_orchestrator.models.pipeline import Severity

T = TypeVar("T")


class RunContext:
    """Identity, clock, logger and warning list of one run."""

    def __init__(
        self,
        command: str,
        clock: Optional[Clock] = None,
        sleeper: Optional[Sleeper] = None,
        run_id: Optional[str] = None,
    ):
        self.command = command
        self.run_id = run_id or f"run-{uuid4().hex[:12]}"
        self.clock: Clock = clock or SystemClock()
        self.sleeper: Sleeper = sleeper or AsyncioSleeper()
        self.started_at: datetime = self.clock.now()
        self.logger = get_logger("pool_orchestrator.run").bind(
            run_id=self.run_id, command=command
        )
        self.warnings: List[str] = []

    def elapsed_seconds(self, since: Optional[datetime] = None) -> float:
        """Seconds elapsed on the run's clock since ``since`` (default: run start)."""
        start = since or self.started_at
        return max((self.clock.now() - start).total_seconds(), 0.0)

    def warn(self, message: str, **fields: Any) -> None:
        """Record a non-fatal problem."""
        self.warnings.append(message)
        self.logger.warning("run_warning", message=message, **fields)

    async def guard(
        self,
        operation: str,
        severity: Severity,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> Optional[T]:
        """
        Run one step under its declared severity.

        FATAL steps propagate their exception. BEST_EFFORT steps turn any
        exception into a warning and return None.

        Args:
            operation: Step name used in the warning and log event
            severity: Severity of the step
            func: Coroutine function to call
            *args: Positional arguments for func
            **kwargs: Keyword arguments for func

        Returns:
            The step's result, or None when a best-effort step failed
        """
        if severity == Severity.FATAL:
            return await func(*args, **kwargs)

        try:
            return await func(*args, **kwargs)
        except Exception as e:
            self.warn(
                f"{operation}: {e}",
                operation=operation,
                error_type=type(e).__name__,
            )
            return None
