"""Run scheduler: owns run lifecycle and delayed resumption."""

from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from .config import EngineConfig
from .context import WorkflowContext
from .errors import RunNotFoundError
from .interpreter import StepInterpreter
from .models import DelayConfig, Workflow, as_utc, utcnow
from .persistence import (
    ACTIVE_RUN_STATUSES,
    WorkflowRepository,
    WorkflowRun,
    WorkflowScheduledStep,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_DELAY_UNITS = {
    "minutes": timedelta(minutes=1),
    "hours": timedelta(hours=1),
    "days": timedelta(days=1),
}


class RunScheduler:
    """Creates runs, persists delay wake-ups and resumes them when due.

    ``start_run`` executes synchronously: it returns once the run has
    completed, failed or paused on a delay step.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        interpreter: StepInterpreter,
        clock: Optional[Clock] = None,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self.repository = repository
        self.interpreter = interpreter
        self.clock = clock or utcnow
        self.config = config or EngineConfig()
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )
        interpreter.scheduler = self

    @asynccontextmanager
    async def _run_lock(self, run_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(run_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[run_id] = lock
        async with lock:
            yield

    # ------------------------------------------------------------------
    async def start_run(
        self,
        workflow: Workflow,
        context: WorkflowContext,
        trigger_data: Optional[Mapping[str, Any]] = None,
    ) -> WorkflowRun:
        """Create a run for ``workflow`` and execute it."""
        steps = sorted(workflow.steps, key=lambda s: s.step_order)
        run = WorkflowRun(
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            organization_id=workflow.organization_id,
            trigger_type=workflow.trigger_type,
            trigger_data=dict(trigger_data if trigger_data is not None else context.trigger.data),
            status="running",
            current_step=steps[0].step_order if steps else 0,
            context=context,
            started_at=self.clock(),
            steps=[s.model_copy(deep=True) for s in steps],
        )
        await self.repository.create_run(run)
        logger.info(
            f"Started run {run.id} of workflow {workflow.name!r} ({workflow.trigger_type} trigger)"
        )
        async with self._run_lock(run.id):
            return await self.interpreter.execute(run)

    def compute_execute_at(self, config: DelayConfig) -> datetime:
        return self.clock() + _DELAY_UNITS[config.delay_type] * config.delay_value

    async def schedule_delay(
        self,
        run: WorkflowRun,
        step_order: int,
        execute_at: datetime,
        context: WorkflowContext,
    ) -> WorkflowScheduledStep:
        """Persist a wake-up that resumes ``run`` at ``step_order``."""
        scheduled = WorkflowScheduledStep(
            run_id=run.id,
            step_order=step_order,
            execute_at=execute_at,
            context=context,
            created_at=self.clock(),
        )
        await self.repository.create_scheduled_step(scheduled)
        logger.info(f"Run {run.id} will resume at step {step_order} at {execute_at.isoformat()}")
        return scheduled

    # ------------------------------------------------------------------
    async def resume_due(self, now: Optional[datetime] = None) -> Tuple[int, int]:
        """Resume every paused run whose wake-up is due.

        Returns ``(resumed, errors)``. Each wake-up is claimed atomically
        before use, so concurrent workers never resume the same one twice.
        """
        now = as_utc(now or self.clock())
        due = await self.repository.list_due_scheduled_steps(
            now, limit=self.config.scheduler_batch_size
        )
        resumed = errors = 0
        for scheduled in due:
            if not await self.repository.claim_scheduled_step(scheduled.id):
                continue
            try:
                if await self._resume(scheduled):
                    resumed += 1
            except Exception as exc:
                errors += 1
                logger.error(f"Failed to resume run {scheduled.run_id}: {exc}")
        if due:
            logger.info(f"Resumed {resumed} of {len(due)} due runs ({errors} errors)")
        return resumed, errors

    async def _resume(self, scheduled: WorkflowScheduledStep) -> bool:
        async with self._run_lock(scheduled.run_id):
            run = await self.repository.get_run(scheduled.run_id)
            if run is None or run.status != "paused":
                logger.info(
                    f"Discarding wake-up {scheduled.id}: run {scheduled.run_id} is no longer paused"
                )
                await self.repository.cancel_scheduled_step(scheduled.id)
                return False
            if run.workflow_id is None:
                logger.info(f"Cancelling run {run.id}: its workflow was deleted")
                await self.repository.cancel_scheduled_step(scheduled.id)
                await self.repository.set_run_status(
                    run.id,
                    "cancelled",
                    expected=("paused",),
                    error_message="Workflow was deleted",
                )
                return False
            if not await self.repository.set_run_status(
                run.id,
                "running",
                expected=("paused",),
                current_step=scheduled.step_order,
                context=scheduled.context,
            ):
                await self.repository.cancel_scheduled_step(scheduled.id)
                return False

            logger.info(f"Resuming run {run.id} at step {scheduled.step_order}")
            run = run.model_copy(
                update={
                    "status": "running",
                    "current_step": scheduled.step_order,
                    "context": scheduled.context,
                }
            )
            await self.interpreter.execute(run, scheduled.step_order, scheduled.context)
            return True

    # ------------------------------------------------------------------
    async def cancel_run(self, run_id: str) -> WorkflowRun:
        """Cancel a running or paused run. Idempotent for terminal runs."""
        run = await self.repository.get_run(run_id)
        if run is None:
            raise RunNotFoundError(f"Run not found: {run_id}")
        if run.is_terminal:
            return run

        changed = await self.repository.set_run_status(
            run_id, "cancelled", expected=ACTIVE_RUN_STATUSES
        )
        dropped = await self.repository.cancel_scheduled_steps(run_id)
        if changed:
            logger.info(f"Cancelled run {run_id} ({dropped} pending wake-ups dropped)")
        stored = await self.repository.get_run(run_id)
        return stored if stored is not None else run

    async def run_forever(
        self,
        poll_interval: Optional[float] = None,
        lifespan: Optional[float] = None,
        tick: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> None:
        """Poll for due work until ``lifespan`` seconds pass (forever if None)."""
        interval = poll_interval if poll_interval is not None else self.config.scheduler_poll_interval
        tick = tick or self.resume_due
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan is not None else None
        logger.info(f"Scheduler polling every {interval}s")

        while deadline is None or loop.time() < deadline:
            try:
                await tick()
            except Exception as exc:
                logger.error(f"Scheduler tick failed: {exc}")
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                break
            await asyncio.sleep(interval if remaining is None else min(interval, remaining))
