"""Step interpreter: executes a run's snapshotted step list.

The interpreter is re-entrant. It can start from any ``step_order`` with a
restored context, which is how delayed runs resume after a process restart.
Progress is written before each step with a compare-and-set on the
``running`` status, so a run cancelled elsewhere stops at the next step
boundary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Protocol

from .actions import ActionRegistry, default_registry
from .conditions import evaluate_condition
from .config import EngineConfig
from .context import LoopState, WorkflowContext
from .errors import LoopLimitExceededError, RelayflowError, StepLimitExceededError
from .models import (
    ActionStep,
    ConditionStep,
    DelayConfig,
    DelayStep,
    LoopStep,
    WorkflowStep,
    step_action_type,
)
from .persistence import WorkflowRepository, WorkflowRun, WorkflowRunStep
from .persistence.models import WorkflowScheduledStep
from .services import ActionServices
from .templating import get_nested_value, render_value

logger = logging.getLogger(__name__)

OutcomeStatus = Literal["completed", "paused", "failed", "cancelled"]


class DelayScheduler(Protocol):
    """The part of the run scheduler the interpreter needs for delay steps."""

    def compute_execute_at(self, config: DelayConfig) -> datetime: ...

    async def schedule_delay(
        self,
        run: WorkflowRun,
        step_order: int,
        execute_at: datetime,
        context: WorkflowContext,
    ) -> WorkflowScheduledStep: ...


class _LoopBodyFailed(RelayflowError):
    pass


@dataclass
class _Outcome:
    status: OutcomeStatus
    context: WorkflowContext
    error: Optional[str] = None
    resume_order: Optional[int] = None


@dataclass
class _StepResult:
    context: WorkflowContext
    output: Dict[str, Any]
    next_order: Optional[int] = None
    stop: Optional[OutcomeStatus] = None
    resume_order: Optional[int] = None
    run_step_status: str = "success"


@dataclass
class _Budget:
    remaining: int
    executed: List[int] = field(default_factory=list)

    def spend(self, step_order: int) -> None:
        if self.remaining <= 0:
            raise StepLimitExceededError(
                f"Step execution limit exceeded after {len(self.executed)} steps"
            )
        self.remaining -= 1
        self.executed.append(step_order)


def _step_config(step: WorkflowStep) -> Dict[str, Any]:
    if isinstance(step, ActionStep):
        return dict(step.config)
    return step.config.model_dump(mode="json")


def _position(steps: List[WorkflowStep], step_order: int) -> Optional[int]:
    return next((i for i, s in enumerate(steps) if s.step_order == step_order), None)


class StepInterpreter:
    """Executes workflow steps for a run and persists the outcome."""

    def __init__(
        self,
        repository: WorkflowRepository,
        registry: Optional[ActionRegistry] = None,
        services: Optional[ActionServices] = None,
        config: Optional[EngineConfig] = None,
        scheduler: Optional[DelayScheduler] = None,
    ) -> None:
        self.repository = repository
        self.registry = registry or default_registry()
        self.services = services or ActionServices()
        self.config = config or EngineConfig()
        self.scheduler = scheduler

    # ------------------------------------------------------------------
    async def execute(
        self,
        run: WorkflowRun,
        start_order: Optional[int] = None,
        context: Optional[WorkflowContext] = None,
    ) -> WorkflowRun:
        """Run ``run`` from ``start_order`` (default ``run.current_step``).

        Returns the run as persisted after it completed, failed, paused or
        was found cancelled.
        """
        steps = sorted(run.steps, key=lambda s: s.step_order)
        context = context or run.context
        start_order = run.current_step if start_order is None else start_order
        index = _position(steps, start_order)
        if index is None:
            logger.info(
                f"Run {run.id}: step {start_order} does not exist, nothing left to execute"
            )
            index = len(steps)

        budget = _Budget(self.config.max_step_executions)
        try:
            outcome = await self._run_sequence(run, steps, index, context, budget)
        except StepLimitExceededError as exc:
            outcome = _Outcome("failed", context, str(exc))
        return await self._finish(run, outcome)

    async def _finish(self, run: WorkflowRun, outcome: _Outcome) -> WorkflowRun:
        repo = self.repository
        if outcome.status == "completed":
            applied = await repo.set_run_status(
                run.id, "completed", expected=("running",), context=outcome.context
            )
            if applied:
                logger.info(f"Run {run.id} of workflow {run.workflow_name!r} completed")
        elif outcome.status == "paused":
            applied = await repo.set_run_status(
                run.id,
                "paused",
                expected=("running",),
                current_step=outcome.resume_order,
                context=outcome.context,
            )
            if applied:
                logger.info(f"Run {run.id} paused until step {outcome.resume_order} is due")
        elif outcome.status == "failed":
            applied = await repo.set_run_status(
                run.id,
                "failed",
                expected=("running",),
                context=outcome.context,
                error_message=outcome.error,
            )
            if applied:
                logger.error(f"Run {run.id} of workflow {run.workflow_name!r} failed: {outcome.error}")
        else:
            applied = False
        if not applied:
            logger.info(f"Run {run.id} was cancelled; execution stopped")

        stored = await repo.get_run(run.id)
        return stored if stored is not None else run

    # ------------------------------------------------------------------
    async def _run_sequence(
        self,
        run: WorkflowRun,
        steps: List[WorkflowStep],
        index: int,
        context: WorkflowContext,
        budget: _Budget,
        in_loop: bool = False,
    ) -> _Outcome:
        while 0 <= index < len(steps):
            step = steps[index]
            if not await self.repository.update_run_progress(run.id, step.step_order, context):
                return _Outcome("cancelled", context)
            budget.spend(step.step_order)

            run_step = WorkflowRunStep(
                run_id=run.id,
                step_id=step.id,
                step_order=step.step_order,
                step_type=step.step_type,
                action_type=step_action_type(step),
                input_data={"config": _step_config(step), "context": context.as_lookup()},
            )
            await self.repository.add_run_step(run_step)

            try:
                result = await self._dispatch(run, steps, index, context, budget, in_loop)
            except StepLimitExceededError:
                await self.repository.finish_run_step(
                    run_step.id, "failed", error_message="Step execution limit exceeded"
                )
                raise
            except Exception as exc:  # a failing step fails the run, never the worker
                message = str(exc) or exc.__class__.__name__
                await self.repository.finish_run_step(run_step.id, "failed", error_message=message)
                logger.error(f"Run {run.id}: step {step.step_order} ({step.step_type}) failed: {message}")
                return _Outcome("failed", context, message)

            context = result.context
            await self.repository.finish_run_step(
                run_step.id, result.run_step_status, output=result.output
            )
            if result.stop is not None:
                return _Outcome(result.stop, context, resume_order=result.resume_order)
            if result.next_order is None:
                index += 1
            else:
                target = _position(steps, result.next_order)
                index = target if target is not None else len(steps)
        return _Outcome("completed", context)

    async def _dispatch(
        self,
        run: WorkflowRun,
        steps: List[WorkflowStep],
        index: int,
        context: WorkflowContext,
        budget: _Budget,
        in_loop: bool,
    ) -> _StepResult:
        step = steps[index]
        if isinstance(step, ActionStep):
            return await self._run_action(step, context)
        if isinstance(step, ConditionStep):
            return self._run_condition(step, context)
        if isinstance(step, DelayStep):
            if in_loop:
                raise RelayflowError("Delay steps are not supported inside a loop body")
            return await self._run_delay(run, steps, index, context)
        if isinstance(step, LoopStep):
            if in_loop:
                raise RelayflowError("Nested loops are not supported")
            return await self._run_loop(run, steps, index, context, budget)
        raise RelayflowError(f"Unknown step type: {step.step_type}")

    # ------------------------------------------------------------------
    async def _run_action(self, step: ActionStep, context: WorkflowContext) -> _StepResult:
        rendered = render_value(step.config, context.as_lookup())
        result = await self.registry.execute(
            step.action_type, rendered.value, context, self.services
        )
        output = dict(result.output)
        if rendered.warnings:
            logger.warning(
                f"Step {step.step_order} ({step.action_type}): {'; '.join(rendered.warnings)}"
            )
            output["warnings"] = rendered.warnings
        return _StepResult(context.with_step_output(step.step_order, output), output)

    def _run_condition(self, step: ConditionStep, context: WorkflowContext) -> _StepResult:
        met = evaluate_condition(step.config, context.as_lookup())
        next_order = None if met else step.else_goto_step
        output = {"condition_met": met, "next_step": next_order}
        return _StepResult(
            context.with_step_output(step.step_order, output), output, next_order=next_order
        )

    async def _run_delay(
        self,
        run: WorkflowRun,
        steps: List[WorkflowStep],
        index: int,
        context: WorkflowContext,
    ) -> _StepResult:
        step = steps[index]
        assert isinstance(step, DelayStep)
        if self.scheduler is None:
            raise RelayflowError("No scheduler configured for delay steps")
        resume_order = (
            steps[index + 1].step_order if index + 1 < len(steps) else step.step_order + 1
        )
        execute_at = self.scheduler.compute_execute_at(step.config)
        output = {
            "paused": True,
            "scheduled_for": execute_at.isoformat(),
            "delay_type": step.config.delay_type,
            "delay_value": step.config.delay_value,
            "resume_step": resume_order,
        }
        context = context.with_step_output(step.step_order, output)
        await self.scheduler.schedule_delay(run, resume_order, execute_at, context)
        return _StepResult(context, output, stop="paused", resume_order=resume_order)

    async def _run_loop(
        self,
        run: WorkflowRun,
        steps: List[WorkflowStep],
        index: int,
        context: WorkflowContext,
        budget: _Budget,
    ) -> _StepResult:
        step = steps[index]
        assert isinstance(step, LoopStep)
        config = step.config
        collection = get_nested_value(context.as_lookup(), config.collection_field)
        if not isinstance(collection, list):
            logger.warning(
                f"Loop collection {config.collection_field} not found or not an array"
            )
            output = {
                "iterations": 0,
                "skipped": True,
                "reason": "Collection not found or not an array",
            }
            return _StepResult(context.with_step_output(step.step_order, output), output)

        max_iterations = config.max_iterations or self.config.max_loop_iterations
        if len(collection) > max_iterations:
            raise LoopLimitExceededError(len(collection), max_iterations)

        body = steps[index + 1 :]
        body_orders = {s.step_order for s in body}
        results: List[Dict[str, Any]] = []
        logger.info(
            f"Run {run.id}: looping over {len(collection)} items of {config.collection_field}"
        )
        for position, item in enumerate(collection):
            iteration = context.with_loop(
                LoopState(
                    index=position,
                    item=item,
                    collection_length=len(collection),
                    item_variable=config.item_variable,
                )
            )
            outcome = await self._run_sequence(run, body, 0, iteration, budget, in_loop=True)
            if outcome.status == "failed":
                raise _LoopBodyFailed(outcome.error or f"Loop iteration {position} failed")
            results.append(
                {
                    "index": position,
                    "steps": {
                        str(order): out
                        for order, out in outcome.context.steps.items()
                        if order in body_orders
                    },
                }
            )
            if outcome.status == "cancelled":
                output = {"iterations": position + 1, "cancelled": True, "results": results}
                return _StepResult(context, output, stop="cancelled", run_step_status="skipped")

        output = {
            "iterations": len(collection),
            "collection_length": len(collection),
            "max_iterations": max_iterations,
            "results": results,
        }
        # the body consumed the rest of the step list, so the run ends here
        return _StepResult(
            context.with_step_output(step.step_order, output), output, stop="completed"
        )
