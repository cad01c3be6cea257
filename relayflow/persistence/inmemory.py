"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional

from ..context import WorkflowContext
from ..models import Workflow, WorkflowTemplate, as_utc, utcnow
from .models import (
    TERMINAL_RUN_STATUSES,
    WorkflowRun,
    WorkflowRunStep,
    WorkflowScheduledStep,
)
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share state with the store.

    Schedule fires are kept per workflow and forgotten once they fall
    ``fire_retention`` behind the occurrence being recorded. Schedules
    never look back further than their grace window.
    """

    fire_retention = timedelta(days=1)

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}
        self._runs: Dict[str, WorkflowRun] = {}
        self._run_steps: Dict[str, WorkflowRunStep] = {}
        self._scheduled: Dict[str, WorkflowScheduledStep] = {}
        self._fires: Dict[str, Dict[str, datetime]] = {}
        self._templates: Dict[str, WorkflowTemplate] = {}

    # ------------------------------------------------------------------
    async def save_workflow(self, workflow: Workflow) -> None:
        self._workflows[workflow.id] = workflow.model_copy(
            update={"updated_at": utcnow()}, deep=True
        )

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_workflows(
        self,
        organization_id: Optional[str] = None,
        trigger_type: Optional[str] = None,
        active_only: bool = False,
    ) -> list[Workflow]:
        return [
            wf.model_copy(deep=True)
            for wf in sorted(self._workflows.values(), key=lambda w: w.created_at)
            if (organization_id is None or wf.organization_id == organization_id)
            and (trigger_type is None or wf.trigger_type == trigger_type)
            and (not active_only or wf.is_active)
        ]

    async def delete_workflow(self, workflow_id: str) -> bool:
        if self._workflows.pop(workflow_id, None) is None:
            return False
        for run in self._runs.values():
            if run.workflow_id == workflow_id:
                run.workflow_id = None
        return True

    # ------------------------------------------------------------------
    async def create_run(self, run: WorkflowRun) -> None:
        self._runs[run.id] = run.model_copy(deep=True)

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def list_runs(
        self,
        workflow_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[WorkflowRun]:
        runs = [
            run.model_copy(deep=True)
            for run in self._runs.values()
            if (workflow_id is None or run.workflow_id == workflow_id)
            and (organization_id is None or run.organization_id == organization_id)
            and (status is None or run.status == status)
        ]
        return sorted(runs, key=lambda r: r.started_at, reverse=True)

    async def update_run_progress(
        self, run_id: str, current_step: int, context: WorkflowContext
    ) -> bool:
        run = self._runs.get(run_id)
        if run is None or run.status != "running":
            return False
        run.current_step = current_step
        run.context = context
        return True

    async def set_run_status(
        self,
        run_id: str,
        status: str,
        expected: Iterable[str],
        current_step: Optional[int] = None,
        context: Optional[WorkflowContext] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        run = self._runs.get(run_id)
        if run is None or run.status not in set(expected):
            return False
        run.status = status
        if current_step is not None:
            run.current_step = current_step
        if context is not None:
            run.context = context
        run.error_message = error_message
        run.completed_at = utcnow() if status in TERMINAL_RUN_STATUSES else None
        return True

    # ------------------------------------------------------------------
    async def add_run_step(self, run_step: WorkflowRunStep) -> None:
        self._run_steps[run_step.id] = run_step.model_copy(deep=True)

    async def finish_run_step(
        self,
        run_step_id: str,
        status: str,
        output: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> None:
        step = self._run_steps.get(run_step_id)
        if step is None or step.completed_at is not None:
            return
        step.status = status
        step.output_data = output
        step.error_message = error_message
        step.completed_at = utcnow()

    async def list_run_steps(self, run_id: str) -> list[WorkflowRunStep]:
        # dicts keep insertion order, which is execution order
        return [
            s.model_copy(deep=True) for s in self._run_steps.values() if s.run_id == run_id
        ]

    # ------------------------------------------------------------------
    async def create_scheduled_step(self, scheduled: WorkflowScheduledStep) -> None:
        self._scheduled[scheduled.id] = scheduled.model_copy(deep=True)

    async def list_due_scheduled_steps(
        self, now: datetime, limit: int = 100
    ) -> list[WorkflowScheduledStep]:
        due = [
            s
            for s in self._scheduled.values()
            if s.status == "pending" and s.execute_at <= now
        ]
        due.sort(key=lambda s: s.execute_at)
        return [s.model_copy(deep=True) for s in due[:limit]]

    async def list_scheduled_steps(self, run_id: str) -> list[WorkflowScheduledStep]:
        return [
            s.model_copy(deep=True) for s in self._scheduled.values() if s.run_id == run_id
        ]

    async def claim_scheduled_step(self, scheduled_id: str) -> bool:
        scheduled = self._scheduled.get(scheduled_id)
        if scheduled is None or scheduled.status != "pending":
            return False
        scheduled.status = "executed"
        return True

    async def cancel_scheduled_step(self, scheduled_id: str) -> None:
        scheduled = self._scheduled.get(scheduled_id)
        if scheduled is not None:
            scheduled.status = "cancelled"

    async def cancel_scheduled_steps(self, run_id: str) -> int:
        cancelled = 0
        for scheduled in self._scheduled.values():
            if scheduled.run_id == run_id and scheduled.status == "pending":
                scheduled.status = "cancelled"
                cancelled += 1
        return cancelled

    # ------------------------------------------------------------------
    async def record_schedule_fire(self, workflow_id: str, occurrence: str) -> bool:
        fired = self._fires.setdefault(workflow_id, {})
        if occurrence in fired:
            return False
        at = as_utc(datetime.fromisoformat(occurrence))
        horizon = at - self.fire_retention
        for stale in [key for key, when in fired.items() if when < horizon]:
            del fired[stale]
        fired[occurrence] = at
        return True

    # ------------------------------------------------------------------
    async def save_template(self, template: WorkflowTemplate) -> None:
        self._templates[template.id] = template.model_copy(deep=True)

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        template = self._templates.get(template_id)
        return template.model_copy(deep=True) if template else None

    async def list_templates(
        self, organization_id: Optional[str] = None
    ) -> list[WorkflowTemplate]:
        return [
            t.model_copy(deep=True)
            for t in self._templates.values()
            if t.is_global or (organization_id is not None and t.organization_id == organization_id)
        ]
