"""Repository abstraction for workflow persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional, Protocol

from ..context import WorkflowContext
from ..models import Workflow, WorkflowTemplate
from .models import WorkflowRun, WorkflowRunStep, WorkflowScheduledStep


class WorkflowRepository(Protocol):
    """Protocol for workflow persistence backends.

    Status changes are compare-and-set operations: they only apply when the
    stored status is one of ``expected`` and report whether they did, which
    is how concurrent workers avoid advancing the same run twice.
    """

    # Workflows ---------------------------------------------------------
    async def save_workflow(self, workflow: Workflow) -> None:
        """Insert or replace a workflow definition and its steps."""

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Retrieve a workflow by id."""

    async def list_workflows(
        self,
        organization_id: Optional[str] = None,
        trigger_type: Optional[str] = None,
        active_only: bool = False,
    ) -> list[Workflow]:
        """Return workflows matching the filters."""

    async def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow; its runs survive with ``workflow_id`` cleared."""

    # Runs --------------------------------------------------------------
    async def create_run(self, run: WorkflowRun) -> None:
        """Persist a new run."""

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        """Retrieve a run by id."""

    async def list_runs(
        self,
        workflow_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[WorkflowRun]:
        """Return runs, newest first."""

    async def update_run_progress(
        self, run_id: str, current_step: int, context: WorkflowContext
    ) -> bool:
        """Store progress if the run is still ``running``."""

    async def set_run_status(
        self,
        run_id: str,
        status: str,
        expected: Iterable[str],
        current_step: Optional[int] = None,
        context: Optional[WorkflowContext] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Transition a run whose status is in ``expected``."""

    # Run steps ---------------------------------------------------------
    async def add_run_step(self, run_step: WorkflowRunStep) -> None:
        """Append an audit record."""

    async def finish_run_step(
        self,
        run_step_id: str,
        status: str,
        output: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> None:
        """Complete an audit record; completed records are never changed."""

    async def list_run_steps(self, run_id: str) -> list[WorkflowRunStep]:
        """Return a run's audit records in execution order."""

    # Scheduled steps ---------------------------------------------------
    async def create_scheduled_step(self, scheduled: WorkflowScheduledStep) -> None:
        """Persist a wake-up record."""

    async def list_due_scheduled_steps(
        self, now: datetime, limit: int = 100
    ) -> list[WorkflowScheduledStep]:
        """Pending wake-ups with ``execute_at <= now``, oldest first."""

    async def list_scheduled_steps(self, run_id: str) -> list[WorkflowScheduledStep]:
        """All wake-ups recorded for a run."""

    async def claim_scheduled_step(self, scheduled_id: str) -> bool:
        """Atomically move a wake-up from ``pending`` to ``executed``."""

    async def cancel_scheduled_step(self, scheduled_id: str) -> None:
        """Mark a single wake-up ``cancelled``."""

    async def cancel_scheduled_steps(self, run_id: str) -> int:
        """Cancel every pending wake-up of a run; returns how many."""

    # Schedule triggers -------------------------------------------------
    async def record_schedule_fire(self, workflow_id: str, occurrence: str) -> bool:
        """Remember that ``occurrence`` fired; ``False`` if it already had."""

    # Templates ---------------------------------------------------------
    async def save_template(self, template: WorkflowTemplate) -> None:
        """Insert or replace a template."""

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        """Retrieve a template by id."""

    async def list_templates(
        self, organization_id: Optional[str] = None
    ) -> list[WorkflowTemplate]:
        """Global templates plus those owned by ``organization_id``."""
