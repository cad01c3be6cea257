"""Data models for persisted run state."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..context import WorkflowContext
from ..models import StepType, TriggerType, WorkflowStep, new_id, utcnow

RunStatus = Literal["running", "completed", "failed", "cancelled", "paused"]
RunStepStatus = Literal["pending", "running", "success", "failed", "skipped"]
ScheduledStepStatus = Literal["pending", "executed", "cancelled"]

TERMINAL_RUN_STATUSES = frozenset({"completed", "failed", "cancelled"})
ACTIVE_RUN_STATUSES = frozenset({"running", "paused"})


class WorkflowRun(BaseModel):
    """One execution instance of a workflow.

    ``steps`` is the step list as it existed when the run started; later
    definition edits never reach an in-flight run.
    """

    id: str = Field(default_factory=new_id)
    workflow_id: Optional[str] = None
    workflow_name: str
    organization_id: str
    trigger_type: TriggerType
    trigger_data: Dict[str, Any] = Field(default_factory=dict)
    status: RunStatus = "running"
    current_step: int = 0
    context: WorkflowContext
    error_message: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    steps: List[WorkflowStep] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES


class WorkflowRunStep(BaseModel):
    """Audit record of one step execution within a run."""

    id: str = Field(default_factory=new_id)
    run_id: str
    step_id: Optional[str] = None
    step_order: int
    step_type: StepType
    action_type: Optional[str] = None
    status: RunStepStatus = "running"
    input_data: Optional[Dict[str, Any]] = None
    output_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class WorkflowScheduledStep(BaseModel):
    """Durable wake-up record for a run paused by a delay step."""

    id: str = Field(default_factory=new_id)
    run_id: str
    step_order: int
    execute_at: datetime
    context: WorkflowContext
    status: ScheduledStepStatus = "pending"
    created_at: datetime = Field(default_factory=utcnow)
