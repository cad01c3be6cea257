"""Workflow definition models: triggers, steps, workflows and templates."""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union, get_args

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

TriggerType = Literal["event", "schedule", "manual", "webhook"]
StepType = Literal["action", "condition", "delay", "loop"]
ActionType = Literal[
    # Communication
    "send_email",
    "send_notification",
    "send_push",
    # Tasks
    "create_task",
    "update_task",
    "bulk_update_tasks",
    # Contacts
    "create_contact",
    "update_contact",
    "add_tag",
    "remove_tag",
    # Opportunities
    "update_opportunity",
    "create_project_from_opportunity",
    # Projects
    "create_project",
    "create_project_from_template",
    # AI
    "ai_generate",
    "ai_categorize",
    "ai_summarize",
    # Integrations
    "webhook_call",
    "create_activity",
    "send_slack",
]
ConditionOperator = Literal[
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "starts_with",
    "ends_with",
    "gt",
    "gte",
    "lt",
    "lte",
    "is_empty",
    "is_not_empty",
    "in",
    "not_in",
]

ACTION_TYPES: tuple[str, ...] = get_args(ActionType)
CONDITION_OPERATORS: tuple[str, ...] = get_args(ConditionOperator)

_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_id() -> str:
    return str(uuid.uuid4())


# ----------------------------------------------------------------------
# Trigger configuration


class EventTriggerConfig(BaseModel):
    """Start a run when a matching domain event is emitted."""

    event_types: List[str] = Field(default_factory=list)
    entity_type: Optional[str] = None
    filters: Dict[str, Any] = Field(default_factory=dict)


class ScheduleTriggerConfig(BaseModel):
    """Start a run on a recurring schedule."""

    schedule_type: Literal["daily", "weekly", "monthly", "cron"]
    time: Optional[str] = Field(default=None, description="HH:MM")
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6, description="Sunday = 0")
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    cron: Optional[str] = None
    timezone: Optional[str] = None

    @field_validator("time")
    @classmethod
    def _check_time(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not _TIME_RE.match(v):
            raise ValueError("Invalid time format (HH:MM)")
        return v

    @model_validator(mode="after")
    def _require_cron(self) -> "ScheduleTriggerConfig":
        if self.schedule_type == "cron" and not self.cron:
            raise ValueError("cron expression is required for cron schedules")
        return self


class WebhookTriggerConfig(BaseModel):
    """Start a run from an inbound webhook call."""

    secret: Optional[str] = None
    allowed_ips: List[str] = Field(default_factory=list)


class ManualTriggerConfig(BaseModel):
    description: Optional[str] = None


TriggerConfig = Union[
    EventTriggerConfig, ScheduleTriggerConfig, WebhookTriggerConfig, ManualTriggerConfig
]

TRIGGER_CONFIG_MODELS: Dict[str, type[BaseModel]] = {
    "event": EventTriggerConfig,
    "schedule": ScheduleTriggerConfig,
    "webhook": WebhookTriggerConfig,
    "manual": ManualTriggerConfig,
}


# ----------------------------------------------------------------------
# Control flow configuration


class ConditionConfig(BaseModel):
    field: str = Field(..., min_length=1, description="Dot path into the context")
    operator: ConditionOperator
    value: Any = None


class DelayConfig(BaseModel):
    delay_type: Literal["minutes", "hours", "days"] = "minutes"
    delay_value: int = Field(..., ge=1)


class LoopConfig(BaseModel):
    collection_field: str = Field(..., min_length=1)
    item_variable: str = Field(default="item", min_length=1)
    max_iterations: Optional[int] = Field(default=None, ge=1)


# ----------------------------------------------------------------------
# Steps


class StepBase(BaseModel):
    id: str = Field(default_factory=new_id)
    workflow_id: Optional[str] = None
    step_order: int = Field(..., ge=1)
    created_at: datetime = Field(default_factory=utcnow)


class ActionStep(StepBase):
    """Invoke one registered action executor.

    ``config`` stays raw: template tokens are resolved against the context
    before the registry validates it into the action's config model.
    """

    step_type: Literal["action"] = "action"
    action_type: str = Field(..., min_length=1)
    config: Dict[str, Any] = Field(default_factory=dict)


class ConditionStep(StepBase):
    step_type: Literal["condition"] = "condition"
    config: ConditionConfig
    else_goto_step: Optional[int] = None


class DelayStep(StepBase):
    step_type: Literal["delay"] = "delay"
    config: DelayConfig


class LoopStep(StepBase):
    step_type: Literal["loop"] = "loop"
    config: LoopConfig


WorkflowStep = Annotated[
    Union[ActionStep, ConditionStep, DelayStep, LoopStep],
    Field(discriminator="step_type"),
]

_step_adapter: TypeAdapter[WorkflowStep] = TypeAdapter(WorkflowStep)


def parse_step(data: Any) -> WorkflowStep:
    """Validate a raw mapping into the matching step class."""
    return _step_adapter.validate_python(data)


def step_action_type(step: WorkflowStep) -> Optional[str]:
    return step.action_type if isinstance(step, ActionStep) else None


def renumber_steps(steps: List[WorkflowStep], workflow_id: Optional[str]) -> List[WorkflowStep]:
    """Copy ``steps`` with fresh ids and dense orders starting at 1.

    ``else_goto_step`` targets are remapped to the new orders.
    """
    ordered = sorted(steps, key=lambda s: s.step_order)
    mapping = {step.step_order: index for index, step in enumerate(ordered, start=1)}
    copied: List[WorkflowStep] = []
    for step in ordered:
        update: Dict[str, Any] = {
            "id": new_id(),
            "workflow_id": workflow_id,
            "step_order": mapping[step.step_order],
            "created_at": utcnow(),
        }
        if isinstance(step, ConditionStep) and step.else_goto_step is not None:
            update["else_goto_step"] = mapping.get(step.else_goto_step, step.else_goto_step)
        copied.append(step.model_copy(update=update, deep=True))
    return copied


class _TriggerConfigMixin(BaseModel):
    """Parses ``trigger_config`` into the model matching ``trigger_type``."""

    @model_validator(mode="before")
    @classmethod
    def _parse_trigger_config(cls, data: Any) -> Any:
        if isinstance(data, dict):
            model = TRIGGER_CONFIG_MODELS.get(data.get("trigger_type"))
            raw = data.get("trigger_config")
            if model is not None and not isinstance(raw, model):
                if isinstance(raw, BaseModel):
                    raw = raw.model_dump()
                data = {**data, "trigger_config": model.model_validate(raw or {})}
        return data


class Workflow(_TriggerConfigMixin):
    """An organization-scoped automation definition."""

    id: str = Field(default_factory=new_id)
    organization_id: str
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    is_active: bool = True
    trigger_type: TriggerType
    trigger_config: TriggerConfig
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    steps: List[WorkflowStep] = Field(default_factory=list)

    @field_validator("steps")
    @classmethod
    def _sort_steps(cls, steps: List[WorkflowStep]) -> List[WorkflowStep]:
        return sorted(steps, key=lambda s: s.step_order)

    @model_validator(mode="after")
    def _claim_steps(self) -> "Workflow":
        for step in self.steps:
            if step.workflow_id is None:
                step.workflow_id = self.id
        return self

    def get_step(self, step_order: int) -> Optional[WorkflowStep]:
        return next((s for s in self.steps if s.step_order == step_order), None)


class WorkflowTemplate(_TriggerConfigMixin):
    """Reusable workflow blueprint, global or organization-owned."""

    id: str = Field(default_factory=new_id)
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    trigger_type: TriggerType
    trigger_config: TriggerConfig
    steps: List[WorkflowStep] = Field(default_factory=list)
    is_global: bool = False
    organization_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_owner(self) -> "WorkflowTemplate":
        if not self.is_global and not self.organization_id:
            raise ValueError("organization templates require organization_id")
        return self

    def available_to(self, organization_id: str) -> bool:
        return self.is_global or self.organization_id == organization_id

    def instantiate(
        self,
        organization_id: str,
        name: Optional[str] = None,
        created_by: Optional[str] = None,
        is_active: bool = True,
    ) -> Workflow:
        """Create a new workflow with copies of this template's steps."""
        workflow_id = new_id()
        return Workflow(
            id=workflow_id,
            organization_id=organization_id,
            name=name or self.name,
            description=self.description,
            is_active=is_active,
            trigger_type=self.trigger_type,
            trigger_config=self.trigger_config.model_copy(deep=True),
            created_by=created_by,
            steps=renumber_steps(self.steps, workflow_id),
        )
