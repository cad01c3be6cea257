"""Execution context threaded through one workflow run.

A context is an immutable snapshot. Steps never modify the context they were
given; they return a new snapshot carrying their output, which keeps every
``WorkflowRunStep`` input reconstructible and isolates concurrent runs.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import TriggerType, utcnow

if TYPE_CHECKING:
    from .models import Workflow

ENTITY_KEYS = ("contact", "opportunity", "task", "project", "company")


class TriggerInfo(BaseModel):
    """What started the run."""

    model_config = ConfigDict(frozen=True)

    type: TriggerType
    event_type: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class LoopState(BaseModel):
    """Iteration data, present only while a loop body executes."""

    model_config = ConfigDict(frozen=True)

    index: int
    item: Any = None
    collection_length: int
    item_variable: Optional[str] = None


class WorkflowContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    trigger: TriggerInfo
    contact: Optional[Dict[str, Any]] = None
    opportunity: Optional[Dict[str, Any]] = None
    task: Optional[Dict[str, Any]] = None
    project: Optional[Dict[str, Any]] = None
    company: Optional[Dict[str, Any]] = None
    steps: Dict[int, Any] = Field(default_factory=dict)
    organization_id: str
    triggered_by_user_id: Optional[str] = None
    triggered_at: datetime = Field(default_factory=utcnow)
    loop: Optional[LoopState] = None

    def with_step_output(self, step_order: int, output: Any) -> "WorkflowContext":
        """Return a new snapshot with ``output`` recorded for ``step_order``."""
        return self.model_copy(update={"steps": {**self.steps, step_order: output}})

    def with_loop(self, loop: Optional[LoopState]) -> "WorkflowContext":
        return self.model_copy(update={"loop": loop})

    def as_lookup(self) -> Dict[str, Any]:
        """Plain JSON-shaped mapping used for templates and conditions.

        Step outputs are keyed by the string form of their order. Inside a
        loop the current item is also bound to the loop's item variable.
        """
        lookup = {
            key: value
            for key, value in self.model_dump(mode="json").items()
            if value is not None
        }
        if self.loop is not None and self.loop.item_variable:
            lookup.setdefault(self.loop.item_variable, lookup["loop"].get("item"))
        return lookup


# a loop item variable may not shadow any of these
RESERVED_CONTEXT_KEYS = frozenset(WorkflowContext.model_fields)


def build_initial_context(
    workflow: "Workflow",
    trigger_data: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> WorkflowContext:
    """Build the first context snapshot of a run from its trigger data.

    Entity snapshots are read from keys named after the entity type, so an
    event on a task contributes ``trigger_data["task"]``.
    """
    entities = {
        key: dict(trigger_data[key])
        for key in ENTITY_KEYS
        if isinstance(trigger_data.get(key), Mapping)
    }
    return WorkflowContext(
        trigger=TriggerInfo(
            type=workflow.trigger_type,
            event_type=trigger_data.get("event_type"),
            entity_type=trigger_data.get("entity_type"),
            entity_id=trigger_data.get("entity_id"),
            data=dict(trigger_data),
        ),
        organization_id=workflow.organization_id,
        triggered_by_user_id=trigger_data.get("user_id"),
        triggered_at=now or utcnow(),
        **entities,
    )
