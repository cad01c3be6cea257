"""Message contracts exchanged between the host application and the engine."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .context import WorkflowContext
from .models import Workflow, new_id, utcnow


class WorkflowEvent(BaseModel):
    """A domain event emitted by the host application.

    ``entity_data`` is the snapshot of the entity the event is about; it is
    what event filters are matched against and what lands in the run context.
    """

    event_id: str = Field(default_factory=new_id)
    event_type: str
    entity_type: str
    entity_id: str
    entity_data: Dict[str, Any] = Field(default_factory=dict)
    organization_id: str
    user_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        """Serialize event to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowEvent":
        """Deserialize event from JSON."""
        return cls.model_validate_json(data)

    def trigger_data(self) -> Dict[str, Any]:
        """Trigger payload recorded on runs started by this event."""
        return {
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            self.entity_type: dict(self.entity_data),
        }


class TriggerMatch(BaseModel):
    """A workflow selected to start, with its initial context."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    workflow: Workflow
    context: WorkflowContext
    trigger_data: Dict[str, Any] = Field(default_factory=dict)
