"""Activity log action."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from ..context import WorkflowContext
from ..errors import ActionError
from ..models import utcnow
from ..services import ActionServices
from .registry import BUILTIN_ACTIONS, ActionResult, require_service, resolve_ref


class CreateActivityConfig(BaseModel):
    company_id: Optional[str] = None
    company_field: Optional[str] = None
    message: str = Field(..., min_length=1)
    entity_type: str = Field(..., min_length=1)
    entity_field: Optional[str] = None
    event_type: str = Field(..., min_length=1)


@BUILTIN_ACTIONS.register("create_activity", CreateActivityConfig, "Create Activity Log")
async def create_activity(
    config: CreateActivityConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    activity_log = require_service(services.activity, "activity", "create_activity")
    company_id = resolve_ref(config.company_id, config.company_field, context)
    if not company_id:
        raise ActionError("No company ID found for activity")

    activity = await activity_log.log_activity(
        {
            "company_id": company_id,
            "organization_id": context.organization_id,
            "message": config.message,
            "entity_type": config.entity_type,
            "entity_id": resolve_ref(None, config.entity_field, context),
            "event_type": config.event_type,
            "user_id": context.triggered_by_user_id,
        }
    )
    return ActionResult(
        {
            "success": True,
            "activity_id": activity.get("id"),
            "activity": activity,
            "created_at": utcnow().isoformat(),
        }
    )
