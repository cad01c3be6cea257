"""Contact and tag actions."""

from __future__ import annotations

import logging
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from ..context import WorkflowContext
from ..errors import ActionError
from ..models import utcnow
from ..services import ActionServices
from ..templating import get_nested_value
from .registry import BUILTIN_ACTIONS, ActionResult, require_service, resolve_ref

logger = logging.getLogger(__name__)


class CreateContactConfig(BaseModel):
    company_id: Optional[str] = None
    company_field: Optional[str] = None
    first_name: str
    last_name: str
    email: Optional[str] = None
    additional_fields: Dict[str, Any] = Field(default_factory=dict)


class UpdateContactConfig(BaseModel):
    contact_id: Optional[str] = None
    contact_field: Optional[str] = None
    updates: Dict[str, Any] = Field(default_factory=dict)


class TagConfig(BaseModel):
    entity_type: Literal["contact", "company"]
    entity_field: str
    tag_name: str = Field(..., min_length=1)


@BUILTIN_ACTIONS.register("create_contact", CreateContactConfig, "Create Contact")
async def create_contact(
    config: CreateContactConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    contacts = require_service(services.contacts, "contact", "create_contact")
    company_id = resolve_ref(config.company_id, config.company_field, context)
    if not company_id:
        raise ActionError("No company ID found for contact creation")

    data = {
        "company_id": company_id,
        "organization_id": context.organization_id,
        "first_name": config.first_name,
        "last_name": config.last_name,
        "email": config.email or None,
        "status": "active",
        **config.additional_fields,
    }
    contact = await contacts.create_contact(data)
    logger.info(f"Contact {contact.get('id')} created for company {company_id}")
    return ActionResult(
        {
            "success": True,
            "contact_id": contact.get("id"),
            "contact": contact,
            "created_at": utcnow().isoformat(),
        }
    )


@BUILTIN_ACTIONS.register("update_contact", UpdateContactConfig, "Update Contact")
async def update_contact(
    config: UpdateContactConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    contacts = require_service(services.contacts, "contact", "update_contact")
    contact_id = resolve_ref(config.contact_id, config.contact_field, context)
    if not contact_id:
        raise ActionError("No contact ID found for contact update")

    if not config.updates:
        logger.warning("No contact updates specified")
        return ActionResult(
            {
                "success": False,
                "skipped": True,
                "reason": "No updates specified",
                "contact_id": contact_id,
            }
        )

    contact = await contacts.update_contact(contact_id, dict(config.updates))
    return ActionResult(
        {
            "success": True,
            "contact_id": contact_id,
            "updates": config.updates,
            "contact": contact,
            "updated_at": utcnow().isoformat(),
        }
    )


def _tag_entity(config: TagConfig, context: WorkflowContext) -> str:
    entity_id = get_nested_value(context.as_lookup(), config.entity_field)
    if not entity_id or not isinstance(entity_id, str):
        raise ActionError(f"No entity ID found at {config.entity_field}")
    return entity_id


@BUILTIN_ACTIONS.register("add_tag", TagConfig, "Add Tag")
async def add_tag(
    config: TagConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    contacts = require_service(services.contacts, "contact", "add_tag")
    entity_id = _tag_entity(config, context)
    added = await contacts.add_tag(config.entity_type, entity_id, config.tag_name)
    output: Dict[str, Any] = {
        "success": True,
        "tag_name": config.tag_name,
        "entity_type": config.entity_type,
        "entity_id": entity_id,
    }
    if not added:
        output.update(skipped=True, reason="Tag already exists")
    return ActionResult(output)


@BUILTIN_ACTIONS.register("remove_tag", TagConfig, "Remove Tag")
async def remove_tag(
    config: TagConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    contacts = require_service(services.contacts, "contact", "remove_tag")
    entity_id = _tag_entity(config, context)
    removed = await contacts.remove_tag(config.entity_type, entity_id, config.tag_name)
    output: Dict[str, Any] = {
        "success": True,
        "tag_name": config.tag_name,
        "entity_type": config.entity_type,
        "entity_id": entity_id,
    }
    if not removed:
        output.update(skipped=True, reason="Tag did not exist")
    return ActionResult(output)
