"""Opportunity and project actions."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..context import WorkflowContext
from ..errors import ActionError
from ..models import utcnow
from ..services import ActionServices
from .registry import BUILTIN_ACTIONS, ActionResult, require_service, resolve_ref

logger = logging.getLogger(__name__)


class UpdateOpportunityConfig(BaseModel):
    opportunity_id: Optional[str] = None
    opportunity_field: Optional[str] = None
    updates: Dict[str, Any] = Field(default_factory=dict)


class CreateProjectConfig(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    company_id: Optional[str] = None
    company_field: Optional[str] = None
    template_id: Optional[str] = None


class CreateProjectFromTemplateConfig(CreateProjectConfig):
    template_id: str = Field(..., min_length=1)


class CreateProjectFromOpportunityConfig(BaseModel):
    opportunity_id: Optional[str] = None
    opportunity_field: Optional[str] = "opportunity.id"
    name: Optional[str] = None
    description: Optional[str] = None
    template_id: Optional[str] = None


@BUILTIN_ACTIONS.register("update_opportunity", UpdateOpportunityConfig, "Update Opportunity")
async def update_opportunity(
    config: UpdateOpportunityConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    opportunities = require_service(
        services.opportunities, "opportunity", "update_opportunity"
    )
    opportunity_id = resolve_ref(config.opportunity_id, config.opportunity_field, context)
    if not opportunity_id:
        raise ActionError("No opportunity ID found for opportunity update")
    if not config.updates:
        return ActionResult(
            {
                "success": False,
                "skipped": True,
                "reason": "No updates specified",
                "opportunity_id": opportunity_id,
            }
        )
    opportunity = await opportunities.update_opportunity(opportunity_id, dict(config.updates))
    return ActionResult(
        {
            "success": True,
            "opportunity_id": opportunity_id,
            "updates": config.updates,
            "opportunity": opportunity,
            "updated_at": utcnow().isoformat(),
        }
    )


def _company_id(config: CreateProjectConfig, context: WorkflowContext) -> Optional[str]:
    return resolve_ref(config.company_id, config.company_field, context)


@BUILTIN_ACTIONS.register("create_project", CreateProjectConfig, "Create Project")
async def create_project(
    config: CreateProjectConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    if config.template_id:
        return await create_project_from_template(
            CreateProjectFromTemplateConfig.model_validate(config.model_dump()),
            context,
            services,
        )
    projects = require_service(services.projects, "project", "create_project")
    project = await projects.create_project(
        {
            "name": config.name,
            "description": config.description,
            "company_id": _company_id(config, context),
            "organization_id": context.organization_id,
            "source": "workflow",
        }
    )
    logger.info(f"Project {project.get('id')} created")
    return ActionResult(
        {
            "success": True,
            "project_id": project.get("id"),
            "project": project,
            "created_at": utcnow().isoformat(),
        }
    )


@BUILTIN_ACTIONS.register(
    "create_project_from_template",
    CreateProjectFromTemplateConfig,
    "Create Project from Template",
)
async def create_project_from_template(
    config: CreateProjectFromTemplateConfig,
    context: WorkflowContext,
    services: ActionServices,
) -> ActionResult:
    projects = require_service(services.projects, "project", "create_project_from_template")
    template = await projects.get_project_template(config.template_id)
    if template is None:
        raise ActionError(f"Template not found: {config.template_id}")

    project = await projects.create_project_from_template(
        config.template_id,
        {
            "name": config.name,
            "description": config.description or template.get("description"),
            "company_id": _company_id(config, context),
            "organization_id": context.organization_id,
            "source": "workflow",
        },
    )
    logger.info(f"Project {project.get('id')} created from template {config.template_id}")
    return ActionResult(
        {
            "success": True,
            "project_id": project.get("id"),
            "project": project,
            "template_id": config.template_id,
            "template_name": template.get("name"),
            "created_at": utcnow().isoformat(),
        }
    )


@BUILTIN_ACTIONS.register(
    "create_project_from_opportunity",
    CreateProjectFromOpportunityConfig,
    "Create Project from Opportunity",
)
async def create_project_from_opportunity(
    config: CreateProjectFromOpportunityConfig,
    context: WorkflowContext,
    services: ActionServices,
) -> ActionResult:
    opportunities = require_service(
        services.opportunities, "opportunity", "create_project_from_opportunity"
    )
    projects = require_service(services.projects, "project", "create_project_from_opportunity")
    opportunity_id = resolve_ref(config.opportunity_id, config.opportunity_field, context)
    if not opportunity_id:
        raise ActionError("No opportunity ID found for project creation")

    opportunity = await opportunities.get_opportunity(opportunity_id)
    if opportunity is None and context.opportunity and context.opportunity.get("id") == opportunity_id:
        opportunity = dict(context.opportunity)
    if opportunity is None:
        raise ActionError(f"Opportunity not found: {opportunity_id}")

    data = {
        "name": config.name or opportunity.get("name") or f"Project for {opportunity_id}",
        "description": config.description or opportunity.get("description"),
        "company_id": opportunity.get("company_id"),
        "organization_id": context.organization_id,
        "opportunity_id": opportunity_id,
        "source": "workflow",
    }
    if config.template_id:
        project = await projects.create_project_from_template(config.template_id, data)
    else:
        project = await projects.create_project(data)
    return ActionResult(
        {
            "success": True,
            "project_id": project.get("id"),
            "project": project,
            "opportunity_id": opportunity_id,
            "created_at": utcnow().isoformat(),
        }
    )
