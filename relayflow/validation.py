"""Definition-time checks for workflows.

The pydantic models already enforce field shapes; these checks cover what a
single model cannot see: step numbering, jump targets, loop placement and
whether action configs and template variables make sense together.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .actions import ActionRegistry, default_registry
from .context import RESERVED_CONTEXT_KEYS
from .errors import ActionConfigError, InvalidWorkflowError
from .models import (
    ActionStep,
    ConditionStep,
    DelayStep,
    EventTriggerConfig,
    LoopStep,
    ScheduleTriggerConfig,
    Workflow,
)
from .templating import context_fields_for, extract_template_variables, validate_template_variables
from .triggers.schedule import is_valid_schedule

logger = logging.getLogger(__name__)


def _trigger_errors(workflow: Workflow) -> List[str]:
    config = workflow.trigger_config
    if isinstance(config, EventTriggerConfig) and not config.event_types:
        return ["Event triggers need at least one event type"]
    if isinstance(config, ScheduleTriggerConfig) and not is_valid_schedule(config):
        return [f"Invalid schedule for {config.schedule_type} trigger"]
    return []


def _order_errors(workflow: Workflow) -> List[str]:
    orders = [step.step_order for step in workflow.steps]
    duplicates = sorted({order for order in orders if orders.count(order) > 1})
    if duplicates:
        return [f"Duplicate step order: {order}" for order in duplicates]
    if orders != list(range(1, len(orders) + 1)):
        return [f"Step orders must be 1..{len(orders)} without gaps, got {orders}"]
    return []


def validate_workflow(
    workflow: Workflow, registry: Optional[ActionRegistry] = None
) -> List[str]:
    """Return every problem found in ``workflow``; empty when it is valid."""
    registry = registry or default_registry()
    errors = _trigger_errors(workflow) + _order_errors(workflow)
    orders = {step.step_order for step in workflow.steps}

    loops = [step for step in workflow.steps if isinstance(step, LoopStep)]
    if len(loops) > 1:
        errors.append("Only one loop step is supported per workflow")
    loop = loops[0] if loops else None

    entity_type = (
        workflow.trigger_config.entity_type
        if isinstance(workflow.trigger_config, EventTriggerConfig)
        else None
    )
    fields = context_fields_for(entity_type)
    if loop is not None:
        fields.append(loop.config.item_variable)
        if loop.config.item_variable in RESERVED_CONTEXT_KEYS:
            errors.append(
                f"Step {loop.step_order}: item_variable {loop.config.item_variable!r} "
                "shadows a context field"
            )

    for step in workflow.steps:
        label = f"Step {step.step_order}"
        if isinstance(step, ConditionStep):
            if step.else_goto_step is not None and step.else_goto_step not in orders:
                errors.append(f"{label}: else_goto_step {step.else_goto_step} does not exist")
        elif isinstance(step, DelayStep):
            if loop is not None and step.step_order > loop.step_order:
                errors.append(f"{label}: delay steps are not allowed inside a loop body")
        elif isinstance(step, ActionStep):
            if step.action_type not in registry:
                errors.append(f"{label}: unknown action type {step.action_type!r}")
            elif not extract_template_variables(step.config):
                try:
                    registry.validate_config(step.action_type, step.config)
                except ActionConfigError as exc:
                    errors.append(f"{label}: {exc}")
            for variable in validate_template_variables(step.config, fields):
                errors.append(f"{label}: unknown template variable {{{{{variable}}}}}")

    if errors:
        logger.debug(f"Workflow {workflow.name!r} has {len(errors)} validation errors")
    return errors


def ensure_valid_workflow(
    workflow: Workflow, registry: Optional[ActionRegistry] = None
) -> Workflow:
    """Return ``workflow`` unchanged or raise ``InvalidWorkflowError``."""
    errors = validate_workflow(workflow, registry)
    if errors:
        raise InvalidWorkflowError(errors)
    return workflow
