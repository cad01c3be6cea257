"""Task actions."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..context import WorkflowContext
from ..errors import ActionError
from ..models import utcnow
from ..services import ActionServices
from ..templating import get_nested_value
from .registry import BUILTIN_ACTIONS, ActionResult, require_service, resolve_ref

logger = logging.getLogger(__name__)

TaskStatus = Literal["todo", "in_progress", "done", "archived"]
TaskPriority = Literal["low", "medium", "high", "critical"]


def _due_date(offset_days: int) -> str:
    return (utcnow() + timedelta(days=offset_days)).date().isoformat()


class CreateTaskConfig(BaseModel):
    project_id: Optional[str] = None
    project_field: Optional[str] = None
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: TaskStatus = "todo"
    priority: TaskPriority = "medium"
    assignee_id: Optional[str] = None
    assignee_field: Optional[str] = None
    due_date_offset_days: Optional[int] = None
    tags: List[str] = Field(default_factory=list)


class TaskUpdates(BaseModel):
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assignee_id: Optional[str] = None
    assignee_field: Optional[str] = None
    due_date: Optional[str] = None
    due_date_offset_days: Optional[int] = None


class UpdateTaskConfig(BaseModel):
    task_id: Optional[str] = None
    task_field: Optional[str] = None
    updates: TaskUpdates


class BulkUpdateTasksConfig(BaseModel):
    task_ids_field: str
    operation: Literal["status", "priority", "reassign"]
    value: str


_BULK_COLUMNS = {"status": "status", "priority": "priority", "reassign": "assignee_id"}


@BUILTIN_ACTIONS.register("create_task", CreateTaskConfig, "Create Task")
async def create_task(
    config: CreateTaskConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    tasks = require_service(services.tasks, "task", "create_task")
    project_id = resolve_ref(config.project_id, config.project_field, context)
    if not project_id:
        raise ActionError("No project ID found for task creation")

    data: Dict[str, Any] = {
        "project_id": project_id,
        "organization_id": context.organization_id,
        "title": config.title,
        "description": config.description,
        "status": config.status,
        "priority": config.priority,
        "assignee_id": resolve_ref(config.assignee_id, config.assignee_field, context),
        "tags": config.tags,
    }
    if config.due_date_offset_days is not None:
        data["due_date"] = _due_date(config.due_date_offset_days)

    task = await tasks.create_task(data)
    logger.info(f"Task {task.get('id')} created in project {project_id}")
    return ActionResult(
        {
            "success": True,
            "task_id": task.get("id"),
            "task": task,
            "created_at": utcnow().isoformat(),
        }
    )


@BUILTIN_ACTIONS.register("update_task", UpdateTaskConfig, "Update Task")
async def update_task(
    config: UpdateTaskConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    tasks = require_service(services.tasks, "task", "update_task")
    task_id = resolve_ref(config.task_id, config.task_field, context)
    if not task_id:
        raise ActionError("No task ID found for task update")

    requested = config.updates
    updates: Dict[str, Any] = requested.model_dump(
        include={"status", "priority", "assignee_id", "due_date"}, exclude_none=True
    )
    if requested.assignee_field:
        assignee = resolve_ref(None, requested.assignee_field, context)
        if assignee:
            updates["assignee_id"] = assignee
    if requested.due_date_offset_days is not None:
        updates["due_date"] = _due_date(requested.due_date_offset_days)

    if not updates:
        logger.warning("No task updates specified")
        return ActionResult(
            {
                "success": False,
                "skipped": True,
                "reason": "No updates specified",
                "task_id": task_id,
            }
        )

    task = await tasks.update_task(task_id, updates)
    return ActionResult(
        {
            "success": True,
            "task_id": task_id,
            "updates": updates,
            "task": task,
            "updated_at": utcnow().isoformat(),
        }
    )


@BUILTIN_ACTIONS.register("bulk_update_tasks", BulkUpdateTasksConfig, "Bulk Update Tasks")
async def bulk_update_tasks(
    config: BulkUpdateTasksConfig, context: WorkflowContext, services: ActionServices
) -> ActionResult:
    tasks = require_service(services.tasks, "task", "bulk_update_tasks")
    task_ids = get_nested_value(context.as_lookup(), config.task_ids_field)
    if not isinstance(task_ids, list):
        raise ActionError(f"No task IDs found at {config.task_ids_field}")
    task_ids = [str(t) for t in task_ids if t]
    if not task_ids:
        return ActionResult(
            {"success": True, "skipped": True, "reason": "No tasks to update", "updated_count": 0}
        )

    column = _BULK_COLUMNS[config.operation]
    updated = await tasks.bulk_update_tasks(task_ids, {column: config.value})
    return ActionResult(
        {
            "success": True,
            "updated_count": updated,
            "task_ids": task_ids,
            "operation": config.operation,
            "value": config.value,
        }
    )
