"""Workflow engine facade: wires matching, scheduling and execution."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from .actions import ActionRegistry, default_registry
from .config import RelayflowConfig
from .contracts import TriggerMatch, WorkflowEvent
from .errors import WorkflowNotFoundError
from .interpreter import StepInterpreter
from .models import Workflow, WorkflowTemplate, as_utc, utcnow
from .persistence import WorkflowRepository, WorkflowRun, get_repository
from .scheduler import RunScheduler
from .services import ActionServices
from .transports import BaseTransport
from .triggers import TriggerMatcher
from .triggers.webhook import Body
from .validation import ensure_valid_workflow

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Entry point for host applications.

    Every stimulus goes through the trigger matcher; each match becomes an
    independent run started by the scheduler.
    """

    def __init__(
        self,
        repository: Optional[WorkflowRepository] = None,
        registry: Optional[ActionRegistry] = None,
        services: Optional[ActionServices] = None,
        config: Optional[RelayflowConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config or RelayflowConfig()
        self.repository = repository or get_repository(config=self.config)
        self.registry = registry or default_registry()
        self.services = services or ActionServices(webhook=self.config.webhook)
        self.clock = clock or utcnow
        self.interpreter = StepInterpreter(
            self.repository, self.registry, self.services, self.config.engine
        )
        self.scheduler = RunScheduler(
            self.repository, self.interpreter, clock=self.clock, config=self.config.engine
        )
        self.matcher = TriggerMatcher(self.repository, clock=self.clock, config=self.config.engine)

    # ------------------------------------------------------------------
    async def _start_matches(self, matches: List[TriggerMatch]) -> List[WorkflowRun]:
        runs: List[WorkflowRun] = []
        for match in matches:
            try:
                runs.append(
                    await self.scheduler.start_run(match.workflow, match.context, match.trigger_data)
                )
            except Exception as exc:
                logger.error(f"Could not start workflow {match.workflow.id}: {exc}")
        return runs

    async def handle_event(self, event: WorkflowEvent) -> List[WorkflowRun]:
        """Start a run for every active workflow the event matches."""
        logger.debug(f"Event received: {event.event_type} on {event.entity_type} {event.entity_id}")
        return await self._start_matches(await self.matcher.match_event(event))

    async def tick(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Fire due schedule triggers and resume due delayed runs."""
        now = as_utc(now or self.clock())
        started = await self._start_matches(await self.matcher.match_schedule(now))
        resumed, errors = await self.scheduler.resume_due(now)
        return {"started": len(started), "resumed": resumed, "errors": errors}

    async def trigger_manual(
        self,
        workflow_id: str,
        data: Optional[Mapping[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> Optional[WorkflowRun]:
        runs = await self._start_matches(await self.matcher.match_manual(workflow_id, data, user_id))
        return runs[0] if runs else None

    async def trigger_webhook(
        self,
        workflow_id: str,
        body: Body,
        signature: Optional[str] = None,
        client_ip: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Optional[WorkflowRun]:
        """Start the addressed workflow; raises ``WebhookRejectedError`` on rejection."""
        matches = await self.matcher.match_webhook(workflow_id, body, signature, client_ip, headers)
        runs = await self._start_matches(matches)
        return runs[0] if runs else None

    async def cancel_run(self, run_id: str) -> WorkflowRun:
        return await self.scheduler.cancel_run(run_id)

    # ------------------------------------------------------------------
    async def create_workflow(self, workflow: Workflow) -> Workflow:
        """Validate and persist a workflow definition."""
        ensure_valid_workflow(workflow, self.registry)
        await self.repository.save_workflow(workflow)
        logger.info(f"Saved workflow {workflow.name!r} ({workflow.id})")
        return workflow

    async def set_workflow_active(self, workflow_id: str, is_active: bool) -> Workflow:
        workflow = await self.repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")
        updated = workflow.model_copy(update={"is_active": is_active, "updated_at": utcnow()})
        await self.repository.save_workflow(updated)
        return updated

    async def instantiate_template(
        self,
        template_id: str,
        organization_id: str,
        name: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Workflow:
        template: Optional[WorkflowTemplate] = await self.repository.get_template(template_id)
        if template is None or not template.available_to(organization_id):
            raise WorkflowNotFoundError(f"Template not found: {template_id}")
        workflow = template.instantiate(organization_id, name=name, created_by=created_by)
        return await self.create_workflow(workflow)

    # ------------------------------------------------------------------
    async def listen(
        self,
        transport: BaseTransport,
        topic: Optional[str] = None,
        lifespan: Optional[float] = None,
    ) -> None:
        """Consume domain events from ``transport`` and start matching runs."""
        topic = topic or self.config.transport.events_topic
        logger.info(f"Listening for workflow events on {topic!r}")
        async for raw_message, event in transport.subscribe(topic, lifespan=lifespan):
            try:
                await self.handle_event(event)
            except Exception as exc:
                logger.error(f"Failed to handle event {event.event_id}: {exc}")
                await transport.nack(raw_message, requeue=False)
                continue
            await transport.ack(raw_message)

    async def run_scheduler(
        self, poll_interval: Optional[float] = None, lifespan: Optional[float] = None
    ) -> None:
        await self.scheduler.run_forever(poll_interval, lifespan, tick=self.tick)
