"""Decide which active workflows a stimulus starts."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..config import EngineConfig
from ..context import build_initial_context
from ..contracts import TriggerMatch, WorkflowEvent
from ..errors import WebhookRejectedError, WorkflowNotFoundError
from ..models import Workflow, utcnow
from ..persistence import WorkflowRepository
from .events import matches_event
from .schedule import due_occurrence
from .webhook import Body, check_webhook, signature_from_headers

logger = logging.getLogger(__name__)

_PRIVATE_HEADER_MARKERS = ("authorization", "cookie")


def _public_headers(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    return {
        key: value
        for key, value in (headers or {}).items()
        if not any(marker in key.lower() for marker in _PRIVATE_HEADER_MARKERS)
    }


def _parse_body(body: Body) -> Any:
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    if not text:
        return {}
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


class TriggerMatcher:
    """Selects workflows for events, schedule ticks, manual and webhook calls.

    Matching has no side effects beyond recording schedule occurrences;
    starting runs is the scheduler's job.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        clock: Optional[Callable[[], datetime]] = None,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self.repository = repository
        self.clock = clock or utcnow
        self.config = config or EngineConfig()

    def _match(self, workflow: Workflow, trigger_data: Dict[str, Any]) -> TriggerMatch:
        context = build_initial_context(workflow, trigger_data, now=self.clock())
        return TriggerMatch(workflow=workflow, context=context, trigger_data=trigger_data)

    async def _get_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self.repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")
        return workflow

    # ------------------------------------------------------------------
    async def match_event(self, event: WorkflowEvent) -> List[TriggerMatch]:
        workflows = await self.repository.list_workflows(
            organization_id=event.organization_id, trigger_type="event", active_only=True
        )
        trigger_data = event.trigger_data()
        matches = [
            self._match(workflow, trigger_data)
            for workflow in workflows
            if matches_event(workflow.trigger_config, event)
        ]
        logger.debug(
            f"Event {event.event_type} on {event.entity_type} {event.entity_id} "
            f"matched {len(matches)} of {len(workflows)} workflows"
        )
        return matches

    async def match_schedule(self, now: Optional[datetime] = None) -> List[TriggerMatch]:
        """Workflows whose schedule is due at ``now`` and has not fired yet."""
        now = now or self.clock()
        grace = timedelta(minutes=self.config.schedule_grace_minutes)
        workflows = await self.repository.list_workflows(
            trigger_type="schedule", active_only=True
        )
        matches: List[TriggerMatch] = []
        for workflow in workflows:
            config = workflow.trigger_config
            try:
                occurrence = due_occurrence(config, now, grace)
            except (KeyError, ValueError) as exc:
                logger.warning(f"Skipping workflow {workflow.id}: bad schedule ({exc})")
                continue
            if occurrence is None:
                continue
            if not await self.repository.record_schedule_fire(workflow.id, occurrence.isoformat()):
                continue
            trigger_data = {
                "scheduled": True,
                "run_time": now.isoformat(),
                "schedule_type": config.schedule_type,
                "occurrence": occurrence.isoformat(),
            }
            logger.info(f"Schedule of workflow {workflow.name!r} due at {occurrence.isoformat()}")
            matches.append(self._match(workflow, trigger_data))
        return matches

    async def match_manual(
        self,
        workflow_id: str,
        data: Optional[Mapping[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> List[TriggerMatch]:
        workflow = await self._get_workflow(workflow_id)
        if not workflow.is_active:
            logger.warning(f"Manual trigger ignored: workflow {workflow_id} is not active")
            return []
        trigger_data = {"manual": True, **dict(data or {}), "user_id": user_id}
        return [self._match(workflow, trigger_data)]

    async def match_webhook(
        self,
        workflow_id: str,
        body: Body,
        signature: Optional[str] = None,
        client_ip: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> List[TriggerMatch]:
        """Match the workflow addressed by an inbound webhook.

        Raises ``WebhookRejectedError`` when the workflow does not accept
        webhooks, is inactive, or the caller fails the signature or IP checks.
        """
        workflow = await self._get_workflow(workflow_id)
        if workflow.trigger_type != "webhook":
            raise WebhookRejectedError(f"Workflow {workflow_id} is not webhook-triggered")
        if not workflow.is_active:
            raise WebhookRejectedError("Workflow is not active")
        try:
            check_webhook(
                workflow.trigger_config,
                body,
                signature or signature_from_headers(headers),
                client_ip,
            )
        except WebhookRejectedError as exc:
            logger.warning(f"Webhook for workflow {workflow_id} rejected: {exc}")
            raise

        trigger_data = {
            "webhook": True,
            "payload": _parse_body(body),
            "headers": _public_headers(headers),
            "received_at": self.clock().isoformat(),
        }
        return [self._match(workflow, trigger_data)]
