"""In-memory collaborators for tests and local runs."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..models import new_id, utcnow

logger = logging.getLogger(__name__)


class InMemoryServices:
    """Implements every service protocol against local dictionaries.

    Each call is appended to ``calls`` as ``(method, kwargs)`` so tests can
    assert on side effects. ``ai_responder`` maps a prompt to the generated
    value; by default it echoes a fixed string.
    """

    def __init__(self, ai_responder: Optional[Callable[[str], Any]] = None) -> None:
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.tasks: Dict[str, Dict[str, Any]] = {}
        self.contacts: Dict[str, Dict[str, Any]] = {}
        self.opportunities: Dict[str, Dict[str, Any]] = {}
        self.projects: Dict[str, Dict[str, Any]] = {}
        self.project_templates: Dict[str, Dict[str, Any]] = {}
        self.activities: List[Dict[str, Any]] = []
        self.tags: Set[Tuple[str, str, str]] = set()
        self.ai_responder = ai_responder or (lambda prompt: "generated")

    def _record(self, method: str, **kwargs: Any) -> None:
        logger.debug(f"{method} called with {sorted(kwargs)}")
        self.calls.append((method, kwargs))

    def calls_to(self, method: str) -> List[Dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    # Email / notifications ----------------------------------------------
    async def send_email(self, to, subject, body_html, body_text=None, from_name=None):
        self._record(
            "send_email",
            to=to,
            subject=subject,
            body_html=body_html,
            body_text=body_text,
            from_name=from_name,
        )
        return new_id()

    async def notify(self, user_id, title, message, type="workflow", metadata=None):
        self._record(
            "notify", user_id=user_id, title=title, message=message, type=type, metadata=metadata
        )
        return new_id()

    async def push(self, user_id, title, message, data=None):
        self._record("push", user_id=user_id, title=title, message=message, data=data)
        return 1

    # Tasks ----------------------------------------------------------------
    async def create_task(self, data):
        self._record("create_task", data=data)
        task = {"id": new_id(), **data, "created_at": utcnow().isoformat()}
        self.tasks[task["id"]] = task
        return dict(task)

    async def update_task(self, task_id, updates):
        self._record("update_task", task_id=task_id, updates=updates)
        task = self.tasks.setdefault(task_id, {"id": task_id})
        task.update(updates)
        return dict(task)

    async def bulk_update_tasks(self, task_ids, updates):
        self._record("bulk_update_tasks", task_ids=task_ids, updates=updates)
        for task_id in task_ids:
            self.tasks.setdefault(task_id, {"id": task_id}).update(updates)
        return len(task_ids)

    # Contacts ---------------------------------------------------------------
    async def create_contact(self, data):
        self._record("create_contact", data=data)
        contact = {"id": new_id(), **data}
        self.contacts[contact["id"]] = contact
        return dict(contact)

    async def update_contact(self, contact_id, updates):
        self._record("update_contact", contact_id=contact_id, updates=updates)
        contact = self.contacts.setdefault(contact_id, {"id": contact_id})
        contact.update(updates)
        return dict(contact)

    async def add_tag(self, entity_type, entity_id, tag_name):
        self._record("add_tag", entity_type=entity_type, entity_id=entity_id, tag_name=tag_name)
        key = (entity_type, entity_id, tag_name)
        if key in self.tags:
            return False
        self.tags.add(key)
        return True

    async def remove_tag(self, entity_type, entity_id, tag_name):
        self._record(
            "remove_tag", entity_type=entity_type, entity_id=entity_id, tag_name=tag_name
        )
        key = (entity_type, entity_id, tag_name)
        if key not in self.tags:
            return False
        self.tags.discard(key)
        return True

    # Opportunities / projects -------------------------------------------------
    async def get_opportunity(self, opportunity_id):
        opportunity = self.opportunities.get(opportunity_id)
        return dict(opportunity) if opportunity else None

    async def update_opportunity(self, opportunity_id, updates):
        self._record("update_opportunity", opportunity_id=opportunity_id, updates=updates)
        opportunity = self.opportunities.setdefault(opportunity_id, {"id": opportunity_id})
        opportunity.update(updates)
        return dict(opportunity)

    async def create_project(self, data):
        self._record("create_project", data=data)
        project = {"id": new_id(), "status": "idea", **data}
        self.projects[project["id"]] = project
        return dict(project)

    async def get_project_template(self, template_id):
        template = self.project_templates.get(template_id)
        return dict(template) if template else None

    async def create_project_from_template(self, template_id, data):
        self._record("create_project_from_template", template_id=template_id, data=data)
        project = {"id": new_id(), "status": "idea", "template_id": template_id, **data}
        self.projects[project["id"]] = project
        return dict(project)

    # AI ---------------------------------------------------------------------
    async def generate(self, prompt, structured=False):
        self._record("generate", prompt=prompt, structured=structured)
        result = self.ai_responder(prompt)
        if structured and isinstance(result, str):
            return json.loads(result)
        return result

    # Activity / Slack -------------------------------------------------------
    async def log_activity(self, data):
        self._record("log_activity", data=data)
        activity = {"id": new_id(), **data, "created_at": utcnow().isoformat()}
        self.activities.append(activity)
        return dict(activity)

    async def post_message(self, channel, text, username=None, icon_emoji=None, blocks=None):
        self._record(
            "post_message",
            channel=channel,
            text=text,
            username=username,
            icon_emoji=icon_emoji,
            blocks=blocks,
        )
        return {"channel": channel, "ts": f"{utcnow().timestamp():.6f}"}
