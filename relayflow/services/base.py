"""Collaborator contracts backing the built-in actions.

The engine owns no domain tables; every side effect an action performs goes
through one of these protocols, which the host application implements.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol


class EmailSender(Protocol):
    async def send_email(
        self,
        to: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
        from_name: Optional[str] = None,
    ) -> str:
        """Send an email and return the provider's message id."""


class Notifier(Protocol):
    async def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        type: str = "workflow",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Create an in-app notification and return its id."""

    async def push(
        self, user_id: str, title: str, message: str, data: Optional[Dict[str, Any]] = None
    ) -> int:
        """Send a push notification; returns the number of devices reached."""


class TaskService(Protocol):
    async def create_task(self, data: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update_task(self, task_id: str, updates: Dict[str, Any]) -> Dict[str, Any]: ...

    async def bulk_update_tasks(self, task_ids: List[str], updates: Dict[str, Any]) -> int: ...


class ContactService(Protocol):
    async def create_contact(self, data: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update_contact(
        self, contact_id: str, updates: Dict[str, Any]
    ) -> Dict[str, Any]: ...

    async def add_tag(self, entity_type: str, entity_id: str, tag_name: str) -> bool:
        """Attach a tag; ``False`` when the entity already had it."""

    async def remove_tag(self, entity_type: str, entity_id: str, tag_name: str) -> bool:
        """Detach a tag; ``False`` when the entity did not have it."""


class OpportunityService(Protocol):
    async def get_opportunity(self, opportunity_id: str) -> Optional[Dict[str, Any]]: ...

    async def update_opportunity(
        self, opportunity_id: str, updates: Dict[str, Any]
    ) -> Dict[str, Any]: ...


class ProjectService(Protocol):
    async def create_project(self, data: Dict[str, Any]) -> Dict[str, Any]: ...

    async def get_project_template(self, template_id: str) -> Optional[Dict[str, Any]]: ...

    async def create_project_from_template(
        self, template_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]: ...


class AIService(Protocol):
    async def generate(self, prompt: str, structured: bool = False) -> Any:
        """Return generated text, or a JSON-compatible value when ``structured``."""


class ActivityLogger(Protocol):
    async def log_activity(self, data: Dict[str, Any]) -> Dict[str, Any]: ...


class SlackPoster(Protocol):
    async def post_message(
        self,
        channel: str,
        text: str,
        username: Optional[str] = None,
        icon_emoji: Optional[str] = None,
        blocks: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """Post to a channel; returns at least ``channel`` and ``ts``."""
