"""Service container handed to action executors."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import httpx

from ..config import RelayflowConfig, WebhookConfig
from .base import (
    ActivityLogger,
    AIService,
    ContactService,
    EmailSender,
    Notifier,
    OpportunityService,
    ProjectService,
    SlackPoster,
    TaskService,
)
from .inmemory import InMemoryServices


@dataclass
class ActionServices:
    """Everything the built-in executors may call.

    Unset collaborators make the corresponding actions fail with an
    ``ActionError`` naming the missing service.
    """

    email: Optional[EmailSender] = None
    notifier: Optional[Notifier] = None
    tasks: Optional[TaskService] = None
    contacts: Optional[ContactService] = None
    opportunities: Optional[OpportunityService] = None
    projects: Optional[ProjectService] = None
    ai: Optional[AIService] = None
    activity: Optional[ActivityLogger] = None
    slack: Optional[SlackPoster] = None
    http_client: Optional[httpx.AsyncClient] = None
    webhook: WebhookConfig = field(default_factory=WebhookConfig)

    @classmethod
    def from_backend(
        cls,
        backend: InMemoryServices,
        http_client: Optional[httpx.AsyncClient] = None,
        config: Optional[RelayflowConfig] = None,
    ) -> "ActionServices":
        """Use one object implementing every protocol for all services."""
        return cls(
            email=backend,
            notifier=backend,
            tasks=backend,
            contacts=backend,
            opportunities=backend,
            projects=backend,
            ai=backend,
            activity=backend,
            slack=backend,
            http_client=http_client,
            webhook=config.webhook if config else WebhookConfig(),
        )


__all__ = [
    "ActionServices",
    "ActivityLogger",
    "AIService",
    "ContactService",
    "EmailSender",
    "InMemoryServices",
    "Notifier",
    "OpportunityService",
    "ProjectService",
    "SlackPoster",
    "TaskService",
]
