"""Exception hierarchy for relayflow."""

from __future__ import annotations

from typing import Iterable, Optional


class RelayflowError(Exception):
    """Base class for all relayflow errors."""


class ActionError(RelayflowError):
    """Raised by an action executor when its side effect fails."""

    def __init__(self, message: str, action_type: Optional[str] = None) -> None:
        super().__init__(message)
        self.action_type = action_type


class ActionConfigError(ActionError):
    """Resolved action configuration did not validate."""


class UnknownActionError(ActionError):
    """No executor is registered for the requested action type."""


class LoopLimitExceededError(RelayflowError):
    """A loop collection is longer than the configured iteration cap."""

    def __init__(self, collection_length: int, max_iterations: int) -> None:
        super().__init__(
            f"Loop limit exceeded: collection has {collection_length} items, "
            f"max_iterations is {max_iterations}"
        )
        self.collection_length = collection_length
        self.max_iterations = max_iterations


class StepLimitExceededError(RelayflowError):
    """A run executed more steps than ``engine.max_step_executions``."""


class InvalidWorkflowError(RelayflowError):
    """A workflow definition failed validation."""

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors = list(errors)
        super().__init__("Invalid workflow: " + "; ".join(self.errors))


class WorkflowNotFoundError(RelayflowError):
    """Referenced workflow does not exist."""


class RunNotFoundError(RelayflowError):
    """Referenced workflow run does not exist."""


class WebhookRejectedError(RelayflowError):
    """Inbound webhook failed signature or IP verification."""


__all__ = [
    "RelayflowError",
    "ActionError",
    "ActionConfigError",
    "UnknownActionError",
    "LoopLimitExceededError",
    "StepLimitExceededError",
    "InvalidWorkflowError",
    "WorkflowNotFoundError",
    "RunNotFoundError",
    "WebhookRejectedError",
]
