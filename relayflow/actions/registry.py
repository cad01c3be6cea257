"""Registry mapping action types to their config models and executors."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Type

from pydantic import BaseModel, ValidationError

from ..context import WorkflowContext
from ..errors import ActionConfigError, ActionError, UnknownActionError
from ..models import ACTION_TYPES
from ..services import ActionServices
from ..templating import get_nested_value

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """Output of one executor; stored under the step's order in the context."""

    output: Dict[str, Any] = field(default_factory=dict)


Executor = Callable[[Any, WorkflowContext, ActionServices], Awaitable[ActionResult]]


@dataclass(frozen=True)
class RegisteredAction:
    action_type: str
    config_model: Type[BaseModel]
    executor: Executor
    description: str


class ActionRegistry:
    """Validates configs and dispatches to executors; holds no business logic."""

    def __init__(self) -> None:
        self._actions: Dict[str, RegisteredAction] = {}

    def register(
        self,
        action_type: str,
        config_model: Type[BaseModel],
        description: Optional[str] = None,
    ) -> Callable[[Executor], Executor]:
        """Decorator registering ``executor`` for ``action_type``.

        Registering an already known type replaces the previous executor,
        which is how hosts override a built-in action.
        """

        def decorator(executor: Executor) -> Executor:
            if action_type in self._actions:
                logger.info(f"Replacing executor for action type {action_type}")
            self._actions[action_type] = RegisteredAction(
                action_type=action_type,
                config_model=config_model,
                executor=executor,
                description=description or action_type.replace("_", " ").title(),
            )
            return executor

        return decorator

    def __contains__(self, action_type: object) -> bool:
        return action_type in self._actions

    def get(self, action_type: str) -> RegisteredAction:
        try:
            return self._actions[action_type]
        except KeyError:
            raise UnknownActionError(
                f"Unknown action type: {action_type}", action_type=action_type
            ) from None

    def action_types(self) -> List[str]:
        return sorted(self._actions)

    def describe(self, action_type: str) -> str:
        action = self._actions.get(action_type)
        return action.description if action else action_type

    def missing(self, expected: Iterable[str] = ACTION_TYPES) -> List[str]:
        """Action types in ``expected`` with no registered executor."""
        return [a for a in expected if a not in self._actions]

    def copy(self) -> "ActionRegistry":
        clone = ActionRegistry()
        clone._actions = dict(self._actions)
        return clone

    def validate_config(self, action_type: str, config: Mapping[str, Any]) -> BaseModel:
        action = self.get(action_type)
        try:
            return action.config_model.model_validate(dict(config))
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                for err in exc.errors()
            )
            raise ActionConfigError(
                f"Invalid {action_type} config: {problems}", action_type=action_type
            ) from exc

    async def execute(
        self,
        action_type: str,
        config: Mapping[str, Any],
        context: WorkflowContext,
        services: ActionServices,
    ) -> ActionResult:
        """Validate the resolved ``config`` and run the executor."""
        action = self.get(action_type)
        parsed = self.validate_config(action_type, config)
        logger.info(
            f"Executing action {action_type} for organization {context.organization_id}"
        )
        start = time.perf_counter()
        try:
            result = await action.executor(parsed, context, services)
        except ActionError as exc:
            if exc.action_type is None:
                exc.action_type = action_type
            logger.error(
                f"Action {action_type} failed after "
                f"{(time.perf_counter() - start) * 1000:.0f}ms: {exc}"
            )
            raise
        logger.info(
            f"Action {action_type} completed in {(time.perf_counter() - start) * 1000:.0f}ms"
        )
        return result


BUILTIN_ACTIONS = ActionRegistry()


# ----------------------------------------------------------------------
# Helpers shared by the built-in executors


def resolve_ref(
    explicit: Optional[str], field_path: Optional[str], context: WorkflowContext
) -> Optional[str]:
    """Return ``explicit`` if set, else the string found at ``field_path``."""
    if explicit:
        return explicit
    if field_path:
        value = get_nested_value(context.as_lookup(), field_path)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
            return str(value)
    return None


def require_service(service: Any, name: str, action_type: str) -> Any:
    if service is None:
        raise ActionError(f"No {name} service configured", action_type=action_type)
    return service


def truncate(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")
