"""Built-in action executors and the registry that dispatches to them."""

from __future__ import annotations

# importing the executor modules registers them on BUILTIN_ACTIONS
from . import activity, ai, communication, contacts, projects, tasks, webhook  # noqa: F401
from .registry import (
    BUILTIN_ACTIONS,
    ActionRegistry,
    ActionResult,
    RegisteredAction,
)


def default_registry() -> ActionRegistry:
    """A fresh registry holding every built-in action.

    Hosts may register additional or replacement executors on the returned
    copy without affecting other engines in the process.
    """
    return BUILTIN_ACTIONS.copy()


__all__ = [
    "ActionRegistry",
    "ActionResult",
    "BUILTIN_ACTIONS",
    "RegisteredAction",
    "default_registry",
]
