"""Relayflow: trigger/condition/action workflow automation."""

from .actions import ActionRegistry, default_registry
from .config import RelayflowConfig, load_config
from .context import WorkflowContext, build_initial_context
from .contracts import TriggerMatch, WorkflowEvent
from .engine import WorkflowEngine
from .interpreter import StepInterpreter
from .models import Workflow, WorkflowTemplate
from .persistence import get_repository
from .scheduler import RunScheduler
from .services import ActionServices
from .transports import get_transport
from .triggers import TriggerMatcher
from .validation import ensure_valid_workflow, validate_workflow

__version__ = "0.1.0"
__all__ = [
    "ActionRegistry",
    "ActionServices",
    "RelayflowConfig",
    "RunScheduler",
    "StepInterpreter",
    "TriggerMatch",
    "TriggerMatcher",
    "Workflow",
    "WorkflowContext",
    "WorkflowEngine",
    "WorkflowEvent",
    "WorkflowTemplate",
    "build_initial_context",
    "default_registry",
    "ensure_valid_workflow",
    "get_repository",
    "get_transport",
    "load_config",
    "validate_workflow",
]
