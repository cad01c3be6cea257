"""Storage for workflow definitions, runs and their audit trail."""

from __future__ import annotations

import os
from typing import Optional

from ..config import RelayflowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import (
    ACTIVE_RUN_STATUSES,
    TERMINAL_RUN_STATUSES,
    WorkflowRun,
    WorkflowRunStep,
    WorkflowScheduledStep,
)
from .postgres import PostgresWorkflowRepository
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

# process-wide repository, reused by callers that pass no arguments
_repository_instance: WorkflowRepository | None = None


def _open(url: Optional[str]) -> WorkflowRepository:
    if not url:
        return InMemoryWorkflowRepository()
    scheme, sep, rest = url.partition("://")
    if sep and scheme == "sqlite":
        return SQLiteWorkflowRepository(rest)
    if sep and scheme in ("postgres", "postgresql"):
        return PostgresWorkflowRepository(url)
    raise ValueError(f"Unsupported database backend: {url}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[RelayflowConfig] = None
) -> WorkflowRepository:
    """Return the repository for ``database_url``.

    Without an explicit URL the first of ``RELAYFLOW_DATABASE_URL``,
    ``DATABASE_URL`` and the config's ``database_url`` is used; with none
    of them set runs live in memory. A call with no arguments hands back
    the repository built by the previous call.
    """
    global _repository_instance
    if database_url is None and config is None and _repository_instance is not None:
        return _repository_instance

    url = (
        database_url
        or os.getenv("RELAYFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or (config or load_config()).database_url
    )
    _repository_instance = _open(url)
    return _repository_instance


__all__ = [
    "ACTIVE_RUN_STATUSES",
    "TERMINAL_RUN_STATUSES",
    "InMemoryWorkflowRepository",
    "PostgresWorkflowRepository",
    "SQLiteWorkflowRepository",
    "WorkflowRepository",
    "WorkflowRun",
    "WorkflowRunStep",
    "WorkflowScheduledStep",
    "get_repository",
]
