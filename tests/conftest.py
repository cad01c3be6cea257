"""Shared fixtures for relayflow tests."""

from datetime import datetime, timedelta, timezone

import pytest

from relayflow.config import EngineConfig, RelayflowConfig
from relayflow.engine import WorkflowEngine
from relayflow.persistence import InMemoryWorkflowRepository
from relayflow.services import ActionServices, InMemoryServices


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def repo():
    return InMemoryWorkflowRepository()


@pytest.fixture
def backend():
    return InMemoryServices()


@pytest.fixture
def services(backend):
    return ActionServices.from_backend(backend)


@pytest.fixture
def engine(repo, services, clock):
    config = RelayflowConfig(engine=EngineConfig(max_loop_iterations=50, max_step_executions=200))
    return WorkflowEngine(repository=repo, services=services, config=config, clock=clock)
