from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import DEFAULT_EVENTS_TOPIC, DEFAULT_MAX_LOOP_ITERATIONS


class RedisConfig(BaseModel):
    """Connection settings for the redis event transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration for the domain event stream."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()
    events_topic: str = DEFAULT_EVENTS_TOPIC


class EngineConfig(BaseModel):
    """Interpreter and scheduler tuning."""

    max_loop_iterations: int = DEFAULT_MAX_LOOP_ITERATIONS
    max_step_executions: int = 10_000
    scheduler_poll_interval: float = 30.0
    scheduler_batch_size: int = 100
    schedule_grace_minutes: int = 5


class WebhookConfig(BaseModel):
    """Defaults for the outbound ``webhook_call`` action."""

    default_timeout_ms: int = 10_000
    max_retries: int = 2


class AIConfig(BaseModel):
    """Model used by the AI actions (a pydantic-ai model name)."""

    model: Optional[str] = None


class RelayflowConfig(BaseModel):
    """Everything read from ``relayflow.yaml``."""

    database_url: Optional[str] = None
    transport: TransportConfig = TransportConfig()
    engine: EngineConfig = EngineConfig()
    webhook: WebhookConfig = WebhookConfig()
    ai: AIConfig = AIConfig()
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> RelayflowConfig:
    """Read settings from ``path``, ``$RELAYFLOW_CONFIG`` or 'relayflow.yaml'.

    A missing file yields the defaults. A database URL in the environment
    overrides the file.
    """
    source = path or os.getenv("RELAYFLOW_CONFIG", "relayflow.yaml")
    data = {}
    if os.path.exists(source):
        with open(source) as f:
            data = yaml.safe_load(f) or {}
    config = RelayflowConfig.model_validate(data)

    database_url = os.getenv("RELAYFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if database_url:
        config.database_url = database_url
    return config
