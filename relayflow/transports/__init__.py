"""Event stream transports and the backend selector."""

from __future__ import annotations

import os
from typing import Optional

from ..config import RelayflowConfig, TransportConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport


def _redis(settings: TransportConfig) -> BaseTransport:
    from .redis import RedisTransport

    return RedisTransport(**settings.redis.model_dump())


def _inmemory(settings: TransportConfig) -> BaseTransport:
    return InMemoryTransport()


_BUILDERS = {"inmemory": _inmemory, "redis": _redis}


def get_transport(
    backend: Optional[str] = None, config: Optional[RelayflowConfig] = None
) -> BaseTransport:
    """Build the transport that domain events arrive on.

    ``RELAYFLOW_TRANSPORT`` wins over the configured backend when no
    explicit ``backend`` is passed.
    """
    settings = (config or load_config()).transport
    name = (backend or os.getenv("RELAYFLOW_TRANSPORT") or settings.backend).lower()
    builder = _BUILDERS.get(name)
    if builder is None:
        raise ValueError(f"Unsupported transport backend: {name}")
    return builder(settings)


__all__ = ["BaseTransport", "InMemoryTransport", "get_transport"]
