"""In-memory event transport for tests and single-process deployments."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, List, Optional, Tuple

from ..contracts import WorkflowEvent
from .base import BaseTransport

RawEvent = Tuple[str, str]  # (topic, json payload)


class InMemoryTransport(BaseTransport[RawEvent]):
    """Simple in-process queue for unit tests."""

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[str]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self.acked: List[RawEvent] = []

    async def publish(self, topic: str, event: WorkflowEvent) -> None:
        """Publish event to in-memory queue."""
        async with self._lock:
            self._queues[topic].append(event.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawEvent, WorkflowEvent]]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan is not None else None

        while deadline is None or loop.time() < deadline:
            async with self._lock:
                payload = self._queues[topic].popleft() if self._queues[topic] else None
            if payload is not None:
                yield (topic, payload), WorkflowEvent.from_json(payload)
                continue
            await asyncio.sleep(0.05)

    async def ack(self, raw_message: RawEvent) -> None:
        self.acked.append(raw_message)

    async def nack(self, raw_message: RawEvent, requeue: bool = True) -> None:
        if requeue:
            topic, payload = raw_message
            async with self._lock:
                self._queues[topic].append(payload)
