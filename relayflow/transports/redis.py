"""Redis-backed event stream shared between processes."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional, Tuple

import redis.asyncio as redis
from pydantic import ValidationError

from ..contracts import WorkflowEvent
from .base import BaseTransport

logger = logging.getLogger(__name__)

# (queue key, serialized event)
RawEvent = Tuple[str, str]


class RedisTransport(BaseTransport[RawEvent]):
    """Each topic is a Redis list: producers LPUSH, the engine BRPOPs."""

    prefix = "relayflow:"
    poll_timeout = 1

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._client: Optional[redis.Redis] = None

    def _key(self, topic: str) -> str:
        return self.prefix + topic

    async def _ensure_client(self) -> redis.Redis:
        if self._client is None:
            await self.connect()
        return self._client

    async def connect(self) -> None:
        client = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await client.ping()
        self._client = client
        logger.debug(f"Connected to redis at {self.host}:{self.port}/{self.db}")

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def publish(self, topic: str, event: WorkflowEvent) -> None:
        client = await self._ensure_client()
        await client.lpush(self._key(topic), event.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawEvent, WorkflowEvent]]:
        client = await self._ensure_client()
        key = self._key(topic)
        loop = asyncio.get_running_loop()
        stop_at = None if lifespan is None else loop.time() + lifespan

        while stop_at is None or loop.time() < stop_at:
            popped = await client.brpop(key, timeout=self.poll_timeout)
            if not popped:
                continue
            payload = popped[1]
            try:
                event = WorkflowEvent.from_json(payload)
            except ValidationError as e:
                logger.warning(f"Dropping malformed event on {key}: {e}")
                continue
            yield (key, payload), event

    async def ack(self, raw_message: RawEvent) -> None:
        """BRPOP already removed the entry; nothing to settle."""

    async def nack(self, raw_message: RawEvent, requeue: bool = True) -> None:
        if not requeue or self._client is None:
            return
        key, payload = raw_message
        # the consuming end of the list, so it is delivered next
        await self._client.rpush(key, payload)
