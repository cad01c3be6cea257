"""Contract every event stream backend implements."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import WorkflowEvent

RawMessageT = TypeVar("RawMessageT")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Carries ``WorkflowEvent`` records between producers and the engine.

    ``RawMessageT`` is whatever handle the backend needs to settle a
    delivery later through :meth:`ack` or :meth:`nack`.
    """

    async def connect(self) -> None:
        """Backends without a connection leave this alone."""

    async def disconnect(self) -> None:
        """Release whatever :meth:`connect` acquired."""

    @abc.abstractmethod
    async def publish(self, topic: str, event: WorkflowEvent) -> None:
        """Append ``event`` to ``topic``."""

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, WorkflowEvent]]:
        """Iterate ``(raw, event)`` deliveries from ``topic``.

        With ``lifespan`` set, iteration ends after that many seconds;
        otherwise it continues until cancelled.
        """

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Mark a delivery as handled."""

    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Reject a delivery. Backends that cannot redeliver just ack it."""
        await self.ack(raw_message)
