"""
Domain event channel for the integration gateway.

Components publish named events (file detected, record routed, message
dead-lettered, ...) to a bounded channel that an alerting collaborator
consumes. The channel is bounded so a slow consumer shows up as
backpressure at the producer instead of unbounded buffering.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from pydantic import BaseModel, Field

from src.observability import metrics
from src.observability.logger import get_logger

logger = get_logger(__name__)


class DomainEvent(BaseModel):
    """
    A notification emitted by a pipeline component.

    Attributes:
        name: Dotted event name ("routing.dead_letter", "file-monitor.file.error")
        endpoint_id: Integration endpoint the event belongs to
        payload: Event-specific data
        timestamp: When the event was created
    """

    name: str = Field(..., min_length=1)
    endpoint_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EventChannel:
    """
    Bounded asyncio channel of DomainEvents.

    ``publish`` waits for room (async producers feel backpressure),
    ``offer`` never waits and reports whether the event was accepted.
    """

    def __init__(self, maxsize: int = 1000):
        self._queue: asyncio.Queue[DomainEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    def qsize(self) -> int:
        return self._queue.qsize()

    async def publish(self, name: str, endpoint_id: str | None = None, **payload: Any) -> DomainEvent:
        """Publish an event, waiting while the channel is full."""
        event = DomainEvent(name=name, endpoint_id=endpoint_id, payload=payload)
        await self._queue.put(event)
        return event

    def offer(self, name: str, endpoint_id: str | None = None, **payload: Any) -> bool:
        """
        Publish an event without waiting.

        Returns:
            False when the channel is full and the event was dropped
        """
        event = DomainEvent(name=name, endpoint_id=endpoint_id, payload=payload)
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            metrics.increment_counter(metrics.events_dropped_total, 1, event_name=name)
            logger.warning(
                f"Event channel full, dropped event {name}",
                extra={"event_name": name, "endpoint_id": endpoint_id, "dropped": self.dropped},
            )
            return False
        return True

    async def get(self) -> DomainEvent:
        """Wait for the next event."""
        event = await self._queue.get()
        self._queue.task_done()
        return event

    def drain(self) -> list[DomainEvent]:
        """Remove and return every event currently buffered."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
            self._queue.task_done()
        return events

    async def __aiter__(self) -> AsyncIterator[DomainEvent]:
        while True:
            yield await self.get()
