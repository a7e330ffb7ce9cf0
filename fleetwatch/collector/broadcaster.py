"""
Publish/subscribe fan-out of collector events.

Each subscriber owns a bounded asyncio.Queue. Publishing never blocks and never
buffers for future subscribers: a late subscriber only sees events published
after it subscribed and should bootstrap from Collector.get_snapshot(). A
subscriber that lets its queue fill up is dropped rather than silently losing
events; it has to resubscribe and re-read the snapshot.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Union

from fleetwatch.config import SUBSCRIBER_QUEUE_SIZE

logger = logging.getLogger(__name__)


@dataclass
class AgentUpdate:
    id: str
    state: Optional[dict]     # None when removed
    removed: bool = False

    def to_dict(self) -> dict:
        return {"type": "agent", "id": self.id, "data": self.state, "removed": self.removed}


@dataclass
class HostMetricsUpdate:
    metrics: dict

    def to_dict(self) -> dict:
        return {"type": "host", "data": self.metrics}


Event = Union[AgentUpdate, HostMetricsUpdate]

_CLOSED = object()


class Subscription:
    def __init__(self, broadcaster: "EventBroadcaster", maxsize: int) -> None:
        self._broadcaster = broadcaster
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def close(self) -> None:
        self._broadcaster.unsubscribe(self)

    def _mark_closed(self) -> None:
        self.closed = True
        try:
            self.queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass

    def pending(self) -> list[Event]:
        """Drain whatever is queued right now without waiting."""
        items = []
        while not self.queue.empty():
            item = self.queue.get_nowait()
            if item is not _CLOSED:
                items.append(item)
        return items

    def __aiter__(self):
        return self

    async def __anext__(self) -> Event:
        if self.closed and self.queue.empty():
            raise StopAsyncIteration
        item = await self.queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class EventBroadcaster:
    def __init__(self) -> None:
        self._subscribers: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, maxsize: Optional[int] = None) -> Subscription:
        sub = Subscription(self, maxsize or SUBSCRIBER_QUEUE_SIZE)
        self._subscribers.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)
        sub._mark_closed()

    def publish(self, event: Event) -> None:
        for sub in list(self._subscribers):
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Dropping slow subscriber ({sub.queue.maxsize} events queued)")
                self._subscribers.remove(sub)
                sub.closed = True
