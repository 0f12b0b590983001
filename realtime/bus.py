from __future__ import annotations

import asyncio
from dataclasses import dataclass

from normalize.models import FeedSource, RawIncident


INCIDENT_NEW = "incident.new"
SOURCE_HEALTH = "source.health"


@dataclass(frozen=True)
class Event:
    type: str
    data: dict


def incident_event(incident: RawIncident, source: FeedSource, *, notified: bool) -> Event:
    return Event(
        type=INCIDENT_NEW,
        data={
            "source_id": source.id,
            "source_name": source.name,
            "notified": notified,
            "incident": incident.to_dict(),
        },
    )


def health_event(source_id: str, **fields: object) -> Event:
    return Event(type=SOURCE_HEALTH, data={"source_id": source_id, **fields})


class EventBus:
    def __init__(self, *, queue_size: int = 200) -> None:
        self._lock = asyncio.Lock()
        self._queue_size = queue_size
        self._subscribers: set[asyncio.Queue[Event]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self) -> asyncio.Queue[Event]:
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=self._queue_size)
        async with self._lock:
            self._subscribers.add(queue)
        return queue

    async def unsubscribe(self, queue: asyncio.Queue[Event]) -> None:
        async with self._lock:
            self._subscribers.discard(queue)

    async def publish(self, event: Event) -> None:
        async with self._lock:
            subscribers = list(self._subscribers)
        for queue in subscribers:
            # Slow consumers lose their oldest event, never block the poller.
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                _ = queue.get_nowait()
                queue.put_nowait(event)
