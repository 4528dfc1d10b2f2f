"""In-process publish/subscribe for live-update events."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from loguru import logger

from onebox.application.ports.events import EventPublisher
from onebox.domain.models import DomainEvent

DEFAULT_QUEUE_SIZE = 256


class Subscription:
    """One subscriber's bounded queue, optionally filtered to a single account."""

    def __init__(self, bus: "EventBus", account_id: Optional[str], maxsize: int):
        self._bus = bus
        self.account_id = account_id
        self.queue: asyncio.Queue[DomainEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def wants(self, event: DomainEvent) -> bool:
        return self.account_id is None or self.account_id == event.account_id

    async def get(self) -> DomainEvent:
        return await self.queue.get()

    def close(self) -> None:
        self._bus.unsubscribe(self)

    async def __aiter__(self) -> AsyncIterator[DomainEvent]:
        while True:
            yield await self.queue.get()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class EventBus(EventPublisher):
    """
    Events go to the subscribers present at publish time only; nothing is
    replayed to late subscribers. A full subscriber queue drops the event
    for that subscriber rather than blocking the publisher.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscriptions: set[Subscription] = set()

    def subscribe(self, account_id: Optional[str] = None) -> Subscription:
        sub = Subscription(self, account_id, self.queue_size)
        self._subscriptions.add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        self._subscriptions.discard(sub)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: DomainEvent) -> None:
        for sub in list(self._subscriptions):
            if not sub.wants(event):
                continue
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                sub.dropped += 1
                logger.warning(f"Subscriber queue full, dropped {event.type.value} for {event.account_id}")
