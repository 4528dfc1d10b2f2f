from __future__ import annotations
from typing import Protocol

from onebox.domain.models import DomainEvent

class EventPublisher(Protocol):
    """Fire-and-forget publication of live-update events. Never blocks, never raises."""

    def publish(self, event: DomainEvent) -> None: ...
