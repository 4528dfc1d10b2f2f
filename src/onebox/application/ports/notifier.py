from __future__ import annotations
from typing import Any, Protocol

from onebox.domain.models import NotificationEvent

class Notifier(Protocol):
    """Best-effort delivery; implementations never raise."""

    def dispatch(self, event: NotificationEvent) -> None: ...
    async def notify(self, event: NotificationEvent) -> Any: ...
    async def drain(self, timeout: float | None = None) -> None: ...
