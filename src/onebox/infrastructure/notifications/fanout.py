"""Best-effort fan-out of notification events to every configured channel."""

from __future__ import annotations

import asyncio
from typing import Protocol

from loguru import logger

from onebox.application.ports.notifier import Notifier
from onebox.domain.models import NotificationEvent
from onebox.infrastructure.notifications.channels import DeliveryResult, SlackChannel, WebhookChannel
from onebox.infrastructure.settings import Settings


class Channel(Protocol):
    name: str

    async def send(self, event: NotificationEvent) -> DeliveryResult: ...


class NotificationFanout(Notifier):
    """
    ``dispatch`` schedules delivery and returns at once; ``notify`` delivers
    and waits. Neither raises. With no channels configured both do nothing.
    """

    def __init__(self, channels: list[Channel] | None = None):
        self.channels = list(channels or [])
        self._pending: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationFanout":
        channels: list[Channel] = []
        if settings.slack_bot_token:
            channels.append(
                SlackChannel(
                    settings.slack_bot_token.get_secret_value(),
                    channel=settings.slack_channel,
                    timeout=settings.notification_timeout_seconds,
                )
            )
        if settings.webhook_url:
            channels.append(WebhookChannel(settings.webhook_url, timeout=settings.notification_timeout_seconds))
        if not channels:
            logger.info("No notification destinations configured; notifications disabled")
        return cls(channels)

    async def _send(self, channel: Channel, event: NotificationEvent) -> DeliveryResult:
        try:
            return await channel.send(event)
        except Exception as e:
            logger.exception(f"{channel.name} delivery crashed for {event.email_id}")
            return DeliveryResult(channel.name, success=False, error=str(e))

    async def notify(self, event: NotificationEvent) -> list[DeliveryResult]:
        if not self.channels:
            return []
        return list(await asyncio.gather(*(self._send(c, event) for c in self.channels)))

    def dispatch(self, event: NotificationEvent) -> None:
        if not self.channels:
            return
        task = asyncio.get_running_loop().create_task(self.notify(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight deliveries, e.g. at shutdown."""
        if not self._pending:
            return
        done, not_done = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            logger.warning(f"Dropped {len(not_done)} undelivered notifications at shutdown")
