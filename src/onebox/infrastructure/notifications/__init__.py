"""Notification channels and fan-out."""

from onebox.infrastructure.notifications.channels import DeliveryResult, SlackChannel, WebhookChannel
from onebox.infrastructure.notifications.fanout import NotificationFanout

__all__ = [
    "DeliveryResult",
    "NotificationFanout",
    "SlackChannel",
    "WebhookChannel",
]
