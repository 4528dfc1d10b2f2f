"""Outbound notification channels: Slack chat message and JSON webhook."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from loguru import logger

from onebox.domain.models import NotificationEvent


@dataclass
class DeliveryResult:
    """Result of one delivery attempt."""

    channel: str
    success: bool
    status_code: int | None = None
    error: str | None = None


class SlackChannel:
    """Posts a message through the Slack Web API (``chat.postMessage``)."""

    name = "slack"
    BASE_URL = "https://slack.com/api"

    def __init__(
        self,
        bot_token: str,
        channel: str = "#general",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not bot_token:
            raise ValueError("SLACK_BOT_TOKEN is required")
        self.bot_token = bot_token
        self.channel = channel
        self.timeout = timeout
        self._transport = transport

    def build_message(self, event: NotificationEvent) -> dict:
        return {
            "channel": self.channel,
            "text": f"New {event.category.value.replace('_', ' ')} email received",
            "username": "OneBox Email Bot",
            "icon_emoji": ":email:",
            "attachments": [
                {
                    "color": "good",
                    "fields": [
                        {"title": "From", "value": event.sender, "short": True},
                        {"title": "Subject", "value": event.subject, "short": True},
                        {"title": "Confidence", "value": f"{event.confidence * 100:.1f}%", "short": True},
                    ],
                    "ts": int(event.timestamp.timestamp()),
                }
            ],
        }

    async def send(self, event: NotificationEvent) -> DeliveryResult:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    f"{self.BASE_URL}/chat.postMessage",
                    headers={"Authorization": f"Bearer {self.bot_token}"},
                    json=self.build_message(event),
                    timeout=self.timeout,
                )
        except httpx.TimeoutException:
            logger.error(f"Slack timeout notifying about {event.email_id}")
            return DeliveryResult(self.name, success=False, error="Request timeout")
        except httpx.HTTPError as e:
            logger.error(f"Slack request failed: {e}")
            return DeliveryResult(self.name, success=False, error=str(e))

        body = response.json() if response.headers.get("content-type", "").startswith("application/json") else {}
        if response.status_code == 200 and body.get("ok"):
            logger.info(f"Slack notification sent to {self.channel} for {event.email_id}")
            return DeliveryResult(self.name, success=True, status_code=200)

        error = body.get("error") or response.text[:200]
        logger.error(f"Slack API error {response.status_code}: {error}")
        return DeliveryResult(self.name, success=False, status_code=response.status_code, error=error)


class WebhookChannel:
    """POSTs the notification payload as JSON to a configured URL."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not url:
            raise ValueError("WEBHOOK_URL is required")
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def send(self, event: NotificationEvent) -> DeliveryResult:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    headers={"User-Agent": "OneBox-Email-Aggregator/1.0"},
                    json=event.model_dump(mode="json"),
                    timeout=self.timeout,
                )
        except httpx.TimeoutException:
            logger.error(f"Webhook timeout for {event.email_id}")
            return DeliveryResult(self.name, success=False, error="Request timeout")
        except httpx.HTTPError as e:
            logger.error(f"Webhook request failed: {e}")
            return DeliveryResult(self.name, success=False, error=str(e))

        if response.is_success:
            logger.info(f"Webhook sent: {event.event_type} {event.email_id}")
            return DeliveryResult(self.name, success=True, status_code=response.status_code)

        logger.error(f"Webhook failed with status {response.status_code}")
        return DeliveryResult(
            self.name,
            success=False,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}: {response.text[:200]}",
        )
