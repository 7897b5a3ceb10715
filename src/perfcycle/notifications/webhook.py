"""Webhook channel sender.

Each channel (email gateway, chat bridge, calendar service...) is reached
through a JSON webhook, typically an automation workflow that performs the
actual delivery.
"""

from __future__ import annotations

from datetime import datetime, timezone

import httpx

from perfcycle.logging import get_logger
from perfcycle.notifications.models import Channel, NotificationRequest

logger = get_logger(__name__)


class WebhookChannelSender:
    """Posts notification requests for one channel to a webhook URL."""

    def __init__(
        self,
        channel: Channel,
        webhook_url: str,
        auth_header: str | None = None,
        timeout_seconds: int = 10,
        frontend_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.channel = channel
        self.webhook_url = webhook_url
        self.auth_header = auth_header
        self.timeout_seconds = timeout_seconds
        self.frontend_url = frontend_url.rstrip("/") if frontend_url else None
        self.logger = get_logger(__name__).bind(channel=channel.value)
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this sender created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _absolute_link(self, link_url: str | None) -> str | None:
        if link_url and self.frontend_url and link_url.startswith("/"):
            return f"{self.frontend_url}{link_url}"
        return link_url

    async def send(self, request: NotificationRequest) -> bool:
        """Send the request to the channel webhook.

        Returns True if the webhook answered with a success status.
        """
        payload = request.to_payload()
        payload["channel"] = self.channel.value
        payload["link_url"] = self._absolute_link(request.link_url)
        payload["sent_at"] = datetime.now(timezone.utc).isoformat()

        headers = {"Content-Type": "application/json"}
        if self.auth_header:
            headers["Authorization"] = self.auth_header

        try:
            client = await self._get_client()
            response = await client.post(self.webhook_url, json=payload, headers=headers)
        except httpx.RequestError as e:
            self.logger.error(
                "notification_webhook_error",
                recipient_id=str(request.recipient_id),
                category=request.category,
                error=str(e),
            )
            return False

        if response.is_success:
            self.logger.info(
                "notification_webhook_sent",
                recipient_id=str(request.recipient_id),
                category=request.category,
                status_code=response.status_code,
            )
            return True

        self.logger.warning(
            "notification_webhook_failed",
            recipient_id=str(request.recipient_id),
            category=request.category,
            status_code=response.status_code,
            response_text=response.text[:200],
        )
        return False
