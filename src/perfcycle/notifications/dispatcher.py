"""Multi-channel notification dispatch."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from perfcycle.config import NotificationConfig
from perfcycle.logging import get_logger
from perfcycle.notifications.base import ChannelSender, Notifier
from perfcycle.notifications.models import (
    Channel,
    ChannelResult,
    DeliveryResult,
    NotificationRequest,
)
from perfcycle.notifications.webhook import WebhookChannelSender

logger = get_logger(__name__)


class MultiChannelNotifier:
    """Fans a request out to one sender per requested channel.

    Channels are attempted concurrently and independently: an exception or a
    failure on one channel is recorded in the result and never prevents the
    others from being attempted.
    """

    def __init__(self, senders: Iterable[ChannelSender], enabled: bool = True) -> None:
        self.senders: dict[Channel, ChannelSender] = {s.channel: s for s in senders}
        self.enabled = enabled
        self.logger = get_logger(__name__)

    async def _send_one(self, channel: Channel, request: NotificationRequest) -> ChannelResult:
        sender = self.senders.get(channel)
        if sender is None:
            return ChannelResult(channel=channel, success=False, error="channel not configured")
        ok = await sender.send(request)
        return ChannelResult(
            channel=channel,
            success=ok,
            error=None if ok else "delivery failed",
        )

    async def notify(self, request: NotificationRequest) -> DeliveryResult:
        """Attempt delivery on every requested channel."""
        if not self.enabled:
            self.logger.debug(
                "notifications_disabled",
                recipient_id=str(request.recipient_id),
                category=request.category,
            )
            return DeliveryResult(
                recipient_id=request.recipient_id,
                results=[ChannelResult(channel=c, success=True) for c in request.channels],
            )

        channels = sorted(request.channels, key=lambda c: c.value)
        outcomes = await asyncio.gather(
            *(self._send_one(channel, request) for channel in channels),
            return_exceptions=True,
        )

        results: list[ChannelResult] = []
        for channel, outcome in zip(channels, outcomes):
            if isinstance(outcome, BaseException):
                self.logger.error(
                    "notification_channel_error",
                    channel=channel.value,
                    recipient_id=str(request.recipient_id),
                    error=str(outcome),
                )
                results.append(ChannelResult(channel=channel, success=False, error=str(outcome)))
            else:
                results.append(outcome)

        result = DeliveryResult(recipient_id=request.recipient_id, results=results)
        self.logger.info(
            "notification_dispatched",
            recipient_id=str(request.recipient_id),
            category=request.category,
            priority=request.priority.value,
            success=result.success,
            failed_channels=[c.value for c in result.failed_channels],
        )
        return result

    async def close(self) -> None:
        for sender in self.senders.values():
            close = getattr(sender, "close", None)
            if close is not None:
                await close()


async def safe_notify(notifier: Notifier, request: NotificationRequest) -> bool:
    """Send a notification, logging and swallowing any failure.

    Returns:
        True if at least one channel delivered the request.
    """
    try:
        result = await notifier.notify(request)
    except Exception as e:
        logger.error(
            "notification_failed",
            recipient_id=str(request.recipient_id),
            category=request.category,
            error=str(e),
        )
        return False

    if not result.success:
        logger.warning(
            "notification_not_delivered",
            recipient_id=str(request.recipient_id),
            category=request.category,
        )
    return result.success


def build_notifier(config: NotificationConfig) -> MultiChannelNotifier:
    """Create a webhook-backed notifier from configuration.

    Unknown channel names in ``config.webhooks`` are ignored with a warning.
    """
    senders: list[ChannelSender] = []
    for name, url in config.webhooks.items():
        try:
            channel = Channel(name.lower())
        except ValueError:
            logger.warning("unknown_notification_channel", channel=name)
            continue
        senders.append(
            WebhookChannelSender(
                channel,
                url,
                auth_header=config.auth_header,
                timeout_seconds=config.timeout_seconds,
                frontend_url=config.frontend_url,
            )
        )

    logger.info(
        "notifier_configured",
        channels=sorted(s.channel.value for s in senders),
        enabled=config.enabled,
    )
    return MultiChannelNotifier(senders, enabled=config.enabled)
