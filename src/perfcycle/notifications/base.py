"""Notifier and channel sender interfaces.

The review workflow depends only on ``Notifier``. Concrete delivery is
composed from one ``ChannelSender`` per channel.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from perfcycle.notifications.models import Channel, DeliveryResult, NotificationRequest


@runtime_checkable
class Notifier(Protocol):
    """Anything that can deliver a notification request."""

    async def notify(self, request: NotificationRequest) -> DeliveryResult:
        """Attempt delivery on every requested channel."""
        ...


@runtime_checkable
class ChannelSender(Protocol):
    """Delivers a request over a single channel."""

    channel: Channel

    async def send(self, request: NotificationRequest) -> bool:
        """Return True if the channel accepted the request."""
        ...
