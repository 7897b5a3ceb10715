"""Notification delivery for Perfcycle.

The review workflow depends on the ``Notifier`` protocol only. The default
implementation, ``MultiChannelNotifier``, fans each request out to one
webhook sender per channel.
"""

from perfcycle.notifications.base import ChannelSender, Notifier
from perfcycle.notifications.dispatcher import MultiChannelNotifier, build_notifier, safe_notify
from perfcycle.notifications.models import (
    Channel,
    ChannelResult,
    DeliveryResult,
    NotificationRequest,
    Priority,
)
from perfcycle.notifications.webhook import WebhookChannelSender

__all__ = [
    "Channel",
    "ChannelResult",
    "ChannelSender",
    "DeliveryResult",
    "MultiChannelNotifier",
    "NotificationRequest",
    "Notifier",
    "Priority",
    "WebhookChannelSender",
    "build_notifier",
    "safe_notify",
]
