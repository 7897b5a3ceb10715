"""Notification request and delivery result models."""

from __future__ import annotations

from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class Priority(str, Enum):
    """Notification urgency."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Channel(str, Enum):
    """Delivery channels a request may ask for."""

    EMAIL = "email"
    IN_APP = "in_app"
    CHAT = "chat"
    CALENDAR = "calendar"
    SMS = "sms"


DEFAULT_CHANNELS = frozenset({Channel.EMAIL, Channel.IN_APP})


class NotificationRequest(BaseModel):
    """A single notification addressed to one person.

    Attributes:
        recipient_id: Employee receiving the notification
        title: Short subject line
        message: Body text
        priority: Urgency
        category: Free-form grouping, e.g. "review_reminder"
        link_url: Optional link (relative links are prefixed by the sender)
        channels: Channels to attempt; each is delivered independently
        metadata: Extra structured data passed through to the channel
    """

    recipient_id: UUID
    title: str
    message: str
    priority: Priority = Priority.MEDIUM
    category: str = "performance_review"
    link_url: str | None = None
    channels: frozenset[Channel] = Field(default=DEFAULT_CHANNELS)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """Convert request to a JSON-serializable dict."""
        return {
            "recipient_id": str(self.recipient_id),
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
            "category": self.category,
            "link_url": self.link_url,
            "metadata": self.metadata,
        }


class ChannelResult(BaseModel):
    """Outcome of one channel delivery attempt."""

    channel: Channel
    success: bool
    error: str | None = None


class DeliveryResult(BaseModel):
    """Outcome of a notification across all requested channels.

    A notification counts as delivered when at least one channel succeeded.
    """

    recipient_id: UUID
    results: list[ChannelResult] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return any(result.success for result in self.results)

    @property
    def failed_channels(self) -> list[Channel]:
        return [result.channel for result in self.results if not result.success]
