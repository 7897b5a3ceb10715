"""One-on-one meeting model for Perfcycle.

Only what the daily meeting-reminder sweep needs: the two parties, the
scheduled time, and the flag that keeps the reminder from repeating.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from perfcycle.database.models.base import Base, TimestampMixin


class OneOnOneStatus(enum.Enum):
    """Lifecycle of a 1:1 meeting."""

    draft = "draft"
    scheduled = "scheduled"
    completed = "completed"
    cancelled = "cancelled"


class OneOnOne(TimestampMixin, Base):
    """A 1:1 meeting between a manager and a direct report.

    Attributes:
        manager_id: Manager attending.
        employee_id: Report attending.
        scheduled_at: Meeting start.
        status: Lifecycle status.
        location: Where the meeting happens.
        reminder_sent: Day-before reminder already sent.
    """

    __tablename__ = "one_on_ones"

    manager_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("employees.id"), nullable=False)
    employee_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("employees.id"), nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[OneOnOneStatus] = mapped_column(
        default=OneOnOneStatus.scheduled,
        nullable=False,
    )
    location: Mapped[str | None] = mapped_column(Text, nullable=True, default="Virtual")
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
