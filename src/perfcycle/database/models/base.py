"""Declarative base and shared columns for the review tables.

Every Perfcycle table (employees, review cycles, review forms, calibration
records and 1:1 meetings) derives from ``Base`` and mixes in
``TimestampMixin`` for its UUID key and audit timestamps.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Registry of the review tables; ``Base.metadata`` backs the migrations."""


class TimestampMixin:
    """UUID primary key plus row creation and modification times.

    List it before ``Base`` in a model's bases.

    Attributes:
        id: UUID generated by the application on insert.
        created_at: Set by the database when the row is inserted.
        updated_at: Set on insert and refreshed by every UPDATE, including the
            compare-and-set phase and status updates.
    """

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
