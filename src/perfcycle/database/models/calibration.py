"""Calibration record model for Perfcycle.

A calibration record holds the per-subject adjustment of the manager's
rating within a cycle. Its change log is append-only: every rating,
potential or justification change adds an entry and nothing ever removes
or rewrites one.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from perfcycle.database.models.base import Base, TimestampMixin


class PotentialTier(enum.Enum):
    """Assessed growth potential of the subject."""

    low = "low"
    medium = "medium"
    high = "high"
    exceptional = "exceptional"


class CalibrationRecord(TimestampMixin, Base):
    """Calibration outcome for one subject in one cycle.

    Attributes:
        cycle_id: Owning review cycle.
        subject_id: Employee being calibrated.
        pre_calibration_rating: Manager's overall rating when calibration began.
        final_rating: Calibrated rating.
        potential: Potential tier.
        justification: Why the rating was (or was not) changed.
        approver_id: Who signed off.
        approved_at: When the record was signed off.
        is_finalized: Signed off and ready for publication.
        disputed: Subject or manager disputes the outcome.
        dispute_reason: Why it is disputed.
        dispute_resolution: How the dispute was resolved.
        dispute_resolved_at: When the dispute was resolved.
        change_log: Append-only list of
            {timestamp, actor_id, field, old_value, new_value, reason}.
        version_id: Row version; an update from a stale copy of the record
            raises StaleDataError instead of overwriting a newer change log.
    """

    __tablename__ = "calibration_records"
    __table_args__ = (
        UniqueConstraint("cycle_id", "subject_id", name="uq_calibration_subject"),
    )

    cycle_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("review_cycles.id"),
        nullable=False,
        index=True,
    )
    subject_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("employees.id"),
        nullable=False,
    )
    pre_calibration_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    final_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    potential: Mapped[PotentialTier | None] = mapped_column(nullable=True)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    approver_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("employees.id"),
        nullable=True,
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_finalized: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    disputed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    change_log: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}
