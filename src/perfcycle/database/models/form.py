"""Review form model for Perfcycle.

Defines the ReviewForm table plus the FormKind and FormStatus enums. A
review form is the unit of work filled out by one author about one
subject within one cycle.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from perfcycle.database.models.base import Base, TimestampMixin


class FormKind(enum.Enum):
    """Who writes the form about whom.

    Kinds:
        self: Subject reviews themselves.
        manager: Manager reviews a direct report.
        peer: Teammate reviews a teammate.
        upward: Direct report reviews their manager.
    """

    self = "self"
    manager = "manager"
    peer = "peer"
    upward = "upward"


class FormStatus(enum.Enum):
    """Lifecycle of a review form, declared in its only permitted order.

    States:
        not_started: Created, never saved.
        draft: Saved at least once, still editable.
        submitted: Submitted by the author; locked.
        calibrated: Manager rating confirmed by calibration.
        published: Released to the subject.
    """

    not_started = "not_started"
    draft = "draft"
    submitted = "submitted"
    calibrated = "calibrated"
    published = "published"


class ReviewForm(TimestampMixin, Base):
    """One author's review of one subject within a cycle.

    Attributes:
        cycle_id: Owning review cycle.
        subject_id: Employee being reviewed.
        author_id: Employee writing the review (equals subject for SELF).
        kind: Form kind.
        status: Lifecycle status.
        answers: Question id to {"rating": float | None, "comment": str | None}.
        overall_rating: Overall numeric rating.
        overall_comments: Free-text summary.
        strengths: Free-text strengths.
        areas_for_improvement: Free-text improvement areas.
        development_goals: Free text or a JSON list of goals.
        submitted_at: When the author submitted.
        published_at: When the form was published to the subject.
        archived_at: When the subject's record was last archived.
        reminders_sent: Overdue reminders already sent.
        manager_notified: Manager (or subject, for MANAGER forms) told of submission.
        hr_notified: HR told of submission.
        results_notified: Subject told their published results are available.
    """

    __tablename__ = "review_forms"
    __table_args__ = (
        UniqueConstraint("cycle_id", "subject_id", "author_id", "kind", name="uq_review_form"),
    )

    cycle_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("review_cycles.id"),
        nullable=False,
        index=True,
    )
    subject_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("employees.id"),
        nullable=False,
        index=True,
    )
    author_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("employees.id"),
        nullable=False,
    )
    kind: Mapped[FormKind] = mapped_column(nullable=False)
    status: Mapped[FormStatus] = mapped_column(default=FormStatus.not_started, nullable=False)
    answers: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    overall_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    overall_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    strengths: Mapped[str | None] = mapped_column(Text, nullable=True)
    areas_for_improvement: Mapped[str | None] = mapped_column(Text, nullable=True)
    development_goals: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reminders_sent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    manager_notified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    hr_notified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    results_notified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
