"""Review cycle model for Perfcycle.

Defines the ReviewCycle table and its CyclePhase, CycleKind and
RatingScale enums. A review cycle is the time-boxed campaign that owns
the phase state and the dates bounding each phase.
"""

from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from perfcycle.database.models.base import Base, TimestampMixin


class CyclePhase(enum.Enum):
    """Phases of a review cycle, declared in their only permitted order.

    States:
        draft: Created, not yet launched.
        active: Launched, waiting for the self-review window.
        self_review_open: Self reviews may be submitted.
        manager_review_open: Manager (and upward) reviews may be submitted.
        peer_review_open: Peer reviews may be submitted.
        calibration: All manager reviews in; ratings being calibrated.
        published: Results released to employees.
        closed: Retired.
    """

    draft = "draft"
    active = "active"
    self_review_open = "self_review_open"
    manager_review_open = "manager_review_open"
    peer_review_open = "peer_review_open"
    calibration = "calibration"
    published = "published"
    closed = "closed"


class CycleKind(enum.Enum):
    """Cadence of a review cycle."""

    quarterly = "quarterly"
    mid_year = "mid_year"
    annual = "annual"
    probation = "probation"
    custom = "custom"


class RatingScale(enum.Enum):
    """Rating scale used by the cycle's questions and overall rating."""

    five_point = "five_point"
    four_point = "four_point"
    three_point = "three_point"
    percentage = "percentage"


class ReviewCycle(TimestampMixin, Base):
    """A time-boxed performance review campaign.

    Attributes:
        name: Human-readable cycle name.
        kind: Cadence of the cycle.
        period_start: First day of the period under review.
        period_end: Last day of the period under review.
        self_review_start: Date the self-review window opens.
        self_review_end: Self-review deadline.
        manager_review_start: Date the manager-review window opens.
        manager_review_end: Manager-review deadline.
        peer_review_start: Date the peer-review window opens, if any.
        peer_review_end: Peer-review deadline, if any.
        calibration_date: Planned calibration meeting, if any.
        publish_date: Planned publication date, if any.
        phase: Current phase.
        rating_scale: Scale for ratings.
        peer_reviews_enabled: Create PEER forms and open the peer phase.
        upward_reviews_enabled: Create UPWARD forms alongside MANAGER forms.
        anonymous_peer_reviews: Hide peer authors from subjects.
        calibration_required: Manager ratings pass through calibration.
        linked_to_compensation: Final ratings feed compensation.
        config: Weighted sections and questions (see review.scoring).
        excluded_departments: Departments outside the cycle's scope.
        excluded_employee_ids: Individuals outside the cycle's scope.
        self_review_opened_notified: Self-review opening notice sent.
        manager_review_opened_notified: Manager-review opening notice sent.
        peer_review_opened_notified: Peer-review opening notice sent.
        calibration_notified: HR told the cycle is ready for calibration.
        team_ready_notified: Manager ids that received the team-ready notice.
        activated_at: When the cycle left DRAFT.
        published_at: When results were published.
        closed_at: When the cycle was closed.
    """

    __tablename__ = "review_cycles"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[CycleKind] = mapped_column(default=CycleKind.annual, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    self_review_start: Mapped[date] = mapped_column(Date, nullable=False)
    self_review_end: Mapped[date] = mapped_column(Date, nullable=False)
    manager_review_start: Mapped[date] = mapped_column(Date, nullable=False)
    manager_review_end: Mapped[date] = mapped_column(Date, nullable=False)
    peer_review_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    peer_review_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    calibration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    publish_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    phase: Mapped[CyclePhase] = mapped_column(default=CyclePhase.draft, nullable=False)
    rating_scale: Mapped[RatingScale] = mapped_column(
        default=RatingScale.five_point,
        nullable=False,
    )
    peer_reviews_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    upward_reviews_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    anonymous_peer_reviews: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    calibration_required: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    linked_to_compensation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    config: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    excluded_departments: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    excluded_employee_ids: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    self_review_opened_notified: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    manager_review_opened_notified: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    peer_review_opened_notified: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    calibration_notified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    team_ready_notified: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
