"""HR reporting over consolidated review records.

Reports are computed on demand from the stored forms and calibration
records; nothing here writes to the database or the records store.
"""

from __future__ import annotations

import csv
import io
from collections import Counter
from datetime import date, datetime
from enum import Enum
from uuid import UUID

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from perfcycle.archive.records import HRRecordBuilder, HRReviewRecord
from perfcycle.database.models.form import FormKind, FormStatus
from perfcycle.database.queries.cycle import require_cycle
from perfcycle.database.queries.form import COMPLETED_FORM_STATUSES, count_forms, list_forms
from perfcycle.errors import EntityNotFoundError
from perfcycle.review.scoring import completion_percentage
from perfcycle.timeutil import utcnow

logger = structlog.get_logger(__name__)


class RatingBand(str, Enum):
    """Distribution buckets for final ratings on the five-point scale."""

    OUTSTANDING = "outstanding"
    EXCEEDS = "exceeds"
    MEETS = "meets"
    DEVELOPING = "developing"
    NEEDS_IMPROVEMENT = "needs_improvement"


def rating_band(rating: float) -> RatingBand:
    """Place a final rating in its distribution band."""
    if rating >= 4.5:
        return RatingBand.OUTSTANDING
    if rating >= 3.5:
        return RatingBand.EXCEEDS
    if rating >= 2.5:
        return RatingBand.MEETS
    if rating >= 1.5:
        return RatingBand.DEVELOPING
    return RatingBand.NEEDS_IMPROVEMENT


def _average(values: list[float]) -> float | None:
    if not values:
        return None
    return round(sum(values) / len(values), 2)


class TrendPoint(BaseModel):
    """One cycle in an employee's rating history."""

    cycle_id: UUID
    cycle_name: str
    period_end: date
    self_rating: float | None = None
    manager_rating: float | None = None
    final_rating: float | None = None
    change: float | None = None


class PerformanceTrends(BaseModel):
    """Rating history of one employee, oldest cycle first."""

    subject_id: UUID
    total_reviews: int = 0
    average_rating: float | None = None
    current_rating: float | None = None
    points: list[TrendPoint] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)
    development_areas: list[str] = Field(default_factory=list)


class SubjectSummary(BaseModel):
    """Per-subject line of a cycle report."""

    subject_id: UUID
    subject_name: str | None = None
    self_rating: float | None = None
    manager_rating: float | None = None
    final_rating: float | None = None
    band: RatingBand | None = None
    development_areas: list[str] = Field(default_factory=list)


class CycleReport(BaseModel):
    """HR performance report for one cycle."""

    cycle_id: UUID
    cycle_name: str
    cycle_kind: str
    phase: str
    total_subjects: int = 0
    completion: dict[str, int] = Field(default_factory=dict)
    average_ratings: dict[str, float | None] = Field(default_factory=dict)
    rating_distribution: dict[str, int] = Field(default_factory=dict)
    top_performers: list[SubjectSummary] = Field(default_factory=list)
    needs_attention: list[SubjectSummary] = Field(default_factory=list)
    subjects: list[SubjectSummary] = Field(default_factory=list)
    generated_at: datetime


async def employee_history(
    session: AsyncSession,
    subject_id: UUID,
    builder: HRRecordBuilder | None = None,
) -> list[HRReviewRecord]:
    """Build the records of every published cycle for an employee, newest first."""
    builder = builder or HRRecordBuilder()
    forms = await list_forms(session, subject_id=subject_id, statuses=[FormStatus.published])
    cycle_ids = list(dict.fromkeys(form.cycle_id for form in forms))

    history: list[HRReviewRecord] = []
    for cycle_id in cycle_ids:
        try:
            history.append(await builder.build(session, cycle_id, subject_id))
        except EntityNotFoundError as e:
            logger.warning(
                "history_record_skipped",
                cycle_id=str(cycle_id),
                subject_id=str(subject_id),
                error=str(e),
            )

    history.sort(key=lambda r: r.period_end, reverse=True)
    return history


async def performance_trends(
    session: AsyncSession,
    subject_id: UUID,
    builder: HRRecordBuilder | None = None,
) -> PerformanceTrends:
    """Summarise how an employee's ratings moved across cycles."""
    history = list(reversed(await employee_history(session, subject_id, builder)))
    if not history:
        return PerformanceTrends(subject_id=subject_id)

    points: list[TrendPoint] = []
    previous: float | None = None
    for record in history:
        change = None
        if previous is not None and record.final_rating is not None:
            change = round(record.final_rating - previous, 2)
        points.append(
            TrendPoint(
                cycle_id=record.cycle_id,
                cycle_name=record.cycle_name,
                period_end=record.period_end,
                self_rating=record.self_rating,
                manager_rating=record.manager_rating,
                final_rating=record.final_rating,
                change=change,
            )
        )
        if record.final_rating is not None:
            previous = record.final_rating

    ratings = [r.final_rating for r in history if r.final_rating is not None]
    strengths = Counter(s for r in history for s in r.strengths)
    areas = Counter(a for r in history for a in r.development_areas)

    return PerformanceTrends(
        subject_id=subject_id,
        total_reviews=len(history),
        average_rating=_average(ratings),
        current_rating=history[-1].final_rating,
        points=points,
        strengths=[s for s, _ in strengths.most_common(5)],
        development_areas=[a for a, _ in areas.most_common(5)],
    )


async def cycle_report(
    session: AsyncSession,
    cycle_id: UUID,
    builder: HRRecordBuilder | None = None,
) -> CycleReport:
    """Build the HR performance report of a cycle.

    Raises:
        EntityNotFoundError: If the cycle does not exist.
    """
    builder = builder or HRRecordBuilder()
    cycle = await require_cycle(session, cycle_id)

    completion: dict[str, int] = {}
    for kind in FormKind:
        total = await count_forms(session, cycle_id, kind=kind)
        if total:
            done = await count_forms(
                session, cycle_id, kind=kind, statuses=COMPLETED_FORM_STATUSES
            )
            completion[kind.value] = completion_percentage(done, total)

    manager_forms = await list_forms(
        session, cycle_id=cycle_id, kind=FormKind.manager, statuses=COMPLETED_FORM_STATUSES
    )
    subjects: list[SubjectSummary] = []
    for subject_id in dict.fromkeys(form.subject_id for form in manager_forms):
        try:
            record = await builder.build(session, cycle_id, subject_id)
        except EntityNotFoundError:
            continue
        subjects.append(
            SubjectSummary(
                subject_id=subject_id,
                subject_name=record.subject_name,
                self_rating=record.self_rating,
                manager_rating=record.manager_rating,
                final_rating=record.final_rating,
                band=rating_band(record.final_rating) if record.final_rating is not None else None,
                development_areas=record.development_areas,
            )
        )

    distribution = {band.value: 0 for band in RatingBand}
    for summary in subjects:
        if summary.band is not None:
            distribution[summary.band.value] += 1

    rated = [s for s in subjects if s.final_rating is not None]
    ranked = sorted(rated, key=lambda s: s.final_rating, reverse=True)

    report = CycleReport(
        cycle_id=cycle.id,
        cycle_name=cycle.name,
        cycle_kind=cycle.kind.value,
        phase=cycle.phase.value,
        total_subjects=len(subjects),
        completion=completion,
        average_ratings={
            "self": _average([s.self_rating for s in subjects if s.self_rating is not None]),
            "manager": _average(
                [s.manager_rating for s in subjects if s.manager_rating is not None]
            ),
            "final": _average([s.final_rating for s in rated]),
        },
        rating_distribution=distribution,
        top_performers=ranked[:10],
        needs_attention=[s for s in rated if s.final_rating < 2.5],
        subjects=subjects,
        generated_at=utcnow(),
    )

    logger.info(
        "cycle_report_generated",
        cycle_id=str(cycle_id),
        subjects=report.total_subjects,
    )
    return report


def export_cycle_csv(report: CycleReport) -> str:
    """Render a cycle report's subject lines as CSV."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(
        ["subject_id", "subject_name", "self_rating", "manager_rating", "final_rating", "band"]
    )
    for summary in report.subjects:
        writer.writerow(
            [
                str(summary.subject_id),
                summary.subject_name or "",
                "" if summary.self_rating is None else summary.self_rating,
                "" if summary.manager_rating is None else summary.manager_rating,
                "" if summary.final_rating is None else summary.final_rating,
                summary.band.value if summary.band else "",
            ]
        )
    return buffer.getvalue()
