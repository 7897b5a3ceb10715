"""Consolidated HR review records.

An HRReviewRecord is the permanent, per-subject summary of one cycle: the
self and manager ratings, the calibrated and final ratings, and the
narrative fields of both reviews. Building the same (cycle, subject) pair
twice yields the same record.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any
from uuid import UUID

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from perfcycle.database.models.form import FormKind, FormStatus, ReviewForm
from perfcycle.database.queries.calibration import find_calibration_record
from perfcycle.database.queries.cycle import require_cycle
from perfcycle.database.queries.employee import get_employee
from perfcycle.database.queries.form import list_forms
from perfcycle.errors import EntityNotFoundError
from perfcycle.timeutil import ensure_utc

logger = structlog.get_logger(__name__)


def record_id_for(cycle_id: UUID, subject_id: UUID) -> str:
    """Deterministic HR record identifier for a (cycle, subject) pair."""
    return f"HR-{cycle_id}-{subject_id}"


class HRReviewRecord(BaseModel):
    """Permanent record of one subject's review in one cycle."""

    record_id: str
    cycle_id: UUID
    cycle_name: str
    cycle_kind: str
    period_start: date
    period_end: date
    subject_id: UUID
    subject_name: str | None = None
    self_rating: float | None = None
    manager_rating: float | None = None
    calibrated_rating: float | None = None
    final_rating: float | None = None
    potential: str | None = None
    strengths: list[str] = Field(default_factory=list)
    development_areas: list[str] = Field(default_factory=list)
    goals: list[Any] = Field(default_factory=list)
    manager_comments: str | None = None
    employee_comments: str | None = None
    self_submitted_at: datetime | None = None
    manager_submitted_at: datetime | None = None
    calibrated_at: datetime | None = None
    published_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


def parse_list(text: str | None) -> list[str]:
    """Split a free-text field into items.

    A JSON list is used as-is; otherwise each non-empty line is an item,
    with leading bullet markers removed.
    """
    if not text or not text.strip():
        return []
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return [str(item).strip() for item in parsed if str(item).strip()]

    items = []
    for line in text.splitlines():
        line = line.strip().lstrip("-*•").strip()
        if line:
            items.append(line)
    return items


def parse_goals(text: str | None) -> list[Any]:
    """Parse development goals stored as JSON (list or object) or free text."""
    if not text or not text.strip():
        return []
    try:
        parsed = json.loads(text)
    except ValueError:
        return [{"description": text.strip()}]
    if isinstance(parsed, list):
        return parsed
    return [parsed]


def _dedupe(items: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)


def _first(forms: list[ReviewForm], kind: FormKind) -> ReviewForm | None:
    for form in forms:
        if form.kind == kind and form.status in (
            FormStatus.submitted,
            FormStatus.calibrated,
            FormStatus.published,
        ):
            return form
    return None


class HRRecordBuilder:
    """Builds HRReviewRecords from the stored forms and calibration record."""

    async def build(
        self,
        session: AsyncSession,
        cycle_id: UUID,
        subject_id: UUID,
    ) -> HRReviewRecord:
        """Consolidate a subject's reviews for a cycle.

        Raises:
            EntityNotFoundError: If the cycle does not exist or the subject
                has no submitted self or manager review in it.
        """
        cycle = await require_cycle(session, cycle_id)
        forms = await list_forms(session, cycle_id=cycle_id, subject_id=subject_id)
        self_review = _first(forms, FormKind.self)
        manager_review = _first(forms, FormKind.manager)
        if self_review is None and manager_review is None:
            raise EntityNotFoundError("submitted_review", record_id_for(cycle_id, subject_id))

        record = await find_calibration_record(session, cycle_id, subject_id)
        subject = await get_employee(session, subject_id)

        calibrated_rating = record.final_rating if record is not None else None
        manager_rating = manager_review.overall_rating if manager_review else None
        if record is not None and record.is_finalized:
            final_rating = record.final_rating
        else:
            final_rating = manager_rating

        reviews = [r for r in (self_review, manager_review) if r is not None]
        published = [ensure_utc(r.published_at) for r in reviews if r.published_at]

        return HRReviewRecord(
            record_id=record_id_for(cycle_id, subject_id),
            cycle_id=cycle.id,
            cycle_name=cycle.name,
            cycle_kind=cycle.kind.value,
            period_start=cycle.period_start,
            period_end=cycle.period_end,
            subject_id=subject_id,
            subject_name=subject.full_name if subject is not None else None,
            self_rating=self_review.overall_rating if self_review else None,
            manager_rating=manager_rating,
            calibrated_rating=calibrated_rating,
            final_rating=final_rating,
            potential=record.potential.value if record and record.potential else None,
            strengths=_dedupe([s for r in reviews for s in parse_list(r.strengths)]),
            development_areas=_dedupe(
                [a for r in reviews for a in parse_list(r.areas_for_improvement)]
            ),
            goals=[g for r in reviews for g in parse_goals(r.development_goals)],
            manager_comments=manager_review.overall_comments if manager_review else None,
            employee_comments=self_review.overall_comments if self_review else None,
            self_submitted_at=ensure_utc(self_review.submitted_at) if self_review else None,
            manager_submitted_at=(
                ensure_utc(manager_review.submitted_at) if manager_review else None
            ),
            calibrated_at=ensure_utc(record.approved_at) if record else None,
            published_at=max(published) if published else None,
            metadata={
                "self_review_id": str(self_review.id) if self_review else None,
                "manager_review_id": str(manager_review.id) if manager_review else None,
                "calibration_record_id": str(record.id) if record else None,
                "manager_id": str(manager_review.author_id) if manager_review else None,
            },
        )
