"""Review form query functions for Perfcycle.

Provides async functions for creating, reading and updating ReviewForm
records, the aggregate counts behind calibration readiness and completion
percentages, and the overdue/recently-submitted selections used by the
scheduled sweeps.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from perfcycle.database.models.cycle import CyclePhase, ReviewCycle
from perfcycle.database.models.form import FormKind, FormStatus, ReviewForm
from perfcycle.errors import EntityNotFoundError

logger = structlog.get_logger(__name__)

OPEN_FORM_STATUSES = (FormStatus.not_started, FormStatus.draft)
COMPLETED_FORM_STATUSES = (FormStatus.submitted, FormStatus.calibrated, FormStatus.published)

# Forms whose content makes up a subject's archived record
ARCHIVED_FORM_KINDS = (FormKind.self, FormKind.manager)

# Deadline column governing each form kind
DEADLINE_COLUMNS = {
    FormKind.self: ReviewCycle.self_review_end,
    FormKind.manager: ReviewCycle.manager_review_end,
    FormKind.upward: ReviewCycle.manager_review_end,
    FormKind.peer: ReviewCycle.peer_review_end,
}


async def create_form(
    session: AsyncSession,
    cycle_id: UUID,
    subject_id: UUID,
    author_id: UUID,
    kind: FormKind,
) -> ReviewForm:
    """Create a new review form in NOT_STARTED status.

    Args:
        session: Active async database session.
        cycle_id: UUID of the owning cycle.
        subject_id: UUID of the employee being reviewed.
        author_id: UUID of the employee writing the review.
        kind: Form kind.

    Returns:
        The newly created ReviewForm instance.
    """
    form = ReviewForm(
        cycle_id=cycle_id,
        subject_id=subject_id,
        author_id=author_id,
        kind=kind,
        status=FormStatus.not_started,
        answers={},
        reminders_sent=0,
        manager_notified=False,
        hr_notified=False,
    )

    session.add(form)
    await session.commit()
    await session.refresh(form)

    logger.info(
        "form_created",
        form_id=str(form.id),
        cycle_id=str(cycle_id),
        subject_id=str(subject_id),
        author_id=str(author_id),
        kind=kind.value,
    )

    return form


async def find_form(
    session: AsyncSession,
    cycle_id: UUID,
    subject_id: UUID,
    author_id: UUID,
    kind: FormKind,
) -> ReviewForm | None:
    """Find the form identified by its natural key."""
    stmt = select(ReviewForm).where(
        ReviewForm.cycle_id == cycle_id,
        ReviewForm.subject_id == subject_id,
        ReviewForm.author_id == author_id,
        ReviewForm.kind == kind,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_or_create_form(
    session: AsyncSession,
    cycle_id: UUID,
    subject_id: UUID,
    author_id: UUID,
    kind: FormKind,
) -> tuple[ReviewForm, bool]:
    """Return the form for the natural key, creating it when absent.

    A concurrent creator losing the unique-constraint race re-reads the
    winner's row instead of failing.

    Returns:
        Tuple of (form, created).
    """
    existing = await find_form(session, cycle_id, subject_id, author_id, kind)
    if existing is not None:
        return existing, False

    try:
        return await create_form(session, cycle_id, subject_id, author_id, kind), True
    except IntegrityError:
        await session.rollback()
        existing = await find_form(session, cycle_id, subject_id, author_id, kind)
        if existing is None:
            raise
        return existing, False


async def get_form(
    session: AsyncSession,
    form_id: UUID,
) -> ReviewForm | None:
    """Retrieve a review form by ID, refreshed from the database.

    Args:
        session: Active async database session.
        form_id: UUID of the form to retrieve.

    Returns:
        The ReviewForm instance if found, None otherwise.
    """
    stmt = (
        select(ReviewForm)
        .where(ReviewForm.id == form_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_form(
    session: AsyncSession,
    form_id: UUID,
) -> ReviewForm:
    """Retrieve a review form by ID or raise.

    Raises:
        EntityNotFoundError: If the form does not exist.
    """
    form = await get_form(session, form_id)
    if form is None:
        raise EntityNotFoundError("review_form", form_id)
    return form


async def list_forms(
    session: AsyncSession,
    cycle_id: UUID | None = None,
    kind: FormKind | None = None,
    statuses: Iterable[FormStatus] | None = None,
    subject_id: UUID | None = None,
    author_id: UUID | None = None,
) -> list[ReviewForm]:
    """List review forms with optional filters.

    Args:
        session: Active async database session.
        cycle_id: Optional cycle to filter by.
        kind: Optional form kind to filter by.
        statuses: Optional statuses to filter by.
        subject_id: Optional subject to filter by.
        author_id: Optional author to filter by.

    Returns:
        List of matching ReviewForm instances, oldest first.
    """
    stmt = select(ReviewForm).execution_options(populate_existing=True)

    if cycle_id is not None:
        stmt = stmt.where(ReviewForm.cycle_id == cycle_id)
    if kind is not None:
        stmt = stmt.where(ReviewForm.kind == kind)
    if statuses is not None:
        stmt = stmt.where(ReviewForm.status.in_(list(statuses)))
    if subject_id is not None:
        stmt = stmt.where(ReviewForm.subject_id == subject_id)
    if author_id is not None:
        stmt = stmt.where(ReviewForm.author_id == author_id)

    stmt = stmt.order_by(ReviewForm.created_at.asc())

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_forms(
    session: AsyncSession,
    cycle_id: UUID,
    kind: FormKind | None = None,
    statuses: Iterable[FormStatus] | None = None,
    subject_ids: Iterable[UUID] | None = None,
) -> int:
    """Count forms of a cycle, e.g. ``count where cycle=X and kind=T and status=S``.

    Args:
        session: Active async database session.
        cycle_id: UUID of the cycle.
        kind: Optional form kind.
        statuses: Optional statuses.
        subject_ids: Optional subject restriction.

    Returns:
        Number of matching forms.
    """
    stmt = select(func.count(ReviewForm.id)).where(ReviewForm.cycle_id == cycle_id)

    if kind is not None:
        stmt = stmt.where(ReviewForm.kind == kind)
    if statuses is not None:
        stmt = stmt.where(ReviewForm.status.in_(list(statuses)))
    if subject_ids is not None:
        stmt = stmt.where(ReviewForm.subject_id.in_(list(subject_ids)))

    result = await session.execute(stmt)
    return int(result.scalar_one())


async def compare_and_set_status(
    session: AsyncSession,
    form_id: UUID,
    expected: FormStatus,
    target: FormStatus,
    **values: Any,
) -> bool:
    """Move a form from ``expected`` to ``target`` in one atomic row update.

    Args:
        session: Active async database session.
        form_id: UUID of the form.
        expected: Status the form must currently be in.
        target: Status to move to.
        **values: Extra columns to set in the same update.

    Returns:
        True if this call performed the transition.
    """
    stmt = (
        update(ReviewForm)
        .where(ReviewForm.id == form_id, ReviewForm.status == expected)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()

    applied = result.rowcount == 1
    logger.debug(
        "form_status_cas",
        form_id=str(form_id),
        expected=expected.value,
        target=target.value,
        applied=applied,
    )
    return applied


async def update_form_fields(
    session: AsyncSession,
    form_id: UUID,
    **values: Any,
) -> None:
    """Set columns on a form without touching its status.

    Args:
        session: Active async database session.
        form_id: UUID of the form.
        **values: Columns to set.
    """
    stmt = (
        update(ReviewForm)
        .where(ReviewForm.id == form_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)
    await session.commit()


async def increment_reminders_sent(
    session: AsyncSession,
    form_id: UUID,
    expected: int,
) -> bool:
    """Increment a form's reminder counter by exactly one.

    The increment only applies while the stored counter equals ``expected``,
    so two overlapping sweeps cannot both count the same reminder.

    Returns:
        True if the counter was incremented.
    """
    stmt = (
        update(ReviewForm)
        .where(ReviewForm.id == form_id, ReviewForm.reminders_sent == expected)
        .values(reminders_sent=expected + 1)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()

    applied = result.rowcount == 1
    logger.info(
        "form_reminders_incremented",
        form_id=str(form_id),
        reminders_sent=expected + 1 if applied else expected,
        applied=applied,
    )
    return applied


async def list_overdue_forms(
    session: AsyncSession,
    kind: FormKind,
    today: date,
) -> list[tuple[ReviewForm, ReviewCycle]]:
    """List unsubmitted forms of one kind whose governing deadline has passed.

    Forms of cycles that are already published or closed are excluded.

    Args:
        session: Active async database session.
        kind: Form kind (selects the deadline column).
        today: Reference date; deadlines strictly before it are overdue.

    Returns:
        List of (form, cycle) pairs.
    """
    deadline = DEADLINE_COLUMNS[kind]
    stmt = (
        select(ReviewForm, ReviewCycle)
        .join(ReviewCycle, ReviewForm.cycle_id == ReviewCycle.id)
        .where(ReviewForm.kind == kind)
        .where(ReviewForm.status.in_(OPEN_FORM_STATUSES))
        .where(deadline.is_not(None))
        .where(deadline < today)
        .where(ReviewCycle.phase.not_in([CyclePhase.published, CyclePhase.closed]))
        .order_by(ReviewForm.created_at.asc())
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return [(row[0], row[1]) for row in result.all()]


async def list_recently_submitted(
    session: AsyncSession,
    since: datetime,
) -> list[ReviewForm]:
    """List submitted or calibrated forms whose submission time is at or after ``since``."""
    stmt = (
        select(ReviewForm)
        .where(ReviewForm.status.in_([FormStatus.submitted, FormStatus.calibrated]))
        .where(ReviewForm.submitted_at.is_not(None))
        .where(ReviewForm.submitted_at >= since)
        .order_by(ReviewForm.submitted_at.asc())
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def mark_subject_forms(
    session: AsyncSession,
    cycle_id: UUID,
    subject_id: UUID,
    kinds: Iterable[FormKind] = ARCHIVED_FORM_KINDS,
    **values: Any,
) -> int:
    """Set columns on every form of ``kinds`` about a subject within a cycle.

    Returns:
        Number of forms updated.
    """
    stmt = (
        update(ReviewForm)
        .where(
            ReviewForm.cycle_id == cycle_id,
            ReviewForm.subject_id == subject_id,
            ReviewForm.kind.in_(list(kinds)),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()
    return int(result.rowcount)


async def list_unsettled_publications(
    session: AsyncSession,
) -> list[tuple[UUID, UUID, bool, bool]]:
    """Find subjects of published cycles still missing their archive or results notice.

    Only PUBLISHED self and manager forms count: a subject needs archiving
    while any of them has no ``archived_at``, and a results notice while any
    of them lacks ``results_notified``.

    Returns:
        List of (cycle_id, subject_id, needs_archive, needs_notice).
    """
    stmt = (
        select(
            ReviewForm.cycle_id,
            ReviewForm.subject_id,
            ReviewForm.archived_at,
            ReviewForm.results_notified,
        )
        .join(ReviewCycle, ReviewForm.cycle_id == ReviewCycle.id)
        .where(ReviewCycle.phase == CyclePhase.published)
        .where(ReviewForm.kind.in_(ARCHIVED_FORM_KINDS))
        .where(ReviewForm.status == FormStatus.published)
        .where(ReviewForm.archived_at.is_(None) | ReviewForm.results_notified.is_(False))
        .order_by(ReviewForm.cycle_id, ReviewForm.subject_id)
    )
    result = await session.execute(stmt)

    pending: dict[tuple[UUID, UUID], list[bool]] = {}
    for cycle_id, subject_id, archived_at, results_notified in result.all():
        needs = pending.setdefault((cycle_id, subject_id), [False, False])
        needs[0] = needs[0] or archived_at is None
        needs[1] = needs[1] or not results_notified
    return [(c, s, needs[0], needs[1]) for (c, s), needs in pending.items()]
