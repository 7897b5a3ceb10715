"""One-on-one meeting query functions for Perfcycle."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from perfcycle.database.models.one_on_one import OneOnOne, OneOnOneStatus
from perfcycle.errors import EntityNotFoundError

logger = structlog.get_logger(__name__)


async def create_one_on_one(
    session: AsyncSession,
    manager_id: UUID,
    employee_id: UUID,
    scheduled_at: datetime,
    status: OneOnOneStatus = OneOnOneStatus.scheduled,
    location: str | None = "Virtual",
) -> OneOnOne:
    """Create a 1:1 meeting.

    Args:
        session: Active async database session.
        manager_id: Manager attending.
        employee_id: Report attending.
        scheduled_at: Meeting start (UTC).
        status: Initial status.
        location: Meeting location.

    Returns:
        The newly created OneOnOne instance.
    """
    meeting = OneOnOne(
        manager_id=manager_id,
        employee_id=employee_id,
        scheduled_at=scheduled_at,
        status=status,
        location=location,
        reminder_sent=False,
    )

    session.add(meeting)
    await session.commit()
    await session.refresh(meeting)

    logger.info(
        "one_on_one_created",
        one_on_one_id=str(meeting.id),
        manager_id=str(manager_id),
        employee_id=str(employee_id),
    )

    return meeting


async def require_one_on_one(
    session: AsyncSession,
    one_on_one_id: UUID,
) -> OneOnOne:
    """Retrieve a 1:1 meeting by ID or raise.

    Raises:
        EntityNotFoundError: If the meeting does not exist.
    """
    stmt = select(OneOnOne).where(OneOnOne.id == one_on_one_id)
    result = await session.execute(stmt)
    meeting = result.scalar_one_or_none()
    if meeting is None:
        raise EntityNotFoundError("one_on_one", one_on_one_id)
    return meeting


async def list_upcoming_without_reminder(
    session: AsyncSession,
    start: datetime,
    end: datetime,
) -> list[OneOnOne]:
    """List draft/scheduled meetings in ``[start, end)`` not yet reminded."""
    stmt = (
        select(OneOnOne)
        .where(OneOnOne.scheduled_at >= start)
        .where(OneOnOne.scheduled_at < end)
        .where(OneOnOne.status.in_([OneOnOneStatus.scheduled, OneOnOneStatus.draft]))
        .where(OneOnOne.reminder_sent.is_(False))
        .order_by(OneOnOne.scheduled_at.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def mark_reminder_sent(
    session: AsyncSession,
    one_on_one_id: UUID,
) -> None:
    """Flag a meeting's day-before reminder as sent."""
    stmt = (
        update(OneOnOne)
        .where(OneOnOne.id == one_on_one_id)
        .values(reminder_sent=True)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)
    await session.commit()
