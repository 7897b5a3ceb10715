"""Calibration record query functions for Perfcycle.

The change log of a calibration record is append-only. ``append_changes``
is the only writer: it builds a new list from the stored one plus the
new entries, and the record's version counter rejects a write based on a
stale copy.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from perfcycle.database.models.calibration import CalibrationRecord
from perfcycle.errors import ConcurrentUpdateError, EntityNotFoundError

logger = structlog.get_logger(__name__)


async def create_calibration_record(
    session: AsyncSession,
    cycle_id: UUID,
    subject_id: UUID,
    pre_calibration_rating: float | None,
) -> CalibrationRecord:
    """Create the calibration record for a subject.

    The final rating starts equal to the manager's rating so that an
    unchanged calibration can be signed off without edits.

    Args:
        session: Active async database session.
        cycle_id: UUID of the cycle.
        subject_id: UUID of the subject.
        pre_calibration_rating: Manager's overall rating.

    Returns:
        The newly created CalibrationRecord instance.
    """
    record = CalibrationRecord(
        cycle_id=cycle_id,
        subject_id=subject_id,
        pre_calibration_rating=pre_calibration_rating,
        final_rating=pre_calibration_rating,
        is_finalized=False,
        disputed=False,
        change_log=[],
    )

    session.add(record)
    await session.commit()
    await session.refresh(record)

    logger.info(
        "calibration_record_created",
        record_id=str(record.id),
        cycle_id=str(cycle_id),
        subject_id=str(subject_id),
        pre_calibration_rating=pre_calibration_rating,
    )

    return record


async def find_calibration_record(
    session: AsyncSession,
    cycle_id: UUID,
    subject_id: UUID,
) -> CalibrationRecord | None:
    """Find the calibration record of a subject within a cycle."""
    stmt = (
        select(CalibrationRecord)
        .where(
            CalibrationRecord.cycle_id == cycle_id,
            CalibrationRecord.subject_id == subject_id,
        )
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_or_create_calibration_record(
    session: AsyncSession,
    cycle_id: UUID,
    subject_id: UUID,
    pre_calibration_rating: float | None,
) -> tuple[CalibrationRecord, bool]:
    """Return the subject's record, creating it when absent.

    Returns:
        Tuple of (record, created).
    """
    existing = await find_calibration_record(session, cycle_id, subject_id)
    if existing is not None:
        return existing, False

    try:
        record = await create_calibration_record(
            session, cycle_id, subject_id, pre_calibration_rating
        )
        return record, True
    except IntegrityError:
        await session.rollback()
        existing = await find_calibration_record(session, cycle_id, subject_id)
        if existing is None:
            raise
        return existing, False


async def get_calibration_record(
    session: AsyncSession,
    record_id: UUID,
) -> CalibrationRecord | None:
    """Retrieve a calibration record by ID."""
    stmt = (
        select(CalibrationRecord)
        .where(CalibrationRecord.id == record_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_calibration_record(
    session: AsyncSession,
    record_id: UUID,
) -> CalibrationRecord:
    """Retrieve a calibration record by ID or raise.

    Raises:
        EntityNotFoundError: If the record does not exist.
    """
    record = await get_calibration_record(session, record_id)
    if record is None:
        raise EntityNotFoundError("calibration_record", record_id)
    return record


async def list_calibration_records(
    session: AsyncSession,
    cycle_id: UUID,
) -> list[CalibrationRecord]:
    """List the calibration records of a cycle."""
    stmt = (
        select(CalibrationRecord)
        .where(CalibrationRecord.cycle_id == cycle_id)
        .order_by(CalibrationRecord.created_at.asc())
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_unfinalized_records(
    session: AsyncSession,
    cycle_id: UUID,
) -> int:
    """Count records of a cycle that are not finalized or are disputed."""
    stmt = select(func.count(CalibrationRecord.id)).where(
        CalibrationRecord.cycle_id == cycle_id,
        (CalibrationRecord.is_finalized.is_(False)) | (CalibrationRecord.disputed.is_(True)),
    )
    result = await session.execute(stmt)
    return int(result.scalar_one())


async def append_changes(
    session: AsyncSession,
    record: CalibrationRecord,
    entries: list[dict[str, Any]],
    **values: Any,
) -> CalibrationRecord:
    """Apply field changes to a record and append their audit entries.

    The update is guarded by the record's ``version_id``: if another writer
    committed since ``record`` was loaded, nothing is written.

    Args:
        session: Active async database session.
        record: Record to update (loaded in ``session``).
        entries: Change-log entries to append, in order.
        **values: Columns to set.

    Returns:
        The refreshed CalibrationRecord.

    Raises:
        ConcurrentUpdateError: If the record changed after it was loaded.
    """
    record_id = record.id
    for field, value in values.items():
        setattr(record, field, value)
    if entries:
        record.change_log = [*(record.change_log or []), *entries]

    try:
        await session.commit()
    except StaleDataError as e:
        await session.rollback()
        logger.warning(
            "calibration_record_stale",
            record_id=str(record_id),
            fields=sorted(values),
        )
        raise ConcurrentUpdateError("calibration_record", record_id) from e
    await session.refresh(record)

    logger.info(
        "calibration_record_updated",
        record_id=str(record.id),
        fields=sorted(values),
        log_entries=len(record.change_log),
        version=record.version_id,
    )
    return record
