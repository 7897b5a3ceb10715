"""Calibration of manager ratings for Perfcycle.

Calibration adjusts each subject's manager rating for consistency across
reviewers before results are published. Every change to a record is
appended to its change log as one entry per changed field; the log is the
audit trail and is never rewritten.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from perfcycle.database.models.calibration import CalibrationRecord, PotentialTier
from perfcycle.database.models.cycle import CyclePhase
from perfcycle.database.models.form import FormKind, FormStatus
from perfcycle.database.queries.calibration import (
    append_changes,
    find_calibration_record,
    get_or_create_calibration_record,
    list_calibration_records,
    require_calibration_record,
)
from perfcycle.database.queries.cycle import require_cycle
from perfcycle.database.queries.form import list_forms
from perfcycle.errors import InvalidStateError
from perfcycle.review.forms import FormLifecycle
from perfcycle.review.scoring import rating_bounds, rating_in_bounds
from perfcycle.timeutil import utcnow

logger = structlog.get_logger(__name__)

_CLOSED_PHASES = (CyclePhase.published, CyclePhase.closed)


def _log_value(value: Any) -> Any:
    if isinstance(value, PotentialTier):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def change_entry(
    actor_id: UUID | None,
    field: str,
    old_value: Any,
    new_value: Any,
    reason: str | None,
    timestamp: datetime,
) -> dict[str, Any]:
    """Build one change-log entry."""
    return {
        "timestamp": timestamp.isoformat(),
        "actor_id": str(actor_id) if actor_id else None,
        "field": field,
        "old_value": _log_value(old_value),
        "new_value": _log_value(new_value),
        "reason": reason,
    }


class CalibrationService:
    """Creates, adjusts, finalizes and disputes calibration records."""

    def __init__(self, lifecycle: FormLifecycle | None = None) -> None:
        self.lifecycle = lifecycle or FormLifecycle()
        self.logger = logger.bind(component="CalibrationService")

    async def begin(
        self,
        session: AsyncSession,
        cycle_id: UUID,
        subject_id: UUID,
        manager_rating: float | None,
    ) -> tuple[CalibrationRecord, bool]:
        """Start calibration for a subject; idempotent per (cycle, subject).

        Returns:
            Tuple of (record, created).
        """
        record, created = await get_or_create_calibration_record(
            session, cycle_id, subject_id, manager_rating
        )
        if created:
            self.logger.info(
                "calibration_started",
                cycle_id=str(cycle_id),
                subject_id=str(subject_id),
                manager_rating=manager_rating,
            )
        return record, created

    async def adjust(
        self,
        session: AsyncSession,
        record_id: UUID,
        actor_id: UUID,
        final_rating: float | None = None,
        potential: PotentialTier | None = None,
        justification: str | None = None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> CalibrationRecord:
        """Change the calibrated rating, potential or justification.

        Raises:
            EntityNotFoundError: If the record does not exist.
            InvalidStateError: If the record is finalized and not disputed,
                the cycle is finished, or the rating is off the scale.
        """
        record = await require_calibration_record(session, record_id)
        if record.is_finalized and not record.disputed:
            raise InvalidStateError(f"calibration record {record_id} is finalized")

        cycle = await require_cycle(session, record.cycle_id)
        if cycle.phase == CyclePhase.closed or (
            cycle.phase == CyclePhase.published and not record.disputed
        ):
            raise InvalidStateError(f"cycle {cycle.id} is {cycle.phase.value}")
        if final_rating is not None and not rating_in_bounds(cycle.rating_scale, final_rating):
            low, high = rating_bounds(cycle.rating_scale)
            raise InvalidStateError(
                f"final rating {final_rating} is outside the scale ({low}-{high})"
            )

        return await self._apply(
            session,
            record,
            actor_id,
            reason,
            now or utcnow(),
            final_rating=final_rating,
            potential=potential,
            justification=justification,
        )

    async def _apply(
        self,
        session: AsyncSession,
        record: CalibrationRecord,
        actor_id: UUID | None,
        reason: str | None,
        timestamp: datetime,
        **changes: Any,
    ) -> CalibrationRecord:
        values: dict[str, Any] = {}
        entries: list[dict[str, Any]] = []
        for field, new_value in changes.items():
            if new_value is None:
                continue
            old_value = getattr(record, field)
            if old_value == new_value:
                continue
            values[field] = new_value
            entries.append(change_entry(actor_id, field, old_value, new_value, reason, timestamp))

        if not entries:
            return record

        record = await append_changes(session, record, entries, **values)
        self.logger.info(
            "calibration_adjusted",
            record_id=str(record.id),
            fields=sorted(values),
            actor_id=str(actor_id) if actor_id else None,
        )
        return record

    async def finalize(
        self,
        session: AsyncSession,
        record_id: UUID,
        approver_id: UUID,
        now: datetime | None = None,
    ) -> CalibrationRecord:
        """Sign off a record and mark the subject's manager form CALIBRATED.

        Finalizing an already finalized record only re-applies the form
        status, so a retried sign-off is harmless.

        Raises:
            EntityNotFoundError: If the record does not exist.
            InvalidStateError: If the record is disputed or the cycle is finished.
        """
        record = await require_calibration_record(session, record_id)
        if record.disputed:
            raise InvalidStateError(f"calibration record {record_id} is disputed")

        if not record.is_finalized:
            cycle = await require_cycle(session, record.cycle_id)
            if cycle.phase in _CLOSED_PHASES:
                raise InvalidStateError(f"cycle {cycle.id} is {cycle.phase.value}")

            timestamp = now or utcnow()
            entries = [
                change_entry(approver_id, "is_finalized", False, True, "approved", timestamp)
            ]
            record = await append_changes(
                session,
                record,
                entries,
                is_finalized=True,
                approver_id=approver_id,
                approved_at=timestamp,
            )
            self.logger.info(
                "calibration_finalized",
                record_id=str(record.id),
                cycle_id=str(record.cycle_id),
                subject_id=str(record.subject_id),
                final_rating=record.final_rating,
            )

        forms = await list_forms(
            session,
            cycle_id=record.cycle_id,
            kind=FormKind.manager,
            subject_id=record.subject_id,
            statuses=[FormStatus.submitted],
        )
        for form in forms:
            await self.lifecycle.mark_calibrated(session, form.id)

        return record

    async def raise_dispute(
        self,
        session: AsyncSession,
        record_id: UUID,
        actor_id: UUID,
        reason: str,
        now: datetime | None = None,
    ) -> CalibrationRecord:
        """Flag a record as disputed, reopening it for adjustment.

        Raises:
            InvalidStateError: If the record is already disputed or the
                cycle is closed.
        """
        record = await require_calibration_record(session, record_id)
        if record.disputed:
            raise InvalidStateError(f"calibration record {record_id} is already disputed")

        cycle = await require_cycle(session, record.cycle_id)
        if cycle.phase == CyclePhase.closed:
            raise InvalidStateError(f"cycle {cycle.id} is closed")

        timestamp = now or utcnow()
        entries = [change_entry(actor_id, "disputed", False, True, reason, timestamp)]
        record = await append_changes(
            session,
            record,
            entries,
            disputed=True,
            dispute_reason=reason,
            dispute_resolution=None,
            dispute_resolved_at=None,
        )
        self.logger.info("calibration_disputed", record_id=str(record.id))
        return record

    async def resolve_dispute(
        self,
        session: AsyncSession,
        record_id: UUID,
        actor_id: UUID,
        resolution: str,
        final_rating: float | None = None,
        now: datetime | None = None,
    ) -> CalibrationRecord:
        """Resolve a dispute, optionally changing the final rating.

        Raises:
            InvalidStateError: If the record is not disputed.
        """
        record = await require_calibration_record(session, record_id)
        if not record.disputed:
            raise InvalidStateError(f"calibration record {record_id} is not disputed")

        timestamp = now or utcnow()
        if final_rating is not None:
            record = await self.adjust(
                session,
                record_id,
                actor_id,
                final_rating=final_rating,
                reason=resolution,
                now=timestamp,
            )

        entries = [change_entry(actor_id, "disputed", True, False, resolution, timestamp)]
        record = await append_changes(
            session,
            record,
            entries,
            disputed=False,
            dispute_resolution=resolution,
            dispute_resolved_at=timestamp,
        )
        self.logger.info("calibration_dispute_resolved", record_id=str(record.id))
        return record

    async def final_rating_for(
        self,
        session: AsyncSession,
        cycle_id: UUID,
        subject_id: UUID,
    ) -> float | None:
        """Return the subject's final rating for a cycle.

        The finalized calibration rating wins; otherwise the manager form's
        overall rating is used.
        """
        record = await find_calibration_record(session, cycle_id, subject_id)
        if record is not None and record.is_finalized:
            return record.final_rating

        forms = await list_forms(
            session, cycle_id=cycle_id, kind=FormKind.manager, subject_id=subject_id
        )
        for form in forms:
            if form.overall_rating is not None:
                return form.overall_rating
        return None

    async def all_finalized(self, session: AsyncSession, cycle_id: UUID) -> bool:
        """Return True if every manager-reviewed subject has a finalized, undisputed record."""
        forms = await list_forms(session, cycle_id=cycle_id, kind=FormKind.manager)
        subjects = {form.subject_id for form in forms}

        records = {
            record.subject_id: record
            for record in await list_calibration_records(session, cycle_id)
        }
        for subject_id in subjects:
            record = records.get(subject_id)
            if record is None or not record.is_finalized or record.disputed:
                return False
        return all(record.is_finalized and not record.disputed for record in records.values())
