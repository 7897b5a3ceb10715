"""Calibration REST API endpoints for Perfcycle.

Calibration records are created by the workflow when a manager review is
submitted; these routes let HR adjust, finalize and dispute them. Every
change lands in the record's append-only change log.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from perfcycle.database.models.calibration import PotentialTier
from perfcycle.database.queries.calibration import (
    list_calibration_records,
    require_calibration_record,
)
from perfcycle.database.queries.cycle import require_cycle
from perfcycle.logging import get_logger
from perfcycle.review.calibration import CalibrationService
from perfcycle.web.dependencies import get_calibration_service, get_session_factory

logger = get_logger(__name__)


# --- Pydantic Schemas ---


class CalibrationAdjust(BaseModel):
    """Request schema for adjusting a calibration record."""

    actor_id: UUID
    final_rating: float | None = None
    potential: PotentialTier | None = None
    justification: str | None = None
    reason: str | None = None


class CalibrationFinalize(BaseModel):
    approver_id: UUID


class CalibrationDispute(BaseModel):
    actor_id: UUID
    reason: str = Field(..., min_length=1)


class CalibrationResolve(BaseModel):
    actor_id: UUID
    resolution: str = Field(..., min_length=1)
    final_rating: float | None = None


class CalibrationRecordResponse(BaseModel):
    """Response schema for calibration record data."""

    id: UUID
    cycle_id: UUID
    subject_id: UUID
    pre_calibration_rating: float | None
    final_rating: float | None
    potential: PotentialTier | None
    justification: str | None
    approver_id: UUID | None
    approved_at: datetime | None
    is_finalized: bool
    disputed: bool
    dispute_reason: str | None
    dispute_resolution: str | None
    dispute_resolved_at: datetime | None
    change_log: list[dict[str, Any]]

    model_config = {"from_attributes": True}


# --- Router ---


def create_calibration_router() -> APIRouter:
    """Create the calibration router.

    Routes:
        GET /calibration/cycles/{cycle_id} - Records of a cycle
        GET /calibration/{record_id} - Single record with change log
        POST /calibration/{record_id}/adjust - Change rating, potential or justification
        POST /calibration/{record_id}/finalize - Sign off a record
        POST /calibration/{record_id}/dispute - Raise a dispute
        POST /calibration/{record_id}/resolve - Resolve a dispute
    """
    router = APIRouter(prefix="/calibration", tags=["calibration"])

    @router.get("/cycles/{cycle_id}", response_model=list[CalibrationRecordResponse])
    async def list_records_endpoint(
        cycle_id: UUID,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> list[CalibrationRecordResponse]:
        async with session_factory() as session:
            await require_cycle(session, cycle_id)
            records = await list_calibration_records(session, cycle_id)

        return [CalibrationRecordResponse.model_validate(record) for record in records]

    @router.get("/{record_id}", response_model=CalibrationRecordResponse)
    async def get_record_endpoint(
        record_id: UUID,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> CalibrationRecordResponse:
        async with session_factory() as session:
            record = await require_calibration_record(session, record_id)
        return CalibrationRecordResponse.model_validate(record)

    @router.post("/{record_id}/adjust", response_model=CalibrationRecordResponse)
    async def adjust_endpoint(
        record_id: UUID,
        adjustment: CalibrationAdjust,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
        service: CalibrationService = Depends(get_calibration_service),  # noqa: B008
    ) -> CalibrationRecordResponse:
        async with session_factory() as session:
            record = await service.adjust(
                session,
                record_id,
                adjustment.actor_id,
                final_rating=adjustment.final_rating,
                potential=adjustment.potential,
                justification=adjustment.justification,
                reason=adjustment.reason,
            )

        logger.info("calibration_adjusted_via_api", record_id=str(record_id))
        return CalibrationRecordResponse.model_validate(record)

    @router.post("/{record_id}/finalize", response_model=CalibrationRecordResponse)
    async def finalize_endpoint(
        record_id: UUID,
        sign_off: CalibrationFinalize,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
        service: CalibrationService = Depends(get_calibration_service),  # noqa: B008
    ) -> CalibrationRecordResponse:
        async with session_factory() as session:
            record = await service.finalize(session, record_id, sign_off.approver_id)

        logger.info("calibration_finalized_via_api", record_id=str(record_id))
        return CalibrationRecordResponse.model_validate(record)

    @router.post("/{record_id}/dispute", response_model=CalibrationRecordResponse)
    async def dispute_endpoint(
        record_id: UUID,
        dispute: CalibrationDispute,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
        service: CalibrationService = Depends(get_calibration_service),  # noqa: B008
    ) -> CalibrationRecordResponse:
        async with session_factory() as session:
            record = await service.raise_dispute(
                session, record_id, dispute.actor_id, dispute.reason
            )
        return CalibrationRecordResponse.model_validate(record)

    @router.post("/{record_id}/resolve", response_model=CalibrationRecordResponse)
    async def resolve_endpoint(
        record_id: UUID,
        resolution: CalibrationResolve,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
        service: CalibrationService = Depends(get_calibration_service),  # noqa: B008
    ) -> CalibrationRecordResponse:
        async with session_factory() as session:
            record = await service.resolve_dispute(
                session,
                record_id,
                resolution.actor_id,
                resolution.resolution,
                final_rating=resolution.final_rating,
            )
        return CalibrationRecordResponse.model_validate(record)

    return router
