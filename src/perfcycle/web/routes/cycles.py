"""Review cycle REST API endpoints for Perfcycle.

Provides routes for creating and listing cycles, reading a cycle with its
completion progress, and driving the manual phase changes: activation,
completing calibration (which publishes the cycle) and closing.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from perfcycle.database.models.cycle import CycleKind, CyclePhase, RatingScale
from perfcycle.database.queries.cycle import create_cycle, list_cycles, require_cycle
from perfcycle.logging import get_logger
from perfcycle.orchestrator.workflow import (
    CalibrationReadiness,
    CycleProgress,
    PublicationResult,
    WorkflowOrchestrator,
)
from perfcycle.review.phases import CycleStateMachine
from perfcycle.web.dependencies import get_session_factory, get_state_machine, get_workflow

logger = get_logger(__name__)


# --- Pydantic Schemas ---


class CycleCreate(BaseModel):
    """Request schema for creating a review cycle."""

    name: str = Field(..., min_length=1, max_length=255)
    kind: CycleKind = CycleKind.annual
    period_start: date
    period_end: date
    self_review_start: date
    self_review_end: date
    manager_review_start: date
    manager_review_end: date
    peer_review_start: date | None = None
    peer_review_end: date | None = None
    calibration_date: date | None = None
    publish_date: date | None = None
    rating_scale: RatingScale = RatingScale.five_point
    peer_reviews_enabled: bool = False
    upward_reviews_enabled: bool = False
    anonymous_peer_reviews: bool = False
    calibration_required: bool = True
    linked_to_compensation: bool = False
    config: dict[str, Any] = Field(default_factory=dict)
    excluded_departments: list[str] = Field(default_factory=list)
    excluded_employee_ids: list[str] = Field(default_factory=list)


class CycleResponse(BaseModel):
    """Response schema for review cycle data."""

    id: UUID
    name: str
    kind: CycleKind
    phase: CyclePhase
    period_start: date
    period_end: date
    self_review_start: date
    self_review_end: date
    manager_review_start: date
    manager_review_end: date
    peer_review_start: date | None
    peer_review_end: date | None
    calibration_date: date | None
    publish_date: date | None
    rating_scale: RatingScale
    peer_reviews_enabled: bool
    upward_reviews_enabled: bool
    calibration_required: bool
    activated_at: datetime | None
    published_at: datetime | None
    closed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class CycleDetail(BaseModel):
    """A cycle together with its completion progress."""

    cycle: CycleResponse
    progress: CycleProgress


# --- Router ---


def create_cycles_router() -> APIRouter:
    """Create the review cycle router.

    Routes:
        POST /cycles/ - Create a DRAFT cycle
        GET /cycles/ - List cycles, optionally filtered by phase
        GET /cycles/{cycle_id} - Cycle with progress
        GET /cycles/{cycle_id}/readiness - Calibration readiness
        POST /cycles/{cycle_id}/activate - Launch a DRAFT cycle
        POST /cycles/{cycle_id}/complete-calibration - Publish a calibrated cycle
        POST /cycles/{cycle_id}/close - Retire a published cycle
    """
    router = APIRouter(prefix="/cycles", tags=["cycles"])

    @router.post("/", response_model=CycleResponse, status_code=201)
    async def create_cycle_endpoint(
        cycle_data: CycleCreate,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> CycleResponse:
        async with session_factory() as session:
            cycle = await create_cycle(session, **cycle_data.model_dump())

        logger.info("cycle_created_via_api", cycle_id=str(cycle.id), name=cycle.name)
        return CycleResponse.model_validate(cycle)

    @router.get("/", response_model=list[CycleResponse])
    async def list_cycles_endpoint(
        phase: str | None = None,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> list[CycleResponse]:
        """List cycles, newest first.

        Raises:
            HTTPException: 400 if phase is not a known phase.
        """
        phases = None
        if phase is not None:
            try:
                phases = [CyclePhase(phase)]
            except ValueError:
                logger.warning("invalid_phase_filter", phase=phase)
                raise HTTPException(status_code=400, detail=f"Invalid phase: {phase}")

        async with session_factory() as session:
            cycles = await list_cycles(session, phases=phases)

        return [CycleResponse.model_validate(cycle) for cycle in cycles]

    @router.get("/{cycle_id}", response_model=CycleDetail)
    async def get_cycle_endpoint(
        cycle_id: UUID,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
        workflow: WorkflowOrchestrator = Depends(get_workflow),  # noqa: B008
    ) -> CycleDetail:
        async with session_factory() as session:
            cycle = await require_cycle(session, cycle_id)
        progress = await workflow.cycle_progress(cycle_id)
        return CycleDetail(cycle=CycleResponse.model_validate(cycle), progress=progress)

    @router.get("/{cycle_id}/readiness", response_model=CalibrationReadiness)
    async def readiness_endpoint(
        cycle_id: UUID,
        workflow: WorkflowOrchestrator = Depends(get_workflow),  # noqa: B008
    ) -> CalibrationReadiness:
        return await workflow.calibration_readiness(cycle_id)

    @router.post("/{cycle_id}/activate", response_model=CycleResponse)
    async def activate_cycle_endpoint(
        cycle_id: UUID,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
        state_machine: CycleStateMachine = Depends(get_state_machine),  # noqa: B008
    ) -> CycleResponse:
        async with session_factory() as session:
            cycle = await state_machine.activate(session, cycle_id)

        logger.info("cycle_activated_via_api", cycle_id=str(cycle_id))
        return CycleResponse.model_validate(cycle)

    @router.post("/{cycle_id}/complete-calibration", response_model=PublicationResult)
    async def complete_calibration_endpoint(
        cycle_id: UUID,
        workflow: WorkflowOrchestrator = Depends(get_workflow),  # noqa: B008
    ) -> PublicationResult:
        """Publish a cycle whose calibration is finished.

        Archive and notification failures are reported in the result, they
        do not fail the request.
        """
        result = await workflow.handle_calibration_complete(cycle_id)
        logger.info(
            "cycle_published_via_api",
            cycle_id=str(cycle_id),
            published_forms=result.published_forms,
            archive_failures=len(result.archive_failures),
        )
        return result

    @router.post("/{cycle_id}/close", response_model=CycleResponse)
    async def close_cycle_endpoint(
        cycle_id: UUID,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
        state_machine: CycleStateMachine = Depends(get_state_machine),  # noqa: B008
    ) -> CycleResponse:
        async with session_factory() as session:
            cycle = await state_machine.close(session, cycle_id)

        logger.info("cycle_closed_via_api", cycle_id=str(cycle_id))
        return CycleResponse.model_validate(cycle)

    return router
