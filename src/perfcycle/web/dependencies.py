"""FastAPI dependencies resolving the services stored on ``app.state``."""

from __future__ import annotations

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from perfcycle.orchestrator.workflow import WorkflowOrchestrator
from perfcycle.review.calibration import CalibrationService
from perfcycle.review.forms import FormLifecycle
from perfcycle.review.phases import CycleStateMachine


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    """Dependency that retrieves the session factory from app state."""
    return request.app.state.session_factory  # type: ignore[no-any-return]


def get_workflow(request: Request) -> WorkflowOrchestrator:
    """Dependency that retrieves the workflow orchestrator from app state."""
    return request.app.state.workflow  # type: ignore[no-any-return]


def get_state_machine(request: Request) -> CycleStateMachine:
    return get_workflow(request).state_machine


def get_lifecycle(request: Request) -> FormLifecycle:
    return get_workflow(request).lifecycle


def get_calibration_service(request: Request) -> CalibrationService:
    return get_workflow(request).calibration
