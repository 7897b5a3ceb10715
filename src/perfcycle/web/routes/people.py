"""Employee and 1:1 meeting endpoints for Perfcycle.

The employee routes maintain the thin directory slice the review engine
reads (reporting lines, departments, HR and leadership roles). Scheduling
a 1:1 sends calendar invitations to both parties straight away; the
day-before reminder comes from the meeting reminder sweep.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from perfcycle.database.models.employee import EmployeeRole
from perfcycle.database.models.one_on_one import OneOnOneStatus
from perfcycle.database.queries.employee import (
    create_employee,
    list_active_employees,
    require_employee,
)
from perfcycle.database.queries.one_on_one import create_one_on_one
from perfcycle.logging import get_logger
from perfcycle.orchestrator.workflow import WorkflowOrchestrator
from perfcycle.timeutil import ensure_utc
from perfcycle.web.dependencies import get_session_factory, get_workflow

logger = get_logger(__name__)


class EmployeeCreate(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=255)
    email: str | None = None
    department: str | None = None
    manager_id: UUID | None = None
    role: EmployeeRole = EmployeeRole.employee


class EmployeeResponse(BaseModel):
    id: UUID
    full_name: str
    email: str | None
    department: str | None
    manager_id: UUID | None
    role: EmployeeRole
    is_active: bool

    model_config = {"from_attributes": True}


class OneOnOneCreate(BaseModel):
    """Request schema for scheduling a 1:1."""

    manager_id: UUID
    employee_id: UUID
    scheduled_at: datetime
    location: str | None = "Virtual"


class OneOnOneResponse(BaseModel):
    id: UUID
    manager_id: UUID
    employee_id: UUID
    scheduled_at: datetime
    status: OneOnOneStatus
    location: str | None
    reminder_sent: bool
    invitations_sent: int = 0

    model_config = {"from_attributes": True}


def create_people_router() -> APIRouter:
    """Create the employee and 1:1 router.

    Routes:
        POST /employees/ - Add an employee
        GET /employees/ - List active employees
        POST /one-on-ones/ - Schedule a 1:1 and invite both parties
    """
    router = APIRouter(tags=["people"])

    @router.post("/employees/", response_model=EmployeeResponse, status_code=201)
    async def create_employee_endpoint(
        employee_data: EmployeeCreate,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> EmployeeResponse:
        async with session_factory() as session:
            if employee_data.manager_id is not None:
                await require_employee(session, employee_data.manager_id)
            employee = await create_employee(session, **employee_data.model_dump())
        return EmployeeResponse.model_validate(employee)

    @router.get("/employees/", response_model=list[EmployeeResponse])
    async def list_employees_endpoint(
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> list[EmployeeResponse]:
        async with session_factory() as session:
            employees = await list_active_employees(session)
        return [EmployeeResponse.model_validate(employee) for employee in employees]

    @router.post("/one-on-ones/", response_model=OneOnOneResponse, status_code=201)
    async def schedule_one_on_one_endpoint(
        meeting_data: OneOnOneCreate,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
        workflow: WorkflowOrchestrator = Depends(get_workflow),  # noqa: B008
    ) -> OneOnOneResponse:
        async with session_factory() as session:
            await require_employee(session, meeting_data.manager_id)
            await require_employee(session, meeting_data.employee_id)
            meeting = await create_one_on_one(
                session,
                manager_id=meeting_data.manager_id,
                employee_id=meeting_data.employee_id,
                scheduled_at=ensure_utc(meeting_data.scheduled_at),
                location=meeting_data.location,
            )

        invitations = await workflow.handle_one_on_one_scheduled(meeting.id)
        logger.info(
            "one_on_one_scheduled_via_api",
            one_on_one_id=str(meeting.id),
            invitations_sent=invitations,
        )

        response = OneOnOneResponse.model_validate(meeting)
        response.invitations_sent = invitations
        return response

    return router
