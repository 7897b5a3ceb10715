"""HR reporting endpoints for Perfcycle."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from perfcycle.archive.records import HRReviewRecord
from perfcycle.archive.reports import (
    CycleReport,
    PerformanceTrends,
    cycle_report,
    employee_history,
    export_cycle_csv,
    performance_trends,
)
from perfcycle.database.queries.employee import require_employee
from perfcycle.logging import get_logger
from perfcycle.web.dependencies import get_session_factory

logger = get_logger(__name__)


def create_reports_router() -> APIRouter:
    """Create the reporting router.

    Routes:
        GET /reports/cycles/{cycle_id} - Cycle report
        GET /reports/cycles/{cycle_id}/csv - Cycle report as CSV
        GET /reports/employees/{employee_id}/history - Published review records
        GET /reports/employees/{employee_id}/trends - Rating trends across cycles
    """
    router = APIRouter(prefix="/reports", tags=["reports"])

    @router.get("/cycles/{cycle_id}", response_model=CycleReport)
    async def cycle_report_endpoint(
        cycle_id: UUID,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> CycleReport:
        async with session_factory() as session:
            report = await cycle_report(session, cycle_id)

        logger.info("cycle_report_generated", cycle_id=str(cycle_id))
        return report

    @router.get("/cycles/{cycle_id}/csv")
    async def cycle_report_csv_endpoint(
        cycle_id: UUID,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> Response:
        async with session_factory() as session:
            report = await cycle_report(session, cycle_id)

        return Response(
            content=export_cycle_csv(report),
            media_type="text/csv",
            headers={
                "Content-Disposition": f'attachment; filename="cycle-{cycle_id}.csv"',
            },
        )

    @router.get("/employees/{employee_id}/history", response_model=list[HRReviewRecord])
    async def employee_history_endpoint(
        employee_id: UUID,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> list[HRReviewRecord]:
        async with session_factory() as session:
            await require_employee(session, employee_id)
            return await employee_history(session, employee_id)

    @router.get("/employees/{employee_id}/trends", response_model=PerformanceTrends)
    async def employee_trends_endpoint(
        employee_id: UUID,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> PerformanceTrends:
        async with session_factory() as session:
            await require_employee(session, employee_id)
            return await performance_trends(session, employee_id)

    return router
