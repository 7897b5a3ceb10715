"""Cycle participants and form creation.

The EmployeeDirectory answers the "who" questions of the workflow: who is
in scope for a cycle, who manages whom, who receives HR and leadership
escalations. ``ensure_forms_for_phase`` creates the forms a phase needs and
is safe to call repeatedly.
"""

from __future__ import annotations

from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from perfcycle.database.models.cycle import CyclePhase, ReviewCycle
from perfcycle.database.models.employee import Employee, EmployeeRole
from perfcycle.database.models.form import FormKind
from perfcycle.database.queries.employee import (
    get_employee,
    list_active_employees,
    list_direct_reports,
    list_employees_by_role,
)
from perfcycle.database.queries.form import get_or_create_form

logger = structlog.get_logger(__name__)


def in_scope(employee: Employee, cycle: ReviewCycle) -> bool:
    """Return True if the employee takes part in the cycle."""
    if not employee.is_active:
        return False
    if employee.department and employee.department in (cycle.excluded_departments or []):
        return False
    return str(employee.id) not in {str(e) for e in cycle.excluded_employee_ids or []}


class EmployeeDirectory:
    """Read-only view of the organisation chart."""

    async def participants(self, session: AsyncSession, cycle: ReviewCycle) -> list[Employee]:
        """Active employees not excluded from the cycle."""
        employees = await list_active_employees(session)
        return [e for e in employees if in_scope(e, cycle)]

    async def manager_of(self, session: AsyncSession, employee_id: UUID) -> Employee | None:
        """Return the employee's active manager, if any."""
        employee = await get_employee(session, employee_id)
        if employee is None or employee.manager_id is None:
            return None
        manager = await get_employee(session, employee.manager_id)
        if manager is None or not manager.is_active:
            return None
        return manager

    async def direct_reports(
        self,
        session: AsyncSession,
        manager_id: UUID,
        cycle: ReviewCycle | None = None,
    ) -> list[Employee]:
        """Active direct reports, restricted to the cycle's scope when given."""
        reports = await list_direct_reports(session, manager_id)
        if cycle is None:
            return reports
        return [r for r in reports if in_scope(r, cycle)]

    async def hr_recipients(self, session: AsyncSession) -> list[UUID]:
        return [e.id for e in await list_employees_by_role(session, EmployeeRole.hr)]

    async def leadership_for(self, session: AsyncSession, manager_id: UUID) -> list[UUID]:
        """Senior leadership above a manager.

        The manager's own manager is preferred; without one, every active
        senior leader is returned.
        """
        skip_level = await self.manager_of(session, manager_id)
        if skip_level is not None:
            return [skip_level.id]
        return [e.id for e in await list_employees_by_role(session, EmployeeRole.senior_leader)]

    async def display_name(self, session: AsyncSession, employee_id: UUID) -> str:
        employee = await get_employee(session, employee_id)
        return employee.full_name if employee is not None else "a colleague"


async def ensure_forms_for_phase(
    session: AsyncSession,
    cycle: ReviewCycle,
    phase: CyclePhase,
    directory: EmployeeDirectory | None = None,
) -> int:
    """Create the forms a phase needs, skipping those that already exist.

    - SELF_REVIEW_OPEN: one SELF form per participant.
    - MANAGER_REVIEW_OPEN: one MANAGER form per participant with a manager,
      plus one UPWARD form per such participant when upward reviews are on.
    - PEER_REVIEW_OPEN: one PEER form per ordered pair of participants
      sharing a manager, when peer reviews are on.

    Returns:
        Number of forms created.
    """
    directory = directory or EmployeeDirectory()
    participants = await directory.participants(session, cycle)
    pairs: list[tuple[UUID, UUID, FormKind]] = []

    if phase == CyclePhase.self_review_open:
        pairs = [(p.id, p.id, FormKind.self) for p in participants]

    elif phase == CyclePhase.manager_review_open:
        for p in participants:
            if p.manager_id is None:
                continue
            pairs.append((p.id, p.manager_id, FormKind.manager))
            if cycle.upward_reviews_enabled:
                pairs.append((p.manager_id, p.id, FormKind.upward))

    elif phase == CyclePhase.peer_review_open and cycle.peer_reviews_enabled:
        teams: dict[UUID, list[UUID]] = {}
        for p in participants:
            if p.manager_id is not None:
                teams.setdefault(p.manager_id, []).append(p.id)
        for members in teams.values():
            for subject_id in members:
                for author_id in members:
                    if subject_id != author_id:
                        pairs.append((subject_id, author_id, FormKind.peer))

    created = 0
    for subject_id, author_id, kind in pairs:
        _, was_created = await get_or_create_form(session, cycle.id, subject_id, author_id, kind)
        if was_created:
            created += 1

    logger.info(
        "phase_forms_ensured",
        cycle_id=str(cycle.id),
        phase=phase.value,
        expected=len(pairs),
        created=created,
    )
    return created
