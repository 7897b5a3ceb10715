"""Employee directory query functions for Perfcycle."""

from __future__ import annotations

from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from perfcycle.database.models.employee import Employee, EmployeeRole
from perfcycle.errors import EntityNotFoundError

logger = structlog.get_logger(__name__)


async def create_employee(
    session: AsyncSession,
    full_name: str,
    email: str | None = None,
    department: str | None = None,
    manager_id: UUID | None = None,
    role: EmployeeRole = EmployeeRole.employee,
    is_active: bool = True,
) -> Employee:
    """Create a new employee.

    Args:
        session: Active async database session.
        full_name: Display name.
        email: Contact email.
        department: Department name.
        manager_id: Direct manager.
        role: Escalation role.
        is_active: Whether the employee is active.

    Returns:
        The newly created Employee instance.
    """
    employee = Employee(
        full_name=full_name,
        email=email,
        department=department,
        manager_id=manager_id,
        role=role,
        is_active=is_active,
    )

    session.add(employee)
    await session.commit()
    await session.refresh(employee)

    logger.info(
        "employee_created",
        employee_id=str(employee.id),
        manager_id=str(manager_id) if manager_id else None,
        role=role.value,
    )

    return employee


async def get_employee(
    session: AsyncSession,
    employee_id: UUID,
) -> Employee | None:
    """Retrieve an employee by ID."""
    stmt = select(Employee).where(Employee.id == employee_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_employee(
    session: AsyncSession,
    employee_id: UUID,
) -> Employee:
    """Retrieve an employee by ID or raise.

    Raises:
        EntityNotFoundError: If the employee does not exist.
    """
    employee = await get_employee(session, employee_id)
    if employee is None:
        raise EntityNotFoundError("employee", employee_id)
    return employee


async def list_active_employees(session: AsyncSession) -> list[Employee]:
    """List active employees ordered by name."""
    stmt = (
        select(Employee)
        .where(Employee.is_active.is_(True))
        .order_by(Employee.full_name.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_direct_reports(
    session: AsyncSession,
    manager_id: UUID,
) -> list[Employee]:
    """List the active direct reports of a manager."""
    stmt = (
        select(Employee)
        .where(Employee.manager_id == manager_id)
        .where(Employee.is_active.is_(True))
        .order_by(Employee.full_name.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_employees_by_role(
    session: AsyncSession,
    role: EmployeeRole,
) -> list[Employee]:
    """List active employees holding a role."""
    stmt = (
        select(Employee)
        .where(Employee.role == role)
        .where(Employee.is_active.is_(True))
        .order_by(Employee.full_name.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
