"""Employee model for Perfcycle.

The review engine needs only a thin slice of the people directory: who
reports to whom, which department a person belongs to, and who acts as
HR or senior leadership for escalations.
"""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import Boolean, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from perfcycle.database.models.base import Base, TimestampMixin


class EmployeeRole(enum.Enum):
    """Escalation-relevant role of an employee.

    States:
        employee: Regular employee (may still manage others).
        hr: Member of the HR team; receives HR notifications.
        senior_leader: Receives escalations of overdue manager reviews.
    """

    employee = "employee"
    hr = "hr"
    senior_leader = "senior_leader"


class Employee(TimestampMixin, Base):
    """A person who can be a review subject, author, or notification recipient.

    Attributes:
        full_name: Display name.
        email: Contact email.
        department: Department name, matched against cycle exclusions.
        manager_id: Direct manager, if any.
        role: Escalation role.
        is_active: Inactive employees are never in scope of a cycle.
    """

    __tablename__ = "employees"

    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    department: Mapped[str | None] = mapped_column(Text, nullable=True)
    manager_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("employees.id"),
        nullable=True,
    )
    role: Mapped[EmployeeRole] = mapped_column(
        default=EmployeeRole.employee,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
