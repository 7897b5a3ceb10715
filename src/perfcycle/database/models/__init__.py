"""SQLAlchemy ORM models for Perfcycle.

This module defines the database schema: review cycles, review forms,
calibration records, the employee directory slice, and 1:1 meetings.

All models use SQLAlchemy 2.0 declarative style with Mapped[] type annotations.
"""

from perfcycle.database.models.base import Base, TimestampMixin
from perfcycle.database.models.calibration import CalibrationRecord, PotentialTier
from perfcycle.database.models.cycle import CycleKind, CyclePhase, RatingScale, ReviewCycle
from perfcycle.database.models.employee import Employee, EmployeeRole
from perfcycle.database.models.form import FormKind, FormStatus, ReviewForm
from perfcycle.database.models.one_on_one import OneOnOne, OneOnOneStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "ReviewCycle",
    "CyclePhase",
    "CycleKind",
    "RatingScale",
    "ReviewForm",
    "FormKind",
    "FormStatus",
    "CalibrationRecord",
    "PotentialTier",
    "Employee",
    "EmployeeRole",
    "OneOnOne",
    "OneOnOneStatus",
]
