"""Database layer for Perfcycle.

This module handles database connections, session management, and the
SQLAlchemy async engine configuration.

Public API:
    get_engine: Create an AsyncEngine from DatabaseConfig.
    get_session_factory: Create an async_sessionmaker from an engine.
    Base: SQLAlchemy declarative base for all models.
"""

from perfcycle.database.connection import get_engine, get_session_factory
from perfcycle.database.models import (
    Base,
    CalibrationRecord,
    CycleKind,
    CyclePhase,
    Employee,
    EmployeeRole,
    FormKind,
    FormStatus,
    OneOnOne,
    OneOnOneStatus,
    PotentialTier,
    RatingScale,
    ReviewCycle,
    ReviewForm,
    TimestampMixin,
)

__all__ = [
    "get_engine",
    "get_session_factory",
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
