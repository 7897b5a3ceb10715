"""FastAPI route definitions for the Perfcycle API.

Each module exposes a ``create_*_router`` factory that the application
factory includes.
"""

from __future__ import annotations

from perfcycle.web.routes.calibration import (
    CalibrationAdjust,
    CalibrationRecordResponse,
    create_calibration_router,
)
from perfcycle.web.routes.cycles import (
    CycleCreate,
    CycleDetail,
    CycleResponse,
    create_cycles_router,
)
from perfcycle.web.routes.forms import FormDetail, FormResponse, create_forms_router
from perfcycle.web.routes.health import (
    HealthResponse,
    ReadinessResponse,
    create_health_router,
)
from perfcycle.web.routes.people import (
    EmployeeCreate,
    EmployeeResponse,
    OneOnOneCreate,
    OneOnOneResponse,
    create_people_router,
)
from perfcycle.web.routes.reports import create_reports_router

__all__ = [
    # Calibration
    "CalibrationAdjust",
    "CalibrationRecordResponse",
    "create_calibration_router",
    # Cycles
    "CycleCreate",
    "CycleDetail",
    "CycleResponse",
    "create_cycles_router",
    # Forms
    "FormDetail",
    "FormResponse",
    "create_forms_router",
    # Health
    "HealthResponse",
    "ReadinessResponse",
    "create_health_router",
    # People
    "EmployeeCreate",
    "EmployeeResponse",
    "OneOnOneCreate",
    "OneOnOneResponse",
    "create_people_router",
    # Reports
    "create_reports_router",
]
