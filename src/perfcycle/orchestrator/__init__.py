"""Review orchestration: time-triggered sweeps and event-driven workflow."""

from perfcycle.orchestrator.scheduler import (
    SWEEP_NAMES,
    ReviewScheduler,
    SweepReport,
    SweepRunner,
    SweepSchedule,
    default_schedules,
    next_run_after,
)
from perfcycle.orchestrator.workflow import (
    CalibrationReadiness,
    CycleProgress,
    PublicationResult,
    SubmissionResult,
    WorkflowOrchestrator,
)

__all__ = [
    "SWEEP_NAMES",
    "CalibrationReadiness",
    "CycleProgress",
    "PublicationResult",
    "ReviewScheduler",
    "SubmissionResult",
    "SweepReport",
    "SweepRunner",
    "SweepSchedule",
    "WorkflowOrchestrator",
    "default_schedules",
    "next_run_after",
]
