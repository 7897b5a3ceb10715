"""Review domain logic: phases, forms, scoring, calibration, escalation."""

from perfcycle.review.calibration import CalibrationService
from perfcycle.review.escalation import (
    EscalationDecision,
    EscalationTier,
    evaluate,
    should_send_reminder,
)
from perfcycle.review.forms import (
    FORM_STATUS_ORDER,
    SUBMISSION_PHASE_GATE,
    VALID_FORM_TRANSITIONS,
    FormLifecycle,
    FormSubmission,
    completion_percentage,
)
from perfcycle.review.participants import EmployeeDirectory, ensure_forms_for_phase
from perfcycle.review.phases import (
    PHASE_ORDER,
    VALID_PHASE_TRANSITIONS,
    CycleStateMachine,
    next_date_driven_phase,
    phase_index,
    validate_phase_transition,
)

__all__ = [
    "CalibrationService",
    "CycleStateMachine",
    "EmployeeDirectory",
    "EscalationDecision",
    "EscalationTier",
    "FORM_STATUS_ORDER",
    "FormLifecycle",
    "FormSubmission",
    "PHASE_ORDER",
    "SUBMISSION_PHASE_GATE",
    "VALID_FORM_TRANSITIONS",
    "VALID_PHASE_TRANSITIONS",
    "completion_percentage",
    "ensure_forms_for_phase",
    "evaluate",
    "next_date_driven_phase",
    "phase_index",
    "should_send_reminder",
]
