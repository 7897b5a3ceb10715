"""Database query functions for Perfcycle.

This module provides async query functions for all database entities:
- Review cycle CRUD and compare-and-set phase changes
- Review form CRUD, aggregate counts and sweep selections
- Calibration records with an append-only change log
- Employee directory lookups
- 1:1 meetings
"""

from perfcycle.database.queries.calibration import (
    append_changes,
    count_unfinalized_records,
    create_calibration_record,
    find_calibration_record,
    get_calibration_record,
    get_or_create_calibration_record,
    list_calibration_records,
    require_calibration_record,
)
from perfcycle.database.queries.cycle import (
    add_team_ready_manager,
    compare_and_set_phase,
    create_cycle,
    get_cycle,
    list_cycles,
    require_cycle,
    set_cycle_flags,
)
from perfcycle.database.queries.employee import (
    create_employee,
    get_employee,
    list_active_employees,
    list_direct_reports,
    list_employees_by_role,
    require_employee,
)
from perfcycle.database.queries.form import (
    ARCHIVED_FORM_KINDS,
    COMPLETED_FORM_STATUSES,
    OPEN_FORM_STATUSES,
    compare_and_set_status,
    count_forms,
    create_form,
    find_form,
    get_form,
    get_or_create_form,
    increment_reminders_sent,
    list_forms,
    list_overdue_forms,
    list_recently_submitted,
    list_unsettled_publications,
    mark_subject_forms,
    require_form,
    update_form_fields,
)
from perfcycle.database.queries.one_on_one import (
    create_one_on_one,
    list_upcoming_without_reminder,
    mark_reminder_sent,
    require_one_on_one,
)

__all__ = [
    # Cycle queries
    "create_cycle",
    "get_cycle",
    "require_cycle",
    "list_cycles",
    "compare_and_set_phase",
    "set_cycle_flags",
    "add_team_ready_manager",
    # Form queries
    "ARCHIVED_FORM_KINDS",
    "COMPLETED_FORM_STATUSES",
    "OPEN_FORM_STATUSES",
    "create_form",
    "find_form",
    "get_or_create_form",
    "get_form",
    "require_form",
    "list_forms",
    "count_forms",
    "compare_and_set_status",
    "update_form_fields",
    "increment_reminders_sent",
    "list_overdue_forms",
    "list_recently_submitted",
    "list_unsettled_publications",
    "mark_subject_forms",
    # Calibration queries
    "create_calibration_record",
    "find_calibration_record",
    "get_or_create_calibration_record",
    "get_calibration_record",
    "require_calibration_record",
    "list_calibration_records",
    "count_unfinalized_records",
    "append_changes",
    # Employee queries
    "create_employee",
    "get_employee",
    "require_employee",
    "list_active_employees",
    "list_direct_reports",
    "list_employees_by_role",
    # 1:1 queries
    "create_one_on_one",
    "require_one_on_one",
    "list_upcoming_without_reminder",
    "mark_reminder_sent",
]
