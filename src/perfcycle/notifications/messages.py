"""Notification templates for the review workflow.

Each builder returns a ready-to-send NotificationRequest so the scheduler
and the workflow orchestrator share wording, categories and links.
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from perfcycle.database.models.cycle import ReviewCycle
from perfcycle.database.models.form import FormKind, ReviewForm
from perfcycle.notifications.models import Channel, NotificationRequest, Priority

_KIND_LABELS = {
    FormKind.self: "self-review",
    FormKind.manager: "manager review",
    FormKind.peer: "peer review",
    FormKind.upward: "upward review",
}


def form_link(form_id: UUID) -> str:
    return f"/performance/reviews/{form_id}"


def cycle_link(cycle_id: UUID) -> str:
    return f"/performance/cycles/{cycle_id}"


def kind_label(kind: FormKind) -> str:
    return _KIND_LABELS[kind]


def phase_opened(
    recipient_id: UUID,
    cycle: ReviewCycle,
    kind: FormKind,
    deadline: date | None,
) -> NotificationRequest:
    due = f" Please complete it by {deadline.isoformat()}." if deadline else ""
    return NotificationRequest(
        recipient_id=recipient_id,
        title=f"{cycle.name}: {kind_label(kind)} is open",
        message=f"The {kind_label(kind)} phase of {cycle.name} has started.{due}",
        priority=Priority.MEDIUM,
        category="review_phase_opened",
        link_url=cycle_link(cycle.id),
        metadata={"cycle_id": str(cycle.id), "form_kind": kind.value},
    )


def review_reminder(
    form: ReviewForm,
    cycle: ReviewCycle,
    days_overdue: int,
    priority: Priority,
) -> NotificationRequest:
    label = kind_label(form.kind)
    return NotificationRequest(
        recipient_id=form.author_id,
        title=f"Reminder: your {label} for {cycle.name} is overdue",
        message=(
            f"Your {label} for {cycle.name} is {days_overdue} day(s) past its deadline. "
            "Please submit it as soon as possible."
        ),
        priority=priority,
        category="review_reminder",
        link_url=form_link(form.id),
        metadata={
            "cycle_id": str(cycle.id),
            "form_id": str(form.id),
            "days_overdue": days_overdue,
            "reminders_sent": form.reminders_sent,
        },
    )


def review_escalation(
    recipient_id: UUID,
    tier: str,
    form: ReviewForm,
    cycle: ReviewCycle,
    days_overdue: int,
    priority: Priority,
) -> NotificationRequest:
    label = kind_label(form.kind)
    return NotificationRequest(
        recipient_id=recipient_id,
        title=f"Escalation: overdue {label} in {cycle.name}",
        message=(
            f"A {label} in {cycle.name} is {days_overdue} day(s) overdue after "
            f"{form.reminders_sent} reminder(s)."
        ),
        priority=priority,
        category="review_escalation",
        link_url=form_link(form.id),
        metadata={
            "cycle_id": str(cycle.id),
            "form_id": str(form.id),
            "author_id": str(form.author_id),
            "tier": tier,
            "days_overdue": days_overdue,
        },
    )


def review_submitted_to_manager(manager_id: UUID, form: ReviewForm) -> NotificationRequest:
    return NotificationRequest(
        recipient_id=manager_id,
        title="Self-review submitted",
        message="A member of your team has submitted their self-review.",
        priority=Priority.MEDIUM,
        category="review_submitted",
        link_url=form_link(form.id),
        metadata={"form_id": str(form.id), "subject_id": str(form.subject_id)},
    )


def team_ready(manager_id: UUID, cycle: ReviewCycle, team_size: int) -> NotificationRequest:
    return NotificationRequest(
        recipient_id=manager_id,
        title=f"{cycle.name}: your team's self-reviews are in",
        message=(
            f"All {team_size} of your direct reports have submitted their self-reviews. "
            "You can now complete their manager reviews."
        ),
        priority=Priority.HIGH,
        category="review_team_ready",
        link_url=cycle_link(cycle.id),
        metadata={"cycle_id": str(cycle.id), "team_size": team_size},
    )


def manager_review_completed(form: ReviewForm) -> NotificationRequest:
    return NotificationRequest(
        recipient_id=form.subject_id,
        title="Your manager review is complete",
        message="Your manager has completed your performance review.",
        priority=Priority.MEDIUM,
        category="review_completed",
        link_url=form_link(form.id),
        metadata={"form_id": str(form.id), "cycle_id": str(form.cycle_id)},
    )


def review_available_for_records(hr_id: UUID, form: ReviewForm) -> NotificationRequest:
    return NotificationRequest(
        recipient_id=hr_id,
        title="Manager review available",
        message="A manager review has been submitted and is available for HR records.",
        priority=Priority.LOW,
        category="review_hr_record",
        link_url=form_link(form.id),
        channels=frozenset({Channel.IN_APP}),
        metadata={"form_id": str(form.id), "subject_id": str(form.subject_id)},
    )


def calibration_ready(hr_id: UUID, cycle: ReviewCycle, total: int) -> NotificationRequest:
    return NotificationRequest(
        recipient_id=hr_id,
        title=f"{cycle.name} is ready for calibration",
        message=f"All {total} manager reviews have been submitted. Calibration can begin.",
        priority=Priority.HIGH,
        category="review_calibration_ready",
        link_url=cycle_link(cycle.id),
        metadata={"cycle_id": str(cycle.id), "manager_forms": total},
    )


def results_available(subject_id: UUID, cycle: ReviewCycle) -> NotificationRequest:
    return NotificationRequest(
        recipient_id=subject_id,
        title=f"{cycle.name}: your review results are available",
        message=f"The results of {cycle.name} have been published.",
        priority=Priority.MEDIUM,
        category="review_published",
        link_url=cycle_link(cycle.id),
        metadata={"cycle_id": str(cycle.id)},
    )


def meeting_invite(
    recipient_id: UUID,
    other_name: str,
    scheduled_at: datetime,
    location: str | None,
    one_on_one_id: UUID,
) -> NotificationRequest:
    return NotificationRequest(
        recipient_id=recipient_id,
        title=f"1:1 with {other_name}",
        message=(
            f"A 1:1 with {other_name} is scheduled for "
            f"{scheduled_at.strftime('%Y-%m-%d %H:%M')} UTC ({location or 'Virtual'})."
        ),
        priority=Priority.MEDIUM,
        category="one_on_one_scheduled",
        channels=frozenset({Channel.EMAIL, Channel.CALENDAR}),
        metadata={"one_on_one_id": str(one_on_one_id), "scheduled_at": scheduled_at.isoformat()},
    )


def meeting_reminder(
    recipient_id: UUID,
    other_name: str,
    scheduled_at: datetime,
    location: str | None,
    one_on_one_id: UUID,
) -> NotificationRequest:
    return NotificationRequest(
        recipient_id=recipient_id,
        title=f"Tomorrow: 1:1 with {other_name}",
        message=(
            f"Reminder: your 1:1 with {other_name} is tomorrow at "
            f"{scheduled_at.strftime('%H:%M')} UTC ({location or 'Virtual'})."
        ),
        priority=Priority.MEDIUM,
        category="one_on_one_reminder",
        metadata={"one_on_one_id": str(one_on_one_id)},
    )


def weekly_digest(
    hr_id: UUID,
    cycle: ReviewCycle,
    completion: dict[str, int],
    overall: int,
) -> NotificationRequest:
    lines = [f"{kind}: {pct}%" for kind, pct in sorted(completion.items())]
    return NotificationRequest(
        recipient_id=hr_id,
        title=f"Weekly review digest: {cycle.name}",
        message=(
            f"{cycle.name} ({cycle.phase.value}) is {overall}% complete. "
            + "; ".join(lines)
        ),
        priority=Priority.LOW,
        category="review_digest",
        link_url=cycle_link(cycle.id),
        channels=frozenset({Channel.EMAIL}),
        metadata={"cycle_id": str(cycle.id), "completion": completion, "overall": overall},
    )
