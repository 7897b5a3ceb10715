"""Reminder and escalation policy for overdue review forms.

Pure functions only. The escalation tier is always derived from the
reminder counter stored on the form; it is never stored separately.

Reminder cadence (first match wins):

    reminders already sent    send when days overdue
    0                         >= 1
    1                         >= 3
    2                         >= 5
    3                         >= 7
    4                         >= 10
    5                         >= 14
    more than 5               is a multiple of 7
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from perfcycle.database.models.form import FormKind
from perfcycle.notifications.models import Priority

REMINDER_THRESHOLDS: tuple[int, ...] = (1, 3, 5, 7, 10, 14)
WEEKLY_INTERVAL_DAYS = 7

# Pre-send reminder counts at which each tier joins the reminder
SELF_MANAGER_THRESHOLD = 2
SELF_HR_THRESHOLD = 4
MANAGER_LEADERSHIP_THRESHOLD = 1


class EscalationTier(str, Enum):
    """Authorities notified in addition to the form's author."""

    MANAGER = "manager"
    SENIOR_LEADERSHIP = "senior_leadership"
    HR = "hr"


class EscalationDecision(BaseModel):
    """Outcome of evaluating the policy for one overdue form.

    Attributes:
        send_now: Whether a reminder goes out on this evaluation
        tiers: Escalation tiers notified alongside the reminder
        priority: Priority of the reminder and its escalations
    """

    send_now: bool
    tiers: list[EscalationTier] = Field(default_factory=list)
    priority: Priority = Priority.MEDIUM


def should_send_reminder(reminders_sent: int, days_overdue: int) -> bool:
    """Decide whether another reminder is due.

    Args:
        reminders_sent: Reminders already sent for the form (n).
        days_overdue: Whole days past the form's deadline (d).

    Returns:
        True if a reminder should be sent now.

    Raises:
        ValueError: If either argument is negative.
    """
    if reminders_sent < 0 or days_overdue < 0:
        raise ValueError("reminders_sent and days_overdue must be non-negative")

    if reminders_sent < len(REMINDER_THRESHOLDS):
        return days_overdue >= REMINDER_THRESHOLDS[reminders_sent]
    return days_overdue % WEEKLY_INTERVAL_DAYS == 0


def escalation_tiers(kind: FormKind, reminders_sent: int) -> list[EscalationTier]:
    """Return the tiers that accompany a reminder sent at counter ``reminders_sent``."""
    tiers: list[EscalationTier] = []
    if kind == FormKind.self:
        if reminders_sent >= SELF_MANAGER_THRESHOLD:
            tiers.append(EscalationTier.MANAGER)
        if reminders_sent >= SELF_HR_THRESHOLD:
            tiers.append(EscalationTier.HR)
    elif kind == FormKind.manager:
        if reminders_sent >= MANAGER_LEADERSHIP_THRESHOLD:
            tiers.append(EscalationTier.SENIOR_LEADERSHIP)
    return tiers


def reminder_priority(kind: FormKind, days_overdue: int) -> Priority:
    """Return the priority of a reminder for a form ``days_overdue`` days late."""
    if kind == FormKind.self:
        if days_overdue > 7:
            return Priority.URGENT
        if days_overdue > 3:
            return Priority.HIGH
    elif kind == FormKind.manager:
        if days_overdue > 5:
            return Priority.URGENT
        if days_overdue > 2:
            return Priority.HIGH
    return Priority.MEDIUM


def evaluate(kind: FormKind, reminders_sent: int, days_overdue: int) -> EscalationDecision:
    """Apply the reminder cadence and escalation tiers to one form.

    Args:
        kind: Kind of the overdue form.
        reminders_sent: Counter value before this evaluation.
        days_overdue: Whole days past the deadline.

    Returns:
        EscalationDecision; ``tiers`` is empty when nothing is sent.
    """
    priority = reminder_priority(kind, days_overdue)
    if not should_send_reminder(reminders_sent, days_overdue):
        return EscalationDecision(send_now=False, priority=priority)
    return EscalationDecision(
        send_now=True,
        tiers=escalation_tiers(kind, reminders_sent),
        priority=priority,
    )
