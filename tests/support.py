"""Test doubles and anchor dates shared by the Perfcycle test suites.

Dates are anchored on DAY0 (a Monday): the self-review window opens the
next day and the manager-review window a week later.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from perfcycle.database.models.employee import Employee
from perfcycle.database.models.form import FormKind, ReviewForm
from perfcycle.database.queries.form import list_forms
from perfcycle.errors import ExternalDependencyError
from perfcycle.notifications.models import ChannelResult, DeliveryResult, NotificationRequest

DAY0 = date(2026, 1, 5)
SELF_START = DAY0 + timedelta(days=1)
SELF_END = DAY0 + timedelta(days=8)
MANAGER_START = DAY0 + timedelta(days=9)
MANAGER_END = DAY0 + timedelta(days=16)
PEER_START = DAY0 + timedelta(days=17)
PEER_END = DAY0 + timedelta(days=24)

FORM_CONFIG: dict[str, Any] = {
    "sections": [
        {
            "id": "delivery",
            "title": "Delivery",
            "weight": 2.0,
            "questions": [
                {"id": "quality", "text": "Quality of work"},
                {"id": "pace", "text": "Pace of delivery"},
            ],
        },
        {
            "id": "collaboration",
            "title": "Collaboration",
            "weight": 1.0,
            "questions": [
                {"id": "teamwork", "text": "Teamwork"},
                {"id": "notes", "text": "Anything else?", "required": False, "rated": False},
            ],
        },
    ]
}


class RecordingNotifier:
    """Notifier fake that records every request.

    Requests to recipients in ``failing_recipients`` (or all requests when
    ``fail_all`` is set) are reported as undelivered on every channel.
    """

    def __init__(
        self,
        failing_recipients: set[UUID] | None = None,
        fail_all: bool = False,
    ) -> None:
        self.requests: list[NotificationRequest] = []
        self.failing_recipients = set(failing_recipients or ())
        self.fail_all = fail_all

    async def notify(self, request: NotificationRequest) -> DeliveryResult:
        self.requests.append(request)
        ok = not self.fail_all and request.recipient_id not in self.failing_recipients
        return DeliveryResult(
            recipient_id=request.recipient_id,
            results=[ChannelResult(channel=c, success=ok) for c in request.channels],
        )

    async def close(self) -> None:
        pass

    def by_category(self, category: str) -> list[NotificationRequest]:
        return [r for r in self.requests if r.category == category]

    def recipients(self, category: str) -> list[UUID]:
        return [r.recipient_id for r in self.by_category(category)]

    def clear(self) -> None:
        self.requests.clear()


class FakeArchive:
    """HR archive fake; subjects in ``failing_subjects`` raise."""

    def __init__(self, failing_subjects: set[UUID] | None = None) -> None:
        self.archived: list[tuple[UUID, UUID]] = []
        self.failing_subjects = set(failing_subjects or ())

    async def archive(self, cycle_id: UUID, subject_id: UUID) -> None:
        if subject_id in self.failing_subjects:
            raise ExternalDependencyError("hr_archive", "records service unavailable")
        self.archived.append((cycle_id, subject_id))

    async def close(self) -> None:
        pass


@dataclass
class Org:
    """A small organisation: HR, a senior leader, one manager and reports."""

    hr: Employee
    leader: Employee
    manager: Employee
    reports: list[Employee] = field(default_factory=list)


def cycle_kwargs(**overrides: Any) -> dict[str, Any]:
    """Default arguments for ``create_cycle`` anchored on DAY0."""
    kwargs: dict[str, Any] = {
        "name": "FY2025 Annual Review",
        "period_start": date(2025, 1, 1),
        "period_end": date(2025, 12, 31),
        "self_review_start": SELF_START,
        "self_review_end": SELF_END,
        "manager_review_start": MANAGER_START,
        "manager_review_end": MANAGER_END,
    }
    kwargs.update(overrides)
    return kwargs


def full_answers(rating: float = 4.0) -> dict[str, dict[str, Any]]:
    """Answers to every rated question of FORM_CONFIG."""
    return {
        "quality": {"rating": rating, "comment": "Consistently solid"},
        "pace": {"rating": rating, "comment": None},
        "teamwork": {"rating": rating, "comment": "Helps others"},
    }


async def form_for(
    session: AsyncSession,
    cycle_id: UUID,
    subject_id: UUID,
    kind: FormKind,
) -> ReviewForm:
    """Return the single form of ``kind`` about ``subject_id`` in a cycle."""
    forms = await list_forms(session, cycle_id=cycle_id, kind=kind, subject_id=subject_id)
    assert len(forms) == 1, f"expected one {kind.value} form, found {len(forms)}"
    return forms[0]
