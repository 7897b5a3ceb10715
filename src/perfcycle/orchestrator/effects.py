"""Flag-gated side effects shared by the sweeps and the workflow.

Every effect follows the same shape: read what is needed in a short
session, close it, call the notifier (or the HR archive), and only record
the flag once the call succeeded. A failed call leaves the flag unset so
the next sweep or event tries again.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from perfcycle.database.models.form import FormKind
from perfcycle.database.queries.cycle import add_team_ready_manager, require_cycle
from perfcycle.database.queries.form import (
    COMPLETED_FORM_STATUSES,
    count_forms,
    mark_subject_forms,
    update_form_fields,
)
from perfcycle.notifications import messages
from perfcycle.notifications.dispatcher import safe_notify

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from perfcycle.archive.base import HRArchive
    from perfcycle.database.models.cycle import ReviewCycle
    from perfcycle.notifications.base import Notifier
    from perfcycle.notifications.models import NotificationRequest
    from perfcycle.review.participants import EmployeeDirectory

logger = structlog.get_logger(__name__)


async def notify_all(notifier: Notifier, requests: list[NotificationRequest]) -> tuple[int, int]:
    """Send requests one by one.

    Returns:
        Tuple of (delivered, failed).
    """
    delivered = 0
    for request in requests:
        if await safe_notify(notifier, request):
            delivered += 1
    return delivered, len(requests) - delivered


async def notify_and_flag_form(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier,
    form_id: UUID,
    flag: str,
    requests: list[NotificationRequest],
) -> bool:
    """Send requests about a form and set ``flag`` on it if any was delivered."""
    delivered, _ = await notify_all(notifier, requests)
    if delivered == 0:
        return False

    async with session_factory() as session:
        await update_form_fields(session, form_id, **{flag: True})
    return True


async def notify_team_ready(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier,
    directory: EmployeeDirectory,
    cycle_id: UUID,
    manager_id: UUID,
) -> bool:
    """Tell a manager once per cycle that all their reports' self-reviews are in.

    Returns:
        True if the notice was delivered by this call.
    """
    async with session_factory() as session:
        cycle = await require_cycle(session, cycle_id)
        if str(manager_id) in (cycle.team_ready_notified or []):
            return False

        reports = await directory.direct_reports(session, manager_id, cycle)
        if not reports:
            return False

        done = await count_forms(
            session,
            cycle_id,
            kind=FormKind.self,
            statuses=COMPLETED_FORM_STATUSES,
            subject_ids=[r.id for r in reports],
        )

    if done < len(reports):
        logger.debug(
            "team_not_ready",
            cycle_id=str(cycle_id),
            manager_id=str(manager_id),
            submitted=done,
            team_size=len(reports),
        )
        return False

    if not await safe_notify(notifier, messages.team_ready(manager_id, cycle, len(reports))):
        return False

    async with session_factory() as session:
        await add_team_ready_manager(session, cycle_id, manager_id)

    logger.info(
        "team_ready_notified",
        cycle_id=str(cycle_id),
        manager_id=str(manager_id),
        team_size=len(reports),
    )
    return True


async def archive_subject(
    session_factory: async_sessionmaker[AsyncSession],
    archive: HRArchive,
    cycle_id: UUID,
    subject_id: UUID,
    now: datetime,
) -> None:
    """Archive a subject's record and stamp ``archived_at`` on their forms.

    Raises:
        Whatever the archive raises; nothing is stamped in that case.
    """
    await archive.archive(cycle_id, subject_id)
    async with session_factory() as session:
        await mark_subject_forms(session, cycle_id, subject_id, archived_at=now)


async def notify_results_available(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier,
    cycle: ReviewCycle,
    subject_id: UUID,
) -> bool:
    """Tell a subject their results are published and flag their forms.

    Returns:
        True if the notice was delivered.
    """
    if not await safe_notify(notifier, messages.results_available(subject_id, cycle)):
        return False

    async with session_factory() as session:
        await mark_subject_forms(session, cycle.id, subject_id, results_notified=True)
    return True
