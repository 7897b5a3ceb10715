"""Time-triggered review sweeps for Perfcycle.

The ReviewScheduler owns five independent sweeps:

- **phase_check**: advances cycles whose phase dates have been reached
  (at most one step per cycle per run) and performs the phase-entry
  effects (forms for the phase, "phase opened" notices).
- **reminder_check**: reminds authors of overdue forms and escalates
  according to the escalation policy.
- **meeting_reminders**: reminds both parties of tomorrow's 1:1s.
- **completed_notifications**: tells managers and HR about forms submitted
  in the last day that nobody was told about yet.
- **weekly_digest**: sends HR a completion digest for every open cycle.
- **publication_catch_up**: retries the archiving and "results available"
  notices that failed when a cycle was published.

Sweeps keep no state between runs other than the counters and flags on
the entities themselves, so running a sweep twice, or sweeps out of order,
is safe. Each cycle, form or meeting is processed on its own; a failure is
logged and counted and the sweep moves on.

The SweepRunner drives the sweeps on their wall-clock schedules, one
background task per sweep.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from perfcycle.config import SchedulerConfig, WorkflowConfig
from perfcycle.database.models.cycle import CyclePhase, ReviewCycle
from perfcycle.database.models.form import FormKind
from perfcycle.database.queries.cycle import list_cycles, require_cycle, set_cycle_flags
from perfcycle.database.queries.form import (
    COMPLETED_FORM_STATUSES,
    count_forms,
    increment_reminders_sent,
    list_forms,
    list_overdue_forms,
    list_recently_submitted,
    list_unsettled_publications,
    require_form,
)
from perfcycle.database.queries.one_on_one import (
    list_upcoming_without_reminder,
    mark_reminder_sent,
)
from perfcycle.notifications import messages
from perfcycle.notifications.dispatcher import safe_notify
from perfcycle.orchestrator.effects import (
    archive_subject,
    notify_all,
    notify_and_flag_form,
    notify_results_available,
    notify_team_ready,
)
from perfcycle.review.escalation import EscalationTier, evaluate
from perfcycle.review.participants import EmployeeDirectory, ensure_forms_for_phase
from perfcycle.review.phases import CycleStateMachine, next_date_driven_phase, phase_reached
from perfcycle.review.scoring import completion_percentage
from perfcycle.timeutil import utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from perfcycle.archive.base import HRArchive
    from perfcycle.notifications.base import Notifier
    from perfcycle.notifications.models import NotificationRequest

logger = structlog.get_logger(__name__)

# Cycles the phase-check sweep visits
PHASE_CHECK_PHASES = (
    CyclePhase.active,
    CyclePhase.self_review_open,
    CyclePhase.manager_review_open,
    CyclePhase.peer_review_open,
)

# Cycles included in the weekly digest
DIGEST_PHASES = (
    CyclePhase.self_review_open,
    CyclePhase.manager_review_open,
    CyclePhase.peer_review_open,
    CyclePhase.calibration,
)

# Phase-entry notices: phase -> (cycle flag, form kinds announced)
_PHASE_ENTRY = {
    CyclePhase.self_review_open: ("self_review_opened_notified", (FormKind.self,)),
    CyclePhase.manager_review_open: (
        "manager_review_opened_notified",
        (FormKind.manager, FormKind.upward),
    ),
    CyclePhase.peer_review_open: ("peer_review_opened_notified", (FormKind.peer,)),
}

_DEADLINES = {
    FormKind.self: "self_review_end",
    FormKind.manager: "manager_review_end",
    FormKind.upward: "manager_review_end",
    FormKind.peer: "peer_review_end",
}

SWEEP_NAMES = (
    "phase_check",
    "reminder_check",
    "meeting_reminders",
    "completed_notifications",
    "weekly_digest",
    "publication_catch_up",
)


def form_deadline(cycle: ReviewCycle, kind: FormKind) -> date | None:
    """Return the deadline governing forms of ``kind`` in ``cycle``."""
    return getattr(cycle, _DEADLINES[kind])


class SweepReport(BaseModel):
    """Summary of one sweep run.

    Attributes:
        sweep: Sweep name
        started_at: When the run started
        finished_at: When the run finished
        processed: Entities examined
        actions: Transitions performed or reminders sent
        notifications_sent: Notifications delivered
        failures: Entities whose processing failed
        errors: Error messages of failed entities
    """

    sweep: str
    started_at: datetime
    finished_at: datetime | None = None
    processed: int = 0
    actions: int = 0
    notifications_sent: int = 0
    failures: int = 0
    errors: list[str] = Field(default_factory=list)

    def record_failure(self, entity_id: Any, error: Exception) -> None:
        self.failures += 1
        self.errors.append(f"{entity_id}: {error}")


class ReviewScheduler:
    """Runs the recurring review sweeps against the database.

    Attributes:
        session_factory: Async session factory for database operations
        notifier: Notification capability
        archive: HR records archive; without one the catch-up sweep only
            retries results notices
        directory: Organisation chart lookups
        config: Workflow configuration
        clock: Returns the current aware UTC time
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Notifier,
        archive: HRArchive | None = None,
        directory: EmployeeDirectory | None = None,
        config: WorkflowConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier
        self.archive = archive
        self.directory = directory or EmployeeDirectory()
        self.config = config or WorkflowConfig()
        self.clock = clock
        self.state_machine = CycleStateMachine()
        self._logger = structlog.get_logger(__name__)

    def _start(self, sweep: str) -> SweepReport:
        self._logger.info("sweep_started", sweep=sweep)
        return SweepReport(sweep=sweep, started_at=self.clock())

    def _finish(self, report: SweepReport) -> SweepReport:
        report.finished_at = self.clock()
        self._logger.info(
            "sweep_completed",
            sweep=report.sweep,
            processed=report.processed,
            actions=report.actions,
            notifications_sent=report.notifications_sent,
            failures=report.failures,
        )
        return report

    async def run_sweep(self, name: str) -> SweepReport:
        """Run a sweep by name with the current clock.

        Raises:
            ValueError: If the sweep name is unknown.
        """
        sweeps: dict[str, Callable[[], Awaitable[SweepReport]]] = {
            "phase_check": self.run_phase_check,
            "reminder_check": self.run_reminder_check,
            "meeting_reminders": self.run_meeting_reminders,
            "completed_notifications": self.run_completed_notifications,
            "weekly_digest": self.run_weekly_digest,
            "publication_catch_up": self.run_publication_catch_up,
        }
        if name not in sweeps:
            raise ValueError(f"Unknown sweep: {name}. Must be one of {list(SWEEP_NAMES)}")
        return await sweeps[name]()

    # ------------------------------------------------------------------
    # Phase check
    # ------------------------------------------------------------------

    async def run_phase_check(self, today: date | None = None) -> SweepReport:
        """Advance cycles whose dates have been reached and announce new phases."""
        today = today or self.clock().date()
        report = self._start("phase_check")

        async with self.session_factory() as session:
            cycle_ids = [c.id for c in await list_cycles(session, phases=PHASE_CHECK_PHASES)]

        for cycle_id in cycle_ids:
            report.processed += 1
            try:
                await self._check_cycle(cycle_id, today, report)
            except Exception as e:
                self._logger.error(
                    "phase_check_cycle_failed",
                    cycle_id=str(cycle_id),
                    error=str(e),
                    exc_info=True,
                )
                report.record_failure(cycle_id, e)

        return self._finish(report)

    async def _check_cycle(self, cycle_id: UUID, today: date, report: SweepReport) -> None:
        async with self.session_factory() as session:
            cycle = await require_cycle(session, cycle_id)
            target = next_date_driven_phase(cycle, today)
            if target is not None:
                # Every form of the phase exists before the phase accepts submissions
                await ensure_forms_for_phase(session, cycle, target, self.directory)
                if await self.state_machine.transition(session, cycle_id, target):
                    report.actions += 1

            cycle = await require_cycle(session, cycle_id)
            pending: list[tuple[CyclePhase, str, list[NotificationRequest]]] = []
            for phase, (flag, kinds) in _PHASE_ENTRY.items():
                if not phase_reached(cycle.phase, phase) or getattr(cycle, flag):
                    continue
                if phase == CyclePhase.peer_review_open and not cycle.peer_reviews_enabled:
                    continue
                await ensure_forms_for_phase(session, cycle, phase, self.directory)
                requests = await self._phase_opened_requests(session, cycle, kinds)
                pending.append((phase, flag, requests))

        # Session closed before any notifier call
        for phase, flag, requests in pending:
            delivered, failed = await notify_all(self.notifier, requests)
            report.notifications_sent += delivered
            if delivered > 0 or not requests:
                async with self.session_factory() as session:
                    await set_cycle_flags(session, cycle_id, **{flag: True})
            self._logger.info(
                "phase_opened_notified",
                cycle_id=str(cycle_id),
                phase=phase.value,
                delivered=delivered,
                failed=failed,
            )

    async def _phase_opened_requests(
        self,
        session: AsyncSession,
        cycle: ReviewCycle,
        kinds: tuple[FormKind, ...],
    ) -> list[NotificationRequest]:
        requests: list[NotificationRequest] = []
        for kind in kinds:
            seen: set[UUID] = set()
            for form in await list_forms(session, cycle_id=cycle.id, kind=kind):
                if form.author_id in seen:
                    continue
                seen.add(form.author_id)
                requests.append(
                    messages.phase_opened(form.author_id, cycle, kind, form_deadline(cycle, kind))
                )
        return requests

    # ------------------------------------------------------------------
    # Reminders and escalation
    # ------------------------------------------------------------------

    async def run_reminder_check(self, today: date | None = None) -> SweepReport:
        """Remind authors of overdue forms and escalate repeated misses."""
        today = today or self.clock().date()
        report = self._start("reminder_check")

        overdue: list[tuple[UUID, UUID]] = []
        async with self.session_factory() as session:
            for kind in FormKind:
                for form, cycle in await list_overdue_forms(session, kind, today):
                    overdue.append((form.id, cycle.id))

        for form_id, cycle_id in overdue:
            report.processed += 1
            try:
                await self._remind(form_id, cycle_id, today, report)
            except Exception as e:
                self._logger.error(
                    "reminder_failed",
                    form_id=str(form_id),
                    error=str(e),
                    exc_info=True,
                )
                report.record_failure(form_id, e)

        return self._finish(report)

    async def _remind(
        self,
        form_id: UUID,
        cycle_id: UUID,
        today: date,
        report: SweepReport,
    ) -> None:
        async with self.session_factory() as session:
            form = await require_form(session, form_id)
            cycle = await require_cycle(session, cycle_id)
            deadline = form_deadline(cycle, form.kind)
            if deadline is None:
                return

            days_overdue = (today - deadline).days
            reminders_sent = form.reminders_sent
            decision = evaluate(form.kind, reminders_sent, days_overdue)
            if not decision.send_now:
                return

            escalations: list[NotificationRequest] = []
            for tier in decision.tiers:
                recipients = await self._tier_recipients(
                    session, tier, form.subject_id, form.author_id
                )
                for recipient_id in recipients:
                    escalations.append(
                        messages.review_escalation(
                            recipient_id, tier.value, form, cycle, days_overdue, decision.priority
                        )
                    )
            reminder = messages.review_reminder(form, cycle, days_overdue, decision.priority)

        if not await safe_notify(self.notifier, reminder):
            return
        report.notifications_sent += 1

        delivered, _ = await notify_all(self.notifier, escalations)
        report.notifications_sent += delivered

        async with self.session_factory() as session:
            incremented = await increment_reminders_sent(session, form_id, reminders_sent)
        if incremented:
            report.actions += 1

        self._logger.info(
            "review_reminder_sent",
            form_id=str(form_id),
            kind=form.kind.value,
            days_overdue=days_overdue,
            reminders_sent=reminders_sent + 1,
            tiers=[t.value for t in decision.tiers],
            priority=decision.priority.value,
        )

    async def _tier_recipients(
        self,
        session: AsyncSession,
        tier: EscalationTier,
        subject_id: UUID,
        author_id: UUID,
    ) -> list[UUID]:
        if tier == EscalationTier.MANAGER:
            manager = await self.directory.manager_of(session, subject_id)
            return [manager.id] if manager is not None else []
        if tier == EscalationTier.SENIOR_LEADERSHIP:
            return await self.directory.leadership_for(session, author_id)
        return await self.directory.hr_recipients(session)

    # ------------------------------------------------------------------
    # 1:1 meeting reminders
    # ------------------------------------------------------------------

    async def run_meeting_reminders(self, now: datetime | None = None) -> SweepReport:
        """Remind both parties of 1:1s scheduled for the next calendar day (UTC)."""
        now = now or self.clock()
        report = self._start("meeting_reminders")

        start = datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=timezone.utc)
        end = start + timedelta(days=1)

        async with self.session_factory() as session:
            meetings = await list_upcoming_without_reminder(session, start, end)
            pending = []
            for meeting in meetings:
                manager_name = await self.directory.display_name(session, meeting.manager_id)
                employee_name = await self.directory.display_name(session, meeting.employee_id)
                pending.append(
                    (
                        meeting.id,
                        [
                            messages.meeting_reminder(
                                meeting.manager_id,
                                employee_name,
                                meeting.scheduled_at,
                                meeting.location,
                                meeting.id,
                            ),
                            messages.meeting_reminder(
                                meeting.employee_id,
                                manager_name,
                                meeting.scheduled_at,
                                meeting.location,
                                meeting.id,
                            ),
                        ],
                    )
                )

        for meeting_id, requests in pending:
            report.processed += 1
            try:
                delivered, _ = await notify_all(self.notifier, requests)
                report.notifications_sent += delivered
                if delivered > 0:
                    async with self.session_factory() as session:
                        await mark_reminder_sent(session, meeting_id)
                    report.actions += 1
            except Exception as e:
                self._logger.error(
                    "meeting_reminder_failed",
                    one_on_one_id=str(meeting_id),
                    error=str(e),
                )
                report.record_failure(meeting_id, e)

        return self._finish(report)

    # ------------------------------------------------------------------
    # Recently completed forms
    # ------------------------------------------------------------------

    async def run_completed_notifications(self, now: datetime | None = None) -> SweepReport:
        """Notify about forms submitted in the look-back window nobody was told about."""
        now = now or self.clock()
        report = self._start("completed_notifications")
        since = now - timedelta(hours=self.config.completed_window_hours)

        async with self.session_factory() as session:
            form_ids = [
                f.id
                for f in await list_recently_submitted(session, since)
                if (f.kind == FormKind.self and not f.manager_notified)
                or (f.kind == FormKind.manager and not (f.manager_notified and f.hr_notified))
            ]

        for form_id in form_ids:
            report.processed += 1
            try:
                report.notifications_sent += await self._notify_completed(form_id)
            except Exception as e:
                self._logger.error(
                    "completed_notification_failed",
                    form_id=str(form_id),
                    error=str(e),
                )
                report.record_failure(form_id, e)

        return self._finish(report)

    async def _notify_completed(self, form_id: UUID) -> int:
        sent = 0
        async with self.session_factory() as session:
            form = await require_form(session, form_id)
            manager = await self.directory.manager_of(session, form.subject_id)
            hr_ids = await self.directory.hr_recipients(session)

        if form.kind == FormKind.self:
            if not form.manager_notified and manager is not None:
                request = messages.review_submitted_to_manager(manager.id, form)
                if await notify_and_flag_form(
                    self.session_factory, self.notifier, form.id, "manager_notified", [request]
                ):
                    sent += 1
            if manager is not None:
                if await notify_team_ready(
                    self.session_factory, self.notifier, self.directory, form.cycle_id, manager.id
                ):
                    sent += 1
            return sent

        if not form.manager_notified:
            request = messages.manager_review_completed(form)
            if await notify_and_flag_form(
                self.session_factory, self.notifier, form.id, "manager_notified", [request]
            ):
                sent += 1
        if not form.hr_notified and hr_ids:
            requests = [messages.review_available_for_records(hr_id, form) for hr_id in hr_ids]
            if await notify_and_flag_form(
                self.session_factory, self.notifier, form.id, "hr_notified", requests
            ):
                sent += 1
        return sent

    # ------------------------------------------------------------------
    # Weekly digest
    # ------------------------------------------------------------------

    async def run_weekly_digest(self) -> SweepReport:
        """Send HR a completion digest for every open cycle.

        A cycle counts as an action only when at least one digest about it
        was delivered.
        """
        report = self._start("weekly_digest")

        async with self.session_factory() as session:
            cycles = await list_cycles(session, phases=DIGEST_PHASES)
            hr_ids = await self.directory.hr_recipients(session)
            digests = []
            for cycle in cycles:
                completion: dict[str, int] = {}
                completed_total = 0
                form_total = 0
                for kind in FormKind:
                    total = await count_forms(session, cycle.id, kind=kind)
                    if not total:
                        continue
                    done = await count_forms(
                        session, cycle.id, kind=kind, statuses=COMPLETED_FORM_STATUSES
                    )
                    completion[kind.value] = completion_percentage(done, total)
                    completed_total += done
                    form_total += total
                overall = completion_percentage(completed_total, form_total)
                digests.append((cycle, completion, overall))

        for cycle, completion, overall in digests:
            report.processed += 1
            try:
                requests = [
                    messages.weekly_digest(hr_id, cycle, completion, overall) for hr_id in hr_ids
                ]
                delivered, _ = await notify_all(self.notifier, requests)
                report.notifications_sent += delivered
                if delivered:
                    report.actions += 1
            except Exception as e:
                self._logger.error(
                    "weekly_digest_failed",
                    cycle_id=str(cycle.id),
                    error=str(e),
                )
                report.record_failure(cycle.id, e)

        return self._finish(report)

    # ------------------------------------------------------------------
    # Publication catch-up
    # ------------------------------------------------------------------

    async def run_publication_catch_up(self) -> SweepReport:
        """Finish publication work that failed when a cycle was published.

        Visits every subject of a PUBLISHED cycle whose published self or
        manager forms are not yet archived or whose "results available"
        notice was never delivered, and retries just the missing part.
        """
        report = self._start("publication_catch_up")
        now = self.clock()

        async with self.session_factory() as session:
            pending = await list_unsettled_publications(session)
            cycles = {
                cycle_id: await require_cycle(session, cycle_id)
                for cycle_id in {cycle_id for cycle_id, _, _, _ in pending}
            }

        for cycle_id, subject_id, needs_archive, needs_notice in pending:
            report.processed += 1
            try:
                if needs_notice and await notify_results_available(
                    self.session_factory, self.notifier, cycles[cycle_id], subject_id
                ):
                    report.notifications_sent += 1
                if needs_archive and self.archive is not None:
                    await archive_subject(
                        self.session_factory, self.archive, cycle_id, subject_id, now
                    )
                    report.actions += 1
            except Exception as e:
                self._logger.error(
                    "publication_catch_up_failed",
                    cycle_id=str(cycle_id),
                    subject_id=str(subject_id),
                    error=str(e),
                )
                report.record_failure(subject_id, e)

        return self._finish(report)


# ----------------------------------------------------------------------
# Wall-clock scheduling
# ----------------------------------------------------------------------


class SweepSchedule(BaseModel):
    """When a sweep runs: daily at ``time_of_day`` or weekly on ``weekday``.

    Attributes:
        sweep: Sweep name
        time_of_day: Local "HH:MM"
        weekday: Day of week for weekly sweeps (0 = Monday), None for daily
    """

    sweep: str
    time_of_day: str
    weekday: int | None = Field(default=None, ge=0, le=6)

    def at(self) -> time:
        hour, minute = self.time_of_day.split(":")
        return time(int(hour), int(minute))


def default_schedules(config: SchedulerConfig) -> list[SweepSchedule]:
    """Build the sweep schedules from configuration."""
    return [
        SweepSchedule(sweep="phase_check", time_of_day=config.phase_check_time),
        SweepSchedule(sweep="reminder_check", time_of_day=config.reminder_check_time),
        SweepSchedule(sweep="meeting_reminders", time_of_day=config.meeting_reminder_time),
        SweepSchedule(
            sweep="completed_notifications",
            time_of_day=config.completed_notification_time,
        ),
        SweepSchedule(
            sweep="weekly_digest",
            time_of_day=config.weekly_digest_time,
            weekday=config.weekly_digest_weekday,
        ),
        SweepSchedule(
            sweep="publication_catch_up",
            time_of_day=config.publication_catch_up_time,
        ),
    ]


def next_run_after(schedule: SweepSchedule, now: datetime) -> datetime:
    """Return the first scheduled run strictly after ``now``.

    ``now`` is a local wall-clock time; the result has the same tzinfo.
    """
    candidate = datetime.combine(now.date(), schedule.at(), tzinfo=now.tzinfo)

    if schedule.weekday is None:
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    candidate += timedelta(days=(schedule.weekday - now.weekday()) % 7)
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


class SweepRunner:
    """Background service running each sweep on its own schedule.

    One asyncio task per sweep sleeps until the sweep's next run, runs it,
    and repeats. A failing run is logged and never stops the loop.
    """

    def __init__(
        self,
        scheduler: ReviewScheduler,
        schedules: list[SweepSchedule],
        local_clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.scheduler = scheduler
        self.schedules = schedules
        self.local_clock = local_clock
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._logger = structlog.get_logger(__name__)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start one loop per sweep. No-op if already running."""
        if self._running:
            self._logger.warning("sweep_runner_already_running")
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(self._sweep_loop(schedule), name=f"sweep-{schedule.sweep}")
            for schedule in self.schedules
        ]
        self._logger.info(
            "sweep_runner_started",
            sweeps=[s.sweep for s in self.schedules],
        )

    async def stop(self) -> None:
        """Cancel all sweep loops and wait for them to finish."""
        if not self._running:
            self._logger.warning("sweep_runner_not_running")
            return

        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        self._logger.info("sweep_runner_stopped")

    async def _sweep_loop(self, schedule: SweepSchedule) -> None:
        while self._running:
            now = self.local_clock()
            next_run = next_run_after(schedule, now)
            delay = (next_run - now).total_seconds()
            self._logger.debug(
                "sweep_scheduled",
                sweep=schedule.sweep,
                next_run=next_run.isoformat(),
                delay_seconds=round(delay),
            )
            await asyncio.sleep(delay)

            try:
                await self.scheduler.run_sweep(schedule.sweep)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.error(
                    "sweep_run_failed",
                    sweep=schedule.sweep,
                    error=str(e),
                    exc_info=True,
                )
