"""Event-driven review workflow for Perfcycle.

The WorkflowOrchestrator reacts to the discrete events of a review cycle:

- a self-review is submitted: the manager is told, and once every direct
  report is in, the manager gets a single "team ready" notice;
- a manager review is submitted: the subject is told, calibration starts
  for the subject, and when every manager review of the cycle is in the
  cycle moves to CALIBRATION and HR is told;
- calibration is complete: the cycle is published, every submitted form is
  published, each subject's record is archived and each subject is told
  their results are available.

Aggregate checks (team completion, calibration readiness) always use a
fresh count, so concurrent submissions converge: both may see the complete
set, and the duplicate transition attempt is a no-op.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from perfcycle.config import WorkflowConfig
from perfcycle.database.models.cycle import CyclePhase
from perfcycle.database.models.form import FormKind, FormStatus
from perfcycle.database.queries.calibration import list_calibration_records
from perfcycle.database.queries.cycle import require_cycle, set_cycle_flags
from perfcycle.database.queries.form import (
    ARCHIVED_FORM_KINDS,
    COMPLETED_FORM_STATUSES,
    OPEN_FORM_STATUSES,
    count_forms,
    list_forms,
    require_form,
)
from perfcycle.database.queries.one_on_one import require_one_on_one
from perfcycle.errors import InvalidStateError
from perfcycle.logging import bind_cycle_context
from perfcycle.notifications import messages
from perfcycle.orchestrator.effects import (
    archive_subject,
    notify_all,
    notify_and_flag_form,
    notify_results_available,
    notify_team_ready,
)
from perfcycle.review.calibration import CalibrationService
from perfcycle.review.forms import FormLifecycle, FormSubmission
from perfcycle.review.participants import EmployeeDirectory
from perfcycle.review.phases import CycleStateMachine
from perfcycle.review.scoring import completion_percentage
from perfcycle.timeutil import utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from perfcycle.archive.base import HRArchive
    from perfcycle.database.models.form import ReviewForm
    from perfcycle.notifications.base import Notifier

logger = structlog.get_logger(__name__)


class SubmissionResult(BaseModel):
    """Outcome of a submission event."""

    form_id: UUID
    cycle_id: UUID
    kind: FormKind
    status: FormStatus
    cycle_phase: CyclePhase
    notifications_sent: int = 0
    team_ready: bool = False
    calibration_started: bool = False
    calibration_ready: bool = False
    published: bool = False


class PublicationResult(BaseModel):
    """Outcome of publishing a cycle."""

    cycle_id: UUID
    published_forms: int = 0
    archived_subjects: list[UUID] = Field(default_factory=list)
    archive_failures: list[UUID] = Field(default_factory=list)
    notified_subjects: list[UUID] = Field(default_factory=list)
    notification_failures: list[UUID] = Field(default_factory=list)


class CalibrationReadiness(BaseModel):
    """Whether a cycle's reviews are complete enough to calibrate.

    Ready when every MANAGER form is submitted and there is at least one.
    The self and peer counts only gate readiness when the workflow
    configuration asks for it.
    """

    cycle_id: UUID
    manager_total: int
    manager_submitted: int
    self_total: int = 0
    self_submitted: int = 0
    peer_total: int = 0
    peer_submitted: int = 0
    ready: bool


class KindProgress(BaseModel):
    total: int
    completed: int
    percentage: int


class CycleProgress(BaseModel):
    """Completion of a cycle by form kind."""

    cycle_id: UUID
    name: str
    phase: CyclePhase
    forms: dict[FormKind, KindProgress] = Field(default_factory=dict)
    overall_percentage: int = 0
    calibration_records: int = 0
    calibration_finalized: int = 0


class WorkflowOrchestrator:
    """Handles review submission and calibration events.

    Depends only on the injected Notifier and HRArchive capabilities.

    Attributes:
        session_factory: Async session factory for database operations
        notifier: Notification capability
        archive: HR records archive
        directory: Organisation chart lookups
        config: Workflow configuration
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Notifier,
        archive: HRArchive,
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
        self.lifecycle = FormLifecycle()
        self.calibration = CalibrationService(self.lifecycle)
        self._logger = structlog.get_logger(__name__)

    async def _submit(
        self,
        session: AsyncSession,
        form_id: UUID,
        kind: FormKind,
        submission: FormSubmission | None,
    ) -> ReviewForm:
        """Submit the form, or accept a repeated event for an already submitted form."""
        form = await require_form(session, form_id)
        if form.kind != kind:
            raise InvalidStateError(
                f"form {form_id} is a {form.kind.value} form, not {kind.value}"
            )

        if form.status in OPEN_FORM_STATUSES or submission is not None:
            return await self.lifecycle.submit(session, form_id, submission, now=self.clock())

        self._logger.info(
            "form_already_submitted",
            form_id=str(form_id),
            status=form.status.value,
        )
        return form

    async def handle_review_submitted(
        self,
        form_id: UUID,
        submission: FormSubmission | None = None,
    ) -> SubmissionResult:
        """Route a submission to the handler for its form kind.

        Peer and upward reviews have no follow-up beyond the submission.
        """
        async with self.session_factory() as session:
            form = await require_form(session, form_id)
            kind = form.kind

            if kind in (FormKind.peer, FormKind.upward):
                form = await self._submit(session, form_id, kind, submission)
                cycle = await require_cycle(session, form.cycle_id)
                return SubmissionResult(
                    form_id=form.id,
                    cycle_id=form.cycle_id,
                    kind=form.kind,
                    status=form.status,
                    cycle_phase=cycle.phase,
                )

        if kind == FormKind.self:
            return await self.handle_self_review_submitted(form_id, submission)
        return await self.handle_manager_review_submitted(form_id, submission)

    # ------------------------------------------------------------------
    # Self review submitted
    # ------------------------------------------------------------------

    async def handle_self_review_submitted(
        self,
        form_id: UUID,
        submission: FormSubmission | None = None,
    ) -> SubmissionResult:
        """Submit a self-review, notify the manager and check team completion.

        Raises:
            EntityNotFoundError: If the form does not exist.
            InvalidStateError: If the form cannot be submitted.
        """
        async with self.session_factory() as session:
            form = await self._submit(session, form_id, FormKind.self, submission)
            bind_cycle_context(str(form.cycle_id), str(form.id))
            cycle = await require_cycle(session, form.cycle_id)
            manager = await self.directory.manager_of(session, form.subject_id)

        result = SubmissionResult(
            form_id=form.id,
            cycle_id=form.cycle_id,
            kind=form.kind,
            status=form.status,
            cycle_phase=cycle.phase,
        )
        if manager is None:
            self._logger.info("self_review_without_manager", form_id=str(form_id))
            return result

        if not form.manager_notified:
            request = messages.review_submitted_to_manager(manager.id, form)
            if await notify_and_flag_form(
                self.session_factory, self.notifier, form.id, "manager_notified", [request]
            ):
                result.notifications_sent += 1

        if await notify_team_ready(
            self.session_factory, self.notifier, self.directory, form.cycle_id, manager.id
        ):
            result.notifications_sent += 1
            result.team_ready = True

        self._logger.info(
            "self_review_processed",
            form_id=str(form_id),
            manager_id=str(manager.id),
            team_ready=result.team_ready,
        )
        return result

    # ------------------------------------------------------------------
    # Manager review submitted
    # ------------------------------------------------------------------

    async def handle_manager_review_submitted(
        self,
        form_id: UUID,
        submission: FormSubmission | None = None,
    ) -> SubmissionResult:
        """Submit a manager review, start calibration and check cycle readiness.

        Raises:
            EntityNotFoundError: If the form does not exist.
            InvalidStateError: If the form cannot be submitted.
        """
        async with self.session_factory() as session:
            form = await self._submit(session, form_id, FormKind.manager, submission)
            bind_cycle_context(str(form.cycle_id), str(form.id))
            cycle = await require_cycle(session, form.cycle_id)

            result = SubmissionResult(
                form_id=form.id,
                cycle_id=form.cycle_id,
                kind=form.kind,
                status=form.status,
                cycle_phase=cycle.phase,
            )
            if cycle.calibration_required:
                _, created = await self.calibration.begin(
                    session, cycle.id, form.subject_id, form.overall_rating
                )
                result.calibration_started = created

            readiness = await self._readiness(session, cycle.id)
            result.calibration_ready = readiness.ready
            if readiness.ready:
                await self.state_machine.transition(session, cycle.id, CyclePhase.calibration)

            cycle = await require_cycle(session, cycle.id)
            result.cycle_phase = cycle.phase
            hr_ids = await self.directory.hr_recipients(session)

        if not form.manager_notified:
            if await notify_and_flag_form(
                self.session_factory,
                self.notifier,
                form.id,
                "manager_notified",
                [messages.manager_review_completed(form)],
            ):
                result.notifications_sent += 1

        if cycle.phase == CyclePhase.calibration and cycle.calibration_required:
            if not cycle.calibration_notified and hr_ids:
                requests = [
                    messages.calibration_ready(hr_id, cycle, readiness.manager_total)
                    for hr_id in hr_ids
                ]
                delivered, _ = await notify_all(self.notifier, requests)
                result.notifications_sent += delivered
                if delivered:
                    async with self.session_factory() as session:
                        await set_cycle_flags(session, cycle.id, calibration_notified=True)

        if not form.hr_notified and hr_ids:
            requests = [messages.review_available_for_records(hr_id, form) for hr_id in hr_ids]
            if await notify_and_flag_form(
                self.session_factory, self.notifier, form.id, "hr_notified", requests
            ):
                result.notifications_sent += 1

        if cycle.phase == CyclePhase.calibration and not cycle.calibration_required:
            publication = await self._publish(cycle.id)
            result.published = True
            result.cycle_phase = CyclePhase.published
            result.notifications_sent += len(publication.notified_subjects)

        self._logger.info(
            "manager_review_processed",
            form_id=str(form_id),
            cycle_id=str(result.cycle_id),
            calibration_ready=result.calibration_ready,
            cycle_phase=result.cycle_phase.value,
        )
        return result

    # ------------------------------------------------------------------
    # Calibration complete
    # ------------------------------------------------------------------

    async def handle_calibration_complete(self, cycle_id: UUID) -> PublicationResult:
        """Publish a calibrated cycle.

        Raises:
            EntityNotFoundError: If the cycle does not exist.
            InvalidStateError: If the cycle is not in CALIBRATION or a
                subject's calibration record is not finalized.
        """
        bind_cycle_context(str(cycle_id))
        async with self.session_factory() as session:
            cycle = await require_cycle(session, cycle_id)
            if cycle.phase != CyclePhase.calibration:
                raise InvalidStateError(
                    f"cycle {cycle_id} is {cycle.phase.value}, not calibration"
                )
            if cycle.calibration_required and not await self.calibration.all_finalized(
                session, cycle_id
            ):
                raise InvalidStateError(
                    f"calibration of cycle {cycle_id} is not finished: "
                    "every subject needs a finalized, undisputed record"
                )

        return await self._publish(cycle_id)

    async def _publish(self, cycle_id: UUID) -> PublicationResult:
        result = PublicationResult(cycle_id=cycle_id)
        now = self.clock()

        async with self.session_factory() as session:
            await self.state_machine.transition(session, cycle_id, CyclePhase.published, now=now)
            cycle = await require_cycle(session, cycle_id)

            forms = await list_forms(
                session,
                cycle_id=cycle_id,
                statuses=[FormStatus.submitted, FormStatus.calibrated],
            )
            subjects: dict[UUID, None] = {}
            for form in forms:
                try:
                    if await self.lifecycle.publish(session, form.id, now=now):
                        result.published_forms += 1
                except Exception as e:
                    self._logger.error(
                        "form_publish_failed",
                        form_id=str(form.id),
                        error=str(e),
                    )
                    continue
                if form.kind in ARCHIVED_FORM_KINDS:
                    subjects.setdefault(form.subject_id, None)

        # Failures are retried by the publication catch-up sweep
        for subject_id in subjects:
            try:
                await archive_subject(
                    self.session_factory, self.archive, cycle_id, subject_id, now
                )
                result.archived_subjects.append(subject_id)
            except Exception as e:
                self._logger.error(
                    "archive_failed",
                    cycle_id=str(cycle_id),
                    subject_id=str(subject_id),
                    error=str(e),
                )
                result.archive_failures.append(subject_id)

            if await notify_results_available(
                self.session_factory, self.notifier, cycle, subject_id
            ):
                result.notified_subjects.append(subject_id)
            else:
                result.notification_failures.append(subject_id)

        self._logger.info(
            "cycle_published",
            cycle_id=str(cycle_id),
            published_forms=result.published_forms,
            archived=len(result.archived_subjects),
            archive_failures=len(result.archive_failures),
            notified=len(result.notified_subjects),
        )
        return result

    # ------------------------------------------------------------------
    # 1:1 scheduled
    # ------------------------------------------------------------------

    async def handle_one_on_one_scheduled(self, one_on_one_id: UUID) -> int:
        """Send invitations for a newly scheduled 1:1 to both parties.

        Returns:
            Number of invitations delivered.
        """
        async with self.session_factory() as session:
            meeting = await require_one_on_one(session, one_on_one_id)
            manager_name = await self.directory.display_name(session, meeting.manager_id)
            employee_name = await self.directory.display_name(session, meeting.employee_id)

        requests = [
            messages.meeting_invite(
                meeting.manager_id,
                employee_name,
                meeting.scheduled_at,
                meeting.location,
                meeting.id,
            ),
            messages.meeting_invite(
                meeting.employee_id,
                manager_name,
                meeting.scheduled_at,
                meeting.location,
                meeting.id,
            ),
        ]
        delivered, failed = await notify_all(self.notifier, requests)
        self._logger.info(
            "one_on_one_invites_sent",
            one_on_one_id=str(one_on_one_id),
            delivered=delivered,
            failed=failed,
        )
        return delivered

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    async def _readiness(self, session: AsyncSession, cycle_id: UUID) -> CalibrationReadiness:
        counts: dict[FormKind, tuple[int, int]] = {}
        for kind in (FormKind.manager, FormKind.self, FormKind.peer):
            total = await count_forms(session, cycle_id, kind=kind)
            submitted = await count_forms(
                session, cycle_id, kind=kind, statuses=COMPLETED_FORM_STATUSES
            )
            counts[kind] = (total, submitted)

        manager_total, manager_submitted = counts[FormKind.manager]
        ready = manager_total > 0 and manager_submitted == manager_total

        if self.config.calibration_requires_self_reviews:
            self_total, self_submitted = counts[FormKind.self]
            ready = ready and self_submitted == self_total
        if self.config.calibration_requires_peer_reviews:
            peer_total, peer_submitted = counts[FormKind.peer]
            ready = ready and peer_submitted == peer_total

        return CalibrationReadiness(
            cycle_id=cycle_id,
            manager_total=manager_total,
            manager_submitted=manager_submitted,
            self_total=counts[FormKind.self][0],
            self_submitted=counts[FormKind.self][1],
            peer_total=counts[FormKind.peer][0],
            peer_submitted=counts[FormKind.peer][1],
            ready=ready,
        )

    async def calibration_readiness(self, cycle_id: UUID) -> CalibrationReadiness:
        """Return the calibration readiness of a cycle.

        Raises:
            EntityNotFoundError: If the cycle does not exist.
        """
        async with self.session_factory() as session:
            await require_cycle(session, cycle_id)
            return await self._readiness(session, cycle_id)

    async def cycle_progress(self, cycle_id: UUID) -> CycleProgress:
        """Return completion percentages of a cycle by form kind.

        Raises:
            EntityNotFoundError: If the cycle does not exist.
        """
        async with self.session_factory() as session:
            cycle = await require_cycle(session, cycle_id)
            progress = CycleProgress(cycle_id=cycle.id, name=cycle.name, phase=cycle.phase)

            completed_total = 0
            form_total = 0
            for kind in FormKind:
                total = await count_forms(session, cycle_id, kind=kind)
                if not total:
                    continue
                completed = await count_forms(
                    session, cycle_id, kind=kind, statuses=COMPLETED_FORM_STATUSES
                )
                progress.forms[kind] = KindProgress(
                    total=total,
                    completed=completed,
                    percentage=completion_percentage(completed, total),
                )
                completed_total += completed
                form_total += total

            records = await list_calibration_records(session, cycle_id)

        progress.overall_percentage = completion_percentage(completed_total, form_total)
        progress.calibration_records = len(records)
        progress.calibration_finalized = sum(
            1 for r in records if r.is_finalized and not r.disputed
        )
        return progress
