"""Integration tests for the meeting reminder, completed-notification and digest sweeps."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from perfcycle.database.models.cycle import CyclePhase
from perfcycle.database.models.form import FormKind
from perfcycle.database.models.one_on_one import OneOnOneStatus
from perfcycle.database.queries.form import require_form
from perfcycle.database.queries.one_on_one import create_one_on_one, require_one_on_one
from perfcycle.orchestrator.scheduler import ReviewScheduler
from perfcycle.review.forms import FormLifecycle, FormSubmission
from support import RecordingNotifier, form_for

NOW = datetime(2026, 1, 15, 18, 0, tzinfo=timezone.utc)


@pytest.mark.integration
class TestMeetingReminders:
    """Test day-before 1:1 reminders."""

    @pytest.mark.asyncio
    async def test_tomorrows_meetings_reminded_once(
        self, session_factory, org, notifier
    ) -> None:
        report = org.reports[0]
        async with session_factory() as session:
            tomorrow = await create_one_on_one(
                session,
                org.manager.id,
                report.id,
                datetime(2026, 1, 16, 9, 30, tzinfo=timezone.utc),
            )
            later = await create_one_on_one(
                session,
                org.manager.id,
                report.id,
                datetime(2026, 1, 17, 9, 30, tzinfo=timezone.utc),
            )
        scheduler = ReviewScheduler(session_factory, notifier)

        sweep = await scheduler.run_meeting_reminders(NOW)

        assert sweep.processed == 1
        assert sweep.actions == 1
        assert sorted(notifier.recipients("one_on_one_reminder")) == sorted(
            [org.manager.id, report.id]
        )
        to_report = next(
            r for r in notifier.by_category("one_on_one_reminder") if r.recipient_id == report.id
        )
        assert "Morgan Price" in to_report.title
        async with session_factory() as session:
            assert (await require_one_on_one(session, tomorrow.id)).reminder_sent is True
            assert (await require_one_on_one(session, later.id)).reminder_sent is False

        notifier.clear()
        again = await scheduler.run_meeting_reminders(NOW)
        assert again.processed == 0
        assert notifier.requests == []

    @pytest.mark.asyncio
    async def test_cancelled_meetings_skipped(self, session_factory, org, notifier) -> None:
        async with session_factory() as session:
            await create_one_on_one(
                session,
                org.manager.id,
                org.reports[0].id,
                datetime(2026, 1, 16, 9, 30, tzinfo=timezone.utc),
                status=OneOnOneStatus.cancelled,
            )

        sweep = await ReviewScheduler(session_factory, notifier).run_meeting_reminders(NOW)

        assert sweep.processed == 0

    @pytest.mark.asyncio
    async def test_failed_delivery_retried(self, session_factory, org) -> None:
        async with session_factory() as session:
            meeting = await create_one_on_one(
                session,
                org.manager.id,
                org.reports[0].id,
                datetime(2026, 1, 16, 9, 30, tzinfo=timezone.utc),
            )

        await ReviewScheduler(
            session_factory, RecordingNotifier(fail_all=True)
        ).run_meeting_reminders(NOW)
        async with session_factory() as session:
            assert (await require_one_on_one(session, meeting.id)).reminder_sent is False

        working = RecordingNotifier()
        await ReviewScheduler(session_factory, working).run_meeting_reminders(NOW)
        assert len(working.by_category("one_on_one_reminder")) == 2


@pytest.mark.integration
class TestCompletedNotifications:
    """Test the catch-up sweep for recently submitted forms."""

    @pytest.mark.asyncio
    async def test_self_review_told_to_manager(
        self, session_factory, org, make_cycle, notifier
    ) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open)
        report = org.reports[0]
        async with session_factory() as session:
            form = await form_for(session, cycle_id, report.id, FormKind.self)
            await FormLifecycle().submit(
                session, form.id, FormSubmission(), now=NOW - timedelta(hours=2)
            )
        scheduler = ReviewScheduler(session_factory, notifier)

        sweep = await scheduler.run_completed_notifications(NOW)

        assert sweep.processed == 1
        assert notifier.recipients("review_submitted") == [org.manager.id]
        assert notifier.by_category("review_team_ready") == []
        async with session_factory() as session:
            assert (await require_form(session, form.id)).manager_notified is True

        # Self-reviews never go to HR, so the told form is not picked up again
        notifier.clear()
        again = await scheduler.run_completed_notifications(NOW)
        assert again.processed == 0
        assert notifier.by_category("review_submitted") == []

    @pytest.mark.asyncio
    async def test_old_submissions_ignored(
        self, session_factory, org, make_cycle, notifier
    ) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open)
        async with session_factory() as session:
            form = await form_for(session, cycle_id, org.reports[0].id, FormKind.self)
            await FormLifecycle().submit(
                session, form.id, FormSubmission(), now=NOW - timedelta(days=3)
            )

        sweep = await ReviewScheduler(session_factory, notifier).run_completed_notifications(NOW)

        assert sweep.processed == 0
        assert notifier.requests == []

    @pytest.mark.asyncio
    async def test_last_self_review_sends_team_ready(
        self, session_factory, make_org, make_cycle, notifier
    ) -> None:
        org = await make_org(report_count=2)
        cycle_id = await make_cycle(CyclePhase.self_review_open)
        async with session_factory() as session:
            for report in org.reports:
                form = await form_for(session, cycle_id, report.id, FormKind.self)
                await FormLifecycle().submit(
                    session, form.id, FormSubmission(), now=NOW - timedelta(hours=1)
                )

        await ReviewScheduler(session_factory, notifier).run_completed_notifications(NOW)

        assert len(notifier.by_category("review_submitted")) == 2
        assert notifier.recipients("review_team_ready") == [org.manager.id]

    @pytest.mark.asyncio
    async def test_manager_review_told_to_subject_and_hr(
        self, session_factory, org, make_cycle, notifier
    ) -> None:
        cycle_id = await make_cycle(CyclePhase.manager_review_open)
        report = org.reports[0]
        async with session_factory() as session:
            form = await form_for(session, cycle_id, report.id, FormKind.manager)
            await FormLifecycle().submit(
                session, form.id, FormSubmission(), now=NOW - timedelta(hours=1)
            )

        await ReviewScheduler(session_factory, notifier).run_completed_notifications(NOW)

        assert notifier.recipients("review_completed") == [report.id]
        assert notifier.recipients("review_hr_record") == [org.hr.id]
        async with session_factory() as session:
            stored = await require_form(session, form.id)
        assert stored.manager_notified is True
        assert stored.hr_notified is True

    @pytest.mark.asyncio
    async def test_hr_retry_after_failure(self, session_factory, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.manager_review_open)
        async with session_factory() as session:
            form = await form_for(session, cycle_id, org.reports[0].id, FormKind.manager)
            await FormLifecycle().submit(
                session, form.id, FormSubmission(), now=NOW - timedelta(hours=1)
            )

        hr_down = RecordingNotifier(failing_recipients={org.hr.id})
        await ReviewScheduler(session_factory, hr_down).run_completed_notifications(NOW)
        async with session_factory() as session:
            stored = await require_form(session, form.id)
        assert stored.manager_notified is True
        assert stored.hr_notified is False

        working = RecordingNotifier()
        await ReviewScheduler(session_factory, working).run_completed_notifications(NOW)
        assert working.by_category("review_completed") == []
        assert working.recipients("review_hr_record") == [org.hr.id]


@pytest.mark.integration
class TestWeeklyDigest:
    """Test the HR completion digest."""

    @pytest.mark.asyncio
    async def test_digest_reports_completion(
        self, session_factory, make_org, make_cycle, notifier
    ) -> None:
        org = await make_org(report_count=1)
        cycle_id = await make_cycle(CyclePhase.self_review_open)
        await make_cycle(CyclePhase.active, name="Not started yet")
        async with session_factory() as session:
            form = await form_for(session, cycle_id, org.reports[0].id, FormKind.self)
            await FormLifecycle().submit(session, form.id, FormSubmission())

        sweep = await ReviewScheduler(session_factory, notifier).run_weekly_digest()

        assert sweep.processed == 1
        assert sweep.actions == 1
        digests = notifier.by_category("review_digest")
        assert [d.recipient_id for d in digests] == [org.hr.id]
        # One of four self-reviews submitted: HR, leader, manager, report
        assert digests[0].metadata["completion"] == {"self": 25}
        assert digests[0].metadata["overall"] == 25
        assert "self: 25%" in digests[0].message

    @pytest.mark.asyncio
    async def test_undelivered_digest_is_not_counted(
        self, session_factory, org, make_cycle
    ) -> None:
        await make_cycle(CyclePhase.self_review_open)
        hr_down = RecordingNotifier(failing_recipients={org.hr.id})

        sweep = await ReviewScheduler(session_factory, hr_down).run_weekly_digest()

        assert sweep.processed == 1
        assert sweep.actions == 0
        assert sweep.notifications_sent == 0
        assert hr_down.recipients("review_digest") == [org.hr.id]
