"""Integration tests for the phase-check sweep."""

from __future__ import annotations

from datetime import timedelta

import pytest

from perfcycle.database.models.cycle import CyclePhase
from perfcycle.database.models.form import FormKind, FormStatus
from perfcycle.database.queries.cycle import require_cycle
from perfcycle.database.queries.form import get_or_create_form, list_forms
from perfcycle.errors import InvalidStateError
from perfcycle.orchestrator.scheduler import ReviewScheduler
from perfcycle.orchestrator.workflow import WorkflowOrchestrator
from perfcycle.review import participants
from perfcycle.review.forms import FormSubmission
from support import (
    FORM_CONFIG,
    MANAGER_START,
    PEER_END,
    PEER_START,
    SELF_END,
    SELF_START,
    RecordingNotifier,
    full_answers,
)


@pytest.mark.integration
class TestPhaseCheck:
    """Test date-driven phase advancement and phase-entry effects."""

    @pytest.mark.asyncio
    async def test_nothing_happens_before_the_window(
        self, session_factory, org, make_cycle, notifier
    ) -> None:
        cycle_id = await make_cycle(CyclePhase.active)

        report = await ReviewScheduler(session_factory, notifier).run_phase_check(
            SELF_START - timedelta(days=1)
        )

        assert report.processed == 1
        assert report.actions == 0
        assert notifier.requests == []
        async with session_factory() as session:
            assert (await require_cycle(session, cycle_id)).phase == CyclePhase.active

    @pytest.mark.asyncio
    async def test_draft_cycles_are_ignored(
        self, session_factory, org, make_cycle, notifier
    ) -> None:
        await make_cycle(CyclePhase.draft)

        report = await ReviewScheduler(session_factory, notifier).run_phase_check(SELF_START)

        assert report.processed == 0

    @pytest.mark.asyncio
    async def test_self_review_opens_with_forms_and_notices(
        self, session_factory, org, make_cycle, notifier
    ) -> None:
        cycle_id = await make_cycle(CyclePhase.active)

        report = await ReviewScheduler(session_factory, notifier).run_phase_check(SELF_START)

        assert report.actions == 1
        async with session_factory() as session:
            cycle = await require_cycle(session, cycle_id)
            forms = await list_forms(session, cycle_id=cycle_id, kind=FormKind.self)

        assert cycle.phase == CyclePhase.self_review_open
        assert cycle.self_review_opened_notified is True
        # HR, the senior leader, the manager and five reports
        assert len(forms) == 8
        assert all(f.status == FormStatus.not_started for f in forms)
        assert all(f.subject_id == f.author_id for f in forms)

        opened = notifier.by_category("review_phase_opened")
        assert {r.recipient_id for r in opened} == {f.author_id for f in forms}
        assert SELF_END.isoformat() in opened[0].message
        assert report.notifications_sent == 8

    @pytest.mark.asyncio
    async def test_one_step_per_run(self, session_factory, org, make_cycle, notifier) -> None:
        cycle_id = await make_cycle(CyclePhase.active)
        scheduler = ReviewScheduler(session_factory, notifier)

        await scheduler.run_phase_check(MANAGER_START)
        async with session_factory() as session:
            assert (await require_cycle(session, cycle_id)).phase == CyclePhase.self_review_open

        await scheduler.run_phase_check(MANAGER_START)
        async with session_factory() as session:
            assert (await require_cycle(session, cycle_id)).phase == CyclePhase.manager_review_open

    @pytest.mark.asyncio
    async def test_rerun_sends_nothing_new(
        self, session_factory, org, make_cycle, notifier
    ) -> None:
        cycle_id = await make_cycle(CyclePhase.active)
        scheduler = ReviewScheduler(session_factory, notifier)
        await scheduler.run_phase_check(SELF_START)
        notifier.clear()

        report = await scheduler.run_phase_check(SELF_START)

        assert report.actions == 0
        assert notifier.requests == []
        async with session_factory() as session:
            forms = await list_forms(session, cycle_id=cycle_id, kind=FormKind.self)
        assert len(forms) == 8

    @pytest.mark.asyncio
    async def test_failed_delivery_retried_next_run(
        self, session_factory, org, make_cycle
    ) -> None:
        cycle_id = await make_cycle(CyclePhase.active)
        failing = RecordingNotifier(fail_all=True)

        await ReviewScheduler(session_factory, failing).run_phase_check(SELF_START)

        async with session_factory() as session:
            cycle = await require_cycle(session, cycle_id)
        assert cycle.phase == CyclePhase.self_review_open
        assert cycle.self_review_opened_notified is False

        working = RecordingNotifier()
        await ReviewScheduler(session_factory, working).run_phase_check(SELF_START)

        assert len(working.by_category("review_phase_opened")) == 8
        async with session_factory() as session:
            assert (await require_cycle(session, cycle_id)).self_review_opened_notified is True

    @pytest.mark.asyncio
    async def test_manager_phase_creates_manager_forms(
        self, session_factory, org, make_cycle, notifier
    ) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open)

        await ReviewScheduler(session_factory, notifier).run_phase_check(MANAGER_START)

        async with session_factory() as session:
            cycle = await require_cycle(session, cycle_id)
            forms = await list_forms(session, cycle_id=cycle_id, kind=FormKind.manager)

        assert cycle.phase == CyclePhase.manager_review_open
        assert cycle.manager_review_opened_notified is True
        assert {f.subject_id for f in forms} == {r.id for r in org.reports}
        assert {f.author_id for f in forms} == {org.manager.id}
        # One notice per author, not per form
        assert notifier.recipients("review_phase_opened") == [org.manager.id]

    @pytest.mark.asyncio
    async def test_upward_reviews(self, session_factory, org, make_cycle, notifier) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, upward_reviews_enabled=True)

        await ReviewScheduler(session_factory, notifier).run_phase_check(MANAGER_START)

        async with session_factory() as session:
            upward = await list_forms(session, cycle_id=cycle_id, kind=FormKind.upward)
        assert {f.author_id for f in upward} == {r.id for r in org.reports}
        assert {f.subject_id for f in upward} == {org.manager.id}
        assert set(notifier.recipients("review_phase_opened")) == {
            org.manager.id,
            *(r.id for r in org.reports),
        }

    @pytest.mark.asyncio
    async def test_peer_phase_pairs_teammates(
        self, session_factory, make_org, make_cycle, notifier
    ) -> None:
        org = await make_org(report_count=3)
        cycle_id = await make_cycle(
            CyclePhase.manager_review_open,
            peer_reviews_enabled=True,
            peer_review_start=PEER_START,
            peer_review_end=PEER_END,
        )

        await ReviewScheduler(session_factory, notifier).run_phase_check(PEER_START)

        async with session_factory() as session:
            cycle = await require_cycle(session, cycle_id)
            peers = await list_forms(session, cycle_id=cycle_id, kind=FormKind.peer)

        assert cycle.phase == CyclePhase.peer_review_open
        assert len(peers) == 6
        assert all(f.subject_id != f.author_id for f in peers)
        assert {f.author_id for f in peers} == {r.id for r in org.reports}

    @pytest.mark.asyncio
    async def test_excluded_department(self, session_factory, org, make_cycle, notifier) -> None:
        cycle_id = await make_cycle(CyclePhase.active, excluded_departments=["Engineering"])

        await ReviewScheduler(session_factory, notifier).run_phase_check(SELF_START)

        async with session_factory() as session:
            forms = await list_forms(session, cycle_id=cycle_id, kind=FormKind.self)
        assert {f.subject_id for f in forms} == {org.hr.id, org.leader.id}

    @pytest.mark.asyncio
    async def test_manager_phase_waits_for_every_form(
        self, session_factory, org, make_cycle, notifier, archive, monkeypatch
    ) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, config=FORM_CONFIG)
        created: list[FormKind] = []

        async def fail_after_first_manager_form(session, cycle_id, subject_id, author_id, kind):
            if kind == FormKind.manager and FormKind.manager in created:
                raise RuntimeError("database connection lost")
            created.append(kind)
            return await get_or_create_form(session, cycle_id, subject_id, author_id, kind)

        monkeypatch.setattr(participants, "get_or_create_form", fail_after_first_manager_form)
        scheduler = ReviewScheduler(session_factory, notifier)
        interrupted = await scheduler.run_phase_check(MANAGER_START)

        assert interrupted.failures == 1
        async with session_factory() as session:
            assert (await require_cycle(session, cycle_id)).phase == CyclePhase.self_review_open
            partial = await list_forms(session, cycle_id=cycle_id, kind=FormKind.manager)
        assert len(partial) == 1

        # The lone form cannot be submitted while the manager phase is closed
        workflow = WorkflowOrchestrator(session_factory, notifier, archive)
        with pytest.raises(InvalidStateError):
            await workflow.handle_review_submitted(
                partial[0].id, FormSubmission(answers=full_answers(4.0))
            )

        monkeypatch.undo()
        await scheduler.run_phase_check(MANAGER_START)
        async with session_factory() as session:
            assert (await require_cycle(session, cycle_id)).phase == CyclePhase.manager_review_open
            forms = await list_forms(session, cycle_id=cycle_id, kind=FormKind.manager)
        assert {f.subject_id for f in forms} == {r.id for r in org.reports}

        result = await workflow.handle_review_submitted(
            partial[0].id, FormSubmission(answers=full_answers(4.0))
        )
        assert result.calibration_ready is False
        assert result.cycle_phase == CyclePhase.manager_review_open
