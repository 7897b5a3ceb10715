"""Integration tests for FormLifecycle: drafts, submission, calibration marks, publication."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from perfcycle.database.models.cycle import CyclePhase
from perfcycle.database.models.form import FormKind, FormStatus
from perfcycle.database.queries.form import create_form, require_form
from perfcycle.errors import InvalidFormTransitionError, InvalidStateError
from perfcycle.review.forms import FormLifecycle, FormSubmission
from support import FORM_CONFIG, form_for, full_answers


@pytest.mark.integration
class TestSaveDraft:
    """Test author edits before submission."""

    @pytest.mark.asyncio
    async def test_first_save_moves_to_draft(self, db_session, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.self)
        assert form.status == FormStatus.not_started

        saved = await FormLifecycle().save_draft(
            db_session,
            form.id,
            FormSubmission(answers={"quality": {"rating": 4, "comment": None}}),
        )

        assert saved.status == FormStatus.draft
        assert saved.answers == {"quality": {"rating": 4, "comment": None}}

    @pytest.mark.asyncio
    async def test_later_saves_merge_answers(self, db_session, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.self)
        lifecycle = FormLifecycle()

        await lifecycle.save_draft(
            db_session,
            form.id,
            FormSubmission(answers={"quality": {"rating": 4}}, strengths="Mentoring"),
        )
        saved = await lifecycle.save_draft(
            db_session, form.id, FormSubmission(answers={"pace": {"rating": 3}})
        )

        assert saved.status == FormStatus.draft
        assert set(saved.answers) == {"quality", "pace"}
        assert saved.strengths == "Mentoring"

    @pytest.mark.asyncio
    async def test_submitted_form_is_locked(self, db_session, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.self)
        lifecycle = FormLifecycle()
        await lifecycle.submit(db_session, form.id, FormSubmission(answers=full_answers()))

        with pytest.raises(InvalidStateError, match="locked"):
            await lifecycle.save_draft(db_session, form.id, FormSubmission(strengths="Late"))

    @pytest.mark.asyncio
    async def test_draft_rating_checked_against_scale(self, db_session, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.self)

        with pytest.raises(InvalidStateError, match="outside"):
            await FormLifecycle().save_draft(
                db_session, form.id, FormSubmission(overall_rating=0.5)
            )

        assert (await require_form(db_session, form.id)).status == FormStatus.not_started


@pytest.mark.integration
class TestSubmit:
    """Test form submission rules."""

    @pytest.mark.asyncio
    async def test_submit_stamps_time_and_locks(self, db_session, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.self)
        now = datetime(2026, 1, 8, 12, 0, tzinfo=timezone.utc)

        submitted = await FormLifecycle().submit(
            db_session, form.id, FormSubmission(answers=full_answers()), now=now
        )

        assert submitted.status == FormStatus.submitted
        assert submitted.submitted_at.replace(tzinfo=timezone.utc) == now

    @pytest.mark.asyncio
    async def test_weighted_rating_is_default_overall(self, db_session, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.self)
        answers = {
            "quality": {"rating": 5},
            "pace": {"rating": 3},
            "teamwork": {"rating": 2},
        }

        submitted = await FormLifecycle().submit(
            db_session, form.id, FormSubmission(answers=answers)
        )

        assert submitted.overall_rating == pytest.approx(3.33)

    @pytest.mark.asyncio
    async def test_explicit_overall_rating_kept(self, db_session, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.self)

        submitted = await FormLifecycle().submit(
            db_session,
            form.id,
            FormSubmission(answers=full_answers(), overall_rating=4.5),
        )

        assert submitted.overall_rating == 4.5

    @pytest.mark.asyncio
    async def test_missing_required_answers(self, db_session, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.self)
        answers = full_answers()
        del answers["teamwork"]

        with pytest.raises(InvalidStateError, match="teamwork"):
            await FormLifecycle().submit(db_session, form.id, FormSubmission(answers=answers))

        assert (await require_form(db_session, form.id)).status == FormStatus.not_started

    @pytest.mark.asyncio
    async def test_rating_out_of_scale(self, db_session, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.self)

        with pytest.raises(InvalidStateError, match="outside"):
            await FormLifecycle().submit(
                db_session,
                form.id,
                FormSubmission(answers=full_answers(), overall_rating=6.0),
            )

    @pytest.mark.asyncio
    async def test_second_submit_rejected(self, db_session, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.self)
        lifecycle = FormLifecycle()
        await lifecycle.submit(db_session, form.id, FormSubmission(answers=full_answers()))

        with pytest.raises(InvalidFormTransitionError):
            await lifecycle.submit(db_session, form.id, FormSubmission(answers=full_answers()))

    @pytest.mark.asyncio
    async def test_manager_form_gated_by_phase(self, db_session, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, config=FORM_CONFIG)
        report = org.reports[0]
        form = await create_form(db_session, cycle_id, report.id, org.manager.id, FormKind.manager)

        with pytest.raises(InvalidStateError, match="before manager_review_open"):
            await FormLifecycle().submit(
                db_session, form.id, FormSubmission(answers=full_answers())
            )

    @pytest.mark.asyncio
    async def test_self_form_still_accepted_in_manager_phase(
        self, db_session, org, make_cycle
    ) -> None:
        cycle_id = await make_cycle(CyclePhase.manager_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.self)

        submitted = await FormLifecycle().submit(
            db_session, form.id, FormSubmission(answers=full_answers())
        )

        assert submitted.status == FormStatus.submitted

    @pytest.mark.asyncio
    async def test_draft_cycle_rejects_submission(self, db_session, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.active, config=FORM_CONFIG)
        report = org.reports[0]
        form = await create_form(db_session, cycle_id, report.id, report.id, FormKind.self)

        with pytest.raises(InvalidStateError, match="before self_review_open"):
            await FormLifecycle().submit(
                db_session, form.id, FormSubmission(answers=full_answers())
            )


@pytest.mark.integration
class TestSystemTransitions:
    """Test calibration marks and publication."""

    @pytest.mark.asyncio
    async def test_only_manager_forms_are_calibrated(self, db_session, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.self)

        with pytest.raises(InvalidStateError, match="only manager forms"):
            await FormLifecycle().mark_calibrated(db_session, form.id)

    @pytest.mark.asyncio
    async def test_calibration_needs_finalized_record(self, db_session, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.manager_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.manager)
        lifecycle = FormLifecycle()
        await lifecycle.submit(db_session, form.id, FormSubmission(answers=full_answers()))

        with pytest.raises(InvalidStateError, match="not finalized"):
            await lifecycle.mark_calibrated(db_session, form.id)

    @pytest.mark.asyncio
    async def test_publish_submitted_form(self, db_session, org, make_cycle) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.self)
        lifecycle = FormLifecycle()
        await lifecycle.submit(db_session, form.id, FormSubmission(answers=full_answers()))

        assert await lifecycle.publish(db_session, form.id) is True
        assert await lifecycle.publish(db_session, form.id) is False

        published = await require_form(db_session, form.id)
        assert published.status == FormStatus.published
        assert published.published_at is not None

    @pytest.mark.asyncio
    async def test_unsubmitted_form_cannot_be_published(
        self, db_session, org, make_cycle
    ) -> None:
        cycle_id = await make_cycle(CyclePhase.self_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.self)

        with pytest.raises(InvalidFormTransitionError):
            await FormLifecycle().publish(db_session, form.id)
