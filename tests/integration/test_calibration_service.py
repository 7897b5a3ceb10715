"""Integration tests for CalibrationService."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from perfcycle.database.models.calibration import PotentialTier
from perfcycle.database.models.cycle import CyclePhase
from perfcycle.database.models.form import FormKind, FormStatus
from perfcycle.database.queries.calibration import append_changes, require_calibration_record
from perfcycle.database.queries.form import require_form
from perfcycle.errors import ConcurrentUpdateError, InvalidStateError
from perfcycle.review.calibration import CalibrationService, change_entry
from perfcycle.review.forms import FormLifecycle, FormSubmission
from support import FORM_CONFIG, form_for, full_answers

NOW = datetime(2026, 1, 23, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def service() -> CalibrationService:
    return CalibrationService()


@pytest.fixture
def submitted_manager_form(db_session, org, make_cycle):
    """Factory submitting the manager form of the first report with a 4.0 rating."""

    async def _submit():
        cycle_id = await make_cycle(CyclePhase.manager_review_open, config=FORM_CONFIG)
        form = await form_for(db_session, cycle_id, org.reports[0].id, FormKind.manager)
        return await FormLifecycle().submit(
            db_session, form.id, FormSubmission(answers=full_answers(4.0))
        )

    return _submit


@pytest.mark.integration
class TestBegin:
    """Test record creation."""

    @pytest.mark.asyncio
    async def test_begin_is_idempotent(self, db_session, service, submitted_manager_form) -> None:
        form = await submitted_manager_form()

        first, created = await service.begin(db_session, form.cycle_id, form.subject_id, 4.0)
        second, created_again = await service.begin(
            db_session, form.cycle_id, form.subject_id, 2.0
        )

        assert created is True
        assert created_again is False
        assert second.id == first.id
        assert second.pre_calibration_rating == 4.0
        assert second.final_rating == 4.0
        assert second.change_log == []


@pytest.mark.integration
class TestAdjust:
    """Test calibrated changes and the change log."""

    @pytest.mark.asyncio
    async def test_one_entry_per_changed_field(
        self, db_session, org, service, submitted_manager_form
    ) -> None:
        form = await submitted_manager_form()
        record, _ = await service.begin(db_session, form.cycle_id, form.subject_id, 4.0)

        adjusted = await service.adjust(
            db_session,
            record.id,
            org.hr.id,
            final_rating=3.5,
            potential=PotentialTier.high,
            justification="Aligned with peer group",
            reason="calibration session",
            now=NOW,
        )

        assert adjusted.final_rating == 3.5
        assert adjusted.potential == PotentialTier.high
        fields = [entry["field"] for entry in adjusted.change_log]
        assert sorted(fields) == ["final_rating", "justification", "potential"]

        rating_entry = next(e for e in adjusted.change_log if e["field"] == "final_rating")
        assert rating_entry == {
            "timestamp": NOW.isoformat(),
            "actor_id": str(org.hr.id),
            "field": "final_rating",
            "old_value": 4.0,
            "new_value": 3.5,
            "reason": "calibration session",
        }
        potential_entry = next(e for e in adjusted.change_log if e["field"] == "potential")
        assert potential_entry["new_value"] == "high"

    @pytest.mark.asyncio
    async def test_unchanged_values_are_not_logged(
        self, db_session, org, service, submitted_manager_form
    ) -> None:
        form = await submitted_manager_form()
        record, _ = await service.begin(db_session, form.cycle_id, form.subject_id, 4.0)

        adjusted = await service.adjust(db_session, record.id, org.hr.id, final_rating=4.0)

        assert adjusted.change_log == []

    @pytest.mark.asyncio
    async def test_log_only_grows(self, db_session, org, service, submitted_manager_form) -> None:
        form = await submitted_manager_form()
        record, _ = await service.begin(db_session, form.cycle_id, form.subject_id, 4.0)

        await service.adjust(db_session, record.id, org.hr.id, final_rating=3.5)
        adjusted = await service.adjust(db_session, record.id, org.hr.id, final_rating=3.0)

        assert [e["new_value"] for e in adjusted.change_log] == [3.5, 3.0]
        assert adjusted.change_log[1]["old_value"] == 3.5

    @pytest.mark.asyncio
    async def test_stale_writer_cannot_drop_entries(
        self, db_session, session_factory, org, service, submitted_manager_form
    ) -> None:
        form = await submitted_manager_form()
        record, _ = await service.begin(db_session, form.cycle_id, form.subject_id, 4.0)

        async with session_factory() as first, session_factory() as second:
            mine = await require_calibration_record(first, record.id)
            theirs = await require_calibration_record(second, record.id)

            await append_changes(
                first,
                mine,
                [change_entry(org.hr.id, "final_rating", 4.0, 3.5, "Peer comparison", NOW)],
                final_rating=3.5,
            )
            with pytest.raises(ConcurrentUpdateError):
                await append_changes(
                    second,
                    theirs,
                    [change_entry(org.hr.id, "potential", None, "high", None, NOW)],
                    potential=PotentialTier.high,
                )

        stored = await require_calibration_record(db_session, record.id)
        assert [e["field"] for e in stored.change_log] == ["final_rating"]
        assert stored.final_rating == 3.5
        assert stored.potential is None
        assert stored.version_id == 2

    @pytest.mark.asyncio
    async def test_rating_off_scale(self, db_session, org, service, submitted_manager_form) -> None:
        form = await submitted_manager_form()
        record, _ = await service.begin(db_session, form.cycle_id, form.subject_id, 4.0)

        with pytest.raises(InvalidStateError, match="outside the scale"):
            await service.adjust(db_session, record.id, org.hr.id, final_rating=7.0)

    @pytest.mark.asyncio
    async def test_finalized_record_is_locked(
        self, db_session, org, service, submitted_manager_form
    ) -> None:
        form = await submitted_manager_form()
        record, _ = await service.begin(db_session, form.cycle_id, form.subject_id, 4.0)
        await service.finalize(db_session, record.id, org.hr.id)

        with pytest.raises(InvalidStateError, match="finalized"):
            await service.adjust(db_session, record.id, org.hr.id, final_rating=3.0)


@pytest.mark.integration
class TestFinalize:
    """Test sign-off."""

    @pytest.mark.asyncio
    async def test_finalize_calibrates_manager_form(
        self, db_session, org, service, submitted_manager_form
    ) -> None:
        form = await submitted_manager_form()
        record, _ = await service.begin(db_session, form.cycle_id, form.subject_id, 4.0)

        finalized = await service.finalize(db_session, record.id, org.hr.id, now=NOW)

        assert finalized.is_finalized is True
        assert finalized.approver_id == org.hr.id
        assert finalized.change_log[-1]["field"] == "is_finalized"
        assert (await require_form(db_session, form.id)).status == FormStatus.calibrated

    @pytest.mark.asyncio
    async def test_finalize_twice_is_harmless(
        self, db_session, org, service, submitted_manager_form
    ) -> None:
        form = await submitted_manager_form()
        record, _ = await service.begin(db_session, form.cycle_id, form.subject_id, 4.0)

        await service.finalize(db_session, record.id, org.hr.id)
        again = await service.finalize(db_session, record.id, org.hr.id)

        assert len(again.change_log) == 1

    @pytest.mark.asyncio
    async def test_final_rating_prefers_finalized_record(
        self, db_session, org, service, submitted_manager_form
    ) -> None:
        form = await submitted_manager_form()
        record, _ = await service.begin(db_session, form.cycle_id, form.subject_id, 4.0)

        assert await service.final_rating_for(db_session, form.cycle_id, form.subject_id) == 4.0

        await service.adjust(db_session, record.id, org.hr.id, final_rating=3.5)
        await service.finalize(db_session, record.id, org.hr.id)

        assert await service.final_rating_for(db_session, form.cycle_id, form.subject_id) == 3.5

    @pytest.mark.asyncio
    async def test_all_finalized_requires_every_manager_subject(
        self, db_session, org, service, submitted_manager_form
    ) -> None:
        form = await submitted_manager_form()
        record, _ = await service.begin(db_session, form.cycle_id, form.subject_id, 4.0)
        await service.finalize(db_session, record.id, org.hr.id)

        # The other four reports have manager forms but no records yet
        assert await service.all_finalized(db_session, form.cycle_id) is False


@pytest.mark.integration
class TestDisputes:
    """Test dispute and resolution."""

    @pytest.mark.asyncio
    async def test_disputed_record_cannot_be_finalized(
        self, db_session, org, service, submitted_manager_form
    ) -> None:
        form = await submitted_manager_form()
        record, _ = await service.begin(db_session, form.cycle_id, form.subject_id, 4.0)

        disputed = await service.raise_dispute(
            db_session, record.id, form.subject_id, "Rating ignores Q3 launch"
        )

        assert disputed.disputed is True
        assert disputed.dispute_reason == "Rating ignores Q3 launch"
        with pytest.raises(InvalidStateError, match="disputed"):
            await service.finalize(db_session, record.id, org.hr.id)
        with pytest.raises(InvalidStateError, match="already disputed"):
            await service.raise_dispute(db_session, record.id, form.subject_id, "again")

    @pytest.mark.asyncio
    async def test_resolve_reopens_and_adjusts(
        self, db_session, org, service, submitted_manager_form
    ) -> None:
        form = await submitted_manager_form()
        record, _ = await service.begin(db_session, form.cycle_id, form.subject_id, 4.0)
        await service.finalize(db_session, record.id, org.hr.id)
        await service.raise_dispute(db_session, record.id, form.subject_id, "Too low")

        resolved = await service.resolve_dispute(
            db_session, record.id, org.hr.id, "Launch credited", final_rating=4.5, now=NOW
        )

        assert resolved.disputed is False
        assert resolved.final_rating == 4.5
        assert resolved.dispute_resolution == "Launch credited"
        assert [e["field"] for e in resolved.change_log] == [
            "is_finalized",
            "disputed",
            "final_rating",
            "disputed",
        ]

    @pytest.mark.asyncio
    async def test_resolve_requires_dispute(
        self, db_session, org, service, submitted_manager_form
    ) -> None:
        form = await submitted_manager_form()
        record, _ = await service.begin(db_session, form.cycle_id, form.subject_id, 4.0)

        with pytest.raises(InvalidStateError, match="not disputed"):
            await service.resolve_dispute(db_session, record.id, org.hr.id, "nothing to do")
