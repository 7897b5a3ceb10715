"""Integration tests for HR records, the HTTP archive and HR reports."""

from __future__ import annotations

import json
from datetime import date

import httpx
import pytest
import respx

from perfcycle.archive.http import HttpHRArchive
from perfcycle.archive.records import HRRecordBuilder, record_id_for
from perfcycle.archive.reports import (
    RatingBand,
    cycle_report,
    employee_history,
    export_cycle_csv,
    performance_trends,
)
from perfcycle.config import ArchiveConfig
from perfcycle.database.models.calibration import PotentialTier
from perfcycle.database.models.cycle import CyclePhase
from perfcycle.database.models.form import FormKind
from perfcycle.database.queries.calibration import list_calibration_records
from perfcycle.errors import EntityNotFoundError, ExternalDependencyError
from perfcycle.orchestrator.workflow import WorkflowOrchestrator
from perfcycle.review.forms import FormSubmission
from support import FORM_CONFIG, form_for, full_answers

ARCHIVE_URL = "https://records.example.com/reviews/"


@pytest.fixture
def publish_cycle(session_factory, notifier, archive, make_org, make_cycle):
    """Factory running a two-report cycle through calibration and publication.

    The first report's rating is calibrated to ``calibrated`` when given.
    """
    workflow = WorkflowOrchestrator(session_factory, notifier, archive)

    async def _publish(org, manager_rating=4.0, calibrated=None, **cycle_overrides):
        cycle_id = await make_cycle(
            CyclePhase.manager_review_open, config=FORM_CONFIG, **cycle_overrides
        )
        for report in org.reports:
            async with session_factory() as session:
                form = await form_for(session, cycle_id, report.id, FormKind.self)
            await workflow.handle_review_submitted(
                form.id,
                FormSubmission(
                    answers=full_answers(3.0),
                    strengths="- Mentoring\n- Ownership",
                    overall_comments="A good year",
                ),
            )
        for report in org.reports:
            async with session_factory() as session:
                form = await form_for(session, cycle_id, report.id, FormKind.manager)
            await workflow.handle_review_submitted(
                form.id,
                FormSubmission(
                    answers=full_answers(manager_rating),
                    strengths='["Mentoring", "Delivery"]',
                    areas_for_improvement="Delegation",
                    development_goals='[{"description": "Lead a project"}]',
                    overall_comments="Strong contributor",
                ),
            )

        async with session_factory() as session:
            for record in await list_calibration_records(session, cycle_id):
                if calibrated is not None and record.subject_id == org.reports[0].id:
                    await workflow.calibration.adjust(
                        session,
                        record.id,
                        org.hr.id,
                        final_rating=calibrated,
                        potential=PotentialTier.high,
                    )
                await workflow.calibration.finalize(session, record.id, org.hr.id)

        await workflow.handle_calibration_complete(cycle_id)
        return cycle_id

    return _publish


@pytest.mark.integration
class TestHRRecordBuilder:
    """Test consolidation of a subject's reviews."""

    @pytest.mark.asyncio
    async def test_builds_consolidated_record(
        self, session_factory, make_org, publish_cycle
    ) -> None:
        org = await make_org(report_count=2)
        cycle_id = await publish_cycle(org, calibrated=3.5)
        subject = org.reports[0]

        async with session_factory() as session:
            record = await HRRecordBuilder().build(session, cycle_id, subject.id)

        assert record.record_id == record_id_for(cycle_id, subject.id)
        assert record.subject_name == "Report 1"
        assert record.cycle_name == "FY2025 Annual Review"
        assert record.self_rating == 3.0
        assert record.manager_rating == 4.0
        assert record.calibrated_rating == 3.5
        assert record.final_rating == 3.5
        assert record.potential == "high"
        assert record.strengths == ["Mentoring", "Ownership", "Delivery"]
        assert record.development_areas == ["Delegation"]
        assert record.goals == [{"description": "Lead a project"}]
        assert record.manager_comments == "Strong contributor"
        assert record.employee_comments == "A good year"
        assert record.published_at is not None
        assert record.metadata["manager_id"] == str(org.manager.id)

    @pytest.mark.asyncio
    async def test_same_pair_builds_same_record(
        self, session_factory, make_org, publish_cycle
    ) -> None:
        org = await make_org(report_count=2)
        cycle_id = await publish_cycle(org)
        builder = HRRecordBuilder()

        async with session_factory() as session:
            first = await builder.build(session, cycle_id, org.reports[1].id)
            second = await builder.build(session, cycle_id, org.reports[1].id)

        assert first == second
        assert first.final_rating == 4.0

    @pytest.mark.asyncio
    async def test_nothing_submitted(self, session_factory, make_org, publish_cycle) -> None:
        org = await make_org(report_count=2)
        cycle_id = await publish_cycle(org)

        async with session_factory() as session:
            with pytest.raises(EntityNotFoundError):
                await HRRecordBuilder().build(session, cycle_id, org.hr.id)


@pytest.mark.integration
class TestHttpHRArchive:
    """Test storing records in the HR records service."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_put_by_record_id(self, session_factory, make_org, publish_cycle) -> None:
        org = await make_org(report_count=2)
        cycle_id = await publish_cycle(org)
        subject = org.reports[0]
        expected_url = f"{ARCHIVE_URL}{record_id_for(cycle_id, subject.id)}"
        route = respx.put(expected_url).mock(
            return_value=httpx.Response(200, json={"ok": True})
        )

        archive = HttpHRArchive(
            session_factory,
            ArchiveConfig(url=ARCHIVE_URL, auth_header="Bearer records-token"),
        )
        await archive.archive(cycle_id, subject.id)
        await archive.archive(cycle_id, subject.id)
        await archive.close()

        assert route.call_count == 2
        sent = route.calls.last.request
        assert sent.headers["Authorization"] == "Bearer records-token"
        body = json.loads(sent.content)
        assert body["subject_id"] == str(subject.id)
        assert body["final_rating"] == 4.0
        assert body["period_end"] == "2025-12-31"

    @respx.mock
    @pytest.mark.asyncio
    async def test_server_error_raises(self, session_factory, make_org, publish_cycle) -> None:
        org = await make_org(report_count=2)
        cycle_id = await publish_cycle(org)
        subject = org.reports[1]
        respx.put(url__startswith=ARCHIVE_URL).mock(
            return_value=httpx.Response(500, text="store offline")
        )

        archive = HttpHRArchive(session_factory, ArchiveConfig(url=ARCHIVE_URL))
        with pytest.raises(ExternalDependencyError, match="status 500"):
            await archive.archive(cycle_id, subject.id)
        await archive.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_connection_error_raises(
        self, session_factory, make_org, publish_cycle
    ) -> None:
        org = await make_org(report_count=2)
        cycle_id = await publish_cycle(org)
        respx.put(url__startswith=ARCHIVE_URL).mock(
            side_effect=httpx.ConnectError("connection refused")
        )

        archive = HttpHRArchive(session_factory, ArchiveConfig(url=ARCHIVE_URL))
        with pytest.raises(ExternalDependencyError, match="hr_archive"):
            await archive.archive(cycle_id, org.reports[0].id)
        await archive.close()


@pytest.mark.integration
class TestReports:
    """Test the HR report read models."""

    @pytest.mark.asyncio
    async def test_cycle_report(self, session_factory, make_org, publish_cycle) -> None:
        org = await make_org(report_count=2)
        cycle_id = await publish_cycle(org, calibrated=2.0)

        async with session_factory() as session:
            report = await cycle_report(session, cycle_id)

        assert report.phase == "published"
        assert report.total_subjects == 2
        assert report.completion["manager"] == 100
        assert report.average_ratings == {"self": 3.0, "manager": 4.0, "final": 3.0}
        assert report.rating_distribution[RatingBand.DEVELOPING.value] == 1
        assert report.rating_distribution[RatingBand.EXCEEDS.value] == 1
        assert [s.subject_id for s in report.top_performers] == [
            org.reports[1].id,
            org.reports[0].id,
        ]
        assert [s.subject_id for s in report.needs_attention] == [org.reports[0].id]

        lines = export_cycle_csv(report).splitlines()
        assert len(lines) == 3

    @pytest.mark.asyncio
    async def test_history_and_trends(self, session_factory, make_org, publish_cycle) -> None:
        org = await make_org(report_count=2)
        subject = org.reports[0]
        first = await publish_cycle(org, calibrated=3.5)
        second = await publish_cycle(
            org,
            name="H1 2026 Review",
            period_start=date(2026, 1, 1),
            period_end=date(2026, 6, 30),
        )

        async with session_factory() as session:
            history = await employee_history(session, subject.id)
            trends = await performance_trends(session, subject.id)

        assert [r.cycle_id for r in history] == [second, first]
        assert trends.total_reviews == 2
        assert [p.final_rating for p in trends.points] == [3.5, 4.0]
        assert trends.points[1].change == 0.5
        assert trends.average_rating == 3.75
        assert trends.current_rating == 4.0
        assert trends.strengths[0] == "Mentoring"

    @pytest.mark.asyncio
    async def test_trends_without_history(self, session_factory, org) -> None:
        async with session_factory() as session:
            trends = await performance_trends(session, org.reports[0].id)

        assert trends.total_reviews == 0
        assert trends.points == []
