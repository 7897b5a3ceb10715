"""Review form REST API endpoints for Perfcycle.

Authors save drafts with ``PUT /forms/{id}/draft`` and submit with
``POST /forms/{id}/submit``. Submission goes through the workflow so the
manager, subject and HR notices and the calibration trigger fire exactly
as they do for any other submission event.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from perfcycle.database.models.form import FormKind, FormStatus
from perfcycle.database.queries.cycle import require_cycle
from perfcycle.database.queries.form import list_forms, require_form
from perfcycle.logging import bind_cycle_context, get_logger
from perfcycle.orchestrator.workflow import SubmissionResult, WorkflowOrchestrator
from perfcycle.review.forms import FormLifecycle, FormSubmission
from perfcycle.review.scoring import CycleFormConfig, form_completion
from perfcycle.web.dependencies import get_lifecycle, get_session_factory, get_workflow

logger = get_logger(__name__)


class FormResponse(BaseModel):
    """Response schema for review form data."""

    id: UUID
    cycle_id: UUID
    subject_id: UUID
    author_id: UUID
    kind: FormKind
    status: FormStatus
    answers: dict[str, Any]
    overall_rating: float | None
    overall_comments: str | None
    strengths: str | None
    areas_for_improvement: str | None
    development_goals: str | None
    submitted_at: datetime | None
    published_at: datetime | None
    reminders_sent: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class FormDetail(FormResponse):
    """Form data with the completion of its required questions."""

    completion_percentage: int = 0


def _parse_filter(enum_type: type[Any], value: str | None, label: str) -> Any:
    if value is None:
        return None
    try:
        return enum_type(value)
    except ValueError:
        logger.warning("invalid_form_filter", field=label, value=value)
        raise HTTPException(status_code=400, detail=f"Invalid {label}: {value}")


def create_forms_router() -> APIRouter:
    """Create the review form router.

    Routes:
        GET /forms/ - List forms with cycle, kind, status, subject and author filters
        GET /forms/{form_id} - Form with completion percentage
        PUT /forms/{form_id}/draft - Save author edits
        POST /forms/{form_id}/submit - Submit a form and run the workflow
    """
    router = APIRouter(prefix="/forms", tags=["forms"])

    @router.get("/", response_model=list[FormResponse])
    async def list_forms_endpoint(
        cycle_id: UUID | None = None,
        kind: str | None = None,
        status: str | None = None,
        subject_id: UUID | None = None,
        author_id: UUID | None = None,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> list[FormResponse]:
        kind_filter = _parse_filter(FormKind, kind, "kind")
        status_filter = _parse_filter(FormStatus, status, "status")

        async with session_factory() as session:
            forms = await list_forms(
                session,
                cycle_id=cycle_id,
                kind=kind_filter,
                statuses=[status_filter] if status_filter is not None else None,
                subject_id=subject_id,
                author_id=author_id,
            )

        return [FormResponse.model_validate(form) for form in forms]

    @router.get("/{form_id}", response_model=FormDetail)
    async def get_form_endpoint(
        form_id: UUID,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> FormDetail:
        async with session_factory() as session:
            form = await require_form(session, form_id)
            cycle = await require_cycle(session, form.cycle_id)

        detail = FormDetail.model_validate(form)
        detail.completion_percentage = form_completion(
            CycleFormConfig.from_cycle_config(cycle.config), form.answers
        )
        return detail

    @router.put("/{form_id}/draft", response_model=FormResponse)
    async def save_draft_endpoint(
        form_id: UUID,
        submission: FormSubmission,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
        lifecycle: FormLifecycle = Depends(get_lifecycle),  # noqa: B008
    ) -> FormResponse:
        async with session_factory() as session:
            form = await lifecycle.save_draft(session, form_id, submission)
        bind_cycle_context(str(form.cycle_id), str(form_id))

        logger.info("form_draft_saved_via_api", form_id=str(form_id))
        return FormResponse.model_validate(form)

    @router.post("/{form_id}/submit", response_model=SubmissionResult)
    async def submit_form_endpoint(
        form_id: UUID,
        submission: FormSubmission | None = Body(default=None),  # noqa: B008
        workflow: WorkflowOrchestrator = Depends(get_workflow),  # noqa: B008
    ) -> SubmissionResult:
        """Submit a form.

        An empty body submits the saved draft as it stands.
        """
        result = await workflow.handle_review_submitted(form_id, submission)
        logger.info(
            "form_submitted_via_api",
            form_id=str(form_id),
            kind=result.kind.value,
            calibration_ready=result.calibration_ready,
        )
        return result

    return router
