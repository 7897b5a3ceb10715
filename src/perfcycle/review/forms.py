"""Review form lifecycle for Perfcycle.

A form moves NOT_STARTED -> DRAFT -> SUBMITTED -> CALIBRATED -> PUBLISHED.
Drafts are author edits; submission locks the form; calibration and
publication are system actions. Every status write is a compare-and-set on
the expected status, so a form can never move backwards.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from perfcycle.database.models.cycle import CyclePhase, ReviewCycle
from perfcycle.database.models.form import FormKind, FormStatus, ReviewForm
from perfcycle.database.queries.calibration import find_calibration_record
from perfcycle.database.queries.cycle import require_cycle
from perfcycle.database.queries.form import (
    compare_and_set_status,
    require_form,
    update_form_fields,
)
from perfcycle.errors import InvalidFormTransitionError, InvalidStateError
from perfcycle.review.phases import phase_reached
from perfcycle.review.scoring import (
    CycleFormConfig,
    completion_percentage,
    missing_required,
    rating_bounds,
    rating_in_bounds,
    weighted_rating,
)
from perfcycle.timeutil import utcnow

logger = structlog.get_logger(__name__)

__all__ = [
    "FORM_STATUS_ORDER",
    "VALID_FORM_TRANSITIONS",
    "SUBMISSION_PHASE_GATE",
    "FormSubmission",
    "FormLifecycle",
    "completion_percentage",
    "validate_form_transition",
]

FORM_STATUS_ORDER: tuple[FormStatus, ...] = tuple(FormStatus)

VALID_FORM_TRANSITIONS: dict[FormStatus, set[FormStatus]] = {
    FormStatus.not_started: {FormStatus.draft, FormStatus.submitted},
    FormStatus.draft: {FormStatus.submitted},
    FormStatus.submitted: {FormStatus.calibrated, FormStatus.published},
    FormStatus.calibrated: {FormStatus.published},
    FormStatus.published: set(),  # Terminal
}

# Earliest cycle phase in which each kind of form may be submitted
SUBMISSION_PHASE_GATE: dict[FormKind, CyclePhase] = {
    FormKind.self: CyclePhase.self_review_open,
    FormKind.manager: CyclePhase.manager_review_open,
    FormKind.upward: CyclePhase.manager_review_open,
    FormKind.peer: CyclePhase.peer_review_open,
}

_EDITABLE_STATUSES = (FormStatus.not_started, FormStatus.draft)
_FINISHED_PHASES = (CyclePhase.published, CyclePhase.closed)


def validate_form_transition(current: FormStatus, target: FormStatus) -> bool:
    """Return True if the status transition is allowed."""
    return target in VALID_FORM_TRANSITIONS.get(current, set())


def status_index(status: FormStatus) -> int:
    return FORM_STATUS_ORDER.index(status)


class FormSubmission(BaseModel):
    """Author-provided content of a review form.

    Unset fields keep the value already saved on the form.
    """

    answers: dict[str, dict[str, Any]] | None = None
    overall_rating: float | None = None
    overall_comments: str | None = None
    strengths: str | None = None
    areas_for_improvement: str | None = None
    development_goals: str | None = Field(
        default=None,
        description="Free text or a JSON list of goals",
    )

    def merged_values(self, form: ReviewForm) -> dict[str, Any]:
        """Return column values combining this submission with the saved form."""
        provided = self.model_dump(exclude_unset=True)
        values: dict[str, Any] = {
            "answers": dict(form.answers or {}),
            "overall_rating": form.overall_rating,
            "overall_comments": form.overall_comments,
            "strengths": form.strengths,
            "areas_for_improvement": form.areas_for_improvement,
            "development_goals": form.development_goals,
        }
        for field, value in provided.items():
            if field == "answers":
                values["answers"] = {**values["answers"], **(value or {})}
            else:
                values[field] = value
        return values


class FormLifecycle:
    """Applies author and system actions to review forms."""

    def __init__(self) -> None:
        self.logger = logger.bind(component="FormLifecycle")

    async def save_draft(
        self,
        session: AsyncSession,
        form_id: UUID,
        submission: FormSubmission,
    ) -> ReviewForm:
        """Save author edits, moving a NOT_STARTED form to DRAFT.

        Raises:
            EntityNotFoundError: If the form or its cycle does not exist.
            InvalidStateError: If the form is locked or the cycle finished.
        """
        form = await require_form(session, form_id)
        cycle = await require_cycle(session, form.cycle_id)

        if form.status not in _EDITABLE_STATUSES:
            raise InvalidStateError(f"form {form_id} is {form.status.value} and locked for edits")
        if cycle.phase in _FINISHED_PHASES:
            raise InvalidStateError(f"cycle {cycle.id} is {cycle.phase.value}")

        values = submission.merged_values(form)
        self._check_rating(cycle, values.get("overall_rating"))

        if form.status == FormStatus.not_started:
            moved = await compare_and_set_status(
                session, form_id, FormStatus.not_started, FormStatus.draft, **values
            )
            if not moved:
                # Another save won the first-save race; apply ours as an edit
                await self._update_draft(session, form_id, values)
        else:
            await self._update_draft(session, form_id, values)

        self.logger.info("form_draft_saved", form_id=str(form_id), kind=form.kind.value)
        return await require_form(session, form_id)

    async def _update_draft(
        self,
        session: AsyncSession,
        form_id: UUID,
        values: dict[str, Any],
    ) -> None:
        form = await require_form(session, form_id)
        if form.status != FormStatus.draft:
            raise InvalidStateError(f"form {form_id} is {form.status.value} and locked for edits")
        await update_form_fields(session, form_id, **values)

    async def submit(
        self,
        session: AsyncSession,
        form_id: UUID,
        submission: FormSubmission | None = None,
        now: datetime | None = None,
    ) -> ReviewForm:
        """Submit a form, locking it for the author.

        The overall rating defaults to the weighted rating of the answers
        when the author did not give one.

        Raises:
            EntityNotFoundError: If the form or its cycle does not exist.
            InvalidStateError: If the form is already submitted, the cycle
                phase does not allow this kind of form yet (or any more), or
                required questions are unanswered.
        """
        form = await require_form(session, form_id)
        cycle = await require_cycle(session, form.cycle_id)

        if form.status not in _EDITABLE_STATUSES:
            raise InvalidFormTransitionError(form.status, FormStatus.submitted, str(form_id))
        self._check_phase(cycle, form)

        values = (submission or FormSubmission()).merged_values(form)
        config = CycleFormConfig.from_cycle_config(cycle.config)

        missing = missing_required(config, values["answers"])
        if missing:
            raise InvalidStateError(
                f"form {form_id} is missing required answers: {', '.join(missing)}"
            )

        if values.get("overall_rating") is None:
            values["overall_rating"] = weighted_rating(config, values["answers"])
        self._check_rating(cycle, values.get("overall_rating"))

        submitted_at = now or utcnow()
        moved = await compare_and_set_status(
            session,
            form_id,
            form.status,
            FormStatus.submitted,
            submitted_at=submitted_at,
            **values,
        )
        if not moved:
            current = await require_form(session, form_id)
            raise InvalidFormTransitionError(current.status, FormStatus.submitted, str(form_id))

        self.logger.info(
            "form_submitted",
            form_id=str(form_id),
            cycle_id=str(cycle.id),
            kind=form.kind.value,
            overall_rating=values.get("overall_rating"),
        )
        return await require_form(session, form_id)

    async def mark_calibrated(self, session: AsyncSession, form_id: UUID) -> bool:
        """Mark a SUBMITTED manager form as CALIBRATED.

        Returns:
            True if the form moved, False if it was already calibrated or
            published.

        Raises:
            InvalidStateError: If the form is not a manager form, is not
                submitted, or the subject's calibration record is not finalized.
        """
        form = await require_form(session, form_id)
        if form.kind != FormKind.manager:
            raise InvalidStateError(
                f"only manager forms are calibrated, form {form_id} is {form.kind.value}"
            )
        if status_index(form.status) >= status_index(FormStatus.calibrated):
            return False
        if form.status != FormStatus.submitted:
            raise InvalidFormTransitionError(form.status, FormStatus.calibrated, str(form_id))

        record = await find_calibration_record(session, form.cycle_id, form.subject_id)
        if record is None or not record.is_finalized:
            raise InvalidStateError(
                f"calibration for subject {form.subject_id} is not finalized"
            )

        moved = await compare_and_set_status(
            session, form_id, FormStatus.submitted, FormStatus.calibrated
        )
        if moved:
            self.logger.info("form_calibrated", form_id=str(form_id))
        return moved

    async def publish(
        self,
        session: AsyncSession,
        form_id: UUID,
        now: datetime | None = None,
    ) -> bool:
        """Publish a SUBMITTED or CALIBRATED form.

        Returns:
            True if the form moved, False if it was already published.

        Raises:
            InvalidFormTransitionError: If the form was never submitted.
        """
        form = await require_form(session, form_id)
        if form.status == FormStatus.published:
            return False
        if not validate_form_transition(form.status, FormStatus.published):
            raise InvalidFormTransitionError(form.status, FormStatus.published, str(form_id))

        moved = await compare_and_set_status(
            session,
            form_id,
            form.status,
            FormStatus.published,
            published_at=now or utcnow(),
        )
        if moved:
            self.logger.info("form_published", form_id=str(form_id), kind=form.kind.value)
        return moved

    @staticmethod
    def _check_phase(cycle: ReviewCycle, form: ReviewForm) -> None:
        if cycle.phase in _FINISHED_PHASES:
            raise InvalidStateError(
                f"cycle {cycle.id} is {cycle.phase.value}; forms can no longer be submitted"
            )
        gate = SUBMISSION_PHASE_GATE[form.kind]
        if not phase_reached(cycle.phase, gate):
            raise InvalidStateError(
                f"{form.kind.value} forms cannot be submitted before {gate.value} "
                f"(cycle {cycle.id} is {cycle.phase.value})"
            )

    @staticmethod
    def _check_rating(cycle: ReviewCycle, rating: float | None) -> None:
        if rating is not None and not rating_in_bounds(cycle.rating_scale, rating):
            low, high = rating_bounds(cycle.rating_scale)
            raise InvalidStateError(
                f"overall rating {rating} is outside the {cycle.rating_scale.value} "
                f"scale ({low}-{high})"
            )
