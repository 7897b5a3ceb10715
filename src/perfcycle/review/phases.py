"""Review cycle phase state machine for Perfcycle.

This module implements the cycle lifecycle: the ordered phase table, the
date predicates that drive the scheduler, and the CycleStateMachine that
applies transitions to the database.

Phases only ever move forward. A transition request for a phase the cycle
has already reached (or passed) is a no-op, so every transition can be
retried safely by the sweeps and by concurrent event handlers.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from perfcycle.database.models.cycle import CyclePhase, ReviewCycle
from perfcycle.database.queries.cycle import compare_and_set_phase, require_cycle
from perfcycle.errors import InvalidPhaseTransitionError, InvalidStateError
from perfcycle.timeutil import utcnow

logger = structlog.get_logger(__name__)

PHASE_ORDER: tuple[CyclePhase, ...] = tuple(CyclePhase)

# Authoritative phase transition table
VALID_PHASE_TRANSITIONS: dict[CyclePhase, set[CyclePhase]] = {
    CyclePhase.draft: {CyclePhase.active},
    CyclePhase.active: {CyclePhase.self_review_open},
    CyclePhase.self_review_open: {CyclePhase.manager_review_open},
    CyclePhase.manager_review_open: {CyclePhase.peer_review_open, CyclePhase.calibration},
    CyclePhase.peer_review_open: {CyclePhase.calibration},
    CyclePhase.calibration: {CyclePhase.published},
    CyclePhase.published: {CyclePhase.closed},
    CyclePhase.closed: set(),  # Terminal
}

# Phases the phase-check sweep evaluates against dates
DATE_DRIVEN_PHASES = (
    CyclePhase.active,
    CyclePhase.self_review_open,
    CyclePhase.manager_review_open,
)

# Timestamp column stamped on entry to a phase
_ENTRY_TIMESTAMPS = {
    CyclePhase.active: "activated_at",
    CyclePhase.published: "published_at",
    CyclePhase.closed: "closed_at",
}


def phase_index(phase: CyclePhase) -> int:
    """Return the position of ``phase`` in the phase order."""
    return PHASE_ORDER.index(phase)


def phase_reached(current: CyclePhase, required: CyclePhase) -> bool:
    """Return True if ``current`` is ``required`` or a later phase."""
    return phase_index(current) >= phase_index(required)


def validate_phase_transition(current: CyclePhase, target: CyclePhase) -> bool:
    """Validate if a phase transition is allowed.

    Args:
        current: Current cycle phase.
        target: Target cycle phase.

    Returns:
        True if the transition is valid according to VALID_PHASE_TRANSITIONS.
    """
    return target in VALID_PHASE_TRANSITIONS.get(current, set())


def next_date_driven_phase(cycle: ReviewCycle, today: date) -> CyclePhase | None:
    """Return the single phase the cycle's dates allow it to enter today.

    Only one step is ever returned, even if several boundary dates have
    passed; the next evaluation moves the cycle on from there.

    Args:
        cycle: Cycle to evaluate.
        today: Current calendar date.

    Returns:
        The next phase, or None when no date gate is satisfied.
    """
    if cycle.phase == CyclePhase.active:
        if today >= cycle.self_review_start:
            return CyclePhase.self_review_open
    elif cycle.phase == CyclePhase.self_review_open:
        if today >= cycle.manager_review_start:
            return CyclePhase.manager_review_open
    elif cycle.phase == CyclePhase.manager_review_open:
        if (
            cycle.peer_reviews_enabled
            and cycle.peer_review_start is not None
            and today >= cycle.peer_review_start
        ):
            return CyclePhase.peer_review_open
    return None


class CycleStateMachine:
    """Applies validated, monotonic phase transitions to review cycles.

    This class handles:
    - Validation of phase transitions against VALID_PHASE_TRANSITIONS
    - Compare-and-set phase updates so duplicate attempts are no-ops
    - Entry timestamps (activated_at, published_at, closed_at)
    - Logging all transitions
    """

    def __init__(self) -> None:
        self.logger = logger.bind(component="CycleStateMachine")

    async def transition(
        self,
        session: AsyncSession,
        cycle_id: UUID,
        target: CyclePhase,
        now: datetime | None = None,
    ) -> bool:
        """Move a cycle to ``target``.

        Args:
            session: Database session.
            cycle_id: UUID of the cycle.
            target: Phase to enter.
            now: Transition time (defaults to the current UTC time).

        Returns:
            True if this call moved the cycle, False if the cycle was already
            at or past ``target`` (or another caller moved it first).

        Raises:
            EntityNotFoundError: If the cycle does not exist.
            InvalidPhaseTransitionError: If ``target`` skips a required phase.
        """
        cycle = await require_cycle(session, cycle_id)
        current = cycle.phase

        if phase_reached(current, target):
            self.logger.debug(
                "cycle_transition_noop",
                cycle_id=str(cycle_id),
                phase=current.value,
                target=target.value,
            )
            return False

        if not validate_phase_transition(current, target):
            raise InvalidPhaseTransitionError(current, target, str(cycle_id))

        values: dict[str, Any] = {}
        column = _ENTRY_TIMESTAMPS.get(target)
        if column is not None:
            values[column] = now or utcnow()

        applied = await compare_and_set_phase(session, cycle_id, current, target, **values)
        if applied:
            self.logger.info(
                "cycle_phase_transition",
                cycle_id=str(cycle_id),
                from_phase=current.value,
                to_phase=target.value,
            )
        else:
            self.logger.info(
                "cycle_phase_transition_lost_race",
                cycle_id=str(cycle_id),
                from_phase=current.value,
                to_phase=target.value,
            )
        return applied

    async def activate(
        self,
        session: AsyncSession,
        cycle_id: UUID,
        now: datetime | None = None,
    ) -> ReviewCycle:
        """Launch a DRAFT cycle.

        Raises:
            EntityNotFoundError: If the cycle does not exist.
            InvalidStateError: If the cycle is not in DRAFT.
        """
        cycle = await require_cycle(session, cycle_id)
        if cycle.phase != CyclePhase.draft:
            raise InvalidStateError(
                f"cycle {cycle_id} cannot be activated from phase {cycle.phase.value}"
            )

        if not await self.transition(session, cycle_id, CyclePhase.active, now=now):
            raise InvalidStateError(f"cycle {cycle_id} was activated concurrently")
        return await require_cycle(session, cycle_id)

    async def close(
        self,
        session: AsyncSession,
        cycle_id: UUID,
        now: datetime | None = None,
    ) -> ReviewCycle:
        """Retire a PUBLISHED cycle.

        Raises:
            EntityNotFoundError: If the cycle does not exist.
            InvalidStateError: If the cycle has not been published.
        """
        cycle = await require_cycle(session, cycle_id)
        if cycle.phase == CyclePhase.closed:
            raise InvalidStateError(f"cycle {cycle_id} is already closed")
        if cycle.phase != CyclePhase.published:
            raise InvalidStateError(
                f"cycle {cycle_id} cannot be closed before publication "
                f"(phase {cycle.phase.value})"
            )

        if not await self.transition(session, cycle_id, CyclePhase.closed, now=now):
            raise InvalidStateError(f"cycle {cycle_id} was closed concurrently")
        return await require_cycle(session, cycle_id)
