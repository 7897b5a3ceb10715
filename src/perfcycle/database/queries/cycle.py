"""Review cycle query functions for Perfcycle.

Provides async functions for creating, reading and updating ReviewCycle
records. Phase changes go through ``compare_and_set_phase`` so that two
concurrent attempts at the same transition cannot both apply it.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from perfcycle.database.models.cycle import CycleKind, CyclePhase, RatingScale, ReviewCycle
from perfcycle.errors import EntityNotFoundError

logger = structlog.get_logger(__name__)


async def create_cycle(
    session: AsyncSession,
    name: str,
    period_start: date,
    period_end: date,
    self_review_start: date,
    self_review_end: date,
    manager_review_start: date,
    manager_review_end: date,
    kind: CycleKind = CycleKind.annual,
    peer_review_start: date | None = None,
    peer_review_end: date | None = None,
    calibration_date: date | None = None,
    publish_date: date | None = None,
    rating_scale: RatingScale = RatingScale.five_point,
    peer_reviews_enabled: bool = False,
    upward_reviews_enabled: bool = False,
    anonymous_peer_reviews: bool = False,
    calibration_required: bool = True,
    linked_to_compensation: bool = False,
    config: dict[str, Any] | None = None,
    excluded_departments: list[str] | None = None,
    excluded_employee_ids: list[str] | None = None,
) -> ReviewCycle:
    """Create a new review cycle in the DRAFT phase.

    Args:
        session: Active async database session.
        name: Human-readable cycle name.
        period_start: First day of the period under review.
        period_end: Last day of the period under review.
        self_review_start: Self-review window opening date.
        self_review_end: Self-review deadline.
        manager_review_start: Manager-review window opening date.
        manager_review_end: Manager-review deadline.
        kind: Cycle cadence.
        peer_review_start: Peer-review window opening date.
        peer_review_end: Peer-review deadline.
        calibration_date: Planned calibration date.
        publish_date: Planned publication date.
        rating_scale: Scale for ratings.
        peer_reviews_enabled: Whether peer reviews run in this cycle.
        upward_reviews_enabled: Whether upward reviews run in this cycle.
        anonymous_peer_reviews: Whether peer authors are hidden.
        calibration_required: Whether ratings pass through calibration.
        linked_to_compensation: Whether final ratings feed compensation.
        config: Weighted section/question configuration.
        excluded_departments: Departments outside the cycle.
        excluded_employee_ids: Employees outside the cycle.

    Returns:
        The newly created ReviewCycle instance.

    Raises:
        ValueError: If the phase windows are out of order.
    """
    if period_end < period_start:
        raise ValueError("period_end must not be before period_start")
    if self_review_end < self_review_start:
        raise ValueError("self_review_end must not be before self_review_start")
    if manager_review_end < manager_review_start:
        raise ValueError("manager_review_end must not be before manager_review_start")
    if manager_review_start < self_review_start:
        raise ValueError("manager_review_start must not be before self_review_start")
    if peer_reviews_enabled and (peer_review_start is None or peer_review_end is None):
        raise ValueError("peer reviews require peer_review_start and peer_review_end")

    cycle = ReviewCycle(
        name=name,
        kind=kind,
        period_start=period_start,
        period_end=period_end,
        self_review_start=self_review_start,
        self_review_end=self_review_end,
        manager_review_start=manager_review_start,
        manager_review_end=manager_review_end,
        peer_review_start=peer_review_start,
        peer_review_end=peer_review_end,
        calibration_date=calibration_date,
        publish_date=publish_date,
        phase=CyclePhase.draft,
        rating_scale=rating_scale,
        peer_reviews_enabled=peer_reviews_enabled,
        upward_reviews_enabled=upward_reviews_enabled,
        anonymous_peer_reviews=anonymous_peer_reviews,
        calibration_required=calibration_required,
        linked_to_compensation=linked_to_compensation,
        config=config or {},
        excluded_departments=excluded_departments or [],
        excluded_employee_ids=excluded_employee_ids or [],
        team_ready_notified=[],
    )

    session.add(cycle)
    await session.commit()
    await session.refresh(cycle)

    logger.info(
        "cycle_created",
        cycle_id=str(cycle.id),
        name=name,
        kind=kind.value,
        phase=cycle.phase.value,
    )

    return cycle


async def get_cycle(
    session: AsyncSession,
    cycle_id: UUID,
) -> ReviewCycle | None:
    """Retrieve a review cycle by ID, refreshed from the database.

    Args:
        session: Active async database session.
        cycle_id: UUID of the cycle to retrieve.

    Returns:
        The ReviewCycle instance if found, None otherwise.
    """
    stmt = (
        select(ReviewCycle)
        .where(ReviewCycle.id == cycle_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_cycle(
    session: AsyncSession,
    cycle_id: UUID,
) -> ReviewCycle:
    """Retrieve a review cycle by ID or raise.

    Raises:
        EntityNotFoundError: If the cycle does not exist.
    """
    cycle = await get_cycle(session, cycle_id)
    if cycle is None:
        raise EntityNotFoundError("review_cycle", cycle_id)
    return cycle


async def list_cycles(
    session: AsyncSession,
    phases: Iterable[CyclePhase] | None = None,
) -> list[ReviewCycle]:
    """List review cycles, newest first.

    Args:
        session: Active async database session.
        phases: Optional phases to filter by.

    Returns:
        List of matching ReviewCycle instances.
    """
    stmt = select(ReviewCycle).execution_options(populate_existing=True)

    if phases is not None:
        stmt = stmt.where(ReviewCycle.phase.in_(list(phases)))

    stmt = stmt.order_by(ReviewCycle.created_at.desc())

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def compare_and_set_phase(
    session: AsyncSession,
    cycle_id: UUID,
    expected: CyclePhase,
    target: CyclePhase,
    **values: Any,
) -> bool:
    """Move a cycle from ``expected`` to ``target`` in one atomic row update.

    The update only matches while the stored phase still equals ``expected``,
    so a concurrent duplicate transition updates nothing.

    Args:
        session: Active async database session.
        cycle_id: UUID of the cycle.
        expected: Phase the cycle must currently be in.
        target: Phase to move to.
        **values: Extra columns to set in the same update (timestamps).

    Returns:
        True if this call performed the transition.
    """
    stmt = (
        update(ReviewCycle)
        .where(ReviewCycle.id == cycle_id, ReviewCycle.phase == expected)
        .values(phase=target, **values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()

    applied = result.rowcount == 1
    logger.debug(
        "cycle_phase_cas",
        cycle_id=str(cycle_id),
        expected=expected.value,
        target=target.value,
        applied=applied,
    )
    return applied


async def set_cycle_flags(
    session: AsyncSession,
    cycle_id: UUID,
    **flags: bool,
) -> None:
    """Set notification flags on a cycle.

    Args:
        session: Active async database session.
        cycle_id: UUID of the cycle.
        **flags: Boolean flag columns to set.
    """
    stmt = (
        update(ReviewCycle)
        .where(ReviewCycle.id == cycle_id)
        .values(**flags)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)
    await session.commit()

    logger.debug("cycle_flags_set", cycle_id=str(cycle_id), **flags)


async def add_team_ready_manager(
    session: AsyncSession,
    cycle_id: UUID,
    manager_id: UUID,
) -> bool:
    """Record that a manager received the team-ready notice for a cycle.

    Args:
        session: Active async database session.
        cycle_id: UUID of the cycle.
        manager_id: UUID of the manager.

    Returns:
        False if the manager was already recorded.

    Raises:
        EntityNotFoundError: If the cycle does not exist.
    """
    cycle = await require_cycle(session, cycle_id)
    notified = list(cycle.team_ready_notified or [])
    if str(manager_id) in notified:
        return False

    cycle.team_ready_notified = [*notified, str(manager_id)]
    await session.commit()
    return True
