"""Shared pytest fixtures for Perfcycle tests.

Provides an in-memory SQLite database, recording fakes for the notifier
and the HR archive, and factories that build a small organisation and
review cycles in a chosen phase.
"""

from __future__ import annotations

from typing import Any, AsyncGenerator
from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from perfcycle.database.models.base import Base
from perfcycle.database.models.cycle import CyclePhase
from perfcycle.database.models.employee import EmployeeRole
from perfcycle.database.queries.cycle import create_cycle
from perfcycle.database.queries.employee import create_employee
from perfcycle.orchestrator.scheduler import ReviewScheduler
from perfcycle.review.phases import CycleStateMachine, phase_reached
from support import FakeArchive, Org, RecordingNotifier, cycle_kwargs


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio as the async backend for pytest-asyncio.

    Returns:
        The name of the async backend to use.
    """
    return "asyncio"


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory SQLite async engine for testing.

    Yields:
        Configured AsyncEngine instance using in-memory SQLite.
    """
    test_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(
    engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the test engine.

    Args:
        engine: The test database engine.

    Returns:
        Configured async_sessionmaker for creating test sessions.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a new async database session for each test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def archive() -> FakeArchive:
    return FakeArchive()


@pytest.fixture
def make_org(session_factory: async_sessionmaker[AsyncSession]):
    """Factory building an organisation with ``report_count`` direct reports."""

    async def _make_org(report_count: int = 5) -> Org:
        async with session_factory() as session:
            hr = await create_employee(
                session, "Harriet Ross", email="hr@example.com", role=EmployeeRole.hr
            )
            leader = await create_employee(
                session, "Lee Adams", email="lee@example.com", role=EmployeeRole.senior_leader
            )
            manager = await create_employee(
                session, "Morgan Price", email="morgan@example.com", department="Engineering"
            )
            reports = [
                await create_employee(
                    session,
                    f"Report {i}",
                    email=f"report{i}@example.com",
                    department="Engineering",
                    manager_id=manager.id,
                )
                for i in range(1, report_count + 1)
            ]
        return Org(hr=hr, leader=leader, manager=manager, reports=reports)

    return _make_org


@pytest_asyncio.fixture
async def org(make_org) -> Org:
    """HR, a senior leader, a manager without a manager, and five reports."""
    return await make_org()


@pytest.fixture
def make_cycle(session_factory: async_sessionmaker[AsyncSession]):
    """Factory creating a cycle and driving it to ``phase`` through the phase sweep.

    Phases up to PEER_REVIEW_OPEN are reachable this way. The sweep runs
    with its own recording notifier so tests only see the notifications
    they trigger themselves.
    """

    async def _make_cycle(phase: CyclePhase = CyclePhase.draft, **overrides: Any) -> UUID:
        async with session_factory() as session:
            cycle = await create_cycle(session, **cycle_kwargs(**overrides))
            if phase_reached(phase, CyclePhase.active):
                await CycleStateMachine().activate(session, cycle.id)

        scheduler = ReviewScheduler(session_factory, RecordingNotifier())
        if phase_reached(phase, CyclePhase.self_review_open):
            await scheduler.run_phase_check(cycle.self_review_start)
        if phase_reached(phase, CyclePhase.manager_review_open):
            await scheduler.run_phase_check(cycle.manager_review_start)
        if phase_reached(phase, CyclePhase.peer_review_open) and cycle.peer_reviews_enabled:
            await scheduler.run_phase_check(cycle.peer_review_start)
        return cycle.id

    return _make_cycle
