"""Engine and session setup for the review database.

Every part of Perfcycle (API handlers, sweeps, the HR archive and the CLI)
talks to the database through the one session factory built here. Sessions
are short-lived: a workflow step opens one, reads or writes, and closes it
before any notifier or archive call, so a slow external service never holds
a connection or a transaction open.

Production runs on PostgreSQL through asyncpg; local runs and the test
suite use SQLite through aiosqlite.

Example:
    >>> engine = get_engine(DatabaseConfig(url="sqlite+aiosqlite:///perfcycle.db"))
    >>> sessions = get_session_factory(engine)
    >>> async with sessions() as session:
    ...     cycles = await list_cycles(session, phases=[CyclePhase.calibration])
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from perfcycle.config import DatabaseConfig


def get_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create the engine for the review database.

    Pool sizing applies to server databases only; SQLite engines get the
    driver's default pool.

    Args:
        config: Database URL, pool sizing and SQL echo setting.

    Returns:
        AsyncEngine for the configured database.
    """
    if config.url.startswith("sqlite"):
        return create_async_engine(config.url, echo=config.echo)
    return create_async_engine(
        config.url,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        echo=config.echo,
    )


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory every component shares.

    Objects stay readable after commit (``expire_on_commit=False``): the
    workflow hands cycles and forms read in a closed session to message
    builders.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
