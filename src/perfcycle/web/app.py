"""FastAPI application factory for Perfcycle.

This module provides the application factory that creates and configures
the review API with:
- CORS middleware for the HR frontend
- Request logging middleware with correlation IDs
- Database, notifier and HR archive lifecycle management
- Mapping of domain errors onto HTTP status codes

Example usage:
    >>> from perfcycle.config import PerfcycleConfig
    >>> from perfcycle.web.app import create_app
    >>>
    >>> app = create_app(PerfcycleConfig())
    >>>
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=8000)

Tests pass a ready ``session_factory`` (and usually fakes for the notifier
and archive). Injected services are wired immediately, because transports
such as ``httpx.ASGITransport`` do not run the lifespan.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from perfcycle import __version__
from perfcycle.archive.http import HttpHRArchive
from perfcycle.config import PerfcycleConfig
from perfcycle.database.connection import get_engine, get_session_factory
from perfcycle.errors import (
    EntityNotFoundError,
    ExternalDependencyError,
    InvalidStateError,
)
from perfcycle.logging import get_logger
from perfcycle.notifications.dispatcher import build_notifier
from perfcycle.orchestrator.workflow import WorkflowOrchestrator
from perfcycle.web.middleware import RequestLoggingMiddleware
from perfcycle.web.routes.calibration import create_calibration_router
from perfcycle.web.routes.cycles import create_cycles_router
from perfcycle.web.routes.forms import create_forms_router
from perfcycle.web.routes.health import create_health_router
from perfcycle.web.routes.people import create_people_router
from perfcycle.web.routes.reports import create_reports_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from perfcycle.archive.base import HRArchive
    from perfcycle.notifications.base import Notifier

logger = get_logger(__name__)


def _wire_services(
    app: FastAPI,
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier,
    archive: HRArchive,
) -> None:
    config: PerfcycleConfig = app.state.config
    app.state.session_factory = session_factory
    app.state.notifier = notifier
    app.state.archive = archive
    app.state.workflow = WorkflowOrchestrator(
        session_factory,
        notifier,
        archive,
        config=config.workflow,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create whatever the factory was not given, and dispose it on shutdown.

    Args:
        app: FastAPI application instance

    Yields:
        None after startup, cleans up on context exit
    """
    config: PerfcycleConfig = app.state.config
    logger.info("app_startup_begin", host=config.web.host, port=config.web.port)

    if app.state.workflow is not None:
        yield
        return

    engine = get_engine(config.database)
    session_factory = get_session_factory(engine)
    notifier = build_notifier(config.notifications)
    archive = HttpHRArchive(session_factory, config.archive)
    app.state.engine = engine
    _wire_services(app, session_factory, notifier, archive)

    logger.info(
        "database_pool_initialized",
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )

    try:
        yield
    finally:
        logger.info("app_shutdown_begin")
        await notifier.close()
        await archive.close()
        await engine.dispose()
        logger.info("database_pool_disposed")


async def _not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("entity_not_found", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _invalid_state_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("invalid_state", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=409, content={"detail": str(exc)})


async def _invalid_value_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("invalid_value", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=422, content={"detail": str(exc)})


async def _dependency_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("external_dependency_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=502, content={"detail": str(exc)})


def create_app(
    config: PerfcycleConfig | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    notifier: Notifier | None = None,
    archive: HRArchive | None = None,
) -> FastAPI:
    """Create and configure the Perfcycle API.

    Args:
        config: Optional PerfcycleConfig. If None, creates default config.
        session_factory: Ready session factory; when given, the lifespan
            leaves the database alone.
        notifier: Notifier to use with ``session_factory``. Defaults to the
            webhook notifier built from config.
        archive: HR archive to use with ``session_factory``. Defaults to the
            HTTP archive built from config.

    Returns:
        Configured FastAPI application instance.
    """
    if config is None:
        config = PerfcycleConfig()

    app = FastAPI(
        title="Perfcycle",
        version=__version__,
        description="Performance review cycle engine",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.workflow = None
    if session_factory is not None:
        _wire_services(
            app,
            session_factory,
            notifier or build_notifier(config.notifications),
            archive or HttpHRArchive(session_factory, config.archive),
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.web.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(EntityNotFoundError, _not_found_handler)
    app.add_exception_handler(InvalidStateError, _invalid_state_handler)
    app.add_exception_handler(ValueError, _invalid_value_handler)
    app.add_exception_handler(ExternalDependencyError, _dependency_handler)

    app.include_router(create_health_router())
    app.include_router(create_cycles_router())
    app.include_router(create_forms_router())
    app.include_router(create_calibration_router())
    app.include_router(create_reports_router())
    app.include_router(create_people_router())

    logger.info("app_created", cors_origins=config.web.cors_origins, version=__version__)

    return app
