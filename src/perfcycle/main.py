"""Main CLI entry point for Perfcycle.

This module provides the main Typer application with sub-commands for
running sweeps, starting the sweep scheduler and administering cycles.

Usage:
    perfcycle sweep phase_check
    perfcycle sweep all
    perfcycle scheduler start
    perfcycle cycle list --phase calibration
    perfcycle cycle complete-calibration <cycle-id>
    perfcycle serve --port 8000
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from pathlib import Path
from typing import Annotated, Any, Optional, TypeVar

import typer
from rich.console import Console

from perfcycle.archive.http import HttpHRArchive
from perfcycle.cli import cycle as cycle_cli
from perfcycle.cli import scheduler as scheduler_cli
from perfcycle.cli import sweep as sweep_cli
from perfcycle.config import PerfcycleConfig, load_config
from perfcycle.database.connection import get_engine, get_session_factory
from perfcycle.logging import setup_logging
from perfcycle.notifications.dispatcher import MultiChannelNotifier, build_notifier
from perfcycle.orchestrator.scheduler import ReviewScheduler
from perfcycle.orchestrator.workflow import WorkflowOrchestrator

T = TypeVar("T")

app = typer.Typer(
    name="perfcycle",
    help="Perfcycle: performance review cycle engine",
    no_args_is_help=True,
)

app.command(name="sweep", help="Run one sweep now")(sweep_cli.run_sweep)
app.add_typer(scheduler_cli.app, name="scheduler", help="Run the sweep scheduler")
app.add_typer(cycle_cli.app, name="cycle", help="Administer review cycles")

console = Console()


class AppContext:
    """Application context shared across CLI commands.

    Attributes:
        config: Loaded Perfcycle configuration
        engine: Async SQLAlchemy engine
        session_factory: Factory for creating database sessions
    """

    def __init__(self, config: PerfcycleConfig):
        self.config = config
        self.engine = get_engine(config.database)
        self.session_factory = get_session_factory(self.engine)

    def build_notifier(self) -> MultiChannelNotifier:
        return build_notifier(self.config.notifications)

    def build_scheduler(
        self,
        notifier: MultiChannelNotifier,
        archive: HttpHRArchive | None = None,
    ) -> ReviewScheduler:
        return ReviewScheduler(
            self.session_factory,
            notifier,
            archive=archive,
            config=self.config.workflow,
        )

    def build_workflow(
        self,
        notifier: MultiChannelNotifier,
        archive: HttpHRArchive,
    ) -> WorkflowOrchestrator:
        return WorkflowOrchestrator(
            self.session_factory,
            notifier,
            archive,
            config=self.config.workflow,
        )

    def build_archive(self) -> HttpHRArchive:
        return HttpHRArchive(self.session_factory, self.config.archive)

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run a command coroutine, disposing the engine on the same loop."""

        async def _run() -> T:
            try:
                return await coro
            finally:
                await self.engine.dispose()

        return asyncio.run(_run())


# Global context holder
_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: PerfcycleConfig) -> AppContext:
    """Initialize the global application context."""
    global _app_context
    _app_context = AppContext(config)
    return _app_context


@app.command()
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", "-h", help="Host to bind to (default from config)"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to bind to (default from config)"),
    ] = None,
) -> None:
    """Start the Perfcycle REST API with uvicorn."""
    import uvicorn

    from perfcycle.web.app import create_app

    ctx = get_app_context()
    bind_host = host or ctx.config.web.host
    bind_port = port or ctx.config.web.port

    console.print("[bold cyan]Starting Perfcycle API[/bold cyan]")
    console.print(f"[dim]Host:[/dim] {bind_host}")
    console.print(f"[dim]Port:[/dim] {bind_port}")
    console.print()

    uvicorn.run(
        create_app(ctx.config),
        host=bind_host,
        port=bind_port,
        log_level="info",
    )


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure global options and initialize application context."""
    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    logging_config = config.logging
    if verbose:
        logging_config = logging_config.model_copy(update={"level": "DEBUG"})
    setup_logging(logging_config)

    initialize_context(config)

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
