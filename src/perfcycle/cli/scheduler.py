"""Sweep scheduler CLI commands.

``perfcycle scheduler start`` runs every sweep on its wall-clock schedule
until interrupted; ``perfcycle scheduler show`` prints when each sweep
runs next.
"""

from __future__ import annotations

import asyncio
import signal
from datetime import datetime

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from perfcycle.orchestrator.scheduler import (
    SweepRunner,
    SweepSchedule,
    default_schedules,
    next_run_after,
)

app = typer.Typer(help="Sweep scheduler commands")
console = Console()

_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def schedule_table(schedules: list[SweepSchedule], now: datetime) -> Table:
    """Render sweep schedules and their next runs as a Rich table."""
    table = Table(title="Sweep Schedule")
    table.add_column("Sweep", style="bold cyan")
    table.add_column("Runs")
    table.add_column("Next Run")

    for schedule in schedules:
        if schedule.weekday is None:
            runs = f"daily {schedule.time_of_day}"
        else:
            runs = f"{_WEEKDAYS[schedule.weekday]} {schedule.time_of_day}"
        table.add_row(
            schedule.sweep,
            runs,
            next_run_after(schedule, now).strftime("%Y-%m-%d %H:%M"),
        )
    return table


@app.command()
def show() -> None:
    """Show the sweep schedule and the next run of each sweep."""
    from perfcycle.main import get_app_context

    ctx = get_app_context()
    console.print(schedule_table(default_schedules(ctx.config.scheduler), datetime.now()))


@app.command()
def start() -> None:
    """Run all sweeps on their schedules until Ctrl+C."""
    from perfcycle.main import get_app_context

    ctx = get_app_context()

    if not ctx.config.scheduler.enabled:
        console.print("[yellow]Scheduler is disabled in configuration[/yellow]")
        raise typer.Exit(code=1)

    schedules = default_schedules(ctx.config.scheduler)

    console.print()
    console.print(
        Panel(
            "[bold cyan]Perfcycle Scheduler[/bold cyan]\n\n"
            f"[bold]Sweeps:[/bold] {len(schedules)}\n"
            f"[bold]Notifications:[/bold] "
            f"{'enabled' if ctx.config.notifications.enabled else 'disabled'}",
            title="Starting Scheduler",
            border_style="cyan",
        )
    )
    console.print(schedule_table(schedules, datetime.now()))

    shutdown_event = asyncio.Event()

    def signal_handler(sig, frame):
        console.print()
        console.print("[yellow]Shutdown signal received. Stopping scheduler...[/yellow]")
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    async def run_scheduler() -> None:
        notifier = ctx.build_notifier()
        archive = ctx.build_archive()
        runner = SweepRunner(ctx.build_scheduler(notifier, archive), schedules)
        try:
            await runner.start()
            console.print("[bold green]Scheduler running[/bold green]")
            console.print("[dim]Press Ctrl+C to stop[/dim]")
            while not shutdown_event.is_set():
                await asyncio.sleep(0.5)
        finally:
            await runner.stop()
            await archive.close()
            await notifier.close()
            console.print("[green]Scheduler stopped[/green]")

    try:
        ctx.run(run_scheduler())
    except Exception as e:
        console.print(f"[red]Fatal error:[/red] {e}")
        raise typer.Exit(code=1)
