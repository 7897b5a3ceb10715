"""Sweep CLI command.

Runs one of the scheduled sweeps immediately, or all of them in schedule
order, and prints the sweep report.
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from perfcycle.orchestrator.scheduler import SWEEP_NAMES, SweepReport

console = Console()


def _normalize(name: str) -> str:
    return name.strip().lower().replace("-", "_")


def report_table(reports: list[SweepReport]) -> Table:
    """Render sweep reports as a Rich table."""
    table = Table(title="Sweep Results")
    table.add_column("Sweep", style="bold cyan")
    table.add_column("Processed", justify="right")
    table.add_column("Actions", justify="right")
    table.add_column("Notifications", justify="right")
    table.add_column("Failures", justify="right")

    for report in reports:
        failures = f"[red]{report.failures}[/red]" if report.failures else "0"
        table.add_row(
            report.sweep,
            str(report.processed),
            str(report.actions),
            str(report.notifications_sent),
            failures,
        )
    return table


def run_sweep(
    name: Annotated[
        str,
        typer.Argument(help=f"Sweep to run: {', '.join(SWEEP_NAMES)} or all"),
    ],
) -> None:
    """Run a sweep now."""
    from perfcycle.main import get_app_context

    ctx = get_app_context()

    sweep_name = _normalize(name)
    if sweep_name != "all" and sweep_name not in SWEEP_NAMES:
        console.print(f"[red]Unknown sweep:[/red] {name}")
        console.print(f"[dim]Choose one of: {', '.join(SWEEP_NAMES)}, all[/dim]")
        raise typer.Exit(code=1)

    names = list(SWEEP_NAMES) if sweep_name == "all" else [sweep_name]

    async def _run() -> list[SweepReport]:
        notifier = ctx.build_notifier()
        archive = ctx.build_archive()
        scheduler = ctx.build_scheduler(notifier, archive)
        try:
            return [await scheduler.run_sweep(n) for n in names]
        finally:
            await archive.close()
            await notifier.close()

    reports = ctx.run(_run())

    console.print(report_table(reports))
    for report in reports:
        for error in report.errors:
            console.print(f"[yellow]{report.sweep}:[/yellow] {error}")
