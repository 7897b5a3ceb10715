"""Review cycle CLI commands.

This module provides commands for listing cycles, showing their progress
and driving the manual phase changes.
"""

from __future__ import annotations

import json
from typing import Annotated, Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from perfcycle.database.models.cycle import CyclePhase
from perfcycle.database.queries.cycle import list_cycles
from perfcycle.errors import PerfcycleError
from perfcycle.orchestrator.workflow import CycleProgress
from perfcycle.review.phases import CycleStateMachine

app = typer.Typer(help="Review cycle commands")
console = Console()

_PHASE_COLORS = {
    "draft": "dim",
    "active": "white",
    "self_review_open": "green",
    "manager_review_open": "green",
    "peer_review_open": "green",
    "calibration": "yellow",
    "published": "blue",
    "closed": "dim",
}


def _parse_cycle_id(cycle_id: str) -> UUID:
    try:
        return UUID(cycle_id)
    except ValueError:
        console.print(f"[red]Invalid cycle UUID:[/red] {cycle_id}")
        raise typer.Exit(code=1)


def _phase_label(phase: CyclePhase) -> str:
    color = _PHASE_COLORS.get(phase.value, "white")
    return f"[{color}]{phase.value}[/{color}]"


@app.command("list")
def list_command(
    phase: Annotated[
        Optional[str],
        typer.Option("--phase", "-p", help="Filter by phase"),
    ] = None,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List review cycles, newest first."""
    from perfcycle.main import get_app_context

    ctx = get_app_context()

    phases = None
    if phase is not None:
        try:
            phases = [CyclePhase(phase)]
        except ValueError:
            valid = ", ".join(p.value for p in CyclePhase)
            console.print(f"[red]Invalid phase:[/red] {phase}. Valid values: {valid}")
            raise typer.Exit(code=1)

    async def _list_cycles():
        async with ctx.session_factory() as session:
            return await list_cycles(session, phases=phases)

    cycles = ctx.run(_list_cycles())

    if format == "json":
        output = [
            {
                "id": str(c.id),
                "name": c.name,
                "kind": c.kind.value,
                "phase": c.phase.value,
                "self_review_end": c.self_review_end.isoformat(),
                "manager_review_end": c.manager_review_end.isoformat(),
            }
            for c in cycles
        ]
        typer.echo(json.dumps(output, indent=2))
        return

    if not cycles:
        console.print("[yellow]No cycles found[/yellow]")
        return

    table = Table(title="Review Cycles")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="bold")
    table.add_column("Phase")
    table.add_column("Self Due", style="dim")
    table.add_column("Manager Due", style="dim")

    for c in cycles:
        table.add_row(
            str(c.id),
            c.name,
            _phase_label(c.phase),
            c.self_review_end.isoformat(),
            c.manager_review_end.isoformat(),
        )

    console.print(table)


@app.command()
def activate(
    cycle_id: Annotated[str, typer.Argument(help="Cycle UUID")],
) -> None:
    """Launch a DRAFT cycle."""
    from perfcycle.main import get_app_context

    ctx = get_app_context()
    cycle_uuid = _parse_cycle_id(cycle_id)

    async def _activate():
        async with ctx.session_factory() as session:
            return await CycleStateMachine().activate(session, cycle_uuid)

    try:
        cycle = ctx.run(_activate())
    except PerfcycleError as e:
        console.print(f"[red]Cannot activate cycle:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[green]Cycle activated:[/green] {cycle.name} ({_phase_label(cycle.phase)})")


@app.command()
def close(
    cycle_id: Annotated[str, typer.Argument(help="Cycle UUID")],
) -> None:
    """Retire a PUBLISHED cycle."""
    from perfcycle.main import get_app_context

    ctx = get_app_context()
    cycle_uuid = _parse_cycle_id(cycle_id)

    async def _close():
        async with ctx.session_factory() as session:
            return await CycleStateMachine().close(session, cycle_uuid)

    try:
        cycle = ctx.run(_close())
    except PerfcycleError as e:
        console.print(f"[red]Cannot close cycle:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[green]Cycle closed:[/green] {cycle.name}")


@app.command("complete-calibration")
def complete_calibration(
    cycle_id: Annotated[str, typer.Argument(help="Cycle UUID")],
) -> None:
    """Publish a cycle whose calibration is finished."""
    from perfcycle.main import get_app_context

    ctx = get_app_context()
    cycle_uuid = _parse_cycle_id(cycle_id)

    async def _complete():
        notifier = ctx.build_notifier()
        archive = ctx.build_archive()
        try:
            workflow = ctx.build_workflow(notifier, archive)
            return await workflow.handle_calibration_complete(cycle_uuid)
        finally:
            await notifier.close()
            await archive.close()

    try:
        result = ctx.run(_complete())
    except PerfcycleError as e:
        console.print(f"[red]Cannot complete calibration:[/red] {e}")
        raise typer.Exit(code=1)

    border = "yellow" if result.archive_failures or result.notification_failures else "green"
    console.print(
        Panel(
            f"[bold]Published forms:[/bold] {result.published_forms}\n"
            f"[bold]Archived subjects:[/bold] {len(result.archived_subjects)}\n"
            f"[bold]Archive failures:[/bold] {len(result.archive_failures)}\n"
            f"[bold]Subjects notified:[/bold] {len(result.notified_subjects)}\n"
            f"[bold]Notification failures:[/bold] {len(result.notification_failures)}",
            title="Cycle Published",
            border_style=border,
        )
    )


def progress_table(progress: CycleProgress) -> Table:
    """Render cycle progress by form kind as a Rich table."""
    table = Table(title=f"{progress.name} ({progress.phase.value})")
    table.add_column("Form Kind", style="bold cyan")
    table.add_column("Completed", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Progress", justify="right")

    for kind, counts in progress.forms.items():
        table.add_row(kind.value, str(counts.completed), str(counts.total), f"{counts.percentage}%")
    table.add_row("[bold]overall[/bold]", "", "", f"[bold]{progress.overall_percentage}%[/bold]")
    return table


@app.command()
def progress(
    cycle_id: Annotated[str, typer.Argument(help="Cycle UUID")],
) -> None:
    """Show completion of a cycle by form kind."""
    from perfcycle.main import get_app_context

    ctx = get_app_context()
    cycle_uuid = _parse_cycle_id(cycle_id)

    async def _progress():
        notifier = ctx.build_notifier()
        try:
            workflow = ctx.build_workflow(notifier, ctx.build_archive())
            return await workflow.cycle_progress(cycle_uuid)
        finally:
            await notifier.close()

    try:
        result = ctx.run(_progress())
    except PerfcycleError as e:
        console.print(f"[red]Cannot read cycle:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(progress_table(result))
    if result.calibration_records:
        console.print(
            f"[dim]Calibration:[/dim] {result.calibration_finalized}"
            f"/{result.calibration_records} finalized"
        )
