"""phasegate history command."""

from typing import Optional

import click
from rich.markup import escape
from rich.table import Table

from ...core.phase_state import PlanStatus
from ..context import console, get_config, get_store, handle_errors
from ..display import colored_status


@click.command()
@click.option(
    "--status",
    "status_filter",
    type=click.Choice([s.value for s in PlanStatus]),
    help="Only show plans with this status",
)
@click.pass_context
@handle_errors
def history_command(ctx: click.Context, status_filter: Optional[str]) -> None:
    """List all plans, oldest first.

    Examples:
        phasegate history
        phasegate history --status in_progress
    """
    store = get_store(get_config(ctx))
    plans = store.list_plans()
    if status_filter:
        plans = [p for p in plans if p.status.value == status_filter]

    if not plans:
        console.print("[yellow]No plans found[/yellow]")
        return

    current = store.current_plan_id()

    table = Table(title="Plan History", show_header=True, header_style="bold")
    table.add_column("Plan", style="cyan")
    table.add_column("Phases", justify="center")
    table.add_column("Status")
    table.add_column("Created")
    table.add_column("Request")

    for plan in plans:
        request = plan.feature_request.strip().splitlines()[0] if plan.feature_request.strip() else ""
        marker = " [dim]*[/dim]" if plan.id == current else ""
        table.add_row(
            plan.id + marker,
            f"{plan.completed_phase_count()}/{len(plan.phases)}",
            colored_status(plan.status.value),
            plan.created_at.strftime("%Y-%m-%d %H:%M"),
            escape(request[:60]),
        )

    console.print(table)
    console.print("[dim]* current plan[/dim]")
