"""phasegate status command."""

from typing import Optional

import click

from ...core.phase_state import PlanStatus, needs_operator
from ..context import console, get_config, get_store, handle_errors
from ..display import render_phase_notes, render_plan


@click.command()
@click.argument("plan_ref", required=False)
@click.option("--phase", "phase_id", help="Show the execution notes of one phase")
@click.pass_context
@handle_errors
def status_command(ctx: click.Context, plan_ref: Optional[str], phase_id: Optional[str]) -> None:
    """Show per-phase status of a plan (the current plan by default).

    Examples:
        phasegate status
        phasegate status 3 --phase 2
    """
    store = get_store(get_config(ctx))
    plan = store.load(plan_ref) if plan_ref else store.load_current()

    render_plan(plan, console)

    if phase_id:
        try:
            render_phase_notes(plan, phase_id, console)
        except KeyError:
            raise click.BadParameter(f"Plan {plan.id} has no phase {phase_id}", param_hint="--phase")

    stuck = [p for p in plan.phases if needs_operator(p.status)]
    if stuck:
        console.print(
            f"\n[yellow]Waiting on operator:[/yellow] phase {stuck[0].id} is {stuck[0].status.value}. "
            f"See `phasegate retry --help` and `phasegate abandon --help`."
        )
    elif plan.status == PlanStatus.IN_PROGRESS and not store.is_locked(plan.id):
        console.print(f"\n[magenta]Run appears interrupted.[/magenta] Continue with `phasegate resume {plan.id}`.")
    elif plan.status == PlanStatus.PAUSED:
        console.print(f"\nContinue with `phasegate resume {plan.id}`.")
