"""phasegate retry and abandon commands."""

from typing import Optional

import click

from ..context import build_services, console, get_config, handle_errors


@click.command()
@click.argument("plan_ref")
@click.option("--phase", "phase_id", help="Escalated or failed phase to send back to pending")
@click.option("--checks", is_flag=True, help="Clear escalated whole-plan checks")
@click.option("--note", help="Note recorded in the execution log")
@click.pass_context
@handle_errors
def retry_command(
    ctx: click.Context,
    plan_ref: str,
    phase_id: Optional[str],
    checks: bool,
    note: Optional[str],
) -> None:
    """Make a stuck phase or check runnable again.

    Fix the cause first (raise the budget, edit the plan, or fix files by
    hand), then retry and resume.

    Examples:
        phasegate retry 3 --phase 2
        phasegate retry 3 --checks
    """
    if bool(phase_id) == checks:
        raise click.UsageError("Specify exactly one of --phase or --checks")

    services = build_services(get_config(ctx))
    engine = services.engine()
    plan = engine.load(plan_ref)

    with services.store.lock(plan.id):
        if phase_id:
            engine.retry_phase(plan, phase_id, note=note)
            console.print(f"[green]✓[/green] Phase {phase_id} of plan {plan.id} is pending again")
        else:
            cleared = engine.retry_checks(plan, note=note)
            console.print(f"[green]✓[/green] Cleared escalated checks: {', '.join(cleared)}")

    console.print(f"Continue with: [bold]phasegate resume {plan.id}[/bold]")


@click.command()
@click.argument("plan_ref")
@click.option("--reason", default="Abandoned by operator", help="Why the plan is abandoned")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
@handle_errors
def abandon_command(ctx: click.Context, plan_ref: str, reason: str, yes: bool) -> None:
    """Mark a plan as failed. It cannot be run again.

    Examples:
        phasegate abandon 3 --reason "Superseded by plan 4"
    """
    services = build_services(get_config(ctx))
    engine = services.engine()
    plan = engine.load(plan_ref)

    if not yes and not click.confirm(f"Abandon plan {plan.id}?"):
        console.print("[yellow]Cancelled[/yellow]")
        return

    with services.store.lock(plan.id):
        engine.abandon(plan, reason=reason)
    console.print(f"[red]Plan {plan.id} abandoned[/red]")
