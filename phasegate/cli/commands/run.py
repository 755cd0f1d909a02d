"""phasegate run and resume commands."""

from typing import Optional

import click

from ..context import build_services, console, get_config, handle_errors, outcome_exit_code
from ..display import render_outcome


@click.command()
@click.argument("plan_ref")
@click.pass_context
@handle_errors
def run_command(ctx: click.Context, plan_ref: str) -> None:
    """Execute a reviewed plan from its first phase.

    PLAN_REF is a plan number (3 or 003), a plan id, or a plan file path.

    Examples:
        phasegate run 3
        phasegate run 003-add-dark-mode-toggle
    """
    services = build_services(get_config(ctx))
    engine = services.engine()
    plan = engine.load(plan_ref)

    with services.store.lock(plan.id):
        outcome = engine.run(plan, resuming=False)

    render_outcome(outcome, console)
    ctx.exit(outcome_exit_code(outcome))


@click.command()
@click.argument("plan_ref", required=False)
@click.pass_context
@handle_errors
def resume_command(ctx: click.Context, plan_ref: Optional[str]) -> None:
    """Resume an interrupted or remediated plan.

    Completed phases are skipped; an interrupted phase restarts from
    implement. Defaults to the current plan.

    Examples:
        phasegate resume
        phasegate resume 3
    """
    services = build_services(get_config(ctx))
    engine = services.engine()
    plan = engine.load(plan_ref)

    with services.store.lock(plan.id):
        outcome = engine.run(plan, resuming=True)

    render_outcome(outcome, console)
    ctx.exit(outcome_exit_code(outcome))
