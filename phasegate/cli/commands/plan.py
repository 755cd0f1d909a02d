"""phasegate plan command."""

from pathlib import Path
from typing import Optional

import click

from ..context import build_services, console, get_config, handle_errors, outcome_exit_code
from ..display import render_outcome, render_plan


def _read_request(feature: str) -> str:
    """Feature text, or the contents of a file given as @path."""
    if feature.startswith("@"):
        path = Path(feature[1:])
        if not path.is_file():
            raise click.BadParameter(f"File not found: {path}", param_hint="FEATURE")
        return path.read_text(encoding="utf-8")
    return feature


@click.command()
@click.argument("feature")
@click.option(
    "--context",
    "context_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="File describing the codebase, passed to the planner",
)
@click.option("--auto", is_flag=True, help="Run the plan immediately instead of stopping for review")
@click.pass_context
@handle_errors
def plan_command(
    ctx: click.Context, feature: str, context_file: Optional[Path], auto: bool
) -> None:
    """Create a plan for a feature request.

    FEATURE is the request text, or @FILE to read it from a file. The plan is
    stored under plans/ and execution stops so it can be reviewed, unless
    --auto is given.

    Examples:
        phasegate plan "Add dark mode toggle"
        phasegate plan @brief.md --context docs/architecture.md
        phasegate plan "Add CSV export" --auto
    """
    request = _read_request(feature)
    codebase_context = context_file.read_text(encoding="utf-8") if context_file else None

    services = build_services(get_config(ctx))
    console.print("[dim]Asking the planner for phases...[/dim]")
    plan = services.planner().create_plan(request, codebase_context=codebase_context)

    console.print(f"[green]✓[/green] Plan created: {services.store.archive_path(plan.id)}")
    render_plan(plan, console)

    if not auto:
        console.print(f"\nReview the plan, then run it with: [bold]phasegate run {plan.id}[/bold]")
        return

    engine = services.engine()
    with services.store.lock(plan.id):
        outcome = engine.run(plan)
    render_outcome(outcome, console)
    ctx.exit(outcome_exit_code(outcome))
