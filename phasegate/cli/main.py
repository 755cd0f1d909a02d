"""Main CLI entry point for phasegate."""

import sys
from pathlib import Path
from typing import Optional

import click

from phasegate.cli.commands.history import history_command
from phasegate.cli.commands.init import init_command
from phasegate.cli.commands.plan import plan_command
from phasegate.cli.commands.remediate import abandon_command, retry_command
from phasegate.cli.commands.run import resume_command, run_command
from phasegate.cli.commands.status import status_command
from phasegate.cli.context import EXIT_ERROR, console
from phasegate.core.exceptions import PhasegateError


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to project configuration file",
)
@click.version_option(package_name="phasegate")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: Optional[Path]) -> None:
    """phasegate: phase execution for multi-agent build pipelines.

    Plans a feature as ordered phases, then drives each phase through
    implementation, review, tests and validation with bounded retries,
    stopping for a human when a budget runs out.

    \b
    Examples:
        phasegate init                         # Initialize in current project
        phasegate plan "Add dark mode toggle"  # Create a plan for review
        phasegate run 1                        # Execute plan 001
        phasegate status                       # Show the current plan
        phasegate resume                       # Continue after an interruption
        phasegate retry 1 --phase 2            # Retry an escalated phase
    """
    ctx.ensure_object(dict)

    ctx.obj["verbose"] = verbose
    ctx.obj["config"] = config

    if verbose:
        console.print("[dim]phasegate CLI starting with verbose output enabled[/dim]")


cli.add_command(init_command, name="init")
cli.add_command(plan_command, name="plan")
cli.add_command(run_command, name="run")
cli.add_command(resume_command, name="resume")
cli.add_command(status_command, name="status")
cli.add_command(history_command, name="history")
cli.add_command(retry_command, name="retry")
cli.add_command(abandon_command, name="abandon")


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli()
    except PhasegateError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(EXIT_ERROR)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. Continue later with `phasegate resume`.[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
