"""phasegate init command."""

from pathlib import Path

import click

from ...config.loader import create_default_config, save_config
from ...core.exceptions import ConfigurationError
from ..context import console

GITIGNORE_CONTENT = """# phasegate generated files
logs/
reports/
locks/
*.tmp
"""


@click.command()
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite the existing configuration",
)
def init_command(force: bool) -> None:
    """Initialize phasegate in the current project.

    Creates a .phasegate directory with a default configuration and a plans
    directory for plan archives.

    Examples:
        phasegate init            # Initialize with default settings
        phasegate init --force    # Reset configuration to defaults
    """
    project_root = Path.cwd()
    state_dir = project_root / ".phasegate"
    config_path = state_dir / "config.yaml"

    if config_path.exists() and not force:
        console.print(
            f"[yellow]phasegate already initialized in {project_root}[/yellow]\n"
            "Use --force to reinitialize"
        )
        return

    try:
        for directory in (state_dir, state_dir / "logs", state_dir / "reports", state_dir / "locks"):
            directory.mkdir(parents=True, exist_ok=True)
        (project_root / "plans").mkdir(exist_ok=True)

        save_config(create_default_config(), config_path)

        gitignore_path = state_dir / ".gitignore"
        if not gitignore_path.exists() or force:
            gitignore_path.write_text(GITIGNORE_CONTENT, encoding="utf-8")

    except (OSError, ConfigurationError) as e:
        console.print(f"[red]Failed to initialize phasegate:[/red] {e}")
        raise click.ClickException(f"Initialization failed: {e}")

    console.print(f"[green]✓[/green] phasegate initialized in {project_root}")
    console.print(f"[dim]Configuration:[/dim] {config_path}")
    console.print("\n[bold]Next steps:[/bold]")
    console.print("1. Set commands.test, commands.type_check and commands.build in .phasegate/config.yaml")
    console.print('2. Create a plan: phasegate plan "Describe the feature"')
    console.print("3. Review the plan, then run it: phasegate run <plan>")
