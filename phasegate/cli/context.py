"""Shared wiring for CLI commands: configuration, services and exit codes."""

import functools
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import click
from rich.console import Console
from rich.markup import escape

from ..config.loader import load_config
from ..config.models import PhasegateConfig
from ..core.agent_gateway import AgentGateway, ClaudeAgentGateway
from ..core.command_runner import CommandRunner
from ..core.exceptions import (
    ConcurrentWriterError,
    PhasegateError,
    PlanCorruptionError,
    PlanNotFoundError,
    PlanStoreError,
)
from ..core.git_utils import ChangeTracker, GitChangeTracker
from ..orchestrator.escalation import EscalationReporter
from ..orchestrator.pipeline_engine import PipelineEngine, PlanOutcome
from ..orchestrator.plan_store import PlanStore
from ..orchestrator.planner import Planner
from ..tracking.activity_logger import ActivityLogger

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NEEDS_OPERATOR = 2
EXIT_FATAL = 3

console = Console()


def get_config(ctx: click.Context) -> PhasegateConfig:
    """Load configuration, honouring the global --config option."""
    config_path: Optional[Path] = (ctx.obj or {}).get("config")
    return load_config(project_config_path=config_path)


def get_store(config: PhasegateConfig) -> PlanStore:
    return PlanStore(plans_dir=config.get_plans_dir(), state_dir=config.get_state_dir())


@dataclass
class Services:
    """Collaborators shared by the planner and the pipeline engine."""

    config: PhasegateConfig
    store: PlanStore
    gateway: AgentGateway
    command_runner: CommandRunner
    change_tracker: ChangeTracker
    reporter: EscalationReporter
    activity_logger: ActivityLogger

    def engine(self) -> PipelineEngine:
        return PipelineEngine(
            store=self.store,
            gateway=self.gateway,
            config=self.config,
            command_runner=self.command_runner,
            change_tracker=self.change_tracker,
            reporter=self.reporter,
            activity_logger=self.activity_logger,
            console=console,
        )

    def planner(self) -> Planner:
        return Planner(self.gateway, self.store, activity_logger=self.activity_logger)


def build_services(config: PhasegateConfig) -> Services:
    """Wire the concrete collaborators from configuration.

    Raises:
        GitOperationError: If the working directory is not a git repository
    """
    working_dir = config.get_working_dir()
    activity_logger = ActivityLogger.for_new_session(
        config.get_log_dir(),
        level=config.logging.level,
        retention_days=config.logging.retention_days,
    )
    activity_logger.log_session_start(str(working_dir))

    return Services(
        config=config,
        store=get_store(config),
        gateway=ClaudeAgentGateway(
            command=config.agent.command,
            working_dir=working_dir,
            timeout=config.agent_timeout_seconds(),
            prompts=config.agent.prompts,
            activity_logger=activity_logger,
        ),
        command_runner=CommandRunner(
            working_dir=working_dir,
            timeout=config.command_timeout_seconds(),
            activity_logger=activity_logger,
        ),
        change_tracker=GitChangeTracker(
            working_dir, protected_branches=config.resume.protected_branches
        ),
        reporter=EscalationReporter(
            config.get_reports_dir(), console=console, activity_logger=activity_logger
        ),
        activity_logger=activity_logger,
    )


def outcome_exit_code(outcome: PlanOutcome) -> int:
    """Map an engine outcome to the process exit code."""
    if outcome.completed:
        return EXIT_OK
    return EXIT_NEEDS_OPERATOR


def handle_errors(func: Callable) -> Callable:
    """Report phasegate errors and exit with the matching code."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PlanNotFoundError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            raise click.exceptions.Exit(EXIT_ERROR)
        except (PlanCorruptionError, ConcurrentWriterError, PlanStoreError) as e:
            console.print(f"[bold red]Fatal:[/bold red] {escape(str(e))}")
            console.print("[dim]No plan status was written. Inspect the plan files before retrying.[/dim]")
            raise click.exceptions.Exit(EXIT_FATAL)
        except PhasegateError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            raise click.exceptions.Exit(EXIT_ERROR)

    return wrapper
