"""Rich rendering of plans and run outcomes."""

from typing import List

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..core.phase_state import PhaseStatus, PlanStatus
from ..core.plan_schema import CheckRecord, Plan
from ..orchestrator.pipeline_engine import PlanOutcome

STATUS_COLORS = {
    PhaseStatus.PENDING.value: "dim",
    PhaseStatus.IN_PROGRESS.value: "cyan",
    PhaseStatus.COMPLETED.value: "green",
    PhaseStatus.ESCALATED.value: "yellow",
    PhaseStatus.FAILED.value: "red",
    PlanStatus.PAUSED.value: "magenta",
}


def colored_status(status: str) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def _check_status(record: CheckRecord) -> str:
    if record.passed:
        return colored_status(PhaseStatus.COMPLETED.value)
    if record.escalated:
        return colored_status(PhaseStatus.ESCALATED.value)
    return colored_status(PhaseStatus.PENDING.value)


def render_plan(plan: Plan, console: Console) -> None:
    """Show a plan header and its per-phase table."""
    header = [
        f"[bold]Status:[/bold] {colored_status(plan.status.value)}",
        f"[bold]Phases:[/bold] {plan.completed_phase_count()}/{len(plan.phases)} completed",
        f"[bold]Created:[/bold] {plan.created_at.strftime('%Y-%m-%d %H:%M')}",
    ]
    if plan.test_strategy.approach:
        header.append(f"[bold]Test strategy:[/bold] {escape(plan.test_strategy.approach)}")
    console.print(Panel("\n".join(header), title=f"Plan {plan.id}", expand=False))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Phase", style="cyan")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Depends on")
    table.add_column("Owns", justify="right")
    table.add_column("Cycles (rev/spec/test)", justify="center")
    table.add_column("Tests", justify="right")

    for phase in plan.phases:
        record = phase.execution
        table.add_row(
            phase.id,
            escape(phase.name) + (" [dim](ui)[/dim]" if phase.presentation else ""),
            colored_status(phase.status.value),
            ", ".join(phase.depends_on) or "-",
            str(len(phase.owns)),
            f"{record.review_cycles}/{record.specialized_review_cycles}/{record.test_fix_cycles}",
            str(record.tests_written),
        )

    for name, check in (("integration", plan.checks.integration), ("build", plan.checks.build)):
        table.add_row(
            f"[dim]{name}[/dim]",
            f"[dim]{name} check[/dim]",
            _check_status(check),
            "-",
            "-",
            str(check.cycles),
            "-",
        )

    console.print(table)


def render_phase_notes(plan: Plan, phase_id: str, console: Console) -> None:
    """Show the execution notes of one phase."""
    phase = plan.get_phase(phase_id)
    notes: List[str] = phase.execution.notes or ["(no notes)"]
    console.print(
        Panel(
            "\n".join(escape(n) for n in notes),
            title=f"Phase {phase.id}: {escape(phase.name)}",
            expand=False,
        )
    )


def render_outcome(outcome: PlanOutcome, console: Console) -> None:
    """Summarize an engine run."""
    if outcome.completed:
        console.print(
            f"[green]✓[/green] Plan {outcome.plan_id} completed "
            f"in {outcome.duration_seconds:.0f}s"
        )
        return

    console.print(
        f"[yellow]Plan {outcome.plan_id} needs operator action at "
        f"{outcome.halted_at}:[/yellow] {escape(outcome.reason)}"
    )
    if outcome.report_path:
        console.print(f"[dim]Report:[/dim] {outcome.report_path}")
