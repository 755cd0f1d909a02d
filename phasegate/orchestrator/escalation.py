"""Human-facing reports for conditions that need an operator."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from ..core.output_parser import OutputParser
from ..core.plan_schema import utc_now
from ..tracking.activity_logger import ActivityLogger

MAX_REPORT_OUTPUT = 4000


class EscalationKind(str, Enum):
    """Why automatic execution stopped."""

    ESCALATED = "escalated"
    FAILED = "failed"


def remediation_actions(
    kind: EscalationKind,
    plan_id: str,
    subject: str,
    is_check: bool = False,
) -> List[str]:
    """Operator actions available for a stop condition."""
    retry = (
        f"phasegate retry {plan_id} --checks"
        if is_check
        else f"phasegate retry {plan_id} --phase {subject}"
    )
    if kind == EscalationKind.ESCALATED:
        return [
            f"Raise the cycle budget in .phasegate/config.yaml, then run `{retry}`",
            f"Fix the plan (split or clarify the phase), then run `{retry}`",
            f"Fix the files by hand, then run `{retry}`",
            f"Give up on the plan with `phasegate abandon {plan_id}`",
        ]
    return [
        f"Fix the files by hand, then run `{retry}`",
        f"Fix the phase ownership list in the plan, then run `{retry}`",
        f"Give up on the plan with `phasegate abandon {plan_id}`",
    ]


class EscalationReport(BaseModel):
    """Everything an operator needs to act on a stopped phase or check."""

    plan_id: str
    subject: str = Field(..., description="Phase id or whole-plan check name")
    subject_name: Optional[str] = None
    step: str
    kind: EscalationKind
    reason: str = ""
    attempted: List[str] = Field(default_factory=list)
    issues: List[str] = Field(default_factory=list)
    failing_output: str = ""
    cycles: int = 0
    max_cycles: Optional[int] = None
    actions: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def title(self) -> str:
        name = f" ({self.subject_name})" if self.subject_name else ""
        return f"{self.kind.value.upper()}: {self.plan_id} / {self.subject}{name} at {self.step}"

    def cycle_summary(self) -> str:
        if self.max_cycles is None:
            return str(self.cycles)
        return f"{self.cycles}/{self.max_cycles}"

    def to_markdown(self) -> str:
        """Render the report as a markdown document."""
        lines = [
            f"# {self.title}",
            "",
            f"- Plan: `{self.plan_id}`",
            f"- Subject: `{self.subject}`",
            f"- Step: `{self.step}`",
            f"- Cycles: {self.cycle_summary()}",
            f"- Reported: {self.created_at.isoformat()}",
        ]
        if self.reason:
            lines += ["", "## Reason", "", self.reason]
        if self.attempted:
            lines += ["", "## Attempted", ""] + [f"- {a}" for a in self.attempted]
        if self.issues:
            lines += ["", "## Outstanding issues", ""] + [f"- {i}" for i in self.issues]
        if self.failing_output:
            lines += ["", "## Failing output", "", "```", self.failing_output, "```"]
        if self.actions:
            lines += ["", "## Next steps", ""] + [f"- {a}" for a in self.actions]
        return "\n".join(lines) + "\n"


class EscalationReporter:
    """Surfaces escalation reports on the console and as files."""

    def __init__(
        self,
        reports_dir: Path,
        console: Optional[Console] = None,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        """Initialize the reporter.

        Args:
            reports_dir: Directory for markdown reports
            console: Rich console for operator output
            activity_logger: Optional activity logger
        """
        self.reports_dir = Path(reports_dir)
        self.console = console or Console()
        self.activity_logger = activity_logger

    def report(self, report: EscalationReport) -> Path:
        """Show a report and write it to the reports directory.

        Returns:
            Path of the written markdown file
        """
        report.failing_output = OutputParser.sanitize_output(
            report.failing_output, max_length=MAX_REPORT_OUTPUT
        )

        self.reports_dir.mkdir(parents=True, exist_ok=True)
        stamp = report.created_at.strftime("%Y%m%d-%H%M%S")
        report_file = self.reports_dir / f"{report.plan_id}-{report.subject}-{stamp}.md"
        report_file.write_text(report.to_markdown(), encoding="utf-8")

        self._render(report, report_file)

        if self.activity_logger:
            self.activity_logger.log_info(
                f"Escalation report written: {report_file}",
                plan_id=report.plan_id,
                phase_id=report.subject,
                kind=report.kind.value,
                step=report.step,
            )

        return report_file

    def _render(self, report: EscalationReport, report_file: Path) -> None:
        color = "yellow" if report.kind == EscalationKind.ESCALATED else "red"
        body = [f"[bold]Step:[/bold] {report.step}", f"[bold]Cycles:[/bold] {report.cycle_summary()}"]
        if report.reason:
            body.append(f"[bold]Reason:[/bold] {escape(report.reason)}")
        if report.issues:
            body.append("[bold]Outstanding issues:[/bold]")
            body.extend(f"  • {escape(issue)}" for issue in report.issues[:10])
        if report.actions:
            body.append("[bold]Next steps:[/bold]")
            body.extend(f"  • {escape(action)}" for action in report.actions)
        body.append(f"[dim]Full report: {escape(str(report_file))}[/dim]")

        self.console.print(
            Panel("\n".join(body), title=escape(report.title), border_style=color, expand=False)
        )
