"""Pipeline engine: runs a plan's phases in order, then the whole-plan checks.

The engine is the only component that changes plan status. Phases run in
declared order; a phase escalating or failing stops the run and leaves the
plan ``in_progress`` until the operator retries or abandons it. Fatal store
errors propagate without any status being written.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from rich.console import Console

from ..config.models import PhasegateConfig
from ..core.agent_gateway import AgentGateway, AgentRole, PromptContext
from ..core.command_runner import CommandRunner
from ..core.exceptions import CommandExecutionError, GitOperationError, PlanStateError
from ..core.git_utils import ChangeTracker
from ..core.output_parser import OutputParser
from ..core.phase_state import PhaseStatus, PlanStatus, needs_operator
from ..core.plan_schema import (
    CheckRecord,
    ExecutionRecord,
    Phase,
    Plan,
    transition_phase,
    transition_plan,
    utc_now,
)
from ..tracking.activity_logger import ActivityLogger
from .escalation import EscalationKind, EscalationReport, EscalationReporter, remediation_actions
from .gate import Evaluation, Gate, GateResult
from .phase_runner import PhaseResult, PhaseRunner
from .plan_store import PlanStore

MAX_DIFF_LENGTH = 20000


class CheckName(str, Enum):
    """Whole-plan checks run after every phase completes."""

    INTEGRATION = "integration"
    BUILD = "build"


@dataclass
class PlanOutcome:
    """Result of one engine run."""

    plan_id: str
    status: PlanStatus
    needs_operator: bool = False
    halted_at: Optional[str] = None
    reason: str = ""
    phase_results: List[PhaseResult] = field(default_factory=list)
    report_path: Optional[Path] = None
    duration_seconds: float = 0.0

    @property
    def completed(self) -> bool:
        return self.status == PlanStatus.COMPLETED


class PipelineEngine:
    """Executes plans and exposes the operator remediation actions."""

    def __init__(
        self,
        store: PlanStore,
        gateway: AgentGateway,
        config: PhasegateConfig,
        command_runner: CommandRunner,
        change_tracker: ChangeTracker,
        reporter: Optional[EscalationReporter] = None,
        activity_logger: Optional[ActivityLogger] = None,
        console: Optional[Console] = None,
    ):
        """Initialize pipeline engine.

        Args:
            store: Plan store
            gateway: Gateway for every agent role
            config: Pipeline configuration
            command_runner: Runs test, type-check and build commands
            change_tracker: Workspace snapshots and diffs
            reporter: Escalation reporter (no reports if None)
            activity_logger: Optional activity logger
            console: Rich console for progress output
        """
        self.store = store
        self.gateway = gateway
        self.config = config
        self.command_runner = command_runner
        self.change_tracker = change_tracker
        self.reporter = reporter
        self.activity_logger = activity_logger
        self.console = console or Console()
        self.runner = PhaseRunner(
            gateway=gateway,
            store=store,
            config=config,
            command_runner=command_runner,
            change_tracker=change_tracker,
            reporter=reporter,
            activity_logger=activity_logger,
            console=self.console,
        )

    def load(self, identifier: Optional[Union[str, int, Path]] = None) -> Plan:
        """Load a plan (the current one by default), detecting interruption.

        A plan found ``in_progress`` with no live run lock and nothing waiting
        on the operator was interrupted; it is marked ``paused``.
        """
        plan = self.store.load(identifier) if identifier is not None else self.store.load_current()

        if (
            plan.status == PlanStatus.IN_PROGRESS
            and not self.store.is_locked(plan.id)
            and not self.waiting_on_operator(plan)
        ):
            transition_plan(plan, PlanStatus.PAUSED)
            self.store.save(plan)
            if self.activity_logger:
                self.activity_logger.log_info("Interrupted run detected; plan paused", plan_id=plan.id)

        return plan

    @staticmethod
    def waiting_on_operator(plan: Plan) -> bool:
        """Check whether a phase or whole-plan check needs operator action."""
        if any(needs_operator(phase.status) for phase in plan.phases):
            return True
        return plan.checks.integration.escalated or plan.checks.build.escalated

    def run(self, plan: Plan, resuming: bool = False) -> PlanOutcome:
        """Run a plan to completion or to the first stop condition.

        Args:
            plan: Plan to execute
            resuming: Continue a plan that already started

        Raises:
            PlanStateError: If the plan cannot be run in its current status
            PlanStoreError: If progress cannot be persisted (fatal)
        """
        start_time = time.time()
        self._begin(plan, resuming)

        results: List[PhaseResult] = []
        for phase in plan.phases:
            if phase.status == PhaseStatus.COMPLETED:
                continue

            if needs_operator(phase.status):
                return self._halt(
                    plan,
                    phase.id,
                    f"Phase {phase.id} is {phase.status.value}; operator action required",
                    results,
                    start_time,
                )

            unmet = [dep for dep in phase.depends_on if plan.get_phase(dep).status != PhaseStatus.COMPLETED]
            if unmet:
                return self._halt(
                    plan,
                    phase.id,
                    f"Phase {phase.id} depends on unfinished phases {unmet}",
                    results,
                    start_time,
                )

            if phase.status == PhaseStatus.IN_PROGRESS:
                self._discard_partial_work(plan, phase)

            result = self.runner.run(plan, phase)
            results.append(result)
            if not result.completed:
                return self._halt(
                    plan, phase.id, result.reason, results, start_time, report_path=result.report_path
                )

        for check in CheckName:
            halt = self._run_check(plan, check)
            if halt is not None:
                reason, report_path = halt
                return self._halt(
                    plan, check.value, reason, results, start_time, report_path=report_path
                )

        transition_plan(plan, PlanStatus.COMPLETED)
        plan.completed_at = utc_now()
        self.store.save(plan)

        duration = time.time() - start_time
        if self.activity_logger:
            self.activity_logger.log_plan_complete(plan.id, int(duration * 1000))
        self.console.print(f"\n[bold green]✓ Plan {plan.id} completed[/bold green]")

        return PlanOutcome(
            plan_id=plan.id,
            status=plan.status,
            phase_results=results,
            duration_seconds=duration,
        )

    def _begin(self, plan: Plan, resuming: bool) -> None:
        if plan.status in (PlanStatus.COMPLETED, PlanStatus.FAILED):
            raise PlanStateError(f"Plan {plan.id} is {plan.status.value} and cannot be run")
        if not resuming and plan.status != PlanStatus.PENDING:
            raise PlanStateError(
                f"Plan {plan.id} has already started ({plan.status.value}); "
                f"use `phasegate resume {plan.id}`"
            )

        # Before the plan baseline, so every snapshot is taken on the feature branch
        if self.config.branches.enabled:
            self._use_feature_branch(plan)

        if plan.status == PlanStatus.PENDING:
            baseline = self.change_tracker.snapshot()
            transition_plan(plan, PlanStatus.IN_PROGRESS)
            plan.started_at = utc_now()
            plan.checks.baseline = baseline
        elif plan.status == PlanStatus.PAUSED:
            transition_plan(plan, PlanStatus.IN_PROGRESS)
        self.store.save(plan)

        if self.activity_logger:
            self.activity_logger.log_plan_start(plan.id, resuming=resuming)
        verb = "Resuming" if resuming else "Starting"
        self.console.print(
            f"[bold]{verb} plan {plan.id}[/bold] "
            f"({plan.completed_phase_count()}/{len(plan.phases)} phases completed)"
        )

    def _use_feature_branch(self, plan: Plan) -> None:
        """Check out ``<prefix><slug>``, creating it on first use.

        Raises:
            GitOperationError: If git refuses the checkout
        """
        branch = f"{self.config.branches.prefix}{plan.slug}"
        created = self.change_tracker.use_branch(branch)
        message = f"{'Created' if created else 'Using'} feature branch {branch}"
        if self.activity_logger:
            self.activity_logger.log_info(message, plan_id=plan.id, branch=branch, created=created)
        self.console.print(f"[dim]{message}[/dim]")

    def _discard_partial_work(self, plan: Plan, phase: Phase) -> None:
        baseline = phase.execution.baseline
        if not self.config.resume.discard_partial_work or baseline is None:
            return

        paths = list(phase.owns) + list(phase.execution.test_files)
        restored = self.change_tracker.discard_changes(baseline, paths)
        if restored is None:
            phase.execution.add_note("Partial work kept: current branch is protected")
        elif restored:
            phase.execution.add_note(f"Discarded partial work in: {', '.join(restored)}")
        self.store.save(plan)

    def _halt(
        self,
        plan: Plan,
        subject: str,
        reason: str,
        results: List[PhaseResult],
        start_time: float,
        report_path: Optional[Path] = None,
    ) -> PlanOutcome:
        if self.activity_logger:
            self.activity_logger.log_plan_halt(plan.id, reason, phase_id=subject)
        self.console.print(f"\n[yellow]Plan {plan.id} stopped at {subject}:[/yellow] {reason}")

        return PlanOutcome(
            plan_id=plan.id,
            status=plan.status,
            needs_operator=True,
            halted_at=subject,
            reason=reason,
            phase_results=results,
            report_path=report_path,
            duration_seconds=time.time() - start_time,
        )

    # Whole-plan checks

    def _run_check(self, plan: Plan, check: CheckName) -> Optional[Tuple[str, Optional[Path]]]:
        """Run one whole-plan check.

        Returns:
            None if the check passed, else (reason, report path)
        """
        record = self._check_record(plan, check)
        if record.passed:
            return None
        if record.escalated:
            return f"{check.value} check escalated; operator action required", None

        self.console.print(f"\n[bold blue]Check:[/bold blue] {check.value}")
        if self.activity_logger:
            self.activity_logger.log_step(plan.id, None, check.value)

        try:
            if check == CheckName.INTEGRATION:
                max_cycles = self.config.gates.integration_max_cycles
                result = self._integration_gate(plan, record, max_cycles)
            else:
                max_cycles = self.config.gates.build_max_cycles
                result = self._build_gate(plan, record, max_cycles)
        except (CommandExecutionError, GitOperationError) as e:
            return self._escalate_check(
                plan, check, record, f"Environment error: {e}", [], "", record.cycles, None
            )

        if result is None:
            record.passed = True
            self.store.save(plan)
            return None

        record.notes.extend(result.notes)
        if result.succeeded:
            record.passed = True
            self.store.save(plan)
            if self.activity_logger:
                self.activity_logger.log_step(plan.id, None, check.value, completed=True)
            self.console.print(f"[green]✓[/green] {check.value} check passed")
            return None

        return self._escalate_check(
            plan,
            check,
            record,
            result.reason,
            result.evaluation.issues,
            result.evaluation.output,
            result.cycles,
            max_cycles,
        )

    def _integration_gate(self, plan: Plan, record: CheckRecord, max_cycles: int) -> GateResult:
        def evaluate() -> Evaluation:
            diff = ""
            if plan.checks.baseline is not None:
                diff = self.change_tracker.diff_since(plan.checks.baseline)
            report = self.gateway.invoke(
                AgentRole.REVIEWER,
                self._plan_context(
                    plan,
                    task="review",
                    review_kind="integration",
                    diff=OutputParser.sanitize_output(diff, max_length=MAX_DIFF_LENGTH),
                ),
            )
            return Evaluation.from_report(report)

        return self._check_gate(plan, CheckName.INTEGRATION, record, max_cycles).run(
            evaluate, self._check_corrector(plan, CheckName.INTEGRATION), cycles=record.cycles
        )

    def _build_gate(self, plan: Plan, record: CheckRecord, max_cycles: int) -> Optional[GateResult]:
        commands = [c for c in (self.config.commands.build, self.config.commands.type_check) if c]
        if not commands:
            record.notes.append("No build or type check command configured; build check skipped")
            return None

        def evaluate() -> Evaluation:
            return Evaluation.from_checks(self.command_runner.run_checks(commands, plan_id=plan.id))

        return self._check_gate(plan, CheckName.BUILD, record, max_cycles).run(
            evaluate, self._check_corrector(plan, CheckName.BUILD), cycles=record.cycles
        )

    def _check_gate(self, plan: Plan, check: CheckName, record: CheckRecord, max_cycles: int) -> Gate:
        def on_cycle(cycles: int) -> None:
            record.cycles = cycles
            self.store.save(plan)

        return Gate(
            name=check.value,
            max_cycles=max_cycles,
            on_cycle=on_cycle,
            activity_logger=self.activity_logger,
            plan_id=plan.id,
        )

    def _check_corrector(self, plan: Plan, check: CheckName) -> Callable[[Evaluation], None]:
        def correct(evaluation: Evaluation) -> None:
            self.gateway.invoke(
                AgentRole.IMPLEMENTER,
                self._plan_context(
                    plan,
                    task=f"fix_{check.value}",
                    issues=evaluation.issues,
                    failure_output=evaluation.output,
                ),
            )

        return correct

    def _escalate_check(
        self,
        plan: Plan,
        check: CheckName,
        record: CheckRecord,
        reason: str,
        issues: List[str],
        output: str,
        cycles: int,
        max_cycles: Optional[int],
    ) -> Tuple[str, Optional[Path]]:
        record.escalated = True
        record.notes.append(f"escalated: {reason}")
        self.store.save(plan)

        report_path = None
        if self.reporter is not None:
            report_path = self.reporter.report(
                EscalationReport(
                    plan_id=plan.id,
                    subject=check.value,
                    subject_name=f"{check.value} check",
                    step=check.value,
                    kind=EscalationKind.ESCALATED,
                    reason=reason,
                    issues=issues,
                    failing_output=output,
                    cycles=cycles,
                    max_cycles=max_cycles,
                    actions=remediation_actions(
                        EscalationKind.ESCALATED, plan.id, check.value, is_check=True
                    ),
                )
            )
        return f"{check.value} check escalated: {reason}", report_path

    @staticmethod
    def _check_record(plan: Plan, check: CheckName) -> CheckRecord:
        if check == CheckName.INTEGRATION:
            return plan.checks.integration
        return plan.checks.build

    def _plan_context(self, plan: Plan, **extra) -> PromptContext:
        context: PromptContext = {
            "plan_id": plan.id,
            "feature_request": plan.feature_request,
            "shared_context": plan.shared_context,
            "test_strategy": plan.test_strategy.model_dump(mode="json"),
            "phases": [
                {"id": p.id, "name": p.name, "description": p.description, "owns": p.owns}
                for p in plan.phases
            ],
        }
        context.update(extra)
        return context

    # Operator remediation

    def retry_phase(self, plan: Plan, phase_id: str, note: Optional[str] = None) -> Phase:
        """Send an escalated or failed phase back to pending.

        Raises:
            PlanStateError: If the plan is finished or the phase is not stuck
        """
        self._require_open(plan)
        try:
            phase = plan.get_phase(phase_id)
        except KeyError as e:
            raise PlanStateError(f"Plan {plan.id} has no phase {phase_id}") from e

        if not needs_operator(phase.status):
            raise PlanStateError(
                f"Phase {phase_id} is {phase.status.value}; only escalated or failed phases can be retried"
            )

        previous = phase.status
        transition_phase(phase, PhaseStatus.PENDING)
        phase.execution = ExecutionRecord(notes=list(phase.execution.notes))
        phase.execution.add_note(note or f"Operator retry after {previous.value}")
        self.store.save(plan)

        if self.activity_logger:
            self.activity_logger.log_info(
                f"Operator retry of phase {phase_id}", plan_id=plan.id, phase_id=phase_id
            )
        return phase

    def retry_checks(self, plan: Plan, note: Optional[str] = None) -> List[str]:
        """Clear escalated whole-plan checks so the next resume re-runs them.

        Raises:
            PlanStateError: If the plan is finished or no check is escalated
        """
        self._require_open(plan)
        cleared = []
        for check in CheckName:
            record = self._check_record(plan, check)
            if record.escalated:
                record.escalated = False
                record.cycles = 0
                record.notes.append(note or "Operator retry")
                cleared.append(check.value)

        if not cleared:
            raise PlanStateError(f"Plan {plan.id} has no escalated checks")

        self.store.save(plan)
        if self.activity_logger:
            self.activity_logger.log_info(f"Operator retry of checks {cleared}", plan_id=plan.id)
        return cleared

    def abandon(self, plan: Plan, reason: str = "Abandoned by operator") -> None:
        """Mark a plan as failed; it will not be run again.

        Raises:
            PlanStateError: If the plan is already completed or failed
        """
        self._require_open(plan)
        transition_plan(plan, PlanStatus.FAILED)
        self.store.save(plan)
        if self.activity_logger:
            self.activity_logger.log_plan_halt(plan.id, reason)

    @staticmethod
    def _require_open(plan: Plan) -> None:
        if plan.status in (PlanStatus.COMPLETED, PlanStatus.FAILED):
            raise PlanStateError(f"Plan {plan.id} is {plan.status.value}")
