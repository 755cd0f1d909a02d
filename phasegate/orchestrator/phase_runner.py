"""Drive one phase through its fixed sub-step sequence.

implement -> review -> [specialized_review] -> author_tests -> execute_tests
-> final_review -> validate

The plan is saved after every sub-step and before every corrective cycle, so
an interrupted run can always be resumed from the persisted document. The
runner only ever mutates the phase it was given; plan status belongs to the
pipeline engine.
"""

import fnmatch
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from rich.console import Console

from ..config.models import PhasegateConfig
from ..core.agent_gateway import AgentGateway, AgentReport, AgentRole, PromptContext, Verdict
from ..core.command_runner import CommandRunner
from ..core.exceptions import AgentInvocationError, CommandExecutionError, GitOperationError
from ..core.git_utils import ChangeTracker
from ..core.phase_state import PhaseStatus, PhaseStep
from ..core.plan_schema import ExecutionRecord, Phase, Plan, normalize_path, transition_phase, utc_now
from ..tracking.activity_logger import ActivityLogger
from .escalation import EscalationKind, EscalationReport, EscalationReporter, remediation_actions
from .gate import Evaluation, Gate, GateResult
from .plan_store import PlanStore


@dataclass
class PhaseResult:
    """Outcome of running one phase."""

    phase_id: str
    status: PhaseStatus
    step: Optional[PhaseStep] = None
    reason: str = ""
    report_path: Optional[Path] = None
    duration_seconds: float = 0.0

    @property
    def completed(self) -> bool:
        return self.status == PhaseStatus.COMPLETED


class _PhaseStopped(Exception):
    """Unwinds the step sequence when a phase escalates or fails."""

    def __init__(
        self,
        status: PhaseStatus,
        step: PhaseStep,
        reason: str,
        issues: Optional[List[str]] = None,
        output: str = "",
        cycles: int = 0,
        max_cycles: Optional[int] = None,
        attempted: Optional[List[str]] = None,
    ):
        super().__init__(reason)
        self.status = status
        self.step = step
        self.reason = reason
        self.issues = issues or []
        self.output = output
        self.cycles = cycles
        self.max_cycles = max_cycles
        self.attempted = attempted or []


@dataclass
class _StepState:
    """Per-run scratch state shared between sub-steps."""

    final_report: Optional[AgentReport] = None
    attempted: List[str] = field(default_factory=list)


class PhaseRunner:
    """Executes a single phase and records its progress."""

    def __init__(
        self,
        gateway: AgentGateway,
        store: PlanStore,
        config: PhasegateConfig,
        command_runner: CommandRunner,
        change_tracker: ChangeTracker,
        reporter: Optional[EscalationReporter] = None,
        activity_logger: Optional[ActivityLogger] = None,
        console: Optional[Console] = None,
    ):
        """Initialize phase runner.

        Args:
            gateway: Gateway used for every agent role
            store: Plan store used to persist progress
            config: Pipeline configuration (gate ceilings, commands, validation)
            command_runner: Runs the deterministic test and type-check commands
            change_tracker: Detects workspace changes for validation
            reporter: Escalation reporter (no reports if None)
            activity_logger: Optional activity logger
            console: Rich console for progress output
        """
        self.gateway = gateway
        self.store = store
        self.config = config
        self.command_runner = command_runner
        self.change_tracker = change_tracker
        self.reporter = reporter
        self.activity_logger = activity_logger
        self.console = console or Console()
        self.workspace = config.get_working_dir()
        self.ignored_paths = list(config.validation.ignored_paths) + self._state_globs()

    def run(self, plan: Plan, phase: Phase) -> PhaseResult:
        """Run a pending phase, or restart an interrupted one from implement.

        Raises:
            PlanStoreError: If progress cannot be persisted (fatal)
        """
        start_time = time.time()
        restart = phase.status == PhaseStatus.IN_PROGRESS
        self._start(plan, phase, restart)

        state = _StepState()
        steps = self._steps(phase, state)
        current = PhaseStep.IMPLEMENT

        try:
            phase.execution.baseline = self.change_tracker.snapshot()
            self.store.save(plan)

            for step, action in steps:
                current = step
                self._log_step(plan, phase, step)
                action(plan, phase)
                phase.execution.last_step = step
                self.store.save(plan)
                self._log_step(plan, phase, step, completed=True)

        except _PhaseStopped as stop:
            return self._stop(plan, phase, stop, start_time)
        except (CommandExecutionError, GitOperationError) as e:
            stop = _PhaseStopped(
                PhaseStatus.FAILED,
                current,
                f"Environment error: {e}",
                attempted=state.attempted,
            )
            return self._stop(plan, phase, stop, start_time)

        return self._complete(plan, phase, start_time)

    def _steps(self, phase: Phase, state: _StepState) -> List[Tuple[PhaseStep, Callable[[Plan, Phase], None]]]:
        steps = [
            (PhaseStep.IMPLEMENT, lambda p, ph: self._implement(p, ph, state)),
            (PhaseStep.REVIEW, lambda p, ph: self._review(p, ph, state)),
        ]
        if phase.presentation:
            steps.append(
                (PhaseStep.SPECIALIZED_REVIEW, lambda p, ph: self._specialized_review(p, ph, state))
            )
        steps += [
            (PhaseStep.AUTHOR_TESTS, lambda p, ph: self._author_tests(p, ph, state)),
            (PhaseStep.EXECUTE_TESTS, lambda p, ph: self._execute_tests(p, ph, state)),
            (PhaseStep.FINAL_REVIEW, lambda p, ph: self._final_review(p, ph, state)),
            (PhaseStep.VALIDATE, lambda p, ph: self._validate(p, ph, state)),
        ]
        return steps

    def _start(self, plan: Plan, phase: Phase, restart: bool) -> None:
        transition_phase(phase, PhaseStatus.IN_PROGRESS)
        phase.execution = ExecutionRecord(notes=list(phase.execution.notes), started_at=utc_now())
        if restart:
            phase.execution.add_note("Restarted from implement after an interrupted run")
        self.store.save(plan)

        if self.activity_logger:
            self.activity_logger.log_phase_start(plan.id, phase.id, phase.name, restart=restart)
        self.console.print(
            f"\n[bold blue]Phase {phase.id}:[/bold blue] {phase.name}"
            + (" [dim](restart)[/dim]" if restart else "")
        )

    # Sub-steps

    def _implement(self, plan: Plan, phase: Phase, state: _StepState) -> None:
        report = self._call_agent(
            plan,
            phase,
            PhaseStep.IMPLEMENT,
            AgentRole.IMPLEMENTER,
            self._context(plan, phase, task="implement"),
            state,
        )
        if report.notes:
            phase.execution.add_note(f"implement: {report.notes}")

    def _review(self, plan: Plan, phase: Phase, state: _StepState) -> None:
        def on_cycle(cycles: int) -> None:
            phase.execution.review_cycles = cycles
            self.store.save(plan)

        self._review_gate(
            plan,
            phase,
            PhaseStep.REVIEW,
            AgentRole.REVIEWER,
            self.config.gates.review_max_cycles,
            on_cycle,
            state,
        )

    def _specialized_review(self, plan: Plan, phase: Phase, state: _StepState) -> None:
        def on_cycle(cycles: int) -> None:
            phase.execution.specialized_review_cycles = cycles
            self.store.save(plan)

        self._review_gate(
            plan,
            phase,
            PhaseStep.SPECIALIZED_REVIEW,
            AgentRole.SPECIALIZED_REVIEWER,
            self.config.gates.specialized_review_max_cycles,
            on_cycle,
            state,
        )

    def _author_tests(self, plan: Plan, phase: Phase, state: _StepState) -> None:
        report = self._call_agent(
            plan,
            phase,
            PhaseStep.AUTHOR_TESTS,
            AgentRole.TEST_AUTHOR,
            self._context(plan, phase, task="author_tests"),
            state,
        )
        owners = {path: other.id for other in plan.phases if other.id != phase.id for path in other.owns}
        test_files = []
        for path in (normalize_path(f) for f in report.files):
            if path in owners:
                phase.execution.add_note(
                    f"author_tests: ignored reported test file {path} owned by phase {owners[path]}"
                )
            else:
                test_files.append(path)
        phase.execution.test_files = test_files
        phase.execution.tests_written = max(report.tests_written or 0, 0)
        if report.notes:
            phase.execution.add_note(f"author_tests: {report.notes}")

    def _execute_tests(self, plan: Plan, phase: Phase, state: _StepState) -> None:
        commands_config = self.config.commands
        commands = []
        if commands_config.test:
            commands.append(commands_config.test)
        else:
            phase.execution.add_note("No test command configured; test execution skipped")
        if phase.presentation and commands_config.type_check:
            commands.append(commands_config.type_check)
        if not commands:
            return

        def evaluate() -> Evaluation:
            return Evaluation.from_checks(
                self.command_runner.run_checks(commands, plan_id=plan.id, phase_id=phase.id)
            )

        def correct(evaluation: Evaluation) -> None:
            state.attempted.append(
                f"execute_tests: implementer fix for failing checks (cycle {phase.execution.test_fix_cycles})"
            )
            self.gateway.invoke(
                AgentRole.IMPLEMENTER,
                self._context(
                    plan,
                    phase,
                    task="fix_failing_checks",
                    issues=evaluation.issues,
                    failure_output=evaluation.output,
                ),
            )

        def on_cycle(cycles: int) -> None:
            phase.execution.test_fix_cycles = cycles
            self.store.save(plan)

        max_cycles = self.config.gates.test_fix_max_cycles
        result = self._gate(plan, phase, PhaseStep.EXECUTE_TESTS, max_cycles, on_cycle).run(
            evaluate, correct
        )
        self._finish_gate(phase, PhaseStep.EXECUTE_TESTS, result, max_cycles, state)

    def _final_review(self, plan: Plan, phase: Phase, state: _StepState) -> None:
        report = self._call_agent(
            plan,
            phase,
            PhaseStep.FINAL_REVIEW,
            AgentRole.REVIEWER,
            self._context(
                plan,
                phase,
                task="review",
                review_kind="final",
                test_files=phase.execution.test_files,
            ),
            state,
        )
        state.final_report = report
        phase.execution.criteria_results = dict(report.criteria)

        if report.verdict == Verdict.BLOCKED:
            raise _PhaseStopped(
                PhaseStatus.ESCALATED,
                PhaseStep.FINAL_REVIEW,
                "Final review reported a blocking problem",
                issues=report.issue_list(),
                output=report.notes,
                attempted=state.attempted,
            )
        if report.verdict == Verdict.NEEDS_CHANGES:
            phase.execution.add_note(
                f"final_review requested changes: {'; '.join(report.issue_list()) or report.notes}"
            )

    def _validate(self, plan: Plan, phase: Phase, state: _StepState) -> None:
        violations = self._validation_violations(phase, state)
        if not violations:
            return

        phase.execution.add_note(f"validate: {len(violations)} violation(s), one corrective attempt")
        self.store.save(plan)
        state.attempted.append("validate: implementer correction of validation violations")

        try:
            self.gateway.invoke(
                AgentRole.IMPLEMENTER,
                self._context(plan, phase, task="fix_validation", issues=violations),
            )
        except AgentInvocationError as e:
            phase.execution.add_note(f"validate: corrective agent failure: {e}")

        self._final_review(plan, phase, state)
        self.store.save(plan)

        violations = self._validation_violations(phase, state)
        if violations:
            raise _PhaseStopped(
                PhaseStatus.FAILED,
                PhaseStep.VALIDATE,
                "Validation still failing after the corrective attempt",
                issues=violations,
                cycles=1,
                max_cycles=1,
                attempted=state.attempted,
            )

    def _validation_violations(self, phase: Phase, state: _StepState) -> List[str]:
        violations = []

        for path in phase.owns:
            if not (self.workspace / path).exists():
                violations.append(f"Owned file is missing: {path}")

        results = phase.execution.criteria_results
        for criterion in phase.acceptance_criteria:
            if not results.get(criterion, False):
                violations.append(f"Acceptance criterion not confirmed by final review: {criterion}")

        report = state.final_report
        if report is not None and report.verdict != Verdict.APPROVED:
            detail = "; ".join(report.issue_list()) or report.notes or "no details"
            violations.append(f"Final review did not approve: {detail}")

        allowed = set(phase.owns) | set(phase.execution.test_files)
        baseline = phase.execution.baseline
        if baseline is not None:
            for path in self.change_tracker.changed_since(baseline):
                if path in allowed or self._is_ignored(path):
                    continue
                violations.append(f"File changed outside phase ownership: {path}")

        return violations

    # Shared step machinery

    def _call_agent(
        self,
        plan: Plan,
        phase: Phase,
        step: PhaseStep,
        role: AgentRole,
        context: PromptContext,
        state: _StepState,
    ) -> AgentReport:
        """Invoke an agent for a plain step, retrying agent failures."""
        answer: List[AgentReport] = []

        def evaluate() -> Evaluation:
            answer[:] = [self.gateway.invoke(role, context)]
            return Evaluation(verdict=Verdict.APPROVED, report=answer[0])

        def on_cycle(cycles: int) -> None:
            phase.execution.add_note(f"{step.value}: retrying {role.value} after agent failure ({cycles}/{max_cycles})")
            self.store.save(plan)

        max_cycles = self.config.gates.agent_failure_retries
        result = self._gate(plan, phase, step, max_cycles, on_cycle).run(
            evaluate, lambda evaluation: None
        )
        self._finish_gate(phase, step, result, max_cycles, state)
        return answer[0]

    def _review_gate(
        self,
        plan: Plan,
        phase: Phase,
        step: PhaseStep,
        role: AgentRole,
        max_cycles: int,
        on_cycle: Callable[[int], None],
        state: _StepState,
    ) -> None:
        review_kind = "specialized" if role == AgentRole.SPECIALIZED_REVIEWER else "code"

        def evaluate() -> Evaluation:
            report = self.gateway.invoke(
                role, self._context(plan, phase, task="review", review_kind=review_kind)
            )
            return Evaluation.from_report(report)

        def correct(evaluation: Evaluation) -> None:
            state.attempted.append(f"{step.value}: implementer addressed {len(evaluation.issues)} issue(s)")
            self.gateway.invoke(
                AgentRole.IMPLEMENTER,
                self._context(
                    plan,
                    phase,
                    task="address_review",
                    review_kind=review_kind,
                    issues=evaluation.issues,
                    review_notes=evaluation.output,
                ),
            )

        result = self._gate(plan, phase, step, max_cycles, on_cycle).run(evaluate, correct)
        self._finish_gate(phase, step, result, max_cycles, state)

    def _gate(
        self,
        plan: Plan,
        phase: Phase,
        step: PhaseStep,
        max_cycles: int,
        on_cycle: Callable[[int], None],
    ) -> Gate:
        return Gate(
            name=step.value,
            max_cycles=max_cycles,
            on_cycle=on_cycle,
            activity_logger=self.activity_logger,
            plan_id=plan.id,
            phase_id=phase.id,
        )

    def _finish_gate(
        self,
        phase: Phase,
        step: PhaseStep,
        result: GateResult,
        max_cycles: int,
        state: _StepState,
    ) -> None:
        for note in result.notes:
            phase.execution.add_note(note)
        if result.succeeded:
            return
        raise _PhaseStopped(
            PhaseStatus.ESCALATED,
            step,
            result.reason,
            issues=result.evaluation.issues,
            output=result.evaluation.output,
            cycles=result.cycles,
            max_cycles=max_cycles,
            attempted=state.attempted,
        )

    def _context(self, plan: Plan, phase: Phase, **extra) -> PromptContext:
        """Bundle forwarded verbatim to an agent."""
        context: PromptContext = {
            "plan_id": plan.id,
            "feature_request": plan.feature_request,
            "shared_context": plan.shared_context,
            "test_strategy": plan.test_strategy.model_dump(mode="json"),
            "phase": phase.model_dump(mode="json", exclude={"status", "execution"}),
            "completed_phases": [
                {"id": p.id, "name": p.name, "owns": p.owns}
                for p in plan.phases
                if p.status == PhaseStatus.COMPLETED
            ],
            "notes": list(phase.execution.notes),
        }
        context.update(extra)
        return context

    # Outcomes

    def _complete(self, plan: Plan, phase: Phase, start_time: float) -> PhaseResult:
        transition_phase(phase, PhaseStatus.COMPLETED)
        phase.execution.completed_at = utc_now()
        self.store.save(plan)

        duration = time.time() - start_time
        if self.activity_logger:
            self.activity_logger.log_phase_complete(plan.id, phase.id, int(duration * 1000))
        self.console.print(f"[green]✓[/green] Phase {phase.id} completed")

        return PhaseResult(
            phase_id=phase.id,
            status=PhaseStatus.COMPLETED,
            step=PhaseStep.VALIDATE,
            duration_seconds=duration,
        )

    def _stop(self, plan: Plan, phase: Phase, stop: _PhaseStopped, start_time: float) -> PhaseResult:
        transition_phase(phase, stop.status)
        if stop.status == PhaseStatus.ESCALATED:
            phase.execution.escalated = True
        phase.execution.add_note(f"{stop.status.value} at {stop.step.value}: {stop.reason}")
        self.store.save(plan)

        if self.activity_logger:
            if stop.status == PhaseStatus.ESCALATED:
                self.activity_logger.log_phase_escalated(plan.id, phase.id, stop.reason)
            else:
                self.activity_logger.log_phase_failed(plan.id, phase.id, stop.reason)

        report_path = None
        if self.reporter is not None:
            kind = EscalationKind(stop.status.value)
            report_path = self.reporter.report(
                EscalationReport(
                    plan_id=plan.id,
                    subject=phase.id,
                    subject_name=phase.name,
                    step=stop.step.value,
                    kind=kind,
                    reason=stop.reason,
                    attempted=stop.attempted,
                    issues=stop.issues,
                    failing_output=stop.output,
                    cycles=stop.cycles,
                    max_cycles=stop.max_cycles,
                    actions=remediation_actions(kind, plan.id, phase.id),
                )
            )

        return PhaseResult(
            phase_id=phase.id,
            status=stop.status,
            step=stop.step,
            reason=stop.reason,
            report_path=report_path,
            duration_seconds=time.time() - start_time,
        )

    def _log_step(self, plan: Plan, phase: Phase, step: PhaseStep, completed: bool = False) -> None:
        if self.activity_logger:
            self.activity_logger.log_step(plan.id, phase.id, step.value, completed=completed)
        if not completed:
            self.console.print(f"  [cyan]→[/cyan] {step.value}")

    def _is_ignored(self, path: str) -> bool:
        return any(fnmatch.fnmatch(path, pattern) for pattern in self.ignored_paths)

    def _state_globs(self) -> List[str]:
        """Plan archive and state directories are never phase changes."""
        globs = []
        for directory in (self.config.get_plans_dir(), self.config.get_state_dir()):
            try:
                relative = directory.relative_to(self.workspace)
            except ValueError:
                continue
            globs.append(f"{relative.as_posix()}/*")
        return globs
