"""Bounded corrective-retry gate.

A gate evaluates some work, and while the evaluation is unsatisfied and budget
remains it asks a corrector to fix the reported issues and evaluates again.
The cycle counter is handed to ``on_cycle`` before each correction so it is
persisted ahead of any agent call; a crash mid-correction therefore never
replays a cycle for free.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from ..core.agent_gateway import AgentReport, Verdict
from ..core.command_runner import CheckResult
from ..core.exceptions import AgentInvocationError, AgentOutputParseError
from ..tracking.activity_logger import ActivityLogger
from .retry_strategy import RetryConfig, RetryDecision, RetryStrategy


@dataclass
class Evaluation:
    """Outcome of one evaluation at a gate."""

    verdict: Verdict
    issues: List[str] = field(default_factory=list)
    output: str = ""
    agent_failure: bool = False
    report: Optional[AgentReport] = None

    @property
    def satisfied(self) -> bool:
        return self.verdict == Verdict.APPROVED

    @property
    def blocked(self) -> bool:
        return self.verdict == Verdict.BLOCKED

    @classmethod
    def from_report(cls, report: AgentReport) -> "Evaluation":
        """Evaluation from an agent report.

        Reviewer roles must carry a verdict; other roles have none and count
        as approved.

        Raises:
            AgentOutputParseError: If a reviewer report has no verdict
        """
        if report.verdict is None and report.role.is_reviewer:
            raise AgentOutputParseError(f"{report.role.value} report has no verdict")
        return cls(
            verdict=report.verdict or Verdict.APPROVED,
            issues=report.issue_list(),
            output=report.notes,
            report=report,
        )

    @classmethod
    def from_agent_error(cls, error: AgentInvocationError) -> "Evaluation":
        """An unreachable agent is treated like a request for changes."""
        return cls(
            verdict=Verdict.NEEDS_CHANGES,
            issues=[f"Agent failure: {error}"],
            output=str(error),
            agent_failure=True,
        )

    @classmethod
    def from_checks(cls, result: CheckResult) -> "Evaluation":
        """Evaluation from deterministic check commands."""
        if result.passed:
            return cls(verdict=Verdict.APPROVED)
        failing = [f"`{r.command}` exited with code {r.exit_code}" for r in result.results if not r.passed]
        return cls(
            verdict=Verdict.NEEDS_CHANGES,
            issues=failing,
            output=result.failure_output(),
        )


class GateOutcome(str, Enum):
    """Terminal result of a gate."""

    SUCCESS = "success"
    ESCALATED = "escalated"


@dataclass
class GateResult:
    """Result of running a gate to completion."""

    outcome: GateOutcome
    cycles: int
    evaluation: Evaluation
    reason: str = ""
    notes: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.outcome == GateOutcome.SUCCESS


class Gate:
    """Evaluate, correct and re-evaluate within a fixed cycle ceiling."""

    def __init__(
        self,
        name: str,
        max_cycles: int,
        on_cycle: Optional[Callable[[int], None]] = None,
        activity_logger: Optional[ActivityLogger] = None,
        plan_id: Optional[str] = None,
        phase_id: Optional[str] = None,
    ):
        """Initialize a gate.

        Args:
            name: Gate name used in logs and reports
            max_cycles: Ceiling on corrective cycles
            on_cycle: Called with the new cycle count before each correction
            activity_logger: Optional logger for gate cycles
            plan_id: Plan identifier for logging
            phase_id: Phase identifier for logging
        """
        self.name = name
        self.max_cycles = max_cycles
        self.on_cycle = on_cycle
        self.activity_logger = activity_logger
        self.plan_id = plan_id
        self.phase_id = phase_id
        self.retry_strategy = RetryStrategy(RetryConfig(max_cycles=max_cycles))

    def run(
        self,
        evaluate: Callable[[], Evaluation],
        correct: Callable[[Evaluation], None],
        produce: Optional[Callable[[], None]] = None,
        cycles: int = 0,
    ) -> GateResult:
        """Run the gate until it succeeds or escalates.

        Args:
            evaluate: Produces an evaluation of the current work
            correct: Asked to address an unsatisfied evaluation
            produce: Optional initial producer run once before evaluating
            cycles: Cycles already consumed (normally 0)

        Returns:
            GateResult with the outcome, cycles consumed and last evaluation
        """
        notes: List[str] = []

        if produce is not None:
            self._attempt(produce, notes, "produce")

        evaluation = self._evaluate(evaluate, notes)

        while True:
            decision = self.retry_strategy.should_retry(
                current_cycles=cycles,
                satisfied=evaluation.satisfied,
                blocked=evaluation.blocked,
            )

            if decision == RetryDecision.COMPLETE:
                return GateResult(
                    outcome=GateOutcome.SUCCESS,
                    cycles=cycles,
                    evaluation=evaluation,
                    reason=self.retry_strategy.get_retry_message(decision, cycles),
                    notes=notes,
                )

            if decision == RetryDecision.ESCALATE:
                reason = "blocked by evaluator" if evaluation.blocked else "cycle budget exhausted"
                return GateResult(
                    outcome=GateOutcome.ESCALATED,
                    cycles=cycles,
                    evaluation=evaluation,
                    reason=self.retry_strategy.get_retry_message(decision, cycles, reason),
                    notes=notes,
                )

            cycles += 1
            if self.on_cycle is not None:
                self.on_cycle(cycles)

            if self.activity_logger:
                self.activity_logger.log_gate_cycle(
                    gate=self.name,
                    cycle=cycles,
                    max_cycles=self.max_cycles,
                    issues=evaluation.issues,
                    plan_id=self.plan_id,
                    phase_id=self.phase_id,
                )

            self._attempt(lambda: correct(evaluation), notes, "correct")
            evaluation = self._evaluate(evaluate, notes)

    def _evaluate(self, evaluate: Callable[[], Evaluation], notes: List[str]) -> Evaluation:
        try:
            return evaluate()
        except AgentInvocationError as e:
            notes.append(f"{self.name}: evaluation agent failure: {e}")
            return Evaluation.from_agent_error(e)

    def _attempt(self, action: Callable[[], None], notes: List[str], label: str) -> None:
        # A failed producer or corrector still gets evaluated; the evaluation
        # decides whether the work is acceptable.
        try:
            action()
        except AgentInvocationError as e:
            notes.append(f"{self.name}: {label} agent failure: {e}")
