"""Retry strategy for bounded corrective cycles.

Every gate in the pipeline asks the same question after an evaluation: stop
because it passed, try another corrective cycle, or hand the problem to a
human. This module answers it from the cycle count and the evaluation outcome.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RetryDecision(Enum):
    """Decision after an evaluation."""

    COMPLETE = "complete"  # Evaluation satisfied
    RETRY = "retry"  # Run another corrective cycle
    ESCALATE = "escalate"  # Hand over to the operator


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_cycles: int = 3
    """Maximum number of corrective cycles"""


class RetryStrategy:
    """Determines whether a gate keeps correcting or escalates."""

    def __init__(self, config: Optional[RetryConfig] = None):
        """Initialize retry strategy.

        Args:
            config: Retry configuration (uses defaults if None)
        """
        self.config = config or RetryConfig()

    def should_retry(
        self,
        current_cycles: int,
        satisfied: bool,
        blocked: bool = False,
    ) -> RetryDecision:
        """Decide what follows an evaluation.

        Agent failures arrive as unsatisfied evaluations and spend budget
        like any other request for changes.

        Args:
            current_cycles: Corrective cycles already consumed
            satisfied: Whether the evaluation passed
            blocked: Whether the evaluator reported a blocking problem

        Returns:
            RetryDecision indicating what action to take
        """
        if satisfied:
            return RetryDecision.COMPLETE

        # A blocking verdict never consumes budget
        if blocked:
            return RetryDecision.ESCALATE

        if current_cycles >= self.config.max_cycles:
            return RetryDecision.ESCALATE

        return RetryDecision.RETRY

    def get_retry_message(
        self,
        decision: RetryDecision,
        current_cycles: int,
        reason: Optional[str] = None,
    ) -> str:
        """Get a human-readable message about the retry decision.

        Args:
            decision: Retry decision
            current_cycles: Corrective cycles consumed so far
            reason: Optional reason for the decision

        Returns:
            Message string
        """
        if decision == RetryDecision.RETRY:
            msg = f"Corrective cycle {current_cycles + 1}/{self.config.max_cycles}"
            if reason:
                msg += f": {reason}"
            return msg

        elif decision == RetryDecision.ESCALATE:
            if current_cycles >= self.config.max_cycles:
                msg = f"Escalating after {current_cycles}/{self.config.max_cycles} corrective cycles"
            else:
                msg = f"Escalating after {current_cycles} corrective cycles"
            if reason:
                msg += f": {reason}"
            return msg

        elif decision == RetryDecision.COMPLETE:
            if current_cycles > 0:
                msg = f"Passed after {current_cycles} corrective cycles"
            else:
                msg = "Passed on first evaluation"
            if reason:
                msg += f" ({reason})"
            return msg

        return "Unknown retry decision"
