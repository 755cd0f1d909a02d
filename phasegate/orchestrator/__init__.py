"""Orchestration layer: gates, phase runner, pipeline engine and plan store.

This package drives plans through their phases and whole-plan checks, and
persists every transition through the plan store.
"""

from .escalation import EscalationKind, EscalationReport, EscalationReporter
from .gate import Evaluation, Gate, GateOutcome, GateResult
from .phase_runner import PhaseResult, PhaseRunner
from .pipeline_engine import CheckName, PipelineEngine, PlanOutcome
from .plan_store import PlanStore
from .planner import Planner
from .retry_strategy import RetryConfig, RetryDecision, RetryStrategy

__all__ = [
    "PipelineEngine",
    "PlanOutcome",
    "CheckName",
    "PhaseRunner",
    "PhaseResult",
    "Gate",
    "GateResult",
    "GateOutcome",
    "Evaluation",
    "PlanStore",
    "Planner",
    "EscalationReporter",
    "EscalationReport",
    "EscalationKind",
    "RetryStrategy",
    "RetryConfig",
    "RetryDecision",
]
