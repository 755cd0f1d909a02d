"""Core phasegate functionality."""

from .agent_gateway import (
    AgentGateway,
    AgentReport,
    AgentRole,
    ClaudeAgentGateway,
    PromptContext,
    ReviewIssue,
    Verdict,
)
from .command_runner import CheckResult, CommandResult, CommandRunner
from .exceptions import (
    AgentInvocationError,
    AgentOutputParseError,
    AgentTimeoutError,
    CommandExecutionError,
    ConcurrentWriterError,
    ConfigurationError,
    ExecutionError,
    GitOperationError,
    PhasegateError,
    PlanCorruptionError,
    PlanNotFoundError,
    PlanStateError,
    PlanStoreError,
    PlanValidationError,
    StateTransitionError,
)
from .git_utils import ChangeTracker, GitChangeTracker, GitUtils
from .output_parser import OutputParser
from .phase_state import (
    PHASE_STEPS,
    PhaseStatus,
    PhaseStep,
    PlanStatus,
    is_terminal_phase_status,
    is_valid_phase_transition,
    is_valid_plan_transition,
    needs_operator,
)
from .plan_schema import (
    CheckRecord,
    Complexity,
    ExecutionRecord,
    Phase,
    Plan,
    PlanChecks,
    TestStrategy,
    WorkspaceSnapshot,
    plan_from_dict,
    slugify,
    transition_phase,
    transition_plan,
)

__all__ = [
    # Exceptions
    "PhasegateError",
    "ConfigurationError",
    "PlanValidationError",
    "PlanStateError",
    "StateTransitionError",
    "PlanStoreError",
    "PlanNotFoundError",
    "PlanCorruptionError",
    "ConcurrentWriterError",
    "ExecutionError",
    "AgentInvocationError",
    "AgentTimeoutError",
    "AgentOutputParseError",
    "CommandExecutionError",
    "GitOperationError",
    # Plan model
    "Plan",
    "Phase",
    "ExecutionRecord",
    "Complexity",
    "TestStrategy",
    "CheckRecord",
    "PlanChecks",
    "WorkspaceSnapshot",
    "plan_from_dict",
    "slugify",
    "transition_phase",
    "transition_plan",
    # Status
    "PlanStatus",
    "PhaseStatus",
    "PhaseStep",
    "PHASE_STEPS",
    "is_valid_phase_transition",
    "is_valid_plan_transition",
    "is_terminal_phase_status",
    "needs_operator",
    # Collaborators
    "AgentGateway",
    "ClaudeAgentGateway",
    "AgentRole",
    "AgentReport",
    "ReviewIssue",
    "Verdict",
    "PromptContext",
    "OutputParser",
    "CommandRunner",
    "CommandResult",
    "CheckResult",
    "ChangeTracker",
    "GitChangeTracker",
    "GitUtils",
]
