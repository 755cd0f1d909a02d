"""phasegate exception classes."""


class PhasegateError(Exception):
    """Base exception for all phasegate errors."""

    pass


class ConfigurationError(PhasegateError):
    """Raised when configuration is invalid."""

    pass


class PlanValidationError(PhasegateError):
    """Raised when a plan document violates its structural invariants."""

    pass


class PlanStateError(PhasegateError):
    """Raised when an operation is not allowed in the plan's current state."""

    pass


class StateTransitionError(PlanStateError):
    """Raised when an invalid status transition is attempted."""

    pass


class PlanStoreError(PhasegateError):
    """Raised when the plan store cannot read or write a plan document.

    Store errors are fatal: the engine stops without recording a plan status.
    """

    pass


class PlanNotFoundError(PlanStoreError):
    """Raised when no plan exists for an identifier."""

    pass


class PlanCorruptionError(PlanStoreError):
    """Raised when persisted plan copies cannot be parsed or reconciled."""

    pass


class ConcurrentWriterError(PlanStoreError):
    """Raised when another writer touched the plan or holds its lock."""

    pass


class ExecutionError(PhasegateError):
    """Raised when phase execution fails."""

    pass


class AgentInvocationError(ExecutionError):
    """Raised when an external agent cannot be reached or answers badly."""

    pass


class AgentTimeoutError(AgentInvocationError):
    """Raised when an agent invocation times out."""

    pass


class AgentOutputParseError(AgentInvocationError):
    """Raised when agent output cannot be parsed into a report."""

    pass


class CommandExecutionError(ExecutionError):
    """Raised when a deterministic check command cannot be run at all."""

    pass


class GitOperationError(PhasegateError):
    """Raised when git operations fail."""

    pass
