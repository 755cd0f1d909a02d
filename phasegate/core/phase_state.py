"""Plan and phase status definitions and transitions."""

from enum import Enum
from typing import Dict, List


class PlanStatus(str, Enum):
    """Plan lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PAUSED = "paused"
    FAILED = "failed"


class PhaseStatus(str, Enum):
    """Phase lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ESCALATED = "escalated"
    FAILED = "failed"


class PhaseStep(str, Enum):
    """Sub-steps a phase moves through, in execution order."""

    IMPLEMENT = "implement"
    REVIEW = "review"
    SPECIALIZED_REVIEW = "specialized_review"
    AUTHOR_TESTS = "author_tests"
    EXECUTE_TESTS = "execute_tests"
    FINAL_REVIEW = "final_review"
    VALIDATE = "validate"


PHASE_STEPS: List[PhaseStep] = list(PhaseStep)


# Valid phase transitions. IN_PROGRESS -> IN_PROGRESS is the resume restart;
# ESCALATED/FAILED -> PENDING is reserved for the operator retry action.
VALID_PHASE_TRANSITIONS: Dict[PhaseStatus, List[PhaseStatus]] = {
    PhaseStatus.PENDING: [PhaseStatus.IN_PROGRESS],
    PhaseStatus.IN_PROGRESS: [
        PhaseStatus.IN_PROGRESS,
        PhaseStatus.COMPLETED,
        PhaseStatus.ESCALATED,
        PhaseStatus.FAILED,
    ],
    PhaseStatus.COMPLETED: [],
    PhaseStatus.ESCALATED: [PhaseStatus.PENDING],
    PhaseStatus.FAILED: [PhaseStatus.PENDING],
}

VALID_PLAN_TRANSITIONS: Dict[PlanStatus, List[PlanStatus]] = {
    PlanStatus.PENDING: [PlanStatus.IN_PROGRESS, PlanStatus.FAILED],
    PlanStatus.IN_PROGRESS: [
        PlanStatus.COMPLETED,
        PlanStatus.PAUSED,
        PlanStatus.FAILED,
    ],
    PlanStatus.PAUSED: [PlanStatus.IN_PROGRESS, PlanStatus.FAILED],
    PlanStatus.COMPLETED: [],  # Terminal state
    PlanStatus.FAILED: [],  # Terminal state
}

TERMINAL_PHASE_STATUSES = (
    PhaseStatus.COMPLETED,
    PhaseStatus.ESCALATED,
    PhaseStatus.FAILED,
)


def is_valid_phase_transition(from_status: PhaseStatus, to_status: PhaseStatus) -> bool:
    """Check if a phase status transition is valid."""
    return to_status in VALID_PHASE_TRANSITIONS.get(from_status, [])


def is_valid_plan_transition(from_status: PlanStatus, to_status: PlanStatus) -> bool:
    """Check if a plan status transition is valid."""
    return to_status in VALID_PLAN_TRANSITIONS.get(from_status, [])


def get_valid_next_plan_statuses(current: PlanStatus) -> List[PlanStatus]:
    """Get list of valid next statuses for a plan."""
    return VALID_PLAN_TRANSITIONS.get(current, [])


def is_terminal_phase_status(status: PhaseStatus) -> bool:
    """Check if a phase status ends automatic execution of that phase."""
    return status in TERMINAL_PHASE_STATUSES


def needs_operator(status: PhaseStatus) -> bool:
    """Check if a phase is stuck until an operator intervenes."""
    return status in (PhaseStatus.ESCALATED, PhaseStatus.FAILED)
