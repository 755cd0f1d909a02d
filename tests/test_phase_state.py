"""Tests for plan and phase status transitions."""

import pytest

from phasegate.core.phase_state import (
    PHASE_STEPS,
    PhaseStatus,
    PhaseStep,
    PlanStatus,
    get_valid_next_plan_statuses,
    is_terminal_phase_status,
    is_valid_phase_transition,
    is_valid_plan_transition,
    needs_operator,
)


def test_step_order():
    assert PHASE_STEPS == [
        PhaseStep.IMPLEMENT,
        PhaseStep.REVIEW,
        PhaseStep.SPECIALIZED_REVIEW,
        PhaseStep.AUTHOR_TESTS,
        PhaseStep.EXECUTE_TESTS,
        PhaseStep.FINAL_REVIEW,
        PhaseStep.VALIDATE,
    ]


@pytest.mark.parametrize(
    "from_status,to_status",
    [
        (PhaseStatus.PENDING, PhaseStatus.IN_PROGRESS),
        (PhaseStatus.IN_PROGRESS, PhaseStatus.IN_PROGRESS),
        (PhaseStatus.IN_PROGRESS, PhaseStatus.COMPLETED),
        (PhaseStatus.IN_PROGRESS, PhaseStatus.ESCALATED),
        (PhaseStatus.IN_PROGRESS, PhaseStatus.FAILED),
        (PhaseStatus.ESCALATED, PhaseStatus.PENDING),
        (PhaseStatus.FAILED, PhaseStatus.PENDING),
    ],
)
def test_valid_phase_transitions(from_status, to_status):
    assert is_valid_phase_transition(from_status, to_status)


@pytest.mark.parametrize(
    "from_status,to_status",
    [
        (PhaseStatus.PENDING, PhaseStatus.COMPLETED),
        (PhaseStatus.PENDING, PhaseStatus.ESCALATED),
        (PhaseStatus.COMPLETED, PhaseStatus.IN_PROGRESS),
        (PhaseStatus.COMPLETED, PhaseStatus.PENDING),
        (PhaseStatus.ESCALATED, PhaseStatus.IN_PROGRESS),
    ],
)
def test_invalid_phase_transitions(from_status, to_status):
    assert not is_valid_phase_transition(from_status, to_status)


def test_completed_and_failed_plans_are_terminal():
    assert get_valid_next_plan_statuses(PlanStatus.COMPLETED) == []
    assert get_valid_next_plan_statuses(PlanStatus.FAILED) == []


def test_paused_plan_can_resume_or_fail():
    assert is_valid_plan_transition(PlanStatus.PAUSED, PlanStatus.IN_PROGRESS)
    assert is_valid_plan_transition(PlanStatus.PAUSED, PlanStatus.FAILED)
    assert not is_valid_plan_transition(PlanStatus.PAUSED, PlanStatus.COMPLETED)


def test_operator_statuses():
    assert needs_operator(PhaseStatus.ESCALATED)
    assert needs_operator(PhaseStatus.FAILED)
    assert not needs_operator(PhaseStatus.IN_PROGRESS)

    assert is_terminal_phase_status(PhaseStatus.COMPLETED)
    assert not is_terminal_phase_status(PhaseStatus.PENDING)
