"""Tests for plan schema validation."""

import pytest

from phasegate.core.exceptions import PlanValidationError, StateTransitionError
from phasegate.core.phase_state import PhaseStatus, PlanStatus
from phasegate.core.plan_schema import (
    Complexity,
    ExecutionRecord,
    normalize_path,
    plan_from_dict,
    slugify,
    transition_phase,
    transition_plan,
)
from tests.conftest import phase_data


def plan_dict(phases, **extra):
    data = {
        "plan_number": 3,
        "slug": "add-dark-mode",
        "feature_request": "Add dark mode",
        "phases": phases,
    }
    data.update(extra)
    return data


class TestSlugify:
    """Tests for slug generation."""

    def test_strips_heading_markers(self):
        assert slugify("# Add dark mode toggle") == "add-dark-mode-toggle"

    def test_uses_first_line_only(self):
        assert slugify("Add CSV export\n\nMore detail here") == "add-csv-export"

    def test_collapses_punctuation(self):
        assert slugify("Fix: C++ & Rust bindings!") == "fix-c-rust-bindings"

    def test_truncates_long_requests(self):
        slug = slugify("word " * 40)
        assert len(slug) <= 50
        assert not slug.endswith("-")

    def test_empty_request_falls_back(self):
        assert slugify("   ") == "plan"
        assert slugify("!!!") == "plan"


class TestNormalizePath:
    def test_strips_leading_dot_slash(self):
        assert normalize_path("./src/app.py") == "src/app.py"

    def test_converts_backslashes(self):
        assert normalize_path("src\\ui\\toggle.py") == "src/ui/toggle.py"


class TestPlanValidation:
    """Tests for structural plan invariants."""

    def test_valid_plan(self):
        plan = plan_from_dict(
            plan_dict([phase_data("1"), phase_data("2", depends_on=["1"])])
        )

        assert plan.id == "003-add-dark-mode"
        assert plan.filename == "003-add-dark-mode.json"
        assert plan.status == PlanStatus.PENDING
        assert all(p.status == PhaseStatus.PENDING for p in plan.phases)
        assert plan.phases[0].complexity == Complexity.MEDIUM

    def test_numeric_ids_are_coerced(self):
        plan = plan_from_dict(
            plan_dict([phase_data(1), phase_data(2, depends_on=[1])])
        )

        assert plan.phases[0].id == "1"
        assert plan.phases[1].depends_on == ["1"]

    def test_owned_paths_are_normalized(self):
        plan = plan_from_dict(plan_dict([phase_data("1", owns=["./src/a.py"])]))
        assert plan.phases[0].owns == ["src/a.py"]

    def test_rejects_empty_phase_list(self):
        with pytest.raises(PlanValidationError):
            plan_from_dict(plan_dict([]))

    def test_rejects_duplicate_phase_ids(self):
        with pytest.raises(PlanValidationError, match="Duplicate phase ids"):
            plan_from_dict(
                plan_dict([phase_data("1"), phase_data("1", owns=["src/other.py"])])
            )

    def test_rejects_unknown_dependency(self):
        with pytest.raises(PlanValidationError, match="unknown phases"):
            plan_from_dict(plan_dict([phase_data("1", depends_on=["9"])]))

    def test_rejects_self_dependency(self):
        with pytest.raises(PlanValidationError, match="depends on itself"):
            plan_from_dict(plan_dict([phase_data("1", depends_on=["1"])]))

    def test_rejects_dependency_cycle(self):
        with pytest.raises(PlanValidationError, match="Dependency cycle"):
            plan_from_dict(
                plan_dict(
                    [
                        phase_data("1", depends_on=["2"]),
                        phase_data("2", depends_on=["1"]),
                    ]
                )
            )

    def test_rejects_dependency_listed_later(self):
        with pytest.raises(PlanValidationError, match="listed before its dependencies"):
            plan_from_dict(
                plan_dict([phase_data("1", depends_on=["2"]), phase_data("2")])
            )

    def test_rejects_shared_file_ownership(self):
        with pytest.raises(PlanValidationError, match="owned by both"):
            plan_from_dict(
                plan_dict(
                    [
                        phase_data("1", owns=["src/shared.py"]),
                        phase_data("2", owns=["./src/shared.py"]),
                    ]
                )
            )

    def test_rejects_duplicate_paths_within_phase(self):
        with pytest.raises(PlanValidationError, match="duplicates"):
            plan_from_dict(plan_dict([phase_data("1", owns=["a.py", "a.py"])]))

    def test_rejects_blank_description(self):
        with pytest.raises(PlanValidationError):
            plan_from_dict(plan_dict([phase_data("1", description="   ")]))

    def test_rejects_invalid_slug(self):
        with pytest.raises(PlanValidationError, match="Slug"):
            plan_from_dict(plan_dict([phase_data("1")], slug="Not A Slug"))

    def test_rejects_completed_plan_with_unfinished_phases(self):
        with pytest.raises(PlanValidationError, match="unfinished"):
            plan_from_dict(plan_dict([phase_data("1")], status="completed"))

    def test_round_trip_preserves_execution_state(self):
        plan = plan_from_dict(plan_dict([phase_data("1")]))
        plan.phases[0].execution.review_cycles = 2
        plan.phases[0].execution.add_note("reviewed twice")

        restored = plan_from_dict(plan.model_dump(mode="json"))

        assert restored == plan


class TestPlanQueries:
    def test_get_phase(self, make_plan):
        plan = make_plan()
        assert plan.get_phase("2").name == "Toggle UI"

    def test_get_unknown_phase_raises(self, make_plan):
        with pytest.raises(KeyError):
            make_plan().get_phase("9")

    def test_completed_phase_count(self, make_plan):
        plan = make_plan()
        plan.phases[0].status = PhaseStatus.COMPLETED

        assert plan.completed_phase_count() == 1
        assert not plan.all_phases_completed()


class TestTransitions:
    """Tests for status transition helpers."""

    def test_phase_transition(self, make_plan):
        phase = make_plan().phases[0]
        transition_phase(phase, PhaseStatus.IN_PROGRESS)
        transition_phase(phase, PhaseStatus.ESCALATED)
        assert phase.status == PhaseStatus.ESCALATED

    def test_invalid_phase_transition(self, make_plan):
        phase = make_plan().phases[0]
        with pytest.raises(StateTransitionError, match="pending -> completed"):
            transition_phase(phase, PhaseStatus.COMPLETED)

    def test_completed_phase_is_final(self, make_plan):
        phase = make_plan().phases[0]
        transition_phase(phase, PhaseStatus.IN_PROGRESS)
        transition_phase(phase, PhaseStatus.COMPLETED)
        with pytest.raises(StateTransitionError):
            transition_phase(phase, PhaseStatus.PENDING)

    def test_plan_cannot_complete_with_unfinished_phases(self, make_plan):
        plan = make_plan()
        transition_plan(plan, PlanStatus.IN_PROGRESS)
        with pytest.raises(StateTransitionError, match="unfinished"):
            transition_plan(plan, PlanStatus.COMPLETED)

    def test_plan_completes_when_all_phases_done(self, make_plan):
        plan = make_plan()
        transition_plan(plan, PlanStatus.IN_PROGRESS)
        for phase in plan.phases:
            phase.status = PhaseStatus.COMPLETED
        plan.checks.integration.passed = True
        plan.checks.build.passed = True
        transition_plan(plan, PlanStatus.COMPLETED)
        assert plan.status == PlanStatus.COMPLETED

    @pytest.mark.parametrize("check", ["integration", "build"])
    def test_plan_cannot_complete_before_checks_pass(self, make_plan, check):
        plan = make_plan()
        transition_plan(plan, PlanStatus.IN_PROGRESS)
        for phase in plan.phases:
            phase.status = PhaseStatus.COMPLETED
        plan.checks.integration.passed = True
        plan.checks.build.passed = True
        getattr(plan.checks, check).passed = False

        with pytest.raises(StateTransitionError, match="checks pass"):
            transition_plan(plan, PlanStatus.COMPLETED)
        assert plan.status == PlanStatus.IN_PROGRESS

    def test_invalid_plan_transition_lists_valid_states(self, make_plan):
        plan = make_plan()
        with pytest.raises(StateTransitionError, match="Valid next states"):
            transition_plan(plan, PlanStatus.PAUSED)


def test_execution_record_defaults():
    record = ExecutionRecord()

    assert record.review_cycles == 0
    assert record.specialized_review_cycles == 0
    assert record.test_fix_cycles == 0
    assert record.tests_written == 0
    assert record.escalated is False
    assert record.notes == []

    record.add_note("started")
    assert record.notes == ["started"]
