"""Plan document schema and validation.

A plan is produced once by the planning agent and then only its statuses and
execution records change. Structural rules (unique phase ids, dependencies that
form a DAG consistent with list order, disjoint file ownership) are enforced
every time a plan is built from data, so a hand-edited plan that breaks them is
rejected on load as well as on creation.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import PlanValidationError, StateTransitionError
from .phase_state import (
    PhaseStatus,
    PhaseStep,
    PlanStatus,
    get_valid_next_plan_statuses,
    is_valid_phase_transition,
    is_valid_plan_transition,
)

MAX_SLUG_LENGTH = 50


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def slugify(text: str) -> str:
    """Turn the first line of a feature request into a file-name slug.

    Examples:
        >>> slugify("# Add dark mode toggle")
        'add-dark-mode-toggle'
    """
    stripped = text.strip()
    first_line = stripped.splitlines()[0] if stripped else ""
    first_line = re.sub(r"^#*\s*", "", first_line)
    slug = re.sub(r"[^a-z0-9]", "-", first_line.lower())
    slug = re.sub(r"-+", "-", slug).strip("-")
    slug = slug[:MAX_SLUG_LENGTH].strip("-")
    return slug or "plan"


def normalize_path(path: str) -> str:
    """Normalize a workspace-relative path for ownership comparisons."""
    normalized = str(PurePosixPath(path.strip().replace("\\", "/")))
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


class Complexity(str, Enum):
    """Phase complexity estimate."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class WorkspaceSnapshot(BaseModel):
    """Point-in-time view of the workspace used to detect later changes."""

    commit: Optional[str] = Field(None, description="HEAD commit when taken")
    files: Dict[str, str] = Field(
        default_factory=dict,
        description="Digests of files that were already dirty when taken",
    )
    taken_at: datetime = Field(default_factory=utc_now)


class ExecutionRecord(BaseModel):
    """Mutable progress attached to a phase."""

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    review_cycles: int = Field(default=0, ge=0)
    specialized_review_cycles: int = Field(default=0, ge=0)
    test_fix_cycles: int = Field(default=0, ge=0)
    tests_written: int = Field(default=0, ge=0)
    escalated: bool = False
    notes: List[str] = Field(default_factory=list)

    # Informational only; resumption always restarts at implement.
    last_step: Optional[PhaseStep] = None
    baseline: Optional[WorkspaceSnapshot] = None
    criteria_results: Dict[str, bool] = Field(default_factory=dict)
    test_files: List[str] = Field(default_factory=list)

    def add_note(self, note: str) -> None:
        """Append a note to the execution log."""
        self.notes.append(note)


class Phase(BaseModel):
    """One focused, independently deliverable unit of work."""

    id: str = Field(..., description="Phase identifier, unique within the plan")
    name: str = Field(..., description="Short phase name")
    description: str = Field(..., description="Self-sufficient description of what to build")
    owns: List[str] = Field(default_factory=list, description="Files this phase owns")
    depends_on: List[str] = Field(default_factory=list, description="Phase ids this phase needs")
    complexity: Complexity = Field(default=Complexity.MEDIUM)
    presentation: bool = Field(
        default=False, description="Touches user-facing presentation"
    )
    acceptance_criteria: List[str] = Field(default_factory=list)
    status: PhaseStatus = Field(default=PhaseStatus.PENDING)
    execution: ExecutionRecord = Field(default_factory=ExecutionRecord)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        """Accept numeric ids from planners and validate the format."""
        v = str(v).strip()
        if not v or re.search(r"\s", v):
            raise ValueError("Phase id must be a non-empty string without whitespace")
        return v

    @field_validator("depends_on", mode="before")
    @classmethod
    def coerce_dependencies(cls, v: Any) -> List[str]:
        """Accept numeric dependency ids."""
        if v is None:
            return []
        return [str(item).strip() for item in v]

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        """Validate phase description."""
        if not v.strip():
            raise ValueError("Phase description cannot be empty")
        return v.strip()

    @field_validator("owns")
    @classmethod
    def validate_owns(cls, v: List[str]) -> List[str]:
        """Normalize owned paths and reject duplicates within the phase."""
        normalized = [normalize_path(p) for p in v if p.strip()]
        if len(set(normalized)) != len(normalized):
            raise ValueError("Owned file list contains duplicates")
        return normalized


class TestStrategy(BaseModel):
    """How the plan expects its phases to be tested."""

    __test__ = False

    approach: str = ""
    tools: List[str] = Field(default_factory=list)
    notes: str = ""


class CheckRecord(BaseModel):
    """Progress of a whole-plan check run after every phase completes."""

    cycles: int = Field(default=0, ge=0)
    passed: bool = False
    escalated: bool = False
    notes: List[str] = Field(default_factory=list)


class PlanChecks(BaseModel):
    """Whole-plan integration and build verification state."""

    baseline: Optional[WorkspaceSnapshot] = None
    integration: CheckRecord = Field(default_factory=CheckRecord)
    build: CheckRecord = Field(default_factory=CheckRecord)


class Plan(BaseModel):
    """Top-level record of one feature's phases, status and shared context."""

    plan_number: int = Field(..., ge=1, description="Monotonic sequence number")
    slug: str = Field(..., description="Human-readable slug")
    feature_request: str = Field(..., description="Original feature request")
    status: PlanStatus = Field(default=PlanStatus.PENDING)
    created_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    phases: List[Phase] = Field(..., min_length=1)
    shared_context: str = Field(default="", description="Passed verbatim to every agent")
    test_strategy: TestStrategy = Field(default_factory=TestStrategy)
    checks: PlanChecks = Field(default_factory=PlanChecks)

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v: str) -> str:
        """Validate slug format."""
        if not re.match(r"^[a-z0-9-]+$", v):
            raise ValueError("Slug must contain only lowercase letters, numbers, and hyphens")
        if len(v) > MAX_SLUG_LENGTH:
            raise ValueError(f"Slug must be no more than {MAX_SLUG_LENGTH} characters long")
        return v

    @model_validator(mode="after")
    def validate_structure(self) -> "Plan":
        """Enforce phase-id uniqueness, DAG dependencies and disjoint ownership."""
        ids = [phase.id for phase in self.phases]
        duplicates = sorted({pid for pid in ids if ids.count(pid) > 1})
        if duplicates:
            raise ValueError(f"Duplicate phase ids: {duplicates}")

        known = set(ids)
        for phase in self.phases:
            unknown = [dep for dep in phase.depends_on if dep not in known]
            if unknown:
                raise ValueError(f"Phase {phase.id} depends on unknown phases: {unknown}")
            if phase.id in phase.depends_on:
                raise ValueError(f"Phase {phase.id} depends on itself")

        cycle = _find_cycle({phase.id: phase.depends_on for phase in self.phases})
        if cycle:
            raise ValueError(f"Dependency cycle: {' -> '.join(cycle)}")

        position = {pid: index for index, pid in enumerate(ids)}
        for phase in self.phases:
            late = [dep for dep in phase.depends_on if position[dep] > position[phase.id]]
            if late:
                raise ValueError(
                    f"Phase {phase.id} is listed before its dependencies {late}"
                )

        owners: Dict[str, str] = {}
        for phase in self.phases:
            for path in phase.owns:
                if path in owners:
                    raise ValueError(
                        f"File {path} is owned by both phase {owners[path]} and phase {phase.id}"
                    )
                owners[path] = phase.id

        if self.status == PlanStatus.COMPLETED:
            unfinished = [p.id for p in self.phases if p.status != PhaseStatus.COMPLETED]
            if unfinished:
                raise ValueError(
                    f"Plan cannot be completed while phases are unfinished: {unfinished}"
                )

        return self

    @property
    def id(self) -> str:
        """Plan identifier, e.g. ``003-add-dark-mode``."""
        return f"{self.plan_number:03d}-{self.slug}"

    @property
    def filename(self) -> str:
        """File name of the durable archive copy."""
        return f"{self.id}.json"

    def get_phase(self, phase_id: str) -> Phase:
        """Look up a phase by id.

        Raises:
            KeyError: If no phase has that id
        """
        for phase in self.phases:
            if phase.id == phase_id:
                return phase
        raise KeyError(f"Phase {phase_id} not found in plan {self.id}")

    def completed_phase_count(self) -> int:
        """Number of phases with status completed."""
        return sum(1 for p in self.phases if p.status == PhaseStatus.COMPLETED)

    def all_phases_completed(self) -> bool:
        """Check whether every phase completed."""
        return all(p.status == PhaseStatus.COMPLETED for p in self.phases)


def _find_cycle(graph: Dict[str, List[str]]) -> Optional[List[str]]:
    """Return one dependency cycle as a list of ids, or None."""
    visiting: List[str] = []
    done = set()

    def visit(node: str) -> Optional[List[str]]:
        if node in done:
            return None
        if node in visiting:
            return visiting[visiting.index(node):] + [node]
        visiting.append(node)
        for dep in graph.get(node, []):
            cycle = visit(dep)
            if cycle:
                return cycle
        visiting.pop()
        done.add(node)
        return None

    for node in graph:
        cycle = visit(node)
        if cycle:
            return cycle
    return None


def plan_from_dict(data: Dict[str, Any]) -> Plan:
    """Build a validated plan from parsed JSON.

    Raises:
        PlanValidationError: If the data violates the schema or plan invariants
    """
    try:
        return Plan(**data)
    except ValidationError as e:
        raise PlanValidationError(f"Invalid plan document: {e}") from e
    except TypeError as e:
        raise PlanValidationError(f"Invalid plan document: {e}") from e


def transition_phase(phase: Phase, to_status: PhaseStatus) -> None:
    """Move a phase to a new status.

    Raises:
        StateTransitionError: If the transition is not allowed
    """
    if not is_valid_phase_transition(phase.status, to_status):
        raise StateTransitionError(
            f"Invalid transition for phase {phase.id}: "
            f"{phase.status.value} -> {to_status.value}"
        )
    phase.status = to_status


def transition_plan(plan: Plan, to_status: PlanStatus) -> None:
    """Move a plan to a new status.

    Raises:
        StateTransitionError: If the transition is not allowed, or the plan
            would become completed with unfinished phases or unpassed
            whole-plan checks
    """
    if not is_valid_plan_transition(plan.status, to_status):
        valid = [s.value for s in get_valid_next_plan_statuses(plan.status)]
        raise StateTransitionError(
            f"Invalid transition for plan {plan.id}: "
            f"{plan.status.value} -> {to_status.value}. "
            f"Valid next states: {valid}"
        )
    if to_status == PlanStatus.COMPLETED and not plan.all_phases_completed():
        raise StateTransitionError(
            f"Plan {plan.id} cannot complete while phases are unfinished"
        )
    if to_status == PlanStatus.COMPLETED and not (
        plan.checks.integration.passed and plan.checks.build.passed
    ):
        raise StateTransitionError(
            f"Plan {plan.id} cannot complete before the integration and build checks pass"
        )
    plan.status = to_status
