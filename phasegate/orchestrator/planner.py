"""Create plans from feature requests via the planning agent."""

from typing import Any, Dict, Optional

from ..core.agent_gateway import AgentGateway, AgentRole
from ..core.exceptions import PlanValidationError
from ..core.plan_schema import Plan, plan_from_dict, slugify
from ..tracking.activity_logger import ActivityLogger, EventType
from .plan_store import PlanStore

# Execution state is never taken from the planner; every phase starts pending.
_RUNTIME_PHASE_FIELDS = ("status", "execution")


class Planner:
    """Turns a feature request into a stored, validated plan."""

    def __init__(
        self,
        gateway: AgentGateway,
        store: PlanStore,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        self.gateway = gateway
        self.store = store
        self.activity_logger = activity_logger

    def create_plan(self, feature_request: str, codebase_context: Optional[str] = None) -> Plan:
        """Ask the planner for phases and store the result as a new plan.

        Args:
            feature_request: Free-text feature request
            codebase_context: Optional description of the codebase

        Returns:
            The stored plan, status pending

        Raises:
            PlanValidationError: If the request is empty or the planner's plan is invalid
            AgentInvocationError: If the planner cannot be reached
            PlanStoreError: If the plan cannot be stored
        """
        if not feature_request.strip():
            raise PlanValidationError("Feature request is empty")

        plan_number = self.store.next_plan_number()
        slug = slugify(feature_request)

        report = self.gateway.invoke(
            AgentRole.PLANNER,
            {
                "task": "plan",
                "plan_id": f"{plan_number:03d}-{slug}",
                "feature_request": feature_request,
                "codebase_context": codebase_context or "",
            },
        )

        plan = plan_from_dict(self._plan_data(plan_number, slug, feature_request, report.plan or {}))
        self.store.create(plan)

        if self.activity_logger:
            self.activity_logger.log_event(
                EventType.PLAN_CREATED,
                f"Plan created with {len(plan.phases)} phases",
                plan_id=plan.id,
                phases=[p.id for p in plan.phases],
            )

        return plan

    @staticmethod
    def _plan_data(
        plan_number: int, slug: str, feature_request: str, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        phases = payload.get("phases")
        if not isinstance(phases, list):
            raise PlanValidationError("Planner answer has no phase list")

        cleaned = []
        for phase in phases:
            if not isinstance(phase, dict):
                raise PlanValidationError(f"Planner returned a malformed phase: {phase!r}")
            cleaned.append({k: v for k, v in phase.items() if k not in _RUNTIME_PHASE_FIELDS})

        test_strategy = payload.get("test_strategy") or {}
        if isinstance(test_strategy, str):
            test_strategy = {"approach": test_strategy}

        return {
            "plan_number": plan_number,
            "slug": slug,
            "feature_request": feature_request,
            "phases": cleaned,
            "shared_context": str(payload.get("shared_context") or ""),
            "test_strategy": test_strategy,
        }
