"""Plan lifecycle service."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Tuple

from .dependencies import DependencyGraph
from .errors import NotFound, ValidationError
from .models import EntityKind, Plan, PlanOperationResult, PlanStatus
from .planning_logging import log_operation, log_transition
from .repositories import EntityStore
from .state_machine import PLAN_STATE_MACHINE, PlanStateMachine

logger = logging.getLogger("plantrack.plan_service")

PLAN_NOT_FOUND = "Plan not found"


class PlanService:
    def __init__(
        self,
        store: EntityStore,
        graph: DependencyGraph,
        state_machine: PlanStateMachine = PLAN_STATE_MACHINE,
    ):
        self.store = store
        self.graph = graph
        self.state_machine = state_machine

    def create_plan(
        self,
        name: str,
        project_path: str,
        description: str = "",
        start_date: Optional[str] = None,
        target_date: Optional[str] = None,
    ) -> Plan:
        plan = self.store.create_plan(name, project_path, description, start_date, target_date)
        logger.info(f"Created plan {plan.id}: {plan.name}")
        return plan

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        return self.store.find_by_id(EntityKind.PLAN, plan_id)

    def list_plans(self, status: Optional[PlanStatus | str] = None) -> List[Plan]:
        return self.store.list_plans(status)

    def transition(self, plan_id: str, new_status: PlanStatus | str) -> PlanOperationResult:
        new_status = self.state_machine.parse(new_status)
        plan = self.get_plan(plan_id)
        if plan is None:
            return PlanOperationResult(success=False, error=PLAN_NOT_FOUND, code=NotFound.code)

        result = self.state_machine.transition(plan.status, new_status)
        if not result.success:
            return PlanOperationResult(success=False, error=result.error, code=result.code)

        trigger = self.state_machine.get_trigger_name(plan.status, new_status)
        updated = self.store.update(EntityKind.PLAN, plan_id, {"status": new_status})
        log_transition(EntityKind.PLAN.value, plan_id, plan.status.value, new_status.value, trigger=trigger)
        return PlanOperationResult(success=True, plan=updated, trigger=trigger)

    def update_plan(self, plan_id: str, fields: Mapping[str, Any]) -> PlanOperationResult:
        """Update plan metadata; status changes go through ``transition``."""
        if "status" in fields:
            raise ValidationError("Plan status can only be changed through a transition")
        if "name" in fields and not str(fields["name"] or "").strip():
            raise ValidationError("Plan name cannot be empty")
        updated = self.store.update(EntityKind.PLAN, plan_id, fields)
        if updated is None:
            return PlanOperationResult(success=False, error=PLAN_NOT_FOUND, code=NotFound.code)
        return PlanOperationResult(success=True, plan=updated)

    def activate(self, plan_id: str) -> PlanOperationResult:
        return self.transition(plan_id, PlanStatus.ACTIVE)

    def complete(self, plan_id: str) -> PlanOperationResult:
        return self.transition(plan_id, PlanStatus.COMPLETED)

    def archive(self, plan_id: str) -> PlanOperationResult:
        return self.transition(plan_id, PlanStatus.ARCHIVED)

    def get_available_transitions(self, plan_id: str) -> List[PlanStatus]:
        plan = self.get_plan(plan_id)
        if plan is None:
            return []
        return self.state_machine.get_available_transitions(plan.status)

    def delete_plan(self, plan_id: str) -> bool:
        """Delete a plan with everything it owns, including dependency edges."""
        if not self.store.exists(EntityKind.PLAN, plan_id):
            return False

        def delete_rows() -> Tuple[int, bool]:
            removed = sum(self.graph.delete_all_for_entity(ref) for ref in self.store.refs_in_plan(plan_id))
            return removed, self.store.delete(EntityKind.PLAN, plan_id)

        with log_operation("delete_plan", plan_id=plan_id):
            removed, deleted = self.store.db.execute_with_retry(delete_rows)
        logger.info(f"Deleted plan {plan_id} and {removed} dependencies")
        return deleted
